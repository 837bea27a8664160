"""
Integration tests for TLS Expiry Monitor.

These tests run probes against real TLS servers on the loopback interface:
- Leaf certificate retrieval and expiry calculation
- Connection failures and retries against a closed port
- Per-endpoint deadlines against a server that never completes the handshake
- A full check run through the HTTP API

Run with: pytest tests/test_integration.py -v
"""

import asyncio
import socket
import ssl
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from cryptography import x509
from fastapi.testclient import TestClient

from conftest import write_certificate_files
from tls_expiry_monitor.api import create_app
from tls_expiry_monitor.backoff import BackoffPolicy
from tls_expiry_monitor.config import Config
from tls_expiry_monitor.metrics import MetricsCollector
from tls_expiry_monitor.models import Endpoint, ErrorKind
from tls_expiry_monitor.monitor import ExpiryMonitor
from tls_expiry_monitor.probe import CertificateProbe, fetch_leaf_certificate
from tls_expiry_monitor.scheduler import EndpointScheduler
from tls_expiry_monitor.sink import LoggingSink

NOT_AFTER = (datetime.now(timezone.utc) + timedelta(days=45, hours=12)).replace(microsecond=0)


@pytest_asyncio.fixture
async def tls_server(tmp_path):
    """A TLS server on the loopback interface presenting a self-signed certificate."""
    cert_path, key_path = write_certificate_files(tmp_path, NOT_AFTER)
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(cert_path, key_path)

    async def handle(reader, writer):
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0, ssl=context)
    port = server.sockets[0].getsockname()[1]

    yield f"127.0.0.1:{port}", cert_path

    server.close()
    await server.wait_closed()


@pytest_asyncio.fixture
async def stalled_server():
    """A plain TCP server that accepts connections but never answers the handshake."""
    closed = asyncio.Event()

    async def handle(reader, writer):
        # ClientHello arrives, then nothing until the client gives up
        try:
            await reader.read()
        except ConnectionError:
            pass
        finally:
            closed.set()
            writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]

    yield f"127.0.0.1:{port}", closed

    server.close()
    await server.wait_closed()


@pytest.fixture
def closed_port_endpoint():
    """An endpoint nothing listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return f"127.0.0.1:{port}"


@pytest.mark.asyncio
@pytest.mark.integration
class TestRealConnections:
    """Probes against real sockets."""

    async def test_fetch_leaf_certificate(self, tls_server):
        endpoint, cert_path = tls_server
        expected = x509.load_pem_x509_certificate(cert_path.read_bytes())

        der = await fetch_leaf_certificate(Endpoint.parse(endpoint), timeout=5.0)

        assert x509.load_der_x509_certificate(der) == expected

    async def test_probe_days_remaining(self, tls_server):
        endpoint, _ = tls_server
        probe = CertificateProbe(connect_timeout=5.0)

        result = await probe.probe(endpoint)

        assert result.ok, result.message
        assert result.days_remaining == 45
        assert result.not_after == NOT_AFTER
        assert result.attempts == 1

    async def test_connection_refused_is_retried(self, closed_port_endpoint):
        probe = CertificateProbe(
            connect_timeout=2.0, backoff=BackoffPolicy(max_retries=2, base=0.01, jitter=0.0)
        )

        result = await probe.probe(closed_port_endpoint)

        assert result.error == ErrorKind.CONNECTION_FAILED
        assert result.attempts == 3

    async def test_stalled_handshake_times_out_and_closes(self, stalled_server, tls_server):
        stalled, closed = stalled_server
        healthy, _ = tls_server
        probe = CertificateProbe(
            connect_timeout=10.0, backoff=BackoffPolicy(max_retries=0, base=0.0, jitter=0.0)
        )
        scheduler = EndpointScheduler(probe, endpoint_timeout=0.3)

        results = await scheduler.run([stalled, healthy])

        assert results[0].error == ErrorKind.TIMEOUT
        assert results[1].days_remaining == 45
        # The abandoned connection is released, not leaked
        await asyncio.wait_for(closed.wait(), timeout=2.0)

    async def test_cancelled_run_releases_connections(self, stalled_server):
        stalled, closed = stalled_server
        scheduler = EndpointScheduler(CertificateProbe(connect_timeout=10.0), endpoint_timeout=10.0)

        task = asyncio.create_task(scheduler.run([stalled]))
        await asyncio.sleep(0.2)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.wait_for(closed.wait(), timeout=2.0)


@pytest.mark.asyncio
@pytest.mark.integration
class TestFullCheckRun:
    """A check run from configuration to report."""

    async def test_run_once(self, tls_server, closed_port_endpoint):
        healthy, _ = tls_server
        config = Config(
            endpoints=[healthy, closed_port_endpoint, "bad host"],
            namespace="tls_monitoring",
            metric_name="certificate_days_remaining",
            sink="log",
            max_retries=1,
            backoff_base=0.01,
            backoff_jitter=0.0,
            endpoint_timeout=5.0,
            enable_ip_whitelist=False,
        )
        monitor = ExpiryMonitor(
            config, EndpointScheduler.from_config(config), LoggingSink(), MetricsCollector()
        )

        report = await monitor.run_once()

        summary = report["summary"]
        assert (summary["total"], summary["succeeded"], summary["failed"]) == (3, 1, 2)
        assert summary["published"] == 1
        errors = [r["error"] for r in report["results"]]
        assert errors == [None, "ConnectionFailed", "InvalidFormat"]

    async def test_results_via_api(self, tls_server):
        healthy, _ = tls_server
        config = Config(
            endpoints=[healthy],
            namespace="tls_monitoring",
            metric_name="certificate_days_remaining",
            sink="log",
            enable_ip_whitelist=False,
        )
        metrics = MetricsCollector()
        monitor = ExpiryMonitor(
            config, EndpointScheduler.from_config(config), LoggingSink(), metrics
        )
        await monitor.run_once()

        client = TestClient(create_app(monitor=monitor, metrics=metrics, config=config))

        response = client.get("/results")
        assert response.status_code == 200
        assert response.json()["results"][0]["days_remaining"] == 45

        response = client.get("/metrics")
        assert response.status_code == 200
        assert f'tls_cert_days_remaining{{endpoint="{healthy}"}} 45.0' in response.text
