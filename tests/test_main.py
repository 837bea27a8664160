"""
Tests for the command line entry point.
"""

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from conftest import certificate_der
from main import main
from tls_expiry_monitor import __version__


@pytest.fixture(autouse=True)
def restore_logging():
    """setup_logging replaces root handlers; put them back after each test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def env(monkeypatch):
    monkeypatch.setenv("ENDPOINTS", "a.example:443,B.example")
    monkeypatch.setenv("NAMESPACE", "tls_monitoring")
    monkeypatch.setenv("METRIC_NAME", "certificate_days_remaining")
    monkeypatch.setenv("TLS_EXPIRY_SINK", "log")
    monkeypatch.setenv("TLS_EXPIRY_MAX_RETRIES", "0")


def fetcher_for(routes):
    async def fetch(endpoint, timeout):
        outcome = routes[str(endpoint)]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    return fetch


class TestMain:
    """Test CLI output and exit codes."""

    def test_version(self):
        result = CliRunner().invoke(main, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_configuration_exits_1(self):
        result = CliRunner().invoke(main, [])

        assert result.exit_code == 1
        assert "Missing required configuration" in result.output

    def test_missing_compartment_exits_1(self, env, monkeypatch):
        monkeypatch.setenv("TLS_EXPIRY_SINK", "oci")

        result = CliRunner().invoke(main, [])

        assert result.exit_code == 1
        assert "COMPARTMENT_ID" in result.output

    def test_client_creation_failure_exits_1(self, env, monkeypatch):
        monkeypatch.setenv("TLS_EXPIRY_SINK", "oci")
        monkeypatch.setenv("COMPARTMENT_ID", "ocid1.compartment.oc1..x")

        with patch(
            "oci.auth.signers.get_resource_principals_signer",
            side_effect=OSError("no resource principal"),
        ):
            result = CliRunner().invoke(main, [])

        assert result.exit_code == 1
        assert "Failed to create monitoring client" in result.output

    def test_one_line_per_endpoint(self, env):
        not_after = datetime.now(timezone.utc) + timedelta(days=30, hours=12)
        routes = {
            "a.example:443": certificate_der(not_after),
            "b.example:443": ConnectionRefusedError("connection refused"),
        }

        with patch("tls_expiry_monitor.probe.fetch_leaf_certificate", fetcher_for(routes)):
            result = CliRunner().invoke(main, [])

        assert result.exit_code == 0, result.output
        assert "a.example:443: 30 days remaining" in result.output
        assert "b.example:443: error — failed to connect to 'b.example:443'" in result.output
        assert "Checked 2 endpoint(s): 1 succeeded, 1 failed, 1 published" in result.output

    def test_dry_run_flag_skips_oci(self, env, monkeypatch):
        monkeypatch.setenv("TLS_EXPIRY_SINK", "oci")
        not_after = datetime.now(timezone.utc) + timedelta(days=10, hours=12)
        fetch = AsyncMock(return_value=certificate_der(not_after))

        with patch("tls_expiry_monitor.probe.fetch_leaf_certificate", fetch):
            result = CliRunner().invoke(main, ["--dry-run"])

        assert result.exit_code == 0, result.output
        assert "a.example:443: 10 days remaining" in result.output
        assert fetch.await_count == 2

    def test_config_file(self, tmp_path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text(
            "endpoints:\n  - bad endpoint\n"
            "namespace: tls\nmetric_name: days\nsink: log\n"
        )

        result = CliRunner().invoke(main, ["--config", str(config_path)])

        assert result.exit_code == 0, result.output
        assert "bad endpoint: error — " in result.output
        assert "Checked 1 endpoint(s): 0 succeeded, 1 failed, 0 published" in result.output
