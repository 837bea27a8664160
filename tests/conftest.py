"""
Shared fixtures for TLS Expiry Monitor tests.
"""

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Tuple

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from tls_expiry_monitor.config import Config

FIXED_NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_certificate(
    not_after: datetime, common_name: str = "localhost"
) -> Tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    """Create a self-signed certificate expiring at ``not_after``."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(min(not_after, datetime.now(timezone.utc)) - timedelta(days=365))
        .not_valid_after(not_after)
        .sign(private_key, hashes.SHA256())
    )
    return certificate, private_key


def certificate_der(not_after: datetime) -> bytes:
    certificate, _ = make_certificate(not_after)
    return certificate.public_bytes(serialization.Encoding.DER)


def write_certificate_files(directory: Path, not_after: datetime) -> Tuple[Path, Path]:
    """Write a PEM certificate and key pair, returning their paths."""
    certificate, private_key = make_certificate(not_after)
    cert_path = directory / "server.crt"
    key_path = directory / "server.key"
    cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    return cert_path, key_path


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def config() -> Config:
    """A complete configuration using the logging sink."""
    return Config(
        endpoints=["good.example:443", "bad.example:9999"],
        namespace="tls_monitoring",
        metric_name="certificate_days_remaining",
        compartment_id="ocid1.compartment.oc1..test",
        sink="log",
        connect_timeout=1.0,
        endpoint_timeout=2.0,
        max_retries=2,
        backoff_base=0.01,
        backoff_jitter=0.0,
    )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep configuration environment variables from leaking into tests."""
    for name in (
        "ENDPOINT",
        "ENDPOINTS",
        "NAMESPACE",
        "METRIC_NAME",
        "COMPARTMENT_ID",
        "FN_FN_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("TLS_EXPIRY_"):
            monkeypatch.delenv(name, raising=False)
