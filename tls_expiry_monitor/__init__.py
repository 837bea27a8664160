"""
TLS Expiry Monitor

Checks TLS endpoints concurrently for certificate expiry and publishes the
remaining validity window as a metric.
"""

__version__ = "1.0.0"
__author__ = "TLS Expiry Monitor Team"
__description__ = "Concurrent TLS certificate expiry checks published as metrics"

from tls_expiry_monitor.config import Config
from tls_expiry_monitor.models import ErrorKind, ProbeResult
from tls_expiry_monitor.probe import CertificateProbe
from tls_expiry_monitor.scheduler import EndpointScheduler

__all__ = [
    "CertificateProbe",
    "Config",
    "EndpointScheduler",
    "ErrorKind",
    "ProbeResult",
]
