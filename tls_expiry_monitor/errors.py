"""
Exception types for TLS Expiry Monitor.
"""

from typing import Dict, Optional


class TLSExpiryMonitorError(Exception):
    """Base class for all application errors."""


class ConfigurationError(TLSExpiryMonitorError):
    """Missing or invalid configuration. Fatal at startup."""


class InvalidEndpointError(TLSExpiryMonitorError, ValueError):
    """Endpoint string does not parse into a host and a numeric port."""


class NoCertificateError(TLSExpiryMonitorError):
    """TLS handshake completed but the peer presented no usable certificate."""


class PublishError(TLSExpiryMonitorError):
    """
    The metric sink rejected a batch of data points.

    Args:
        message: Human readable description
        failed: Mapping of resource id to rejection message
        total: Number of data points in the rejected batch
    """

    partial = False

    def __init__(self, message: str, failed: Optional[Dict[str, str]] = None, total: int = 0):
        super().__init__(message)
        self.failed: Dict[str, str] = dict(failed or {})
        self.total = total


class PartialPublishError(PublishError):
    """Some, but not all, data points of a batch were rejected."""

    partial = True
