"""
Data model for TLS Expiry Monitor.
"""

import ipaddress
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from tls_expiry_monitor.errors import InvalidEndpointError

DEFAULT_PORT = 443


class ErrorKind(str, Enum):
    """Per-endpoint error taxonomy."""

    INVALID_FORMAT = "InvalidFormat"
    CONNECTION_FAILED = "ConnectionFailed"
    NO_CERTIFICATE = "NoCertificate"
    TIMEOUT = "Timeout"
    PUBLISH_FAILED = "PublishFailed"


class ProbeState(str, Enum):
    """Lifecycle of a single endpoint inside one check run."""

    PENDING = "Pending"
    CONNECTING = "Connecting"
    RETRYING = "Retrying"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"

    @property
    def is_terminal(self) -> bool:
        return self in (ProbeState.SUCCEEDED, ProbeState.FAILED, ProbeState.TIMED_OUT)


@dataclass(frozen=True)
class Endpoint:
    """A parsed ``host:port`` pair."""

    host: str
    port: int

    @classmethod
    def parse(cls, value: str) -> "Endpoint":
        """
        Parse a strict ``host:port`` string.

        IPv6 literals must be bracketed (``[::1]:443``).

        Raises:
            InvalidEndpointError: If the string is not exactly a host and a numeric port
        """
        if not isinstance(value, str):
            raise InvalidEndpointError(f"Endpoint must be a string, got {type(value).__name__}")

        text = value.strip()
        if text.startswith("["):
            closing = text.find("]")
            if closing == -1:
                raise InvalidEndpointError(f"Unterminated IPv6 literal in endpoint '{value}'")
            host = text[1:closing]
            rest = text[closing + 1 :]
            if not rest.startswith(":"):
                raise InvalidEndpointError(f"Endpoint '{value}' is missing a port")
            port_text = rest[1:]
        else:
            host, sep, port_text = text.rpartition(":")
            if not sep:
                raise InvalidEndpointError(f"Endpoint '{value}' is missing a port")
            if ":" in host:
                raise InvalidEndpointError(
                    f"Endpoint '{value}' is ambiguous, bracket IPv6 addresses as [addr]:port"
                )

        if not host or any(ch.isspace() or ch in "/[]" for ch in host):
            raise InvalidEndpointError(f"Endpoint '{value}' has an invalid host")

        if not _is_ip_literal(host):
            try:
                host.encode("idna")
            except UnicodeError as e:
                raise InvalidEndpointError(f"Endpoint '{value}' has an invalid host: {e}") from e

        if not port_text.isdigit():
            raise InvalidEndpointError(f"Endpoint '{value}' has a non-numeric port")

        port = int(port_text)
        if not 1 <= port <= 65535:
            raise InvalidEndpointError(f"Endpoint '{value}' port {port} is out of range")

        return cls(host=host, port=port)

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def canonicalize_endpoint(value: str, default_port: int = DEFAULT_PORT) -> str:
    """
    Canonical form used as the monitored resource identifier.

    The host is lower-cased and the port is always explicit, so ``Example.com``
    and ``example.com:443`` name the same resource. Values that cannot be
    parsed are returned stripped but otherwise untouched.
    """
    text = value.strip()
    candidate = text

    if text.startswith("["):
        if text.endswith("]"):
            candidate = f"{text}:{default_port}"
    elif text.count(":") > 1:
        # Bare IPv6 literal
        candidate = f"[{text}]:{default_port}"
    elif ":" not in text:
        candidate = f"{text}:{default_port}"

    try:
        endpoint = Endpoint.parse(candidate)
    except InvalidEndpointError:
        return text

    return str(Endpoint(host=endpoint.host.lower(), port=endpoint.port))


@dataclass(frozen=True)
class ProbeResult:
    """
    Outcome of probing a single endpoint.

    Exactly one of ``days_remaining`` or ``error`` is populated.
    """

    endpoint: str
    days_remaining: Optional[int] = None
    error: Optional[ErrorKind] = None
    message: Optional[str] = None
    not_after: Optional[datetime] = None
    attempts: int = 0
    duration: float = 0.0

    def __post_init__(self) -> None:
        if (self.days_remaining is None) == (self.error is None):
            raise ValueError("ProbeResult requires exactly one of days_remaining or error")

    @classmethod
    def success(
        cls,
        endpoint: str,
        days_remaining: int,
        not_after: Optional[datetime] = None,
        attempts: int = 1,
        duration: float = 0.0,
    ) -> "ProbeResult":
        return cls(
            endpoint=endpoint,
            days_remaining=days_remaining,
            not_after=not_after,
            attempts=attempts,
            duration=duration,
        )

    @classmethod
    def failure(
        cls,
        endpoint: str,
        error: ErrorKind,
        message: str,
        attempts: int = 0,
        duration: float = 0.0,
    ) -> "ProbeResult":
        return cls(
            endpoint=endpoint, error=error, message=message, attempts=attempts, duration=duration
        )

    @property
    def ok(self) -> bool:
        return self.error is None

    def summary_line(self) -> str:
        """One human readable outcome line."""
        if self.ok:
            return f"{self.endpoint}: {self.days_remaining} days remaining"
        return f"{self.endpoint}: error — {self.message or self.error.value}"  # type: ignore[union-attr]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "days_remaining": self.days_remaining,
            "error": self.error.value if self.error else None,
            "message": self.message,
            "not_after": self.not_after.isoformat() if self.not_after else None,
            "attempts": self.attempts,
            "duration": round(self.duration, 3),
        }


@dataclass(frozen=True)
class MetricDatapoint:
    """A single value destined for the monitoring backend."""

    namespace: str
    metric_name: str
    resource_id: str
    value: float
    timestamp: datetime


@dataclass
class PublishReport:
    """Per-batch delivery outcome reported by a metric sink."""

    accepted: int = 0
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.accepted + len(self.failed)
