"""
TLS certificate probe for TLS Expiry Monitor.

Opens a TLS connection to one endpoint without verifying the peer, reads the
leaf certificate and reports the number of whole days until it expires.
"""

import asyncio
import math
import ssl
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from cryptography import x509

from tls_expiry_monitor.backoff import BackoffPolicy, RetryState
from tls_expiry_monitor.errors import InvalidEndpointError, NoCertificateError
from tls_expiry_monitor.logger import describe_error, get_logger, log_probe_retry
from tls_expiry_monitor.models import Endpoint, ErrorKind, ProbeResult, ProbeState

if TYPE_CHECKING:
    from tls_expiry_monitor.config import Config

SECONDS_PER_DAY = 86400
CLOSE_TIMEOUT = 1.0

# Connection and handshake failures worth another attempt
RETRYABLE_ERRORS = (OSError, asyncio.TimeoutError)

LeafFetcher = Callable[[Endpoint, float], Awaitable[bytes]]
StateCallback = Callable[[str, ProbeState], None]
Clock = Callable[[], datetime]


def create_unverified_context() -> ssl.SSLContext:
    """Client context that accepts any presented certificate."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


async def fetch_leaf_certificate(
    endpoint: Endpoint, timeout: float, context: Optional[ssl.SSLContext] = None
) -> bytes:
    """
    Connect to an endpoint and return the DER bytes of its leaf certificate.

    The connection is closed on every exit path, including cancellation.

    Args:
        endpoint: Parsed endpoint
        timeout: Connect and handshake timeout in seconds
        context: TLS context, unverified by default

    Raises:
        OSError: Connection or handshake failure
        asyncio.TimeoutError: Connect/handshake did not finish in time
        NoCertificateError: Handshake completed without a peer certificate
    """
    writer: Optional[asyncio.StreamWriter] = None
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(
                endpoint.host,
                endpoint.port,
                ssl=context or create_unverified_context(),
                server_hostname=endpoint.host,
            ),
            timeout=timeout,
        )

        ssl_object = writer.get_extra_info("ssl_object")
        der = ssl_object.getpeercert(binary_form=True) if ssl_object else None
        if not der:
            raise NoCertificateError(f"no certificate found for endpoint '{endpoint}'")
        return der
    finally:
        if writer is not None:
            await _close_writer(writer)


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await asyncio.wait_for(writer.wait_closed(), timeout=CLOSE_TIMEOUT)
    except (OSError, asyncio.TimeoutError):
        # Peer did not complete the TLS shutdown
        writer.transport.abort()


def days_until(not_after: datetime, now: datetime) -> int:
    """Whole days until ``not_after``, floored; negative once expired."""
    return math.floor((not_after - now).total_seconds() / SECONDS_PER_DAY)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CertificateProbe:
    """
    Resolves the expiry horizon of a single endpoint's leaf certificate.

    Connection failures are retried according to the backoff policy. The
    probe never raises for per-endpoint problems; every outcome is a
    ProbeResult.

    Args:
        connect_timeout: Per-attempt connect and handshake timeout in seconds
        backoff: Retry policy
        fetcher: Coroutine returning leaf certificate DER bytes for an endpoint
        clock: Returns the current aware UTC datetime
        sleep: Coroutine used for backoff waits
    """

    def __init__(
        self,
        connect_timeout: float = 10.0,
        backoff: Optional[BackoffPolicy] = None,
        fetcher: Optional[LeafFetcher] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.connect_timeout = connect_timeout
        self.backoff = backoff or BackoffPolicy()
        self.fetcher: LeafFetcher = fetcher or fetch_leaf_certificate
        self.clock: Clock = clock or _utc_now
        self._sleep = sleep or asyncio.sleep
        self.logger = get_logger("probe")

    @classmethod
    def from_config(cls, config: "Config", **kwargs) -> "CertificateProbe":
        return cls(
            connect_timeout=config.connect_timeout,
            backoff=BackoffPolicy.from_config(config),
            **kwargs,
        )

    async def check(
        self,
        endpoint: str,
        timeout: Optional[float] = None,
        on_state: Optional[StateCallback] = None,
    ) -> ProbeResult:
        """
        Probe an endpoint under an external deadline.

        When the deadline fires the in-flight attempt or backoff wait is
        cancelled and a Timeout result is returned.
        """
        if timeout is None:
            return await self.probe(endpoint, on_state)

        started = time.monotonic()
        try:
            return await asyncio.wait_for(self.probe(endpoint, on_state), timeout=timeout)
        except asyncio.TimeoutError:
            self._notify(on_state, endpoint, ProbeState.TIMED_OUT)
            return ProbeResult.failure(
                endpoint,
                ErrorKind.TIMEOUT,
                f"timeout while processing endpoint '{endpoint}' after {timeout:g}s",
                duration=time.monotonic() - started,
            )

    async def probe(self, endpoint: str, on_state: Optional[StateCallback] = None) -> ProbeResult:
        """Probe an endpoint with retries but no overall deadline."""
        started = time.monotonic()
        self._notify(on_state, endpoint, ProbeState.PENDING)

        try:
            target = Endpoint.parse(endpoint)
        except InvalidEndpointError as e:
            self._notify(on_state, endpoint, ProbeState.FAILED)
            return ProbeResult.failure(endpoint, ErrorKind.INVALID_FORMAT, str(e))

        state = RetryState()
        while True:
            self._notify(on_state, endpoint, ProbeState.CONNECTING)
            try:
                der = await self.fetcher(target, self.connect_timeout)
                break
            except NoCertificateError as e:
                self._notify(on_state, endpoint, ProbeState.FAILED)
                return ProbeResult.failure(
                    endpoint,
                    ErrorKind.NO_CERTIFICATE,
                    str(e),
                    attempts=state.attempt + 1,
                    duration=time.monotonic() - started,
                )
            except RETRYABLE_ERRORS as e:
                if not self.backoff.can_retry(state):
                    self._notify(on_state, endpoint, ProbeState.FAILED)
                    return ProbeResult.failure(
                        endpoint,
                        ErrorKind.CONNECTION_FAILED,
                        f"failed to connect to '{endpoint}' after {state.attempt + 1} "
                        f"attempt(s): {describe_error(e)}",
                        attempts=state.attempt + 1,
                        duration=time.monotonic() - started,
                    )

                state = self.backoff.advance(state)
                self._notify(on_state, endpoint, ProbeState.RETRYING)
                log_probe_retry(
                    self.logger,
                    endpoint,
                    state.attempt,
                    self.backoff.max_attempts,
                    state.next_delay,
                    e,
                )
                await self._sleep(state.next_delay)

        attempts = state.attempt + 1
        try:
            certificate = x509.load_der_x509_certificate(der)
            not_after = certificate.not_valid_after_utc
        except ValueError as e:
            self._notify(on_state, endpoint, ProbeState.FAILED)
            return ProbeResult.failure(
                endpoint,
                ErrorKind.NO_CERTIFICATE,
                f"unparseable certificate from endpoint '{endpoint}': {e}",
                attempts=attempts,
                duration=time.monotonic() - started,
            )

        days_remaining = days_until(not_after, self.clock())
        self._notify(on_state, endpoint, ProbeState.SUCCEEDED)

        return ProbeResult.success(
            endpoint,
            days_remaining,
            not_after=not_after,
            attempts=attempts,
            duration=time.monotonic() - started,
        )

    @staticmethod
    def _notify(callback: Optional[StateCallback], endpoint: str, state: ProbeState) -> None:
        if callback is not None:
            callback(endpoint, state)
