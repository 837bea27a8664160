"""
Concurrent endpoint scheduler for TLS Expiry Monitor.
"""

import asyncio
import time
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

from tls_expiry_monitor.logger import (
    describe_error,
    get_logger,
    log_check_complete,
    log_check_start,
    log_probe_result,
)
from tls_expiry_monitor.models import ErrorKind, ProbeResult, ProbeState
from tls_expiry_monitor.probe import CertificateProbe

if TYPE_CHECKING:
    from tls_expiry_monitor.config import Config


class EndpointScheduler:
    """
    Runs one certificate probe per endpoint concurrently.

    Every endpoint gets its own asyncio task bounded by its own timeout, so a
    hanging endpoint never delays the others. ``run`` joins on all tasks and
    returns exactly one ProbeResult per input endpoint, in input order.

    Args:
        probe: Probe shared by all units (stateless across calls)
        endpoint_timeout: Deadline for each endpoint in seconds
    """

    def __init__(self, probe: CertificateProbe, endpoint_timeout: float = 20.0):
        self.probe = probe
        self.endpoint_timeout = endpoint_timeout
        self.logger = get_logger("scheduler")
        self._states: Dict[str, ProbeState] = {}

    @classmethod
    def from_config(
        cls, config: "Config", probe: Optional[CertificateProbe] = None
    ) -> "EndpointScheduler":
        return cls(
            probe=probe or CertificateProbe.from_config(config),
            endpoint_timeout=config.endpoint_timeout,
        )

    @property
    def states(self) -> Dict[str, str]:
        """Latest lifecycle state of every endpoint seen in the current or last run."""
        return {endpoint: state.value for endpoint, state in self._states.items()}

    async def run(self, endpoints: Sequence[str]) -> List[ProbeResult]:
        """
        Probe every endpoint concurrently and wait for all of them.

        Cancelling this coroutine cancels every outstanding probe and waits
        for their connections to be released before propagating.
        """
        endpoints = list(endpoints)
        start_time = time.time()
        self._states = {endpoint: ProbeState.PENDING for endpoint in endpoints}
        log_check_start(self.logger, len(endpoints))

        tasks = [asyncio.create_task(self._run_unit(endpoint)) for endpoint in endpoints]

        try:
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        results = [
            self._to_result(endpoint, outcome) for endpoint, outcome in zip(endpoints, outcomes)
        ]

        succeeded, failed = partition_results(results)
        log_check_complete(self.logger, time.time() - start_time, len(succeeded), len(failed))

        return results

    async def _run_unit(self, endpoint: str) -> ProbeResult:
        result = await self.probe.check(
            endpoint, timeout=self.endpoint_timeout, on_state=self._record_state
        )
        log_probe_result(self.logger, result)
        return result

    def _record_state(self, endpoint: str, state: ProbeState) -> None:
        self._states[endpoint] = state

    def _to_result(self, endpoint: str, outcome: object) -> ProbeResult:
        if isinstance(outcome, ProbeResult):
            return outcome

        if isinstance(outcome, asyncio.CancelledError):
            self._states[endpoint] = ProbeState.TIMED_OUT
            return ProbeResult.failure(
                endpoint, ErrorKind.TIMEOUT, f"processing of endpoint '{endpoint}' was cancelled"
            )

        self.logger.error(f"Task for {endpoint} failed: {outcome!r}")
        self._states[endpoint] = ProbeState.FAILED
        error_text = (
            describe_error(outcome) if isinstance(outcome, BaseException) else str(outcome)
        )
        return ProbeResult.failure(
            endpoint,
            ErrorKind.CONNECTION_FAILED,
            f"unexpected error while processing endpoint '{endpoint}': {error_text}",
        )

    async def get_health_status(self) -> Dict[str, object]:
        return {
            "endpoint_timeout": self.endpoint_timeout,
            "connect_timeout": self.probe.connect_timeout,
            "max_attempts": self.probe.backoff.max_attempts,
            "endpoint_states": self.states,
        }


def partition_results(
    results: Sequence[ProbeResult],
) -> Tuple[List[ProbeResult], List[ProbeResult]]:
    """Split results into (successes, failures)."""
    successes = [result for result in results if result.ok]
    failures = [result for result in results if not result.ok]
    return successes, failures
