"""
Check-run orchestration for TLS Expiry Monitor.

One run probes every configured endpoint, publishes a data point for each
measurement and produces a per-endpoint report.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from tls_expiry_monitor.config import Config
from tls_expiry_monitor.errors import PublishError
from tls_expiry_monitor.logger import get_logger, log_publish_error
from tls_expiry_monitor.metrics import MetricsCollector
from tls_expiry_monitor.models import MetricDatapoint, ProbeResult
from tls_expiry_monitor.scheduler import EndpointScheduler, partition_results
from tls_expiry_monitor.sink import MetricSink, split_batches

# Wait before the next run after an unexpected loop error
LOOP_ERROR_DELAY = 60


def build_datapoints(
    config: Config, results: Sequence[ProbeResult], now: Optional[datetime] = None
) -> List[MetricDatapoint]:
    """One data point per successful result, stamped with the current UTC time."""
    timestamp = now or datetime.now(timezone.utc)
    return [
        MetricDatapoint(
            namespace=config.namespace or "",
            metric_name=config.metric_name or "",
            resource_id=result.endpoint,
            value=float(result.days_remaining),  # type: ignore[arg-type]
            timestamp=timestamp,
        )
        for result in results
        if result.ok
    ]


def format_summary(results: Sequence[ProbeResult]) -> List[str]:
    """One outcome line per endpoint."""
    return [result.summary_line() for result in results]


class ExpiryMonitor:
    """
    Runs certificate checks and publishes their results.

    Args:
        config: Configuration
        scheduler: Concurrent endpoint scheduler
        sink: Metric sink receiving successful measurements
        metrics: Local Prometheus self-metrics
    """

    def __init__(
        self,
        config: Config,
        scheduler: EndpointScheduler,
        sink: MetricSink,
        metrics: MetricsCollector,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.scheduler = scheduler
        self.sink = sink
        self.metrics = metrics
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger("monitor")

        self.last_report: Optional[Dict[str, Any]] = None
        self.last_results: List[ProbeResult] = []
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._run_lock: Optional[asyncio.Lock] = None  # created lazily inside the loop

    async def start(self) -> None:
        """Start periodic checks."""
        if self._running:
            self.logger.warning("Monitor is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._check_loop())
        self.logger.info(f"Started periodic checks - Interval: {self.config.check_interval}")

    async def stop(self) -> None:
        """Stop periodic checks and release the sink."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        await self.sink.close()
        self.logger.info("Monitor stopped")

    async def run_once(self) -> Dict[str, Any]:
        """
        Perform a single check of all configured endpoints.

        Returns:
            Report with per-endpoint results, publish errors and a summary
        """
        if self._run_lock is None:
            self._run_lock = asyncio.Lock()

        async with self._run_lock:
            start_time = time.time()
            self.metrics.reset_run_metrics()

            results = await self.scheduler.run(self.config.endpoints)
            for result in results:
                self.metrics.update_probe_metrics(result)

            successes, failures = partition_results(results)
            publish_errors = await self.publish(successes)

            duration = time.time() - start_time
            self.metrics.update_run_metrics(duration, len(successes), len(failures))

            report = {
                "timestamp": start_time,
                "results": [result.to_dict() for result in results],
                "publish_errors": publish_errors,
                "summary": {
                    "total": len(results),
                    "succeeded": len(successes),
                    "failed": len(failures),
                    "published": len(successes) - len(publish_errors),
                    "duration": round(duration, 3),
                },
            }
            self.last_results = results
            self.last_report = report
            return report

    async def publish(self, successes: Sequence[ProbeResult]) -> Dict[str, str]:
        """
        Publish one data point per successful result.

        Publish failures are logged per endpoint and never abort the run.

        Returns:
            Mapping of endpoint to publish error message
        """
        datapoints = build_datapoints(self.config, successes, self.clock())
        errors: Dict[str, str] = {}

        for batch in split_batches(datapoints, self.sink.max_batch_size):
            try:
                await self.sink.publish(batch)
            except PublishError as e:
                failed = e.failed or {point.resource_id: str(e) for point in batch}
                for endpoint, message in failed.items():
                    log_publish_error(self.logger, endpoint, message, partial=e.partial)
                    self.metrics.record_publish_failure(endpoint, partial=e.partial)
                    errors[endpoint] = message

        return errors

    async def _check_loop(self) -> None:
        """Main check loop."""
        while self._running:
            try:
                await self.run_once()
                await asyncio.sleep(self.config.check_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error(f"Error in check loop: {e}")
                await asyncio.sleep(LOOP_ERROR_DELAY)

    async def get_health_status(self) -> Dict[str, Any]:
        """Get monitor health status."""
        scheduler_health = await self.scheduler.get_health_status()
        return {
            "check_status": "running" if self._running else "stopped",
            "endpoints": len(self.config.endpoints),
            "check_interval": self.config.check_interval,
            "last_run": self.last_report["summary"] if self.last_report else None,
            **scheduler_health,
        }
