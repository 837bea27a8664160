"""
Prometheus self-metrics for TLS Expiry Monitor.
"""

import socket
import sys
import time
from typing import Any, Dict

import psutil
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from tls_expiry_monitor.logger import get_logger, log_metrics_collection
from tls_expiry_monitor.models import ErrorKind, ProbeResult


class MetricsCollector:
    """Prometheus metrics collector for probe outcomes and application metrics."""

    def __init__(self) -> None:
        self.logger = get_logger("metrics")
        self.registry = CollectorRegistry()

        # Certificate metrics
        self.tls_cert_days_remaining = Gauge(
            "tls_cert_days_remaining",
            "Whole days until the leaf certificate expires",
            ["endpoint"],
            registry=self.registry,
        )

        self.tls_cert_expiration_timestamp = Gauge(
            "tls_cert_expiration_timestamp",
            "Leaf certificate expiration time (Unix timestamp)",
            ["endpoint"],
            registry=self.registry,
        )

        # Probe metrics
        self.tls_probe_duration_seconds = Histogram(
            "tls_probe_duration_seconds",
            "Time spent probing an endpoint",
            ["endpoint"],
            registry=self.registry,
        )

        self.tls_probe_attempts = Gauge(
            "tls_probe_attempts",
            "Connection attempts used by the last probe of an endpoint",
            ["endpoint"],
            registry=self.registry,
        )

        self.tls_probe_failures = Gauge(
            "tls_probe_failures",
            "Current count of failed endpoints by error kind",
            ["error_kind"],
            registry=self.registry,
        )

        # Check run metrics
        self.tls_check_endpoints = Gauge(
            "tls_check_endpoints",
            "Endpoints processed by the last check run",
            ["outcome"],
            registry=self.registry,
        )

        self.tls_check_duration_seconds = Histogram(
            "tls_check_duration_seconds",
            "Check run duration",
            registry=self.registry,
        )

        self.tls_check_last_run_timestamp = Gauge(
            "tls_check_last_run_timestamp",
            "Completion time of the last check run",
            registry=self.registry,
        )

        self.tls_metric_publish_failures_total = Counter(
            "tls_metric_publish_failures_total",
            "Data points rejected by the metric sink",
            ["endpoint", "kind"],
            registry=self.registry,
        )

        # Application metrics
        self.app_memory_bytes = Gauge(
            "app_memory_bytes",
            "Application memory usage in bytes",
            ["type"],
            registry=self.registry,
        )

        self.app_cpu_percent = Gauge(
            "app_cpu_percent", "Application CPU usage percentage", registry=self.registry
        )

        self.app_thread_count = Gauge(
            "app_thread_count", "Number of application threads", registry=self.registry
        )

        self.app_info = Info(
            "app_info",
            "Application information",
            ["hostname", "version", "python_version"],
            registry=self.registry,
        )

        self._current_run_failures: Dict[str, int] = {}
        self._last_system_update = 0.0
        self._system_update_interval = 30  # seconds

        self.logger.info("Metrics collector initialized")

    def update_probe_metrics(self, result: ProbeResult) -> None:
        """
        Update metrics from one probe result.

        Args:
            result: Outcome of a single endpoint
        """
        try:
            endpoint = result.endpoint
            self.tls_probe_duration_seconds.labels(endpoint=endpoint).observe(result.duration)
            self.tls_probe_attempts.labels(endpoint=endpoint).set(result.attempts)

            if result.ok:
                self.tls_cert_days_remaining.labels(endpoint=endpoint).set(
                    float(result.days_remaining)  # type: ignore[arg-type]
                )
                if result.not_after is not None:
                    self.tls_cert_expiration_timestamp.labels(endpoint=endpoint).set(
                        result.not_after.timestamp()
                    )
            else:
                # No current measurement for a failed endpoint
                for gauge in (self.tls_cert_days_remaining, self.tls_cert_expiration_timestamp):
                    try:
                        gauge.remove(endpoint)
                    except KeyError:
                        pass

                kind = result.error.value  # type: ignore[union-attr]
                self._current_run_failures[kind] = self._current_run_failures.get(kind, 0) + 1
                self.tls_probe_failures.labels(error_kind=kind).set(
                    self._current_run_failures[kind]
                )

            log_metrics_collection(
                self.logger,
                "probe_processed",
                1.0,
                {"endpoint": endpoint, "ok": result.ok},
            )

        except Exception as e:
            self.logger.error(f"Failed to update probe metrics: {e}")

    def update_run_metrics(self, duration: float, succeeded: int, failed: int) -> None:
        """
        Update check-run metrics.

        Args:
            duration: Run duration in seconds
            succeeded: Endpoints with a measurement
            failed: Endpoints with an error
        """
        try:
            self.tls_check_endpoints.labels(outcome="succeeded").set(succeeded)
            self.tls_check_endpoints.labels(outcome="failed").set(failed)
            self.tls_check_duration_seconds.observe(duration)
            self.tls_check_last_run_timestamp.set(int(time.time()))

            log_metrics_collection(
                self.logger,
                "check_completed",
                duration,
                {"succeeded": succeeded, "failed": failed},
            )

        except Exception as e:
            self.logger.error(f"Failed to update run metrics: {e}")

    def record_publish_failure(self, endpoint: str, partial: bool) -> None:
        """Count a data point the sink did not accept."""
        kind = "partial" if partial else "total"
        self.tls_metric_publish_failures_total.labels(endpoint=endpoint, kind=kind).inc()
        log_metrics_collection(
            self.logger, "publish_failure", 1.0, {"endpoint": endpoint, "kind": kind}
        )

    def reset_run_metrics(self) -> None:
        """Reset current-run counts before a new check run."""
        self._current_run_failures.clear()
        for kind in ErrorKind:
            self.tls_probe_failures.labels(error_kind=kind.value).set(0)
        self.tls_check_endpoints.labels(outcome="succeeded").set(0)
        self.tls_check_endpoints.labels(outcome="failed").set(0)

        self.logger.debug("Run metrics reset")

    def update_system_metrics(self) -> None:
        """Update system and application metrics."""
        current_time = time.time()

        if current_time - self._last_system_update < self._system_update_interval:
            return

        try:
            process = psutil.Process()

            memory_info = process.memory_info()
            self.app_memory_bytes.labels(type="rss").set(int(memory_info.rss))
            self.app_memory_bytes.labels(type="vms").set(int(memory_info.vms))

            self.app_cpu_percent.set(process.cpu_percent())
            self.app_thread_count.set(int(process.num_threads()))

            from tls_expiry_monitor import __version__

            self.app_info.labels(
                hostname=socket.gethostname(),
                version=__version__,
                python_version=f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
            ).info({"platform": sys.platform, "process_id": str(process.pid)})

            self._last_system_update = current_time

        except Exception as e:
            self.logger.error(f"Failed to update system metrics: {e}")

    def get_metrics(self) -> str:
        """
        Get Prometheus metrics in text format.

        Returns:
            Metrics in Prometheus text format
        """
        self.update_system_metrics()
        return generate_latest(self.registry).decode("utf-8")

    def get_content_type(self) -> str:
        """Get content type for metrics endpoint."""
        return CONTENT_TYPE_LATEST

    def get_registry_status(self) -> Dict[str, Any]:
        """Get Prometheus registry status for health checks."""
        try:
            metrics_count = len(list(self.registry.collect()))
            return {
                "prometheus_registry": {
                    "status": "healthy",
                    "metrics_count": metrics_count,
                    "last_update": self._last_system_update,
                }
            }
        except Exception as e:
            return {"prometheus_registry": {"status": "error", "error": str(e)}}
