"""
Standardized logging configuration for TLS Expiry Monitor.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from tls_expiry_monitor.models import ErrorKind

if TYPE_CHECKING:
    from tls_expiry_monitor.config import Config
    from tls_expiry_monitor.models import ProbeResult

STRUCTURED_FIELDS = ("endpoint", "attempt", "max_attempts", "delay", "error_kind", "duration")


class CustomFormatter(logging.Formatter):
    """Custom formatter with colored output for console."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def __init__(self, use_color: bool = True) -> None:
        self.use_color = use_color
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with optional colors."""
        if self.use_color and record.levelname in self.COLORS:
            color = self.COLORS[record.levelname]
            reset = self.COLORS["RESET"]
            level_name = f"{color}{record.levelname:<8}{reset}"
        else:
            level_name = f"{record.levelname:<8}"

        timestamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S")
        message = record.getMessage()

        if record.exc_info:
            if not message.endswith("\n"):
                message += "\n"
            message += self.formatException(record.exc_info)

        return f"{timestamp} | {level_name} | {record.name:<28} | {message}"


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for name in STRUCTURED_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(config: "Config") -> None:
    """
    Setup logging configuration.

    Args:
        config: Configuration object
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.log_level))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, config.log_level))

    # Colors only when attached to a terminal
    use_color = hasattr(sys.stdout, "isatty") and sys.stdout.isatty()
    console_handler.setFormatter(CustomFormatter(use_color=use_color))
    root_logger.addHandler(console_handler)

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            config.log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"  # 10MB
        )
        file_handler.setLevel(getattr(logging, config.log_level))
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    for noisy in ("oci", "urllib3", "uvicorn"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app_logger = logging.getLogger("tls_expiry_monitor")
    app_logger.info(f"Logging initialized - Level: {config.log_level}")

    if config.log_file:
        app_logger.info(f"Log file: {config.log_file}")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    return logging.getLogger(f"tls_expiry_monitor.{name}")


# Logging helpers for check runs
def log_probe_retry(
    logger: logging.Logger,
    endpoint: str,
    attempt: int,
    max_attempts: int,
    delay: float,
    error: BaseException,
) -> None:
    """Log a failed connection attempt that will be retried."""
    logger.warning(
        f"Retrying connection to '{endpoint}' (attempt {attempt}/{max_attempts}) "
        f"in {delay:.3f}s: {describe_error(error)}",
        extra={"endpoint": endpoint, "attempt": attempt, "max_attempts": max_attempts, "delay": delay},
    )


def log_probe_result(logger: logging.Logger, result: "ProbeResult") -> None:
    """Log the outcome of a single endpoint."""
    if result.ok:
        logger.info(
            f"Days remaining for {result.endpoint}: {result.days_remaining}",
            extra={"endpoint": result.endpoint, "duration": result.duration},
        )
    else:
        error_kind = result.error.value if result.error else None
        logger.error(
            f"Failed to process endpoint {result.endpoint}: {result.message}",
            extra={"endpoint": result.endpoint, "error_kind": error_kind, "duration": result.duration},
        )


def log_check_start(logger: logging.Logger, endpoint_count: int) -> None:
    logger.info(f"Starting certificate check of {endpoint_count} endpoint(s)")


def log_check_complete(
    logger: logging.Logger, duration: float, succeeded: int, failed: int
) -> None:
    logger.info(
        f"Check completed - Duration: {duration:.2f}s, Succeeded: {succeeded}, Failed: {failed}",
        extra={"duration": duration},
    )


def log_publish_error(
    logger: logging.Logger, endpoint: str, message: str, partial: bool = False
) -> None:
    """Log a data point the metric sink did not accept."""
    scope = "partially rejected batch" if partial else "rejected batch"
    logger.error(
        f"Failed to publish metric for {endpoint} ({scope}): {message}",
        extra={"endpoint": endpoint, "error_kind": ErrorKind.PUBLISH_FAILED.value},
    )


def log_metrics_collection(
    logger: logging.Logger, metric_name: str, value: float, labels: Optional[dict] = None
) -> None:
    """Log metrics collection."""
    extra = {"metric_name": metric_name, "metric_value": value}
    if labels:
        extra["metric_labels"] = labels

    logger.debug(f"Metric collected: {metric_name}={value}", extra=extra)


def describe_error(error: BaseException) -> str:
    """Error text that is never empty."""
    text = str(error)
    return text if text else type(error).__name__
