"""
Metric sinks for TLS Expiry Monitor.

A sink receives one data point per successfully probed endpoint and forwards
it to the monitoring backend.
"""

import asyncio
import os
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

import oci

from tls_expiry_monitor.errors import ConfigurationError, PartialPublishError, PublishError
from tls_expiry_monitor.logger import get_logger, log_metrics_collection
from tls_expiry_monitor.models import MetricDatapoint, PublishReport

if TYPE_CHECKING:
    from tls_expiry_monitor.config import Config

RESOURCE_DIMENSION = "resourceId"
TELEMETRY_INGESTION_ENDPOINT = "https://telemetry-ingestion.{region}.oraclecloud.com"


def split_batches(
    datapoints: Sequence[MetricDatapoint], size: Optional[int]
) -> List[List[MetricDatapoint]]:
    """Split data points into batches of at most ``size`` (one batch if unbounded)."""
    points = list(datapoints)
    if not points:
        return []
    if not size:
        return [points]
    return [points[i : i + size] for i in range(0, len(points), size)]


class MetricSink(ABC):
    """Destination for expiry data points."""

    # Largest batch accepted by a single publish call, None for unbounded
    max_batch_size: Optional[int] = None

    @abstractmethod
    async def publish(self, datapoints: Sequence[MetricDatapoint]) -> PublishReport:
        """
        Deliver one batch of data points.

        Raises:
            PartialPublishError: Some data points were rejected
            PublishError: The whole batch was rejected
        """

    async def close(self) -> None:
        """Release client resources."""


class LoggingSink(MetricSink):
    """Logs data points instead of delivering them. Used in dry-run mode."""

    def __init__(self) -> None:
        self.logger = get_logger("sink")

    async def publish(self, datapoints: Sequence[MetricDatapoint]) -> PublishReport:
        for point in datapoints:
            self.logger.info(
                f"[dry-run] {point.namespace}/{point.metric_name} "
                f"{RESOURCE_DIMENSION}={point.resource_id} value={point.value} "
                f"at {point.timestamp.isoformat()}"
            )
        return PublishReport(accepted=len(datapoints))


class OCIMonitoringSink(MetricSink):
    """
    Posts data points to OCI Monitoring.

    Each endpoint becomes its own metric stream, distinguished by the
    ``resourceId`` dimension. Batches are posted non-atomically so the
    service can accept some data points and reject others.

    Args:
        client: ``oci.monitoring.MonitoringClient`` (or compatible)
        compartment_id: Destination compartment OCID
    """

    max_batch_size = 50

    def __init__(self, client: Any, compartment_id: str):
        self.client = client
        self.compartment_id = compartment_id
        self.logger = get_logger("sink")
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="oci-sink")

    @classmethod
    def from_config(cls, config: "Config") -> "OCIMonitoringSink":
        """
        Create the monitoring client and resolve the destination compartment.

        Raises:
            ConfigurationError: Authentication, client creation or compartment lookup failed
        """
        logger = get_logger("sink")
        try:
            oci_config, signer = _load_oci_credentials(config)
            region = signer.region if signer is not None else oci_config["region"]
            client = oci.monitoring.MonitoringClient(
                oci_config,
                signer=signer,
                service_endpoint=TELEMETRY_INGESTION_ENDPOINT.format(region=region),
            )
        except Exception as e:
            raise ConfigurationError(f"Failed to create monitoring client: {e}") from e

        compartment_id = config.compartment_id
        if not compartment_id:
            compartment_id = resolve_compartment_id(config, oci_config, signer)

        logger.info(f"OCI monitoring sink initialized - Region: {region}")
        return cls(client=client, compartment_id=compartment_id)

    async def publish(self, datapoints: Sequence[MetricDatapoint]) -> PublishReport:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._post, list(datapoints))

    def _post(self, datapoints: List[MetricDatapoint]) -> PublishReport:
        details = oci.monitoring.models.PostMetricDataDetails(
            metric_data=[self._metric_data(point) for point in datapoints],
            batch_atomicity=oci.monitoring.models.PostMetricDataDetails.BATCH_ATOMICITY_NON_ATOMIC,
        )

        try:
            response = self.client.post_metric_data(details)
        except (oci.exceptions.ServiceError, OSError) as e:
            raise PublishError(
                f"failed to post metric data: {e}",
                failed={point.resource_id: str(e) for point in datapoints},
                total=len(datapoints),
            ) from e

        failed = self._failed_records(response.data, datapoints)
        if failed:
            accepted = len(datapoints) - len(failed)
            message = f"encountered {len(failed)} errors while posting metric data"
            if accepted > 0:
                raise PartialPublishError(message, failed=failed, total=len(datapoints))
            raise PublishError(message, failed=failed, total=len(datapoints))

        log_metrics_collection(self.logger, "datapoints_published", float(len(datapoints)))
        return PublishReport(accepted=len(datapoints))

    def _metric_data(self, point: MetricDatapoint) -> Any:
        return oci.monitoring.models.MetricDataDetails(
            namespace=point.namespace,
            compartment_id=self.compartment_id,
            name=point.metric_name,
            dimensions={RESOURCE_DIMENSION: point.resource_id},
            datapoints=[
                oci.monitoring.models.Datapoint(timestamp=point.timestamp, value=float(point.value))
            ],
        )

    @staticmethod
    def _failed_records(
        response_data: Any, datapoints: Sequence[MetricDatapoint]
    ) -> Dict[str, str]:
        """Map rejected data points back to their resource ids."""
        failed_count = getattr(response_data, "failed_metrics_count", 0) or 0
        if failed_count <= 0:
            return {}

        failed: Dict[str, str] = {}
        for record in getattr(response_data, "failed_metrics", None) or []:
            metric_data = getattr(record, "metric_data", None)
            dimensions = getattr(metric_data, "dimensions", None) or {}
            resource_id = dimensions.get(RESOURCE_DIMENSION)
            if resource_id:
                failed[resource_id] = getattr(record, "message", None) or "rejected"

        if len(failed) < failed_count:
            # The service reported more failures than it described
            for point in datapoints:
                if len(failed) >= failed_count:
                    break
                failed.setdefault(point.resource_id, "rejected without details")

        return failed

    async def close(self) -> None:
        self._executor.shutdown(wait=True)


def _load_oci_credentials(config: "Config") -> tuple[Dict[str, Any], Optional[Any]]:
    if config.oci_auth == "config_file":
        oci_config = oci.config.from_file(
            file_location=os.path.expanduser(config.oci_config_file),
            profile_name=config.oci_profile,
        )
        return oci_config, None

    return {}, oci.auth.signers.get_resource_principals_signer()


def resolve_compartment_id(
    config: "Config", oci_config: Optional[Dict[str, Any]] = None, signer: Optional[Any] = None
) -> str:
    """
    Look up the compartment of the running function.

    Raises:
        ConfigurationError: No function id is configured or the lookup failed
    """
    if not config.function_id:
        raise ConfigurationError("FN_FN_ID is not set and no COMPARTMENT_ID was provided")

    try:
        client = oci.functions.FunctionsManagementClient(oci_config or {}, signer=signer)
        response = client.get_function(config.function_id)
    except Exception as e:
        raise ConfigurationError(f"Failed to get function details: {e}") from e

    return str(response.data.compartment_id)


def create_sink(config: "Config") -> MetricSink:
    """Build the sink selected by the configuration."""
    if config.uses_oci_sink:
        return OCIMonitoringSink.from_config(config)
    return LoggingSink()
