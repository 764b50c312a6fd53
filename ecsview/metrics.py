"""CloudWatch metrics for ECS services.

CPU and memory utilization are averaged over a trailing window.  Collection
is best-effort: the gateway zeroes both fields when this module raises.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ecsview import config
from ecsview.gateway import GatewayError, cluster_short_name

logger = logging.getLogger(__name__)

CPU_METRIC = "CPUUtilization"
MEMORY_METRIC = "MemoryUtilization"


class CloudWatchMetrics:
    """Fetch per-service utilization from the ``AWS/ECS`` namespace."""

    def __init__(self, client: Any, window_seconds: int = config.METRICS_WINDOW_SECONDS) -> None:
        self._client = client
        self._window = timedelta(seconds=window_seconds)

    @classmethod
    def from_session(cls, session: Any) -> "CloudWatchMetrics":
        return cls(session.client("cloudwatch"))

    def service_metrics(self, cluster: str, service: str) -> tuple[float, float]:
        """Return ``(cpu_percent, memory_percent)``; no datapoints yields 0.0."""
        end = datetime.now(timezone.utc)
        start = end - self._window
        cpu = self._average(CPU_METRIC, cluster, service, start, end)
        memory = self._average(MEMORY_METRIC, cluster, service, start, end)
        return cpu, memory

    def _average(
        self,
        metric: str,
        cluster: str,
        service: str,
        start: datetime,
        end: datetime,
    ) -> float:
        try:
            response = self._client.get_metric_statistics(
                Namespace=config.METRICS_NAMESPACE,
                MetricName=metric,
                Dimensions=[
                    {"Name": "ClusterName", "Value": cluster_short_name(cluster)},
                    {"Name": "ServiceName", "Value": service},
                ],
                StartTime=start,
                EndTime=end,
                Period=config.METRICS_PERIOD_SECONDS,
                Statistics=["Average"],
            )
        except (BotoCoreError, ClientError) as e:
            raise GatewayError(f"Failed to get metric {metric}: {e}") from e

        latest = _latest(response.get("Datapoints", []))
        if latest is None:
            return 0.0
        return float(latest.get("Average", 0.0) or 0.0)


def _latest(datapoints: list[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if not datapoints:
        return None
    return max(datapoints, key=lambda p: p.get("Timestamp") or datetime.min.replace(tzinfo=timezone.utc))
