"""Service list presenter - formatting, filtering and user intents.

Everything the UI needs that does not touch a widget lives here, so the
textual app stays a thin shell over this module.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

from ecsview.aggregator import SnapshotPublisher, gather_settled
from ecsview.gateway import EcsGateway, GatewayError
from ecsview.models import RestartReport, ServiceRecord, Snapshot, TaskContainerRef

logger = logging.getLogger(__name__)

STATUS_COLORS: dict[str, str] = {
    "active": "green",
    "draining": "yellow",
    "inactive": "red",
}
DEFAULT_STATUS_COLOR = "white"


class DesiredCountError(ValueError):
    """Raised when typed desired-count input is not a non-negative integer."""


# ---------------------------------------------------------------------------
# Pure formatting helpers
# ---------------------------------------------------------------------------

def status_color(status: str) -> str:
    return STATUS_COLORS.get(status.lower(), DEFAULT_STATUS_COLOR)


def format_line(record: ServiceRecord) -> str:
    """Render one service as a rich-markup list line."""
    color = status_color(record.status)
    return (
        f"{record.name} (Running: {record.running_count}, Desired: {record.desired_count}) "
        f"- Status: [{color}]{record.status}[/{color}] "
        f"| Deploy: {record.deployment_status} "
        f"| CPU: {record.cpu_utilization:.2f}%, Mem: {record.memory_utilization:.2f}%"
    )


def filter_services(services: Sequence[ServiceRecord], text: str) -> list[ServiceRecord]:
    """Case-insensitive substring match on service name, order preserved."""
    query = text.strip().lower()
    if not query:
        return list(services)
    return [s for s in services if query in s.name.lower()]


def header_text(snapshot: Snapshot) -> str:
    refreshed = snapshot.fetched_at.astimezone().strftime("%H:%M:%S")
    return f"Total Services: {len(snapshot)}  (refreshed {refreshed})"


def parse_desired_count(text: str) -> int:
    """Validate typed input as a non-negative base-10 integer."""
    value = text.strip()
    if not value.isdigit() or not value.isascii():
        raise DesiredCountError(f"Invalid desired count: {text!r} (expected a non-negative integer)")
    return int(value)


# ---------------------------------------------------------------------------
# Presenter
# ---------------------------------------------------------------------------

class ServicePresenter:
    """Bridges user intents to the gateway and keeps the publisher current.

    Blocking gateway calls are moved to worker threads so the UI event loop
    keeps drawing while they run.
    """

    def __init__(self, gateway: EcsGateway, publisher: SnapshotPublisher) -> None:
        self.gateway = gateway
        self.publisher = publisher
        self.filter_text = ""

    @property
    def snapshot(self) -> Snapshot:
        return self.publisher.current

    def visible_services(self) -> list[ServiceRecord]:
        return filter_services(self.snapshot.services, self.filter_text)

    def set_filter(self, text: str) -> list[ServiceRecord]:
        self.filter_text = text
        return self.visible_services()

    def lines(self) -> list[str]:
        return [format_line(record) for record in self.visible_services()]

    # -- mutations ----------------------------------------------------------

    async def change_desired_count(self, record: ServiceRecord, text: str) -> ServiceRecord:
        """
        Validate *text*, update the service, and substitute the fresh record.

        The new desired count is shown at once. Running count is whatever
        the provider reports now; it converges on later snapshots.

        Raises:
            DesiredCountError: On invalid input (no API call is made)
            GatewayError: If the update itself fails
        """
        count = parse_desired_count(text)
        await asyncio.to_thread(
            self.gateway.update_desired_count, record.cluster, record.name, count
        )
        try:
            fresh = await asyncio.to_thread(
                self.gateway.describe_service, record.cluster, record.name
            )
        except GatewayError as e:
            logger.warning(f"Re-fetch of {record.name} failed, showing accepted count: {e}")
            fresh = record
        if fresh.desired_count != count:
            fresh = fresh.model_copy(update={"desired_count": count})
        self.publisher.replace(fresh)
        return fresh

    async def restart_service(self, record: ServiceRecord) -> None:
        await asyncio.to_thread(self.gateway.force_redeploy, record.cluster, record.name)

    async def restart_all(self, records: Optional[Sequence[ServiceRecord]] = None) -> RestartReport:
        """Force a redeploy of every record concurrently and report failures.

        Defaults to the currently visible services. Every call is attempted
        even when others fail.
        """
        targets = list(records) if records is not None else self.visible_services()
        # Labels are positions so same-named services in different clusters stay distinct.
        settled = await gather_settled([
            (str(index), lambda record=record: self.restart_service(record))
            for index, record in enumerate(targets)
        ])
        failed = {int(label) for label in settled.failed_labels}
        for label, exc in settled.failures:
            logger.warning(f"Restart of {targets[int(label)].name} failed: {exc}")

        return RestartReport(
            attempted=tuple(record.name for record in targets),
            failed=tuple(record.name for index, record in enumerate(targets) if index in failed),
        )

    async def deployment_status(self, record: ServiceRecord) -> str:
        return await asyncio.to_thread(
            self.gateway.deployment_status, record.cluster, record.name
        )

    async def shell_target(self, record: ServiceRecord) -> TaskContainerRef:
        return await asyncio.to_thread(
            self.gateway.find_shell_target, record.cluster, record.name
        )
