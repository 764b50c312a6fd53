"""
Aggregator - concurrent full-fleet fetch and the polling loop.

Fans out service discovery across clusters, joins the branches, and
publishes the merged result as an immutable Snapshot. Branch failures are
logged and contribute nothing; a partial view beats a crashed poll loop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Optional, Sequence, TypeVar

from ecsview import config
from ecsview.gateway import EcsGateway, GatewayError
from ecsview.models import ServiceRecord, Snapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Scatter-gather
# ---------------------------------------------------------------------------

@dataclass
class Settled(Generic[T]):
    """Outcome of gather_settled: successes plus labelled failures."""

    results: list[T] = field(default_factory=list)
    failures: list[tuple[str, BaseException]] = field(default_factory=list)

    @property
    def failed_labels(self) -> list[str]:
        return [label for label, _ in self.failures]


async def gather_settled(calls: Sequence[tuple[str, Callable[[], Awaitable[T]]]]) -> Settled[T]:
    """
    Run every call concurrently and wait for all of them.

    Results are collected in completion order. A failing call never cancels
    its siblings; its exception is recorded under its label instead. If the
    gather itself is cancelled, all in-flight calls are cancelled too.

    Args:
        calls: ``(label, factory)`` pairs; each factory returns an awaitable

    Returns:
        Settled with results and ``(label, exception)`` failures
    """
    settled: Settled[T] = Settled()
    tasks = {asyncio.ensure_future(factory()): label for label, factory in calls}
    pending = set(tasks)
    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                exc = task.exception()
                if exc is None:
                    settled.results.append(task.result())
                else:
                    settled.failures.append((tasks[task], exc))
    finally:
        for task in pending:
            task.cancel()
    return settled


# ---------------------------------------------------------------------------
# Fleet fetch
# ---------------------------------------------------------------------------

async def _fetch_cluster(gateway: EcsGateway, cluster: str) -> list[ServiceRecord]:
    service_ids = await asyncio.to_thread(gateway.list_services, cluster)
    if not service_ids:
        return []
    return await asyncio.to_thread(gateway.describe_services, cluster, service_ids)


async def fetch_all_services(gateway: EcsGateway) -> list[ServiceRecord]:
    """
    Fetch every service of every cluster, one concurrent branch per cluster.

    Args:
        gateway: Provider gateway

    Returns:
        Records from all successful branches, in branch completion order

    Raises:
        GatewayError: If the cluster listing itself fails
    """
    clusters = await asyncio.to_thread(gateway.list_clusters)

    settled = await gather_settled([
        (cluster, lambda cluster=cluster: _fetch_cluster(gateway, cluster))
        for cluster in clusters
    ])

    for cluster, exc in settled.failures:
        logger.warning(f"Skipping cluster {cluster}: {exc}")

    records = [record for branch in settled.results for record in branch]
    logger.debug(f"Fetched {len(records)} services from {len(clusters)} clusters")
    return records


# ---------------------------------------------------------------------------
# Snapshot publishing
# ---------------------------------------------------------------------------

Subscriber = Callable[[Snapshot], None]


class SnapshotPublisher:
    """Single-writer holder of the current Snapshot.

    Readers get an immutable reference; writers swap in a whole new snapshot
    and every subscriber is notified with it.
    """

    def __init__(self, initial: Optional[Snapshot] = None) -> None:
        self._current = initial or Snapshot()
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    @property
    def current(self) -> Snapshot:
        return self._current

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback*; returns a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._current = snapshot
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Snapshot subscriber failed")

    def replace(self, record: ServiceRecord) -> Snapshot:
        """Publish a copy of the current snapshot with *record* substituted."""
        with self._lock:
            snapshot = self._current.replace(record)
        self.publish(snapshot)
        return snapshot


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------

async def _wait_or_stop(stop: asyncio.Event, interval: float) -> None:
    try:
        await asyncio.wait_for(stop.wait(), timeout=interval)
    except asyncio.TimeoutError:
        pass


async def _fetch_unless_stopped(
    gateway: EcsGateway, stop: asyncio.Event
) -> Optional[list[ServiceRecord]]:
    """Run one fleet fetch; returns None if *stop* is set before it finishes."""
    fetch = asyncio.ensure_future(fetch_all_services(gateway))
    stopped = asyncio.ensure_future(stop.wait())
    try:
        done, _ = await asyncio.wait({fetch, stopped}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (fetch, stopped):
            if not task.done():
                task.cancel()
    if fetch not in done:
        logger.debug("Stop requested, abandoning in-flight fetch")
        return None
    return fetch.result()


async def poll_loop(
    gateway: EcsGateway,
    publisher: SnapshotPublisher,
    interval: float = config.POLL_INTERVAL_SECONDS,
    stop: Optional[asyncio.Event] = None,
) -> int:
    """
    Re-fetch the fleet every *interval* seconds and publish each snapshot.

    Each tick waits for its fetch to finish before the next interval starts,
    so two fetches never overlap. A failed tick is logged and skipped.
    Setting *stop* abandons a fetch that is still in flight; nothing is
    published after stop or cancellation.

    Args:
        gateway: Provider gateway
        publisher: Receives each new snapshot
        interval: Seconds between the end of one fetch and the next
        stop: Shared shutdown signal; the loop also honours task cancellation

    Returns:
        Number of snapshots published
    """
    stop = stop or asyncio.Event()
    published = 0
    logger.info(f"Polling every {interval}s")

    while not stop.is_set():
        await _wait_or_stop(stop, interval)
        if stop.is_set():
            break
        try:
            records = await _fetch_unless_stopped(gateway, stop)
        except GatewayError as e:
            logger.warning(f"Poll failed, keeping previous snapshot: {e}")
            continue
        if records is None or stop.is_set():
            break
        publisher.publish(Snapshot(services=tuple(records)))
        published += 1

    logger.info(f"Polling stopped after {published} snapshots")
    return published
