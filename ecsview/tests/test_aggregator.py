"""
Tests for aggregator.py - fan-out fetch, snapshot publishing and polling.

Tests use an in-memory gateway, no AWS account required.
"""

import asyncio

import pytest

from ecsview.aggregator import (
    SnapshotPublisher,
    fetch_all_services,
    gather_settled,
    poll_loop,
)
from ecsview.gateway import GatewayError
from ecsview.models import Snapshot
from ecsview.tests.fakes import FakeGateway, make_record


@pytest.mark.asyncio
async def test_fetch_skips_cluster_without_services():
    """Test that an empty cluster contributes nothing and does not fail."""
    gateway = FakeGateway({"empty": [], "busy": ["api", "worker"]})

    records = await fetch_all_services(gateway)

    assert {(r.cluster, r.name) for r in records} == {("busy", "api"), ("busy", "worker")}


@pytest.mark.asyncio
async def test_fetch_tolerates_failing_branch():
    """Test that a failing cluster branch is logged and skipped."""
    gateway = FakeGateway(
        {"broken": ["x"], "a": ["api"], "b": ["worker", "cron"]},
        failing_clusters=("broken",),
    )

    records = await fetch_all_services(gateway)

    # Cross-cluster order is completion order, so compare as sets.
    assert {r.name for r in records} == {"api", "worker", "cron"}


@pytest.mark.asyncio
async def test_fetch_propagates_cluster_listing_failure():
    gateway = FakeGateway({"a": ["api"]})
    gateway.fail_listing = True

    with pytest.raises(GatewayError):
        await fetch_all_services(gateway)


@pytest.mark.asyncio
async def test_gather_settled_collects_failures_without_short_circuit():
    attempted = []

    async def ok(name):
        attempted.append(name)
        return name

    async def boom(name):
        attempted.append(name)
        raise RuntimeError(name)

    settled = await gather_settled([
        ("one", lambda: ok("one")),
        ("two", lambda: boom("two")),
        ("three", lambda: ok("three")),
    ])

    assert sorted(attempted) == ["one", "three", "two"]
    assert sorted(settled.results) == ["one", "three"]
    assert settled.failed_labels == ["two"]
    assert isinstance(settled.failures[0][1], RuntimeError)


@pytest.mark.asyncio
async def test_gather_settled_cancellation_cancels_children():
    started = asyncio.Event()
    cancelled = []

    async def slow():
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(True)
            raise

    task = asyncio.ensure_future(gather_settled([("slow", slow)]))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await asyncio.sleep(0.01)

    assert cancelled == [True]


def test_publisher_replace_does_not_mutate_previous_snapshot():
    """Test that a substitution produces a new snapshot."""
    api = make_record("api", desired_count=1)
    worker = make_record("worker", desired_count=1)
    publisher = SnapshotPublisher(Snapshot(services=(api, worker)))
    before = publisher.current
    received = []
    publisher.subscribe(received.append)

    after = publisher.replace(api.model_copy(update={"desired_count": 5}))

    assert before.get("cluster-a", "api").desired_count == 1
    assert after.get("cluster-a", "api").desired_count == 5
    assert publisher.current is after
    assert received == [after]
    assert [r.name for r in after.services] == ["api", "worker"]


def test_publisher_unsubscribe():
    publisher = SnapshotPublisher()
    received = []
    unsubscribe = publisher.subscribe(received.append)
    unsubscribe()

    publisher.publish(Snapshot())

    assert received == []


def test_publisher_survives_failing_subscriber():
    publisher = SnapshotPublisher()
    received = []

    def broken(snapshot):
        raise ValueError("subscriber bug")

    publisher.subscribe(broken)
    publisher.subscribe(received.append)
    snapshot = Snapshot(services=(make_record("api"),))

    publisher.publish(snapshot)

    assert received == [snapshot]


@pytest.mark.asyncio
async def test_poll_loop_publishes_then_stops_on_cancel():
    """Test that polling publishes at least once and never after cancel."""
    gateway = FakeGateway({"a": ["api"]})
    publisher = SnapshotPublisher()
    received = []
    publisher.subscribe(received.append)
    interval = 0.05

    task = asyncio.ensure_future(poll_loop(gateway, publisher, interval=interval))
    await asyncio.sleep(interval * 3)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    published = len(received)
    assert published >= 1
    assert [r.name for r in received[-1].services] == ["api"]

    await asyncio.sleep(interval * 3)
    assert len(received) == published


@pytest.mark.asyncio
async def test_poll_loop_honours_stop_event():
    gateway = FakeGateway({"a": ["api"]})
    publisher = SnapshotPublisher()
    stop = asyncio.Event()

    task = asyncio.ensure_future(poll_loop(gateway, publisher, interval=0.02, stop=stop))
    await asyncio.sleep(0.1)
    stop.set()
    published = await asyncio.wait_for(task, timeout=1)

    assert published >= 1
    assert len(publisher.current) == 1


@pytest.mark.asyncio
async def test_poll_loop_skips_failed_tick():
    """Test that a failing poll keeps the previous snapshot."""
    gateway = FakeGateway({"a": ["api"]})
    gateway.fail_listing = True
    initial = Snapshot(services=(make_record("old"),))
    publisher = SnapshotPublisher(initial)
    stop = asyncio.Event()

    task = asyncio.ensure_future(poll_loop(gateway, publisher, interval=0.02, stop=stop))
    await asyncio.sleep(0.1)
    stop.set()
    published = await asyncio.wait_for(task, timeout=1)

    assert published == 0
    assert gateway.list_clusters_calls >= 1
    assert publisher.current is initial


async def _until_fetch_started(gateway):
    while not gateway.fetch_started.is_set():
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_poll_loop_stop_abandons_inflight_fetch():
    """Test that setting stop mid-fetch returns promptly and publishes nothing."""
    gateway = FakeGateway({"a": ["api"]}, delay=1.0)
    publisher = SnapshotPublisher()
    received = []
    publisher.subscribe(received.append)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    task = asyncio.ensure_future(poll_loop(gateway, publisher, interval=0.01, stop=stop))
    await asyncio.wait_for(_until_fetch_started(gateway), timeout=1)
    stopped_at = loop.time()
    stop.set()
    published = await asyncio.wait_for(task, timeout=2)

    assert loop.time() - stopped_at < 0.3
    assert published == 0

    # The abandoned fetch finishing in its worker thread must not publish.
    await asyncio.sleep(1.0)
    assert received == []


@pytest.mark.asyncio
async def test_poll_loop_cancel_during_fetch_publishes_nothing():
    gateway = FakeGateway({"a": ["api"]}, delay=0.3)
    publisher = SnapshotPublisher()
    received = []
    publisher.subscribe(received.append)

    task = asyncio.ensure_future(poll_loop(gateway, publisher, interval=0.01))
    await asyncio.wait_for(_until_fetch_started(gateway), timeout=1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    await asyncio.sleep(0.5)
    assert received == []


@pytest.mark.asyncio
async def test_poll_loop_slow_fetch_never_overlaps():
    """Test that a fetch slower than the interval delays the next tick."""
    gateway = FakeGateway({"a": ["api"]}, delay=0.15)
    publisher = SnapshotPublisher()
    stop = asyncio.Event()

    task = asyncio.ensure_future(poll_loop(gateway, publisher, interval=0.01, stop=stop))
    await asyncio.sleep(0.6)
    stop.set()
    published = await asyncio.wait_for(task, timeout=2)

    assert gateway.list_clusters_calls >= 2
    assert published >= 1
    assert gateway.max_in_flight == 1
