"""Tests for the event bus and lifecycle event messages."""

from __future__ import annotations

import asyncio

import pytest

from buildwatch.ci.models import BuildHandle, BuildRecord, BuildStatus, TriggerSource
from buildwatch.core.exceptions import PersistenceError
from buildwatch.events import (
    BuildCancelled,
    BuildCompleted,
    BuildStarted,
    EventBus,
    LogChunk,
    RecordSink,
    Triggered,
)

HANDLE = BuildHandle("demo", 7)


def make_record(status: BuildStatus = BuildStatus.SUCCESS) -> BuildRecord:
    return BuildRecord("demo", 7, status, 1500, "http://ci.test/job/demo/7/console")


class RecordingSink:
    """Sink that checks nobody saw the completion before it was stored."""

    def __init__(self, subscription=None, error: Exception | None = None):
        self.subscription = subscription
        self.error = error
        self.records = []
        self.pending_at_append = None

    async def append(self, record: BuildRecord) -> str:
        if self.subscription is not None:
            self.pending_at_append = self.subscription.pending()
        if self.error is not None:
            raise self.error
        self.records.append(record)
        return f"rec-{len(self.records)}"


class TestMessages:
    """Tests for event payloads."""

    def test_triggered(self):
        message = Triggered(job_name="demo", source=TriggerSource.WEBHOOK, queue_id=42).to_message()
        assert message == {
            "type": "triggered",
            "payload": {"jobName": "demo", "source": "webhook", "queueId": 42},
        }

    def test_log_chunk(self):
        message = LogChunk(handle=HANDLE, text="foo", offset=3).to_message()
        assert message["type"] == "log_chunk"
        assert message["payload"] == {"jobName": "demo", "buildNumber": 7, "offset": 3, "text": "foo"}

    def test_build_completed(self):
        payload = BuildCompleted(record=make_record(), record_id="abc").to_message()["payload"]

        assert payload["id"] == "abc"
        assert payload["status"] == "SUCCESS"
        assert payload["consoleLink"] == "http://ci.test/job/demo/7/console"
        assert set(payload) >= {"jobName", "buildNumber", "durationMs", "completedAt"}

    def test_events_are_immutable(self):
        event = BuildStarted(handle=HANDLE)
        with pytest.raises(AttributeError):
            event.handle = BuildHandle("other", 1)


@pytest.mark.asyncio
async def test_no_replay_for_late_subscribers() -> None:
    """Test that a subscriber only sees events emitted after it joined."""
    bus = EventBus()
    await bus.emit(BuildStarted(handle=HANDLE))

    sub = bus.subscribe()
    assert sub.pending() == 0

    assert await bus.emit(LogChunk(handle=HANDLE, text="x", offset=0)) == 1
    assert sub.get_nowait()["type"] == "log_chunk"


@pytest.mark.asyncio
async def test_slow_subscriber_drops_without_blocking_others() -> None:
    """Test that a full queue drops events for that subscriber only."""
    bus = EventBus()
    slow = bus.subscribe(maxsize=2)
    fast = bus.subscribe(maxsize=10)

    delivered = [await bus.emit(LogChunk(handle=HANDLE, text=str(i), offset=i)) for i in range(3)]

    assert delivered == [2, 2, 1]
    assert slow.dropped == 1
    assert slow.pending() == 2
    assert fast.pending() == 3


@pytest.mark.asyncio
async def test_completion_is_persisted_before_broadcast() -> None:
    """Test that subscribers receive the stored record id."""
    bus = EventBus()
    sub = bus.subscribe()
    sink = RecordingSink(subscription=sub)
    bus.sink = sink

    await bus.emit(BuildCompleted(record=make_record()))

    assert sink.pending_at_append == 0
    assert [(r.job_name, r.build_number) for r in sink.records] == [("demo", 7)]
    message = sub.get_nowait()
    assert message["payload"]["id"] == "rec-1"


@pytest.mark.asyncio
async def test_persistence_failure_is_not_broadcast() -> None:
    """Test that a failed append raises and nobody sees the completion."""
    bus = EventBus(sink=RecordingSink(error=OSError("disk full")))
    sub = bus.subscribe()

    with pytest.raises(PersistenceError) as exc_info:
        await bus.emit(BuildCompleted(record=make_record()))

    assert exc_info.value.details["build_number"] == 7
    assert sub.pending() == 0


@pytest.mark.asyncio
async def test_other_events_skip_the_sink() -> None:
    sink = RecordingSink()
    bus = EventBus(sink=sink)

    await bus.emit(BuildCancelled(queue_id=42))

    assert sink.records == []


@pytest.mark.asyncio
async def test_subscription_iteration_ends_on_close() -> None:
    """Test async iteration and context manager cleanup."""
    bus = EventBus()

    async with bus.subscribe() as sub:
        assert bus.subscriber_count == 1
        await bus.emit(BuildStarted(handle=HANDLE))
        await bus.emit(LogChunk(handle=HANDLE, text="foo", offset=0))
        sub.close()
        received = [message["type"] async for message in sub]

    assert received == ["build_started", "log_chunk"]
    assert bus.subscriber_count == 0
    assert await bus.emit(BuildStarted(handle=HANDLE)) == 0


@pytest.mark.asyncio
async def test_reader_waits_for_next_event() -> None:
    bus = EventBus()
    sub = bus.subscribe()

    reader = asyncio.create_task(sub.get())
    await asyncio.sleep(0)
    await bus.emit(BuildStarted(handle=HANDLE))

    message = await asyncio.wait_for(reader, timeout=1)
    assert message["payload"]["buildNumber"] == 7


@pytest.mark.asyncio
async def test_repository_satisfies_sink_protocol(repository) -> None:
    assert isinstance(repository, RecordSink)


@pytest.mark.asyncio
async def test_close_with_full_queue_counts_the_evicted_event() -> None:
    """Test that making room for the close marker is counted as a drop."""
    bus = EventBus()
    sub = bus.subscribe(maxsize=2)
    await bus.emit(LogChunk(handle=HANDLE, text="a", offset=0))
    await bus.emit(LogChunk(handle=HANDLE, text="b", offset=1))

    sub.close()

    assert sub.dropped == 1
    received = [message["payload"]["text"] async for message in sub]
    assert received == ["b"]
