"""Tests for queue resolution."""

from __future__ import annotations

import pytest

from buildwatch.ci.models import BuildHandle, QueueEntry
from buildwatch.ci.queue import QueueResolver, QueueState, read_queue_item
from buildwatch.core.exceptions import TransientFetchError
from buildwatch.core.polling import RetryPolicy
from buildwatch.events.bus import EventBus


class TestReadQueueItem:
    """Tests for queue item interpretation."""

    def test_waiting(self):
        assert read_queue_item({"id": 42, "why": "Waiting for next available executor"}) is None
        assert read_queue_item({"id": 42, "executable": None}) is None

    def test_resolved(self):
        assert read_queue_item({"executable": {"number": 7}}) == (QueueState.RESOLVED, 7)

    def test_cancelled(self):
        assert read_queue_item({"cancelled": True}) == (QueueState.CANCELLED, None)

    def test_expired(self):
        assert read_queue_item(None) == (QueueState.EXPIRED, None)


@pytest.fixture
def entry() -> QueueEntry:
    return QueueEntry(queue_id=42, job_name="demo")


@pytest.mark.asyncio
async def test_resolves_on_second_poll(entry, fast_policy, make_client, drain) -> None:
    """Test queue id 42 becoming build #7 on the second poll."""
    client = make_client(queue_items=[{"id": 42}, {"id": 42, "executable": {"number": 7}}])
    bus = EventBus()
    sub = bus.subscribe()

    resolution = await QueueResolver(client, bus, fast_policy).resolve(entry)

    assert resolution.state == QueueState.RESOLVED
    assert resolution.handle == BuildHandle("demo", 7)
    assert resolution.attempts == 2
    messages = drain(sub)
    assert [m["type"] for m in messages] == ["build_started"]
    assert messages[0]["payload"]["buildNumber"] == 7


@pytest.mark.asyncio
async def test_cancelled_in_queue(entry, fast_policy, make_client, drain) -> None:
    """Test that a cancelled item yields BuildCancelled and no handle."""
    client = make_client(queue_items=[{"id": 42, "cancelled": True}])
    bus = EventBus()
    sub = bus.subscribe()

    resolution = await QueueResolver(client, bus, fast_policy).resolve(entry)

    assert resolution.state == QueueState.CANCELLED
    assert resolution.handle is None
    messages = drain(sub)
    assert [m["type"] for m in messages] == ["build_cancelled"]
    assert messages[0]["payload"] == {"queueId": 42, "reason": "cancelled_in_queue"}


@pytest.mark.asyncio
async def test_expired_item_emits_nothing(entry, fast_policy, make_client, drain) -> None:
    """Test that a vanished queue item stops polling quietly."""
    client = make_client(queue_items=[{"id": 42}, None])
    bus = EventBus()
    sub = bus.subscribe()

    resolution = await QueueResolver(client, bus, fast_policy).resolve(entry)

    assert resolution.state == QueueState.EXPIRED
    assert resolution.attempts == 2
    assert drain(sub) == []


@pytest.mark.asyncio
async def test_timeout(entry, make_client, drain) -> None:
    """Test that an item that never starts times out."""
    client = make_client()
    bus = EventBus()
    sub = bus.subscribe()

    resolution = await QueueResolver(client, bus, RetryPolicy(interval=0, max_attempts=3)).resolve(
        entry
    )

    assert resolution.state == QueueState.TIMED_OUT
    assert resolution.attempts == 3
    messages = drain(sub)
    assert [m["type"] for m in messages] == ["build_timed_out"]
    assert messages[0]["payload"] == {"stage": "queue", "attempts": 3, "queueId": 42}


@pytest.mark.asyncio
async def test_transient_failure_is_retried(entry, fast_policy, make_client, drain) -> None:
    """Test that a failed poll is recovered by the next tick."""
    client = make_client(
        queue_items=[
            TransientFetchError("http://ci.test/queue/item/42/api/json", "HTTP 502", 502),
            {"executable": {"number": 8}},
        ]
    )

    resolution = await QueueResolver(client, EventBus(), fast_policy).resolve(entry)

    assert resolution.handle == BuildHandle("demo", 8)
    assert resolution.attempts == 2
