"""
End-to-end tests for build lifecycles.

Tests:
- Trigger -> queue -> stream -> stored record ordering
- Untracked builds
- Several lifecycles sharing one bus
- Caller cancellation
- Persistence failures surfacing on the lifecycle
"""

from __future__ import annotations

import pytest

from buildwatch.ci.models import BuildRecord, BuildStatus, LogChunkResponse, TriggerSource
from buildwatch.ci.tracker import BuildTracker, LifecycleState
from buildwatch.core.context import LifecycleContext
from buildwatch.core.exceptions import MissingSettingError, PersistenceError

BUILDING = {"building": True, "number": 7}
SUCCESS = {"building": False, "result": "SUCCESS", "duration": 4200, "number": 7}


@pytest.fixture
async def make_context(config):
    contexts = []

    async def factory(client):
        ctx = await LifecycleContext.create(config, client=client)
        contexts.append(ctx)
        return ctx

    yield factory
    for ctx in contexts:
        await ctx.close()


@pytest.mark.asyncio
async def test_demo_build_end_to_end(make_context, make_client, drain) -> None:
    """Test queue 42 -> build #7 -> two chunks -> stored SUCCESS."""
    client = make_client(
        queue_items=[{"id": 42}, {"id": 42, "executable": {"number": 7}}],
        statuses=[BUILDING, SUCCESS],
        log_chunks=["foo", "bar"],
    )
    ctx = await make_context(client)
    tracker = BuildTracker(ctx)
    sub = ctx.bus.subscribe()

    ack = await tracker.trigger_build({"BRANCH": "main"})

    assert ack.to_dict() == {"status": "BUILD_TRIGGERED", "queueId": 42}
    assert ack.job_name == "demo"
    record = await ack.lifecycle.wait()

    assert ack.lifecycle.state == LifecycleState.COMPLETED
    assert ack.lifecycle.handle.build_number == 7
    assert record.status == BuildStatus.SUCCESS

    messages = drain(sub)
    assert [m["type"] for m in messages] == [
        "triggered",
        "build_started",
        "log_chunk",
        "log_chunk",
        "build_completed",
    ]
    stored = await ctx.repository.get(messages[-1]["payload"]["id"])
    assert stored.status == BuildStatus.SUCCESS
    assert stored.duration_ms == 4200
    assert tracker.active == []


@pytest.mark.asyncio
async def test_webhook_payload_becomes_parameters(make_context, make_client) -> None:
    client = make_client(queue_id=None)
    tracker = BuildTracker(await make_context(client))

    ack = await tracker.trigger_build(
        {"ref": "refs/heads/main", "after": "abc123"}, source=TriggerSource.WEBHOOK
    )

    assert ack.lifecycle is None
    assert client.submitted[0][1] == {"BRANCH": "main", "COMMIT": "abc123"}


@pytest.mark.asyncio
async def test_untracked_build_has_no_lifecycle(make_context, make_client) -> None:
    """Test that a build without a queue id is acknowledged but not followed."""
    tracker = BuildTracker(await make_context(make_client(queue_id=None)))

    ack = await tracker.trigger_build()

    assert ack.to_dict() == {"status": "BUILD_TRIGGERED", "queueId": None}
    assert ack.lifecycle is None
    assert tracker.active == []


@pytest.mark.asyncio
async def test_job_override_and_missing_job(make_context, make_client, config) -> None:
    client = make_client(queue_id=None)
    tracker = BuildTracker(await make_context(client))

    ack = await tracker.trigger_build({"job": "team/app"})
    assert ack.job_name == "team/app"

    config.jenkins.job_name = None
    with pytest.raises(MissingSettingError):
        await tracker.trigger_build()


@pytest.mark.asyncio
async def test_cancel_while_streaming(make_context, make_client, drain) -> None:
    """Test that caller cancellation stops polling and is announced."""
    client = make_client(queue_items=[{"executable": {"number": 7}}], statuses=[BUILDING])
    ctx = await make_context(client)
    tracker = BuildTracker(ctx)

    async with ctx.bus.subscribe() as events:
        ack = await tracker.trigger_build()
        lifecycle = ack.lifecycle
        async for message in events:
            if message["type"] == "build_started":
                break

        assert lifecycle.cancel()
        assert await lifecycle.wait() is None

        assert lifecycle.state == LifecycleState.CANCELLED
        tail = drain(events)
        cancelled = [m for m in tail if m["type"] == "build_cancelled"]
        assert len(cancelled) == 1
        assert cancelled[0]["payload"]["reason"] == "tracking_cancelled"
        assert cancelled[0]["payload"]["queueId"] == 42
        assert cancelled[0]["payload"]["buildNumber"] == 7

    assert not lifecycle.cancel()
    assert await ctx.repository.count() == 0


@pytest.mark.asyncio
async def test_shutdown_cancels_active_lifecycles(make_context, make_client) -> None:
    tracker = BuildTracker(await make_context(make_client()))

    ack = await tracker.trigger_build()
    assert tracker.active == [ack.lifecycle]

    await tracker.shutdown()

    assert ack.lifecycle.state == LifecycleState.CANCELLED
    assert tracker.active == []


@pytest.mark.asyncio
async def test_persistence_failure_is_not_broadcast(make_context, make_client, drain) -> None:
    """Test that a duplicate record fails the lifecycle without a completion event."""
    client = make_client(queue_items=[{"executable": {"number": 7}}], statuses=[SUCCESS])
    ctx = await make_context(client)
    await ctx.repository.append(
        BuildRecord("demo", 7, BuildStatus.SUCCESS, 1000, "http://ci.test/job/demo/7/console")
    )
    tracker = BuildTracker(ctx)
    sub = ctx.bus.subscribe()

    ack = await tracker.trigger_build()
    assert await ack.lifecycle.wait() is None

    assert ack.lifecycle.state == LifecycleState.FAILED
    assert isinstance(ack.lifecycle.error, PersistenceError)
    assert "build_completed" not in [m["type"] for m in drain(sub)]


@pytest.mark.asyncio
async def test_last_build_status(make_context, make_client) -> None:
    client = make_client(
        last_build={"number": 12, "building": False, "result": "FAILURE", "duration": 900}
    )
    tracker = BuildTracker(await make_context(client))

    status = await tracker.last_build_status()

    assert status == {
        "jobName": "demo",
        "buildNumber": 12,
        "building": False,
        "status": "FAILURE",
        "durationMs": 900,
        "consoleLink": "http://ci.test/job/demo/12/console",
    }


@pytest.mark.asyncio
async def test_last_build_status_never_built(make_context, make_client) -> None:
    tracker = BuildTracker(await make_context(make_client()))
    assert await tracker.last_build_status() is None


@pytest.mark.asyncio
async def test_concurrent_lifecycles_share_one_bus(make_context, make_client, drain) -> None:
    """Test two builds followed at once: per-build ordering and one record each."""

    class TwoBuildClient(make_client):
        """Queue 42 -> build #7 and queue 43 -> build #8, each with its own console."""

        def __init__(self):
            super().__init__()
            self.consoles = {7: ["a1", "a2", "a3"], 8: ["b1", "b2"]}
            self.polls: dict[int, int] = {}

        def submit(self, job_name, params=None, crumb=None):
            self.queue_id = 42 + len(self.submitted)
            return super().submit(job_name, params, crumb)

        def get_queue_item(self, queue_id):
            return {"id": queue_id, "executable": {"number": queue_id - 35}}

        def get_build(self, job_name, build_number):
            self.polls[build_number] = self.polls.get(build_number, 0) + 1
            return {
                "building": self.polls[build_number] < 3,
                "result": "SUCCESS",
                "duration": 100 * build_number,
                "number": build_number,
            }

        def fetch_log_chunk(self, job_name, build_number, start):
            console = self.consoles[build_number]
            data = console.pop(0).encode("utf-8") if console else b""
            return LogChunkResponse(data=data, start=start)

    ctx = await make_context(TwoBuildClient())
    tracker = BuildTracker(ctx)
    sub = ctx.bus.subscribe()

    acks = [await tracker.trigger_build({"BRANCH": "main"}) for _ in range(2)]
    assert [ack.queue_id for ack in acks] == [42, 43]
    records = [await ack.lifecycle.wait() for ack in acks]

    assert [(r.build_number, r.status) for r in records] == [
        (7, BuildStatus.SUCCESS),
        (8, BuildStatus.SUCCESS),
    ]
    messages = drain(sub)
    for number, console in ((7, "a1a2a3"), (8, "b1b2")):
        own = [
            (index, m)
            for index, m in enumerate(messages)
            if m["payload"].get("buildNumber") == number
        ]
        chunks = [m["payload"] for _, m in own if m["type"] == "log_chunk"]
        offsets = [c["offset"] for c in chunks]
        assert offsets == sorted(set(offsets))
        assert "".join(c["text"] for c in chunks) == console

        completed = [index for index, m in own if m["type"] == "build_completed"]
        assert len(completed) == 1
        assert completed[0] > max(index for index, m in own if m["type"] == "log_chunk")

    assert await ctx.repository.count() == 2
    assert tracker.active == []
