"""
Build Tracker - Trigger builds and follow them to completion.

`trigger_build` runs the trigger controller in the caller's task and returns
as soon as the CI server accepted the request. Queue resolution and log
streaming then continue in one background asyncio.Task per build, wrapped
in a BuildLifecycle so callers can wait on it or cancel it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from loguru import logger

from buildwatch.ci.models import (
    BuildHandle,
    BuildRecord,
    BuildRequest,
    BuildStatus,
    QueueEntry,
    TriggerSource,
)
from buildwatch.ci.queue import QueueResolver, QueueState
from buildwatch.ci.streamer import LogStreamer
from buildwatch.ci.trigger import TriggerController
from buildwatch.events.models import BuildCancelled

if TYPE_CHECKING:
    from buildwatch.core.context import LifecycleContext


class LifecycleState(StrEnum):
    """Progress of one background lifecycle."""

    RESOLVING = "resolving"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    EXPIRED = "expired"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self not in (LifecycleState.RESOLVING, LifecycleState.STREAMING)


_QUEUE_OUTCOMES = {
    QueueState.CANCELLED: LifecycleState.CANCELLED,
    QueueState.TIMED_OUT: LifecycleState.TIMED_OUT,
    QueueState.EXPIRED: LifecycleState.EXPIRED,
}


class BuildLifecycle:
    """Handle on the background task following one queued build."""

    def __init__(self, entry: QueueEntry):
        self.entry = entry
        self.state = LifecycleState.RESOLVING
        self.handle: BuildHandle | None = None
        self.record: BuildRecord | None = None
        self.error: Exception | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def queue_id(self) -> int:
        return self.entry.queue_id

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> bool:
        """Stop tracking. Returns False if the lifecycle already finished."""
        if self._task is None or self._task.done():
            return False
        return self._task.cancel()

    async def wait(self) -> BuildRecord | None:
        """Wait for the lifecycle to end; returns the stored record, if any."""
        if self._task is not None:
            await asyncio.wait({self._task})
        return self.record

    def __repr__(self) -> str:
        target = self.handle or f"queue item {self.queue_id}"
        return f"<BuildLifecycle {target} {self.state}>"


@dataclass(frozen=True)
class TriggerAck:
    """Immediate answer to a trigger request."""

    job_name: str
    queue_id: int | None
    lifecycle: BuildLifecycle | None = None
    status: str = "BUILD_TRIGGERED"

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "queueId": self.queue_id}


class BuildTracker:
    """Entry point of the engine: triggers builds and owns their lifecycles."""

    def __init__(
        self,
        context: LifecycleContext,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.context = context
        self.client = context.client
        self.bus = context.bus

        polling = context.config.polling
        self.resolver = QueueResolver(self.client, self.bus, polling.queue_policy(), sleep=sleep)
        self.streamer = LogStreamer(
            self.client,
            self.bus,
            polling.stream_policy(),
            tail_chars=polling.log_tail_chars,
            sleep=sleep,
        )
        self._lifecycles: set[BuildLifecycle] = set()

    @property
    def active(self) -> list[BuildLifecycle]:
        """Lifecycles still resolving or streaming."""
        return [lc for lc in self._lifecycles if not lc.done]

    async def trigger_build(
        self,
        payload: Mapping[str, Any] | None = None,
        source: TriggerSource = TriggerSource.MANUAL,
    ) -> TriggerAck:
        """
        Trigger a build from a webhook body or a manual parameter mapping.

        Returns:
            TriggerAck; its lifecycle is None when the build cannot be tracked

        Raises:
            MissingSettingError: No job given and none configured
            AuthenticationFailure, JobNotBuildable, SubmissionFailure
        """
        if source == TriggerSource.WEBHOOK:
            request = BuildRequest.from_webhook(payload or {})
        else:
            request = BuildRequest.from_payload(payload, source)
        return await self.submit(request)

    async def submit(self, request: BuildRequest) -> TriggerAck:
        """Run the trigger controller for a prepared request."""
        job_name = self.context.config.require_job(request.job_name)
        outcome = await TriggerController(self.client, self.bus).trigger(request, job_name)

        lifecycle = None
        if outcome.queue_entry is not None:
            lifecycle = self._start(outcome.queue_entry)
        return TriggerAck(job_name=job_name, queue_id=outcome.submit.queue_id, lifecycle=lifecycle)

    def _start(self, entry: QueueEntry) -> BuildLifecycle:
        lifecycle = BuildLifecycle(entry)
        task = asyncio.create_task(self._run(lifecycle), name=f"build-lifecycle-{entry.queue_id}")
        lifecycle._task = task
        self._lifecycles.add(lifecycle)
        task.add_done_callback(lambda t: self._finished(lifecycle, t))
        return lifecycle

    def _finished(self, lifecycle: BuildLifecycle, task: asyncio.Task[None]) -> None:
        self._lifecycles.discard(lifecycle)
        # A task cancelled before its first step never reaches _run's handler
        if task.cancelled() and not lifecycle.state.is_terminal:
            lifecycle.state = LifecycleState.CANCELLED

    async def _run(self, lifecycle: BuildLifecycle) -> None:
        entry = lifecycle.entry
        try:
            resolution = await self.resolver.resolve(entry)
            if resolution.handle is None:
                lifecycle.state = _QUEUE_OUTCOMES[resolution.state]
                return

            lifecycle.handle = resolution.handle
            lifecycle.state = LifecycleState.STREAMING
            record = await self.streamer.stream(resolution.handle)
            if record is None:
                lifecycle.state = LifecycleState.TIMED_OUT
                return

            lifecycle.record = record
            lifecycle.state = LifecycleState.COMPLETED
        except asyncio.CancelledError:
            lifecycle.state = LifecycleState.CANCELLED
            logger.info(f"🛑 Stopped tracking {lifecycle.handle or f'queue item {entry.queue_id}'}")
            await self.bus.emit(
                BuildCancelled(
                    queue_id=entry.queue_id,
                    reason="tracking_cancelled",
                    handle=lifecycle.handle,
                )
            )
            raise
        except Exception as e:
            lifecycle.state = LifecycleState.FAILED
            lifecycle.error = e
            logger.error(f"❌ Lifecycle for queue item {entry.queue_id} failed: {e}")

    async def last_build_status(self, job_name: str | None = None) -> dict[str, Any] | None:
        """
        Summarize the job's most recent build as reported by the CI server.

        Returns:
            {jobName, buildNumber, building, status, durationMs, consoleLink},
            or None when the job has never run
        """
        job = self.context.config.require_job(job_name)
        data = await asyncio.to_thread(self.client.get_last_build, job)
        if data is None:
            return None

        number = int(data["number"])
        building = bool(data.get("building", False))
        return {
            "jobName": job,
            "buildNumber": number,
            "building": building,
            "status": None if building else BuildStatus.from_result(data.get("result")).value,
            "durationMs": int(data.get("duration") or 0),
            "consoleLink": self.client.console_url(job, number),
        }

    async def shutdown(self) -> None:
        """Cancel every running lifecycle and wait for them to finish."""
        lifecycles = self.active
        for lifecycle in lifecycles:
            lifecycle.cancel()
        for lifecycle in lifecycles:
            await lifecycle.wait()
        if lifecycles:
            logger.debug(f"Shut down {len(lifecycles)} lifecycle(s)")
