"""
Queue Resolver - Wait for a queued request to become a build.

The CI server assigns a build number (`executable.number`) once an executor
picks the request up. Resolved queue items are garbage-collected quickly,
so a 404 is read as "entry expired" and ends polling without an error.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from loguru import logger

from buildwatch.ci.client import JenkinsClient
from buildwatch.ci.models import BuildHandle, QueueEntry
from buildwatch.core.polling import RetryPolicy, poll_until
from buildwatch.events.bus import EventBus
from buildwatch.events.models import BuildCancelled, BuildStarted, BuildTimedOut


class QueueState(StrEnum):
    """Terminal queue resolver states."""

    RESOLVED = "resolved"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    EXPIRED = "expired"


@dataclass(frozen=True)
class QueueResolution:
    """Outcome of resolving one queue entry."""

    entry: QueueEntry
    state: QueueState
    attempts: int
    handle: BuildHandle | None = None


def read_queue_item(item: dict[str, Any] | None) -> tuple[QueueState, int | None] | None:
    """
    Interpret one queue item document.

    Returns:
        (state, build_number) once the item is terminal, None while it waits
    """
    if item is None:
        return QueueState.EXPIRED, None
    if item.get("cancelled"):
        return QueueState.CANCELLED, None
    executable = item.get("executable") or {}
    number = executable.get("number")
    if number is not None:
        return QueueState.RESOLVED, int(number)
    return None


class QueueResolver:
    """Polls queue items until they resolve, are cancelled, or time out."""

    def __init__(
        self,
        client: JenkinsClient,
        bus: EventBus,
        policy: RetryPolicy,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.bus = bus
        self.policy = policy
        self._sleep = sleep

    async def resolve(self, entry: QueueEntry) -> QueueResolution:
        """
        Poll the queue item for `entry` until it is terminal.

        Emits BuildStarted, BuildCancelled or BuildTimedOut accordingly.
        An expired entry emits nothing.
        """

        async def probe() -> tuple[QueueState, int | None] | None:
            item = await asyncio.to_thread(self.client.get_queue_item, entry.queue_id)
            return read_queue_item(item)

        logger.info(f"⏳ Waiting for queue item {entry.queue_id} ({entry.job_name})")
        result = await poll_until(
            probe, self.policy, name=f"queue item {entry.queue_id}", sleep=self._sleep
        )

        if not result.satisfied:
            await self.bus.emit(
                BuildTimedOut(stage="queue", attempts=result.attempts, queue_id=entry.queue_id)
            )
            return QueueResolution(entry, QueueState.TIMED_OUT, result.attempts)

        state, build_number = result.value
        if state == QueueState.RESOLVED:
            handle = BuildHandle(job_name=entry.job_name, build_number=build_number)
            logger.info(f"✅ Queue item {entry.queue_id} started build {handle}")
            await self.bus.emit(BuildStarted(handle=handle))
            return QueueResolution(entry, state, result.attempts, handle)

        if state == QueueState.CANCELLED:
            logger.warning(f"🛑 Queue item {entry.queue_id} was cancelled")
            await self.bus.emit(BuildCancelled(queue_id=entry.queue_id))
        else:
            logger.warning(
                f"⚠️ Queue item {entry.queue_id} expired before a build number was seen; "
                "build is not tracked"
            )
        return QueueResolution(entry, state, result.attempts)
