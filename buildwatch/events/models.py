"""
Lifecycle Events - Messages broadcast while a build progresses.

Subscribers receive `{"type": ..., "payload": ...}` messages built by
`LifecycleEvent.to_message()`. Only BuildCompleted is ever persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar

from buildwatch.ci.models import BuildHandle, BuildRecord, TriggerSource, utcnow


def _handle_payload(handle: BuildHandle) -> dict[str, Any]:
    return {
        "jobName": handle.job_name,
        "buildNumber": handle.build_number,
        "startedAt": handle.started_at.isoformat(),
    }


@dataclass(frozen=True)
class LifecycleEvent:
    """Base class of the event union."""

    type: ClassVar[str] = "event"
    emitted_at: datetime = field(default_factory=utcnow, kw_only=True)

    def payload(self) -> dict[str, Any]:
        return {}

    def to_message(self) -> dict[str, Any]:
        return {"type": self.type, "payload": self.payload()}


@dataclass(frozen=True)
class Triggered(LifecycleEvent):
    """A build was accepted by the CI server."""

    type: ClassVar[str] = "triggered"
    job_name: str
    source: TriggerSource
    queue_id: int | None = None

    def payload(self) -> dict[str, Any]:
        return {"jobName": self.job_name, "source": self.source.value, "queueId": self.queue_id}


@dataclass(frozen=True)
class BuildStarted(LifecycleEvent):
    """The queued request became an executing build."""

    type: ClassVar[str] = "build_started"
    handle: BuildHandle

    def payload(self) -> dict[str, Any]:
        return _handle_payload(self.handle)


@dataclass(frozen=True)
class LogChunk(LifecycleEvent):
    """New console text, starting at byte `offset`."""

    type: ClassVar[str] = "log_chunk"
    handle: BuildHandle
    text: str
    offset: int

    def payload(self) -> dict[str, Any]:
        return {
            "jobName": self.handle.job_name,
            "buildNumber": self.handle.build_number,
            "offset": self.offset,
            "text": self.text,
        }


@dataclass(frozen=True)
class BuildCompleted(LifecycleEvent):
    """The build reached a terminal state."""

    type: ClassVar[str] = "build_completed"
    record: BuildRecord
    record_id: str | None = None

    def payload(self) -> dict[str, Any]:
        return {**self.record.to_document(), "id": self.record_id}


@dataclass(frozen=True)
class BuildCancelled(LifecycleEvent):
    """Queue item cancelled on the server, or tracking aborted by the caller."""

    type: ClassVar[str] = "build_cancelled"
    queue_id: int | None
    reason: str = "cancelled_in_queue"
    handle: BuildHandle | None = None

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {"queueId": self.queue_id, "reason": self.reason}
        if self.handle is not None:
            data.update(_handle_payload(self.handle))
        return data


@dataclass(frozen=True)
class BuildTimedOut(LifecycleEvent):
    """A polling budget ran out (stage "queue" or "stream")."""

    type: ClassVar[str] = "build_timed_out"
    stage: str
    attempts: int
    queue_id: int | None = None
    handle: BuildHandle | None = None

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "stage": self.stage,
            "attempts": self.attempts,
            "queueId": self.queue_id,
        }
        if self.handle is not None:
            data.update(_handle_payload(self.handle))
        return data
