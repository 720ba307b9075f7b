"""
CI Data Models - Build lifecycle values.

BuildRequest -> QueueEntry -> BuildHandle -> (LogCursor) -> BuildRecord.
All values are immutable except LogCursor, which belongs to a single
streaming session.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from types import MappingProxyType
from typing import Any


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


class TriggerSource(StrEnum):
    """Where a build request came from."""

    WEBHOOK = "webhook"
    MANUAL = "manual"


class BuildStatus(StrEnum):
    """Final build status."""

    SUCCESS = "SUCCESS"
    UNSTABLE = "UNSTABLE"
    FAILURE = "FAILURE"
    ABORTED = "ABORTED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_result(cls, result: str | None) -> BuildStatus:
        """Convert a Jenkins `result` field (None while building, NOT_BUILT, ...)."""
        if not result:
            return cls.UNKNOWN
        try:
            return cls(result.upper())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_failure(self) -> bool:
        return self in (BuildStatus.FAILURE, BuildStatus.UNSTABLE)


@dataclass(frozen=True)
class BuildRequest:
    """A trigger that asks for one build."""

    source: TriggerSource
    parameters: Mapping[str, str] = field(default_factory=dict)
    submitted_at: datetime = field(default_factory=utcnow)
    job_name: str | None = None  # Overrides the configured job

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any] | None,
        source: TriggerSource = TriggerSource.MANUAL,
    ) -> BuildRequest:
        """
        Build a request from an opaque parameter mapping.

        A "job" key selects the job; every other scalar is passed to the
        CI server as a string build parameter.
        """
        payload = dict(payload or {})
        job_name = payload.pop("job", None) or payload.pop("jobName", None)
        parameters = {
            str(k): str(v)
            for k, v in payload.items()
            if v is not None and not isinstance(v, (dict, list, tuple, set))
        }
        return cls(source=source, parameters=parameters, job_name=job_name)

    @classmethod
    def from_webhook(cls, payload: Mapping[str, Any]) -> BuildRequest:
        """Extract branch, commit and pusher from a GitHub push payload."""
        parameters: dict[str, str] = {}

        ref = payload.get("ref")
        if isinstance(ref, str) and ref:
            parameters["BRANCH"] = ref.removeprefix("refs/heads/")

        head_commit = payload.get("head_commit") or {}
        commit = payload.get("after") or head_commit.get("id")
        if commit:
            parameters["COMMIT"] = str(commit)

        pusher = payload.get("pusher") or {}
        if pusher.get("name"):
            parameters["PUSHER"] = str(pusher["name"])

        return cls(source=TriggerSource.WEBHOOK, parameters=parameters)


@dataclass(frozen=True)
class Crumb:
    """CSRF token issued by the CI server."""

    header_name: str
    value: str

    def as_headers(self) -> dict[str, str]:
        return {self.header_name: self.value}


@dataclass(frozen=True)
class SubmitResult:
    """Result of a build submission."""

    accepted: bool
    queue_id: int | None = None
    endpoint: str | None = None
    status_code: int | None = None


@dataclass(frozen=True)
class QueueEntry:
    """A submitted request waiting for an executor."""

    queue_id: int
    job_name: str
    queue_url: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class BuildHandle:
    """Identity of one executing build."""

    job_name: str
    build_number: int
    started_at: datetime = field(default_factory=utcnow, compare=False)

    def __str__(self) -> str:
        return f"{self.job_name} #{self.build_number}"


@dataclass
class LogCursor:
    """Byte offset already consumed from a build's console log."""

    handle: BuildHandle
    byte_offset: int = 0

    def advance(self, delta: int) -> int:
        """Move the cursor forward by `delta` bytes."""
        if delta < 0:
            raise ValueError(f"LogCursor cannot move backwards (delta={delta})")
        self.byte_offset += delta
        return self.byte_offset


@dataclass(frozen=True)
class LogChunkResponse:
    """One progressive-text response, as the raw bytes the server sent."""

    data: bytes
    start: int
    text_size: int | None = None  # X-Text-Size header, when present
    more_data: bool = False  # X-More-Data header

    @property
    def byte_length(self) -> int:
        return len(self.data)

    @property
    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class BuildRecord:
    """Durable result of a completed build."""

    job_name: str
    build_number: int
    status: BuildStatus
    duration_ms: int
    console_link: str
    error_summary: str | None = None
    failure_category: str | None = None
    completed_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_status(
        cls,
        handle: BuildHandle,
        payload: Mapping[str, Any],
        console_link: str,
    ) -> BuildRecord:
        """Build a record from a final build-status payload."""
        number = payload.get("number")
        if number is not None and int(number) != handle.build_number:
            raise ValueError(
                f"Status payload is for build #{number}, expected #{handle.build_number}"
            )
        return cls(
            job_name=handle.job_name,
            build_number=handle.build_number,
            status=BuildStatus.from_result(payload.get("result")),
            duration_ms=int(payload.get("duration") or 0),
            console_link=console_link,
        )

    def to_document(self) -> dict[str, Any]:
        """Mapping used for persistence and event payloads."""
        return {
            "jobName": self.job_name,
            "buildNumber": self.build_number,
            "status": self.status.value,
            "durationMs": self.duration_ms,
            "consoleLink": self.console_link,
            "errorSummary": self.error_summary,
            "failureCategory": self.failure_category,
            "completedAt": self.completed_at.isoformat(),
        }
