"""
Trigger Controller - Validate preconditions and submit one build.

State machine:
    IDLE -> AUTH_CHECKED -> JOB_VERIFIED -> SUBMITTED -> QUEUE_RESOLVING
                                                      -> UNTRACKED (no queue id)
    any state -> FAILED

One controller handles one BuildRequest. It never waits for the build: once
a queue entry exists, the caller hands it to the queue resolver.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import StrEnum

from loguru import logger

from buildwatch.ci.client import JenkinsClient
from buildwatch.ci.models import BuildRequest, QueueEntry, SubmitResult
from buildwatch.core.exceptions import AuthenticationFailure, JobNotBuildable
from buildwatch.events.bus import EventBus
from buildwatch.events.models import Triggered


class TriggerState(StrEnum):
    """Trigger controller states."""

    IDLE = "idle"
    AUTH_CHECKED = "auth_checked"
    JOB_VERIFIED = "job_verified"
    SUBMITTED = "submitted"
    QUEUE_RESOLVING = "queue_resolving"
    UNTRACKED = "untracked"
    FAILED = "failed"


_TRANSITIONS: dict[TriggerState, frozenset[TriggerState]] = {
    TriggerState.IDLE: frozenset({TriggerState.AUTH_CHECKED, TriggerState.FAILED}),
    TriggerState.AUTH_CHECKED: frozenset({TriggerState.JOB_VERIFIED, TriggerState.FAILED}),
    TriggerState.JOB_VERIFIED: frozenset({TriggerState.SUBMITTED, TriggerState.FAILED}),
    TriggerState.SUBMITTED: frozenset({TriggerState.QUEUE_RESOLVING, TriggerState.UNTRACKED}),
    TriggerState.QUEUE_RESOLVING: frozenset(),
    TriggerState.UNTRACKED: frozenset(),
    TriggerState.FAILED: frozenset(),
}


@dataclass(frozen=True)
class TriggerOutcome:
    """What the controller achieved for one request."""

    job_name: str
    state: TriggerState
    submit: SubmitResult
    queue_entry: QueueEntry | None = None

    @property
    def tracked(self) -> bool:
        return self.queue_entry is not None


class TriggerController:
    """Runs the precondition checks and the submission for one request."""

    def __init__(self, client: JenkinsClient, bus: EventBus):
        self.client = client
        self.bus = bus
        self.state = TriggerState.IDLE

    def _transition(self, new_state: TriggerState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid trigger transition {self.state} -> {new_state}")
        logger.debug(f"Trigger: {self.state} -> {new_state}")
        self.state = new_state

    async def trigger(self, request: BuildRequest, job_name: str) -> TriggerOutcome:
        """
        Check auth and job, then submit.

        Args:
            request: The build request
            job_name: Job to build

        Returns:
            TriggerOutcome (queue_entry is None when the server gave no queue id)

        Raises:
            AuthenticationFailure: Credentials rejected; nothing submitted
            JobNotBuildable: Job missing or disabled; nothing submitted
            SubmissionFailure: Both submission endpoints failed
        """
        if self.state != TriggerState.IDLE:
            raise RuntimeError("TriggerController instances are single-use")

        try:
            if not await asyncio.to_thread(self.client.check_auth):
                raise AuthenticationFailure(self.client.base_url)
            self._transition(TriggerState.AUTH_CHECKED)

            if not await asyncio.to_thread(self.client.check_job_buildable, job_name):
                raise JobNotBuildable(job_name)
            self._transition(TriggerState.JOB_VERIFIED)

            crumb = await asyncio.to_thread(self.client.fetch_crumb)
            result = await asyncio.to_thread(
                self.client.submit, job_name, dict(request.parameters), crumb
            )
        except Exception:
            self._transition(TriggerState.FAILED)
            raise

        self._transition(TriggerState.SUBMITTED)
        await self.bus.emit(
            Triggered(job_name=job_name, source=request.source, queue_id=result.queue_id)
        )

        if result.queue_id is None:
            logger.warning(
                f"⚠️ Build for '{job_name}' submitted without a queue id; "
                "it will not be tracked or streamed"
            )
            self._transition(TriggerState.UNTRACKED)
            return TriggerOutcome(job_name, self.state, result)

        self._transition(TriggerState.QUEUE_RESOLVING)
        entry = QueueEntry(
            queue_id=result.queue_id,
            job_name=job_name,
            queue_url=self.client.queue_item_url(result.queue_id),
        )
        return TriggerOutcome(job_name, self.state, result, entry)
