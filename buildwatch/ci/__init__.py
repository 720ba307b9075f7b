"""
CI Module for buildwatch - Jenkins build lifecycle.

Trigger -> queue resolution -> console streaming -> stored record.

Usage:
    from buildwatch.ci.tracker import BuildTracker
    from buildwatch.core.context import LifecycleContext

    ctx = await LifecycleContext.create()
    tracker = BuildTracker(ctx)

    async with ctx.bus.subscribe() as events:
        ack = await tracker.trigger_build({"BRANCH": "main"})
        async for message in events:
            ...

Only the dependency-free pieces are re-exported here; the lifecycle
components import the event bus and live in their own modules.
"""

from buildwatch.ci.client import JenkinsClient, job_path, parse_queue_id
from buildwatch.ci.models import (
    BuildHandle,
    BuildRecord,
    BuildRequest,
    BuildStatus,
    Crumb,
    LogChunkResponse,
    LogCursor,
    QueueEntry,
    SubmitResult,
    TriggerSource,
)

__all__ = [
    # Client
    "JenkinsClient",
    "job_path",
    "parse_queue_id",
    # Models
    "BuildHandle",
    "BuildRecord",
    "BuildRequest",
    "BuildStatus",
    "Crumb",
    "LogChunkResponse",
    "LogCursor",
    "QueueEntry",
    "SubmitResult",
    "TriggerSource",
]
