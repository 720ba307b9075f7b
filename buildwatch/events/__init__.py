"""
Lifecycle events and the broadcast bus.
"""

from buildwatch.events.bus import EventBus, RecordSink, Subscription
from buildwatch.events.models import (
    BuildCancelled,
    BuildCompleted,
    BuildStarted,
    BuildTimedOut,
    LifecycleEvent,
    LogChunk,
    Triggered,
)

__all__ = [
    "BuildCancelled",
    "BuildCompleted",
    "BuildStarted",
    "BuildTimedOut",
    "EventBus",
    "LifecycleEvent",
    "LogChunk",
    "RecordSink",
    "Subscription",
    "Triggered",
]
