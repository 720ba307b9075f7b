"""
buildwatch Core - Errors, polling and the lifecycle context.

`LifecycleContext` lives in buildwatch.core.context and is imported from
there; it depends on the CI, events and persistence packages.
"""

from buildwatch.core.exceptions import (
    AuthenticationFailure,
    BuildWatchError,
    ConfigurationError,
    JobNotBuildable,
    LifecycleError,
    MissingSettingError,
    PersistenceError,
    QueueCancelled,
    QueueTimeout,
    StreamAlreadyActive,
    StreamTimeout,
    SubmissionFailure,
    TransientFetchError,
    TriggerError,
)
from buildwatch.core.polling import PollResult, PollStatus, RetryPolicy, poll_until

__all__ = [
    "AuthenticationFailure",
    "BuildWatchError",
    "ConfigurationError",
    "JobNotBuildable",
    "LifecycleError",
    "MissingSettingError",
    "PersistenceError",
    "PollResult",
    "PollStatus",
    "QueueCancelled",
    "QueueTimeout",
    "RetryPolicy",
    "StreamAlreadyActive",
    "StreamTimeout",
    "SubmissionFailure",
    "TransientFetchError",
    "TriggerError",
    "poll_until",
]
