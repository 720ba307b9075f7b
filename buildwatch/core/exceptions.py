"""
Core Exceptions - Unified error hierarchy for buildwatch.

Trigger-time errors (authentication, job checks, submission) propagate to
the caller. Queue and stream outcomes are reported through lifecycle
events; the matching exception types exist for callers that want to raise
them from an observed event.
"""


class BuildWatchError(Exception):
    """Base exception for all buildwatch errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | {self.details}"
        return self.message


# =============================================================================
# Trigger Errors
# =============================================================================

class TriggerError(BuildWatchError):
    """Build could not be triggered."""
    pass


class AuthenticationFailure(TriggerError):
    """CI server rejected the configured credentials."""

    def __init__(self, server_url: str):
        super().__init__(
            f"CI server at '{server_url}' rejected the configured credentials",
            {"server_url": server_url}
        )
        self.server_url = server_url


class JobNotBuildable(TriggerError):
    """Job does not exist or cannot be built."""

    def __init__(self, job_name: str):
        super().__init__(
            f"Job '{job_name}' was not found or is not buildable",
            {"job_name": job_name}
        )
        self.job_name = job_name


class SubmissionFailure(TriggerError):
    """All submission endpoints were exhausted."""

    def __init__(self, job_name: str, reason: str, status_code: int | None = None):
        super().__init__(
            f"Failed to submit build for '{job_name}': {reason}",
            {"job_name": job_name, "status_code": status_code}
        )
        self.job_name = job_name
        self.reason = reason
        self.status_code = status_code


# =============================================================================
# Lifecycle Errors
# =============================================================================

class LifecycleError(BuildWatchError):
    """Background build lifecycle ended without a build record."""
    pass


class QueueCancelled(LifecycleError):
    """Queue item was cancelled on the CI server."""

    def __init__(self, queue_id: int):
        super().__init__(f"Queue item {queue_id} was cancelled", {"queue_id": queue_id})
        self.queue_id = queue_id


class QueueTimeout(LifecycleError):
    """Queue item did not start a build within the polling budget."""

    def __init__(self, queue_id: int, attempts: int):
        super().__init__(
            f"Queue item {queue_id} did not start after {attempts} polls",
            {"queue_id": queue_id, "attempts": attempts}
        )
        self.queue_id = queue_id


class StreamTimeout(LifecycleError):
    """Build was still running when the streaming budget ran out."""

    def __init__(self, job_name: str, build_number: int, attempts: int):
        super().__init__(
            f"Build {job_name} #{build_number} still running after {attempts} polls",
            {"job_name": job_name, "build_number": build_number, "attempts": attempts}
        )


class StreamAlreadyActive(LifecycleError):
    """A log stream for this build handle is already running."""

    def __init__(self, job_name: str, build_number: int):
        super().__init__(
            f"Build {job_name} #{build_number} is already being streamed",
            {"job_name": job_name, "build_number": build_number}
        )


# =============================================================================
# Connection Errors
# =============================================================================

class TransientFetchError(BuildWatchError):
    """Single poll failed (network error or unexpected HTTP status)."""

    def __init__(self, url: str, reason: str, status_code: int | None = None):
        super().__init__(
            f"Fetch from {url} failed: {reason}",
            {"status_code": status_code}
        )
        self.url = url
        self.reason = reason
        self.status_code = status_code


class PersistenceError(BuildWatchError):
    """Build record could not be stored."""

    def __init__(self, operation: str, reason: str, details: dict | None = None):
        super().__init__(
            f"Persistence error during {operation}: {reason}",
            {**(details or {}), "operation": operation, "reason": reason}
        )
        self.operation = operation
        self.reason = reason


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(BuildWatchError):
    """Configuration error."""
    pass


class MissingSettingError(ConfigurationError):
    """Required setting not configured."""

    def __init__(self, setting: str, env_var: str | None = None):
        hint = f" (set {env_var})" if env_var else ""
        super().__init__(
            f"Missing required setting: {setting}{hint}",
            {"setting": setting, "env_var": env_var}
        )
        self.setting = setting
