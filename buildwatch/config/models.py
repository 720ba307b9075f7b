"""
buildwatch Config - Configuration models.

Pydantic models for type-safe configuration.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, field_validator

from buildwatch.core.polling import RetryPolicy


class JenkinsConfig(BaseModel):
    """CI server connection settings."""

    url: str = Field(default="http://localhost:8080", description="CI server base URL")
    user: str | None = Field(default=None, description="API user")
    token: SecretStr | None = Field(default=None, description="API token")
    job_name: str | None = Field(default=None, description="Default job to trigger")
    verify_ssl: bool = Field(default=True, description="Verify TLS certificates")
    request_timeout: float = Field(
        default=15.0, gt=0, le=300, description="Per-request timeout in seconds"
    )

    @field_validator("url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def auth(self) -> tuple[str, str] | None:
        """Basic auth tuple for requests, or None when anonymous."""
        if self.user and self.token:
            return (self.user, self.token.get_secret_value())
        return None


class PollingConfig(BaseModel):
    """Polling intervals and budgets."""

    queue_interval: float = Field(default=2.0, ge=0, description="Queue poll interval (s)")
    queue_timeout: float = Field(default=300.0, gt=0, description="Queue wait budget (s)")
    stream_interval: float = Field(default=1.0, ge=0, description="Log poll interval (s)")
    stream_timeout: float = Field(default=300.0, gt=0, description="Streaming budget (s)")
    log_tail_chars: int = Field(
        default=65536, ge=1024, description="Console tail kept for failure analysis"
    )

    def queue_policy(self) -> RetryPolicy:
        return RetryPolicy.from_budget(self.queue_interval, self.queue_timeout)

    def stream_policy(self) -> RetryPolicy:
        return RetryPolicy.from_budget(self.stream_interval, self.stream_timeout)


class StorageConfig(BaseModel):
    """Build record storage."""

    db_path: Path = Field(
        default=Path.home() / ".buildwatch" / "buildwatch.db",
        description="SQLite database file",
    )


class EventsConfig(BaseModel):
    """Event bus settings."""

    subscriber_queue_size: int = Field(
        default=1000, ge=1, le=100_000, description="Per-subscriber buffered events"
    )


class ServerConfig(BaseModel):
    """HTTP API settings (buildwatch serve)."""

    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=4000, ge=1, le=65535, description="Listen port")


class LoggingConfig(BaseModel):
    """Logging settings."""

    console_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info", description="Console log level"
    )
    file_level: Literal["debug", "info", "warning", "error"] = Field(
        default="debug", description="File log level"
    )
    log_dir: Path = Field(
        default=Path.home() / ".buildwatch" / "logs", description="Log directory"
    )
    max_size_mb: int = Field(default=10, ge=1, le=100, description="Max log file size in MB")
    retention_days: int = Field(default=7, ge=1, le=90, description="Log retention in days")
    json_logs: bool = Field(default=False, description="Write JSON lines to the log file")
