"""
buildwatch Config - Loading.

Reads ~/.buildwatch/config.yaml when present, then overlays the
environment variables the dashboard has always used (JENKINS_URL,
JENKINS_USER, JENKINS_TOKEN, JENKINS_JOB_NAME).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from buildwatch.config.models import (
    EventsConfig,
    JenkinsConfig,
    LoggingConfig,
    PollingConfig,
    ServerConfig,
    StorageConfig,
)
from buildwatch.core.exceptions import ConfigurationError, MissingSettingError

DEFAULT_CONFIG_PATH = Path.home() / ".buildwatch" / "config.yaml"

# Environment variable -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "JENKINS_URL": ("jenkins", "url"),
    "JENKINS_USER": ("jenkins", "user"),
    "JENKINS_TOKEN": ("jenkins", "token"),
    "JENKINS_JOB_NAME": ("jenkins", "job_name"),
    "BUILDWATCH_DB_PATH": ("storage", "db_path"),
    "BUILDWATCH_LOG_DIR": ("logging", "log_dir"),
    "PORT": ("server", "port"),
}


class Config(BaseModel):
    """Root configuration."""

    jenkins: JenkinsConfig = Field(default_factory=JenkinsConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def require_job(self, job_name: str | None = None) -> str:
        """Resolve the job to build, falling back to the configured default."""
        name = job_name or self.jenkins.job_name
        if not name:
            raise MissingSettingError("jenkins.job_name", "JENKINS_JOB_NAME")
        return name


_config: Config | None = None


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}", {"path": str(path)}) from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping", {"path": str(path)})
    return data


def load_config(
    path: Path | None = None,
    env: dict[str, str] | None = None,
) -> Config:
    """
    Load configuration from file and environment.

    Args:
        path: YAML config file (default: ~/.buildwatch/config.yaml, optional)
        env: Environment mapping (default: os.environ)

    Returns:
        Validated Config

    Raises:
        ConfigurationError: If the file or a value is invalid
    """
    path = path or DEFAULT_CONFIG_PATH
    env = os.environ if env is None else env

    data: dict[str, Any] = {}
    if path.exists():
        data = _read_yaml(path)
        logger.debug(f"📁 Loaded config from {path}")

    for var, (section, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            data.setdefault(section, {})[key] = value

    try:
        return Config.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def get_config() -> Config:
    """Get the process-wide configuration (loaded once)."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the cached configuration (for tests)."""
    global _config
    _config = None
