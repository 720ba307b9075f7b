"""
buildwatch Config - Configuration management.
"""

from buildwatch.config.loader import Config, get_config, load_config, reset_config
from buildwatch.config.models import (
    EventsConfig,
    JenkinsConfig,
    LoggingConfig,
    PollingConfig,
    ServerConfig,
    StorageConfig,
)

__all__ = [
    "Config",
    "EventsConfig",
    "JenkinsConfig",
    "LoggingConfig",
    "PollingConfig",
    "ServerConfig",
    "StorageConfig",
    "get_config",
    "load_config",
    "reset_config",
]
