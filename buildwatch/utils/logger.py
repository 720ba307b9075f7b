"""
Centralized logging for buildwatch.

Provides:
- Rotated file logging (~/.buildwatch/logs/buildwatch.log by default)
- Optional console logging (verbose mode)
- Credential redaction on every record

Configuration comes from the `logging` section of the buildwatch config.
"""
import json
import os
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from buildwatch.config.models import LoggingConfig
from buildwatch.utils.security import redact_sensitive_info

LOG_FILE_NAME = "buildwatch.log"


def use_emoji_logs() -> bool:
    """
    Check if emoji prefixes should be used in log messages.

    Returns True unless USE_EMOJI_LOGS environment variable is set to "0" or "false".
    """
    value = os.environ.get("USE_EMOJI_LOGS", "1").lower()
    return value not in ("0", "false", "no", "off")


_EMOJI_TO_ASCII = {
    "🔄": "[RETRY]",
    "⚠️": "[WARN]",
    "⏱️": "[TIMEOUT]",
    "🌐": "[CONNECT]",
    "✅": "[OK]",
    "❌": "[ERROR]",
    "🚀": "[TRIGGER]",
    "📜": "[LOG]",
    "🛑": "[CANCEL]",
    "📁": "[FILE]",
    "⏳": "[WAIT]",
    "🗄️": "[DB]",
}


def ascii_prefix(message: str) -> str:
    """
    Swap a leading emoji for its ASCII tag when USE_EMOJI_LOGS is off.

    Args:
        message: Log message, usually starting with an emoji prefix.

    Returns:
        The message unchanged, or with its known emoji prefix replaced.
    """
    if use_emoji_logs():
        return message
    for emoji, tag in _EMOJI_TO_ASCII.items():
        if message.startswith(emoji):
            return tag + message[len(emoji):]
    return message


def _patch_record(record) -> None:
    """Apply the emoji setting, then redact credentials from the message and string extras."""
    record["message"] = redact_sensitive_info(ascii_prefix(record["message"]))
    for key, value in list(record["extra"].items()):
        if isinstance(value, str):
            record["extra"][key] = redact_sensitive_info(value)


def setup_logger(
    verbose: bool = False,
    config: Optional[LoggingConfig] = None,
) -> Path:
    """
    Configure loguru sinks.

    Rules:
    1. FILE: Always log to <log_dir>/buildwatch.log, rotated by size.
    2. CONSOLE: Only when verbose; stderr at config.console_level.

    Args:
        verbose: Enable console logging
        config: Logging settings (default: LoggingConfig())

    Returns:
        Path of the log file
    """
    config = config or LoggingConfig()
    logger.remove()

    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE_NAME

    def format_record(record):
        build = record["extra"].get("build", "")
        if config.json_logs:
            entry = {
                "timestamp": record["time"].isoformat(),
                "level": record["level"].name,
                "message": record["message"],
                "module": record["name"],
                "line": record["line"],
            }
            if build:
                entry["build"] = build
            # Escape braces: loguru formats the returned string again
            return json.dumps(entry).replace("{", "{{").replace("}", "}}") + "\n"
        if build:
            return (
                "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[build]} | "
                "{name}:{function}:{line} - {message}\n"
            )
        return "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}\n"

    logger.add(
        log_path,
        rotation=f"{config.max_size_mb} MB",
        retention=f"{config.retention_days} days",
        level=config.file_level.upper(),
        format=format_record,
        compression="gz",
        enqueue=True,
    )

    if verbose:
        logger.add(
            sys.stderr,
            format=(
                "<green>{time:HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
                "<level>{message}</level>"
            ),
            level=config.console_level.upper(),
            colorize=True,
        )

    logger.configure(patcher=_patch_record)
    return log_path


def get_build_logger(job_name: str, build_number: int):
    """Get a logger bound to one build, so its lines can be filtered."""
    return logger.bind(build=f"{job_name}#{build_number}")
