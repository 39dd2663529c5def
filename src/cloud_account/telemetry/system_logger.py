"""System logger for operational events.

This module provides a singleton system logger for everything cloud-account
does that a host operator may want to see: logins, refreshes, forced logouts,
secret backend selection, swallowed background failures.

Logging strategy:
- Console (stderr): WARNING and above by default, level raised or lowered
  via configure_system_logger_level()
- File (JSONL): Only issues (WARNING, ERROR, CRITICAL), configured via
  configure_system_logger_file() once the host knows where logs belong

Messages are dicts with an "event" key. Secrets are never logged.
"""

from __future__ import annotations

__all__ = [
    "ConsoleFormatter",
    "JsonlFormatter",
    "configure_system_logger_file",
    "configure_system_logger_level",
    "get_system_logger",
]

import json
import logging
import sys
import time
from pathlib import Path

from cloud_account.constants import APP_NAME


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output.

    Extracts 'message' or 'event' field from dict messages for cleaner stderr output.
    """

    def format(self, record: logging.LogRecord) -> str:
        if isinstance(record.msg, dict):
            msg = record.msg.get("message") or record.msg.get("event", "")
            return f"{record.levelname}: {msg}"
        return f"{record.levelname}: {record.getMessage()}"


class JsonlFormatter(logging.Formatter):
    """One JSON object per line for the log file.

    Each line is the event dict prefixed with a UTC millisecond timestamp
    (2025-12-04T10:48:37.123Z) and the level name.
    """

    converter = time.gmtime
    default_time_format = "%Y-%m-%dT%H:%M:%S"
    default_msec_format = "%s.%03dZ"

    def format(self, record: logging.LogRecord) -> str:
        entry = {"time": self.formatTime(record), "level": record.levelname, **record.msg}
        return json.dumps(entry, default=str)


# Module-level singleton logger
_system_logger: logging.Logger | None = None
_file_handler_configured: bool = False


def get_system_logger() -> logging.Logger:
    """Get the singleton system logger instance.

    Creates the logger on first call with a stderr handler only.
    A file handler is added later via configure_system_logger_file().

    Returns:
        logging.Logger: Configured system logger instance.

    Example:
        >>> logger = get_system_logger()
        >>> logger.warning({"event": "token_refresh_failed", "error": "..."})
    """
    global _system_logger

    if _system_logger is not None:
        return _system_logger

    # Logger accepts DEBUG so the file handler and tests see everything;
    # handlers filter what is actually emitted.
    _system_logger = logging.getLogger(f"{APP_NAME}.system")
    _system_logger.setLevel(logging.DEBUG)
    _system_logger.propagate = False

    for handler in _system_logger.handlers:
        handler.close()
    _system_logger.handlers.clear()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(ConsoleFormatter())
    _system_logger.addHandler(stderr_handler)

    return _system_logger


def configure_system_logger_level(level: str | int) -> None:
    """Set the console handler's level (e.g., "DEBUG", "INFO").

    Args:
        level: Logging level name or number.
    """
    logger = get_system_logger()
    for handler in logger.handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(level)


def configure_system_logger_file(log_path: Path) -> None:
    """Configure the system logger's file handler.

    Should be called once after config is loaded. The file handler logs
    WARNING, ERROR, CRITICAL only (persistent issues) as JSONL.

    Args:
        log_path: Path to the system log file.
    """
    global _file_handler_configured

    if _file_handler_configured:
        return

    logger = get_system_logger()

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        if sys.platform != "win32":
            try:
                log_path.parent.chmod(0o700)
            except OSError:
                pass  # Permission changes might fail on some systems
    except OSError:
        pass  # If we can't create log dir, stderr will still work

    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.WARNING)
    file_handler.setFormatter(JsonlFormatter())
    logger.addHandler(file_handler)

    _file_handler_configured = True
