"""Operational logging for cloud-account."""

from cloud_account.telemetry.system_logger import (
    ConsoleFormatter,
    JsonlFormatter,
    configure_system_logger_file,
    configure_system_logger_level,
    get_system_logger,
)

__all__ = [
    "ConsoleFormatter",
    "JsonlFormatter",
    "configure_system_logger_file",
    "configure_system_logger_level",
    "get_system_logger",
]
