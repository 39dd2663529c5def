"""Application configuration for cloud-account.

Defines configuration models for IBM Cloud endpoints, token lifecycle timing,
secret/state storage and logging. Every field has a default, so a missing
config file means "use defaults". The config file lives at the OS-appropriate
location (via click.get_app_dir) unless the host passes an explicit path.

Example usage:
    # Load from config file (defaults when absent)
    config = load_config()

    # Save configuration
    config.save_to_file(get_config_path())
"""

from __future__ import annotations

__all__ = [
    "CloudAccountConfig",
    "LoggingConfig",
    "StorageConfig",
    "get_config_path",
    "load_config",
]

import json
from pathlib import Path
from typing import Literal

from platformdirs import user_log_dir
from pydantic import BaseModel, Field

from cloud_account.constants import (
    ACCOUNT_MANAGEMENT_URL,
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_CLIENT_ID,
    DEFAULT_CLIENT_SECRET,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    IAM_URL,
    MAX_HTTP_TIMEOUT_SECONDS,
    MIN_HTTP_TIMEOUT_SECONDS,
    STATE_FILE,
    SYSTEM_LOG_FILE,
    TOKEN_CHECK_INTERVAL_SECONDS,
    TOKEN_REFRESH_MARGIN_SECONDS,
)
from cloud_account.exceptions import ConfigurationError
from cloud_account.utils.file_helpers import (
    ensure_secure_directory,
    get_app_dir,
    load_validated_json,
    set_secure_permissions,
)


class StorageConfig(BaseModel):
    """Where session state and secrets are kept.

    Attributes:
        secret_backend: "auto" prefers the OS keychain and falls back to the
            encrypted file; "keychain" or "file" force one backend.
        store_dir: Directory for the encrypted secrets file and the state
            file. None means the per-user application directory.
        state_file: File name of the non-secret state store (account, email).
    """

    secret_backend: Literal["auto", "keychain", "file"] = "auto"
    store_dir: str | None = None
    state_file: str = Field(default=STATE_FILE, min_length=1)

    def resolve_store_dir(self) -> Path:
        """Return the store directory with ~ expanded."""
        if self.store_dir:
            return Path(self.store_dir).expanduser()
        return get_app_dir()

    def resolve_state_path(self) -> Path:
        """Return the full path of the state file."""
        return self.resolve_store_dir() / self.state_file


class LoggingConfig(BaseModel):
    """Logging configuration settings.

    Attributes:
        log_level: Console log level.
        log_to_file: Also write WARNING and above to a JSONL file.
        log_file: JSONL file path. None means system.jsonl in the per-user
            log directory (platformdirs).
    """

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    log_to_file: bool = False
    log_file: str | None = None

    def resolve_log_path(self) -> Path | None:
        """Return the JSONL log file path, or None when file logging is off."""
        if self.log_file:
            return Path(self.log_file).expanduser()
        if self.log_to_file:
            return Path(user_log_dir(APP_NAME)) / SYSTEM_LOG_FILE
        return None


class CloudAccountConfig(BaseModel):
    """Top-level configuration.

    Attributes:
        iam_url: IBM Cloud IAM base URL (discovery document lives below it).
        account_management_url: Account management API base URL.
        client_id: OAuth client id sent as HTTP Basic user to the token endpoint.
        client_secret: OAuth client secret sent as HTTP Basic password.
        http_timeout_seconds: Timeout for every IBM Cloud HTTP call.
        refresh_margin_seconds: Refresh access tokens expiring within this window.
        check_interval_seconds: Background expiry check interval.
        storage: Secret and state storage settings.
        logging: Logging settings.
    """

    iam_url: str = Field(default=IAM_URL, min_length=1)
    account_management_url: str = Field(default=ACCOUNT_MANAGEMENT_URL, min_length=1)
    client_id: str = Field(default=DEFAULT_CLIENT_ID, min_length=1)
    client_secret: str = Field(default=DEFAULT_CLIENT_SECRET, min_length=1)
    http_timeout_seconds: int = Field(
        default=DEFAULT_HTTP_TIMEOUT_SECONDS,
        ge=MIN_HTTP_TIMEOUT_SECONDS,
        le=MAX_HTTP_TIMEOUT_SECONDS,
    )
    refresh_margin_seconds: int = Field(default=TOKEN_REFRESH_MARGIN_SECONDS, ge=0)
    check_interval_seconds: float = Field(default=TOKEN_CHECK_INTERVAL_SECONDS, gt=0)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to JSON file.

        Creates parent directories if they don't exist, with owner-only
        permissions on both the directory and the file.

        Args:
            config_path: Path where the config JSON file should be saved.
        """
        ensure_secure_directory(config_path.parent)

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(self.model_dump(), f, indent=2)

        set_secure_permissions(config_path)

    @classmethod
    def load_from_file(cls, config_path: Path) -> "CloudAccountConfig":
        """Load configuration from JSON file.

        Args:
            config_path: Path to the config JSON file.

        Returns:
            CloudAccountConfig instance.

        Raises:
            ConfigurationError: If the file is unreadable, not JSON, or invalid.
        """
        try:
            return load_validated_json(
                config_path,
                cls,
                file_type="config",
                recovery_hint="Fix or delete the file to fall back to defaults.",
            )
        except ValueError as e:
            raise ConfigurationError(str(e)) from e


def get_config_path() -> Path:
    """Default config file location."""
    return get_app_dir() / CONFIG_FILE


def load_config(config_path: Path | None = None) -> CloudAccountConfig:
    """Load configuration, returning defaults when the file does not exist.

    Args:
        config_path: Explicit config file. None uses get_config_path().

    Returns:
        CloudAccountConfig instance.

    Raises:
        ConfigurationError: If the file exists but is invalid.
    """
    path = config_path or get_config_path()
    if not path.exists():
        return CloudAccountConfig()
    return CloudAccountConfig.load_from_file(path)
