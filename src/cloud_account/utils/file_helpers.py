"""Shared file utilities for cloud-account.

Provides common utilities used by config, state and secret storage:
- get_app_dir: OS-appropriate application directory
- set_secure_permissions: Owner-only file/directory permissions
- ensure_secure_directory: Create a directory with owner-only permissions
- write_bytes_atomic: Replace a file's content without partial writes
- load_validated_json: JSON file + Pydantic validation with readable errors
"""

from __future__ import annotations

import json
import os
import sys
import tempfile
from pathlib import Path
from typing import TypeVar

import click
from pydantic import BaseModel, ValidationError

from cloud_account.constants import APP_NAME

# Type variable for Pydantic models
T = TypeVar("T", bound=BaseModel)

__all__ = [
    "ensure_secure_directory",
    "get_app_dir",
    "load_validated_json",
    "set_secure_permissions",
    "write_bytes_atomic",
]


def get_app_dir() -> Path:
    """Get the OS-appropriate application directory.

    Uses click.get_app_dir() which returns:
    - macOS: ~/Library/Application Support/cloud-account
    - Linux: ~/.config/cloud-account (XDG compliant)
    - Windows: C:\\Users\\<user>\\AppData\\Roaming\\cloud-account

    Returns:
        Path to the application directory.
    """
    return Path(click.get_app_dir(APP_NAME))


def set_secure_permissions(path: Path, *, is_directory: bool = False) -> None:
    """Set secure permissions on file or directory.

    Sets permissions to restrict access to owner only:
    - Directory: 0o700 (rwx------)
    - File: 0o600 (rw-------)

    Does nothing on Windows. Silently ignores permission errors
    (some systems don't allow permission changes).

    Args:
        path: Path to file or directory.
        is_directory: If True, use directory permissions (0o700).
    """
    if sys.platform == "win32":
        return

    try:
        mode = 0o700 if is_directory else 0o600
        path.chmod(mode)
    except OSError:
        pass  # Permission changes might fail on some systems


def ensure_secure_directory(directory: Path) -> None:
    """Create directory (and parents) with owner-only permissions."""
    directory.mkdir(parents=True, exist_ok=True)
    set_secure_permissions(directory, is_directory=True)


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """Write data to path via a temp file in the same directory.

    Readers see either the old or the new content, never a partial write.
    The resulting file has owner-only permissions.

    Args:
        path: Destination file.
        data: Bytes to write.

    Raises:
        OSError: If the directory or file cannot be written.
    """
    ensure_secure_directory(path.parent)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        set_secure_permissions(tmp_path)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def load_validated_json(
    file_path: Path,
    model_class: type[T],
    file_type: str = "file",
    recovery_hint: str | None = None,
) -> T:
    """Load JSON file and validate against Pydantic model.

    Args:
        file_path: Path to JSON file.
        model_class: Pydantic model class to validate against.
        file_type: Description for error messages (e.g., "config").
        recovery_hint: Optional hint appended to validation errors.

    Returns:
        Validated Pydantic model instance.

    Raises:
        ValueError: If JSON is invalid or validation fails.
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {file_type} file {file_path}: {e}") from e
    except OSError as e:
        raise ValueError(f"Could not read {file_type} file {file_path}: {e}") from e

    try:
        return model_class.model_validate(data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")

        hint = f"\n\n{recovery_hint}" if recovery_hint else ""
        raise ValueError(
            f"Invalid {file_type} configuration in {file_path}:\n" + "\n".join(errors) + hint
        ) from e
