"""Host key-value store for non-secret session fields.

The host application owns persistence of the selected account id and its
email. StateStore is the small interface cloud-account needs from it; two
implementations are provided:

- JsonFileStateStore: one JSON object on disk, replaced atomically
- MemoryStateStore: dict-backed, for hosts that do not persist state

Single-key operations are atomic; there are no cross-key transactions.
JsonFileStateStore raises StateStoreError when the file is corrupt.
"""

from __future__ import annotations

__all__ = [
    "JsonFileStateStore",
    "MemoryStateStore",
    "StateStore",
]

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path

from cloud_account.exceptions import StateStoreError
from cloud_account.utils.file_helpers import write_bytes_atomic


class StateStore(ABC):
    """Abstract async string key-value store."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value for key, or None if unset."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Set key to value."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key. Missing keys are not an error."""


class MemoryStateStore(StateStore):
    """In-process state store. Contents are lost when the process exits."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStateStore(StateStore):
    """State store persisted as a JSON object in a single file.

    Every write rewrites the whole file through a temp file and os.replace(),
    so a crash never leaves a half-written document. The file is created
    with owner-only permissions.
    """

    def __init__(self, path: Path) -> None:
        """Initialize the store.

        Args:
            path: JSON file location. Created on first write.
        """
        self._path = path
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, str]:
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StateStoreError(f"Failed to read state file {self._path}: {e}") from e

        try:
            data = json.loads(raw)
        except ValueError as e:
            raise StateStoreError(f"Invalid JSON in state file {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise StateStoreError(f"Invalid state file {self._path}: expected a JSON object")
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _write(self, data: dict[str, str]) -> None:
        try:
            write_bytes_atomic(self._path, json.dumps(data, indent=2).encode("utf-8"))
        except OSError as e:
            raise StateStoreError(f"Failed to write state file {self._path}: {e}") from e

    def _update(self, key: str, value: str | None) -> None:
        data = self._read()
        if value is None:
            if key not in data:
                return
            del data[key]
        else:
            data[key] = value
        self._write(data)

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return (await asyncio.to_thread(self._read)).get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._update, key, value)

    async def delete(self, key: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._update, key, None)
