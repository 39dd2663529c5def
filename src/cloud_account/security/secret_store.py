"""Storage for named secrets, addressed by (service, key).

cloud-account keeps exactly one secret, the IAM refresh token, but the
interface is the generic one a host keychain offers. Backends:

- KeychainSecretStore: the OS keychain through the keyring library
  (macOS Keychain, Windows Credential Locker, Linux Secret Service)
- EncryptedFileSecretStore: one Fernet-encrypted JSON document, for hosts
  where no keychain is reachable (containers, headless Linux, cloud IDEs)

create_secret_store() picks the backend. With secret_backend "auto" it
round-trips a throwaway value under the secret service and falls back to
the encrypted file when that fails. Deleting a missing secret succeeds
silently on every backend.
"""

from __future__ import annotations

__all__ = [
    "KEYCHAIN_PROBE_KEY",
    "EncryptedFileSecretStore",
    "KeychainSecretStore",
    "SecretStore",
    "create_secret_store",
    "get_secret_store_info",
    "read_machine_id",
]

import asyncio
import base64
import hashlib
import json
import platform
import re
import secrets
import socket
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from cloud_account.constants import APP_NAME, ENCRYPTED_SECRETS_FILE, SECRET_SERVICE
from cloud_account.exceptions import SecretStoreError
from cloud_account.telemetry.system_logger import get_system_logger
from cloud_account.utils.file_helpers import write_bytes_atomic

if TYPE_CHECKING:
    from cryptography.fernet import Fernet

    from cloud_account.config import CloudAccountConfig

# Key under SECRET_SERVICE used only by the availability probe
KEYCHAIN_PROBE_KEY = "Availability Probe"

_LINUX_MACHINE_ID_FILES = (Path("/etc/machine-id"), Path("/var/lib/dbus/machine-id"))
_IOREG_UUID = re.compile(r'"IOPlatformUUID"\s*=\s*"([^"]+)"')




class SecretStore(ABC):
    """Abstract base class for secret storage backends."""

    @abstractmethod
    async def get_secret(self, service: str, key: str) -> str | None:
        """Load a secret.

        Returns:
            The secret, or None if nothing is stored under (service, key).

        Raises:
            SecretStoreError: If the backend cannot be read.
        """

    @abstractmethod
    async def set_secret(self, service: str, key: str, value: str) -> None:
        """Store a secret, replacing any previous value.

        Raises:
            SecretStoreError: If the backend cannot be written.
        """

    @abstractmethod
    async def delete_secret(self, service: str, key: str) -> None:
        """Delete a secret. Missing secrets are not an error.

        Raises:
            SecretStoreError: If the backend cannot be written.
        """


class KeychainSecretStore(SecretStore):
    """Secret storage using OS keychain via keyring library.

    keyring is synchronous, so every call runs in a worker thread to keep
    the event loop free.
    """

    async def get_secret(self, service: str, key: str) -> str | None:
        import keyring

        try:
            return await asyncio.to_thread(keyring.get_password, service, key)
        except Exception as e:
            raise SecretStoreError(f"Failed to access keychain: {e}") from e

    async def set_secret(self, service: str, key: str, value: str) -> None:
        import keyring

        try:
            await asyncio.to_thread(keyring.set_password, service, key, value)
        except Exception as e:
            raise SecretStoreError(f"Failed to save secret to keychain: {e}") from e

    async def delete_secret(self, service: str, key: str) -> None:
        import keyring
        from keyring.errors import PasswordDeleteError

        try:
            await asyncio.to_thread(keyring.delete_password, service, key)
        except PasswordDeleteError:
            # Secret doesn't exist, that's fine
            pass
        except Exception as e:
            raise SecretStoreError(f"Failed to delete secret from keychain: {e}") from e


def _linux_machine_id() -> str | None:
    for path in _LINUX_MACHINE_ID_FILES:
        try:
            value = path.read_text().strip()
        except OSError:
            continue
        if value:
            return value
    return None


def _macos_platform_uuid() -> str | None:
    try:
        result = subprocess.run(
            ["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (subprocess.SubprocessError, OSError):
        return None
    match = _IOREG_UUID.search(result.stdout)
    return match.group(1) if match else None


def _windows_machine_guid() -> str | None:
    try:
        import winreg

        with winreg.OpenKey(
            winreg.HKEY_LOCAL_MACHINE,
            r"SOFTWARE\Microsoft\Cryptography",
            0,
            winreg.KEY_READ | winreg.KEY_WOW64_64KEY,
        ) as key:
            return str(winreg.QueryValueEx(key, "MachineGuid")[0])
    except (ImportError, OSError):
        return None


_MACHINE_ID_READERS: dict[str, Callable[[], str | None]] = {
    "Linux": _linux_machine_id,
    "Darwin": _macos_platform_uuid,
    "Windows": _windows_machine_guid,
}


def read_machine_id() -> str:
    """Return a stable identifier for this machine.

    Uses the OS machine id where the platform has one and the hostname
    otherwise.
    """
    reader = _MACHINE_ID_READERS.get(platform.system())
    return (reader() if reader else None) or socket.gethostname()


class EncryptedFileSecretStore(SecretStore):
    """Secrets in one Fernet-encrypted JSON document {service: {key: value}}.

    The Fernet key is derived with PBKDF2 from the machine id and hostname,
    so a copied file cannot be decrypted elsewhere. Weaker than a keychain;
    used when none is reachable.
    """

    def __init__(self, store_dir: Path, machine_id: str | None = None) -> None:
        """Initialize encrypted file storage.

        Args:
            store_dir: Per-user directory holding the encrypted file.
            machine_id: Key material override. None reads the OS machine id.
        """
        self._storage_path = store_dir / ENCRYPTED_SECRETS_FILE
        self._machine_id = machine_id
        self._key: bytes | None = None
        self._lock = asyncio.Lock()

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    def _derive_key(self) -> bytes:
        if self._key is None:
            machine_id = self._machine_id or read_machine_id()
            material = f"{machine_id}:{socket.gethostname()}:{SECRET_SERVICE}".encode()
            # Fixed salt: the key must come out the same on every run
            raw = hashlib.pbkdf2_hmac("sha256", material, f"{APP_NAME}-v1".encode(), 100_000, dklen=32)
            self._key = base64.urlsafe_b64encode(raw)
        return self._key

    def _get_fernet(self) -> "Fernet":
        from cryptography.fernet import Fernet

        return Fernet(self._derive_key())

    def _read_all(self) -> dict[str, dict[str, str]]:
        if not self._storage_path.exists():
            return {}

        try:
            decrypted = self._get_fernet().decrypt(self._storage_path.read_bytes())
        except Exception as e:
            raise SecretStoreError(
                f"Failed to decrypt secrets file (may be corrupted or key changed): {e}"
            ) from e

        try:
            data = json.loads(decrypted.decode())
        except ValueError as e:
            raise SecretStoreError(f"Failed to parse secrets file (may be corrupted): {e}") from e

        if not isinstance(data, dict):
            raise SecretStoreError("Failed to parse secrets file: expected a JSON object")
        return data

    def _write_all(self, data: dict[str, dict[str, str]]) -> None:
        try:
            if not data:
                self._storage_path.unlink(missing_ok=True)
                return
            encrypted = self._get_fernet().encrypt(json.dumps(data).encode())
            write_bytes_atomic(self._storage_path, encrypted)
        except Exception as e:
            raise SecretStoreError(f"Failed to write secrets file: {e}") from e

    def _get(self, service: str, key: str) -> str | None:
        return self._read_all().get(service, {}).get(key)

    def _set(self, service: str, key: str, value: str) -> None:
        data = self._read_all()
        data.setdefault(service, {})[key] = value
        self._write_all(data)

    def _delete(self, service: str, key: str) -> None:
        data = self._read_all()
        secrets = data.get(service)
        if secrets is None or key not in secrets:
            return
        del secrets[key]
        if not secrets:
            del data[service]
        self._write_all(data)

    async def get_secret(self, service: str, key: str) -> str | None:
        async with self._lock:
            return await asyncio.to_thread(self._get, service, key)

    async def set_secret(self, service: str, key: str, value: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._set, service, key, value)

    async def delete_secret(self, service: str, key: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._delete, service, key)


def _keychain_usable(service: str = SECRET_SERVICE) -> bool:
    """Round-trip a random value under service in the OS keychain.

    Once written, the probe key is deleted again. Any failure, including
    keyring falling back to its FailKeyring backend, rules the keychain out.
    """
    import keyring
    from keyring.backends.fail import Keyring as FailKeyring

    backend = keyring.get_keyring()
    if isinstance(backend, FailKeyring):
        reason = "no keyring backend"
    else:
        probe = secrets.token_hex(8)
        try:
            keyring.set_password(service, KEYCHAIN_PROBE_KEY, probe)
            try:
                if keyring.get_password(service, KEYCHAIN_PROBE_KEY) == probe:
                    return True
            finally:
                keyring.delete_password(service, KEYCHAIN_PROBE_KEY)
            reason = "probe value did not read back"
        except Exception as e:
            # DBus and locked-collection failures arrive as arbitrary types
            reason = f"{type(e).__name__}: {e}"

    get_system_logger().debug(
        {
            "event": "keychain_unavailable",
            "message": f"OS keychain not usable ({reason})",
            "keyring_backend": type(backend).__name__,
            "reason": reason,
        }
    )
    return False


def _keychain_selected(config: "CloudAccountConfig") -> bool:
    backend = config.storage.secret_backend
    if backend == "auto":
        return _keychain_usable()
    return backend == "keychain"


def create_secret_store(config: "CloudAccountConfig") -> SecretStore:
    """Create the secret store named by config.storage.secret_backend.

    "auto" uses the keychain when the availability probe passes and the
    encrypted file otherwise.

    Args:
        config: Application config (storage.secret_backend, storage.store_dir).

    Returns:
        SecretStore instance (KeychainSecretStore or EncryptedFileSecretStore).
    """
    if _keychain_selected(config):
        store: SecretStore = KeychainSecretStore()
    else:
        store = EncryptedFileSecretStore(config.storage.resolve_store_dir())

    get_system_logger().info(
        {
            "event": "secret_store_selected",
            "message": f"Using {type(store).__name__} for secrets",
            "backend": type(store).__name__,
            "configured_backend": config.storage.secret_backend,
        }
    )
    return store


def get_secret_store_info(config: "CloudAccountConfig") -> dict[str, str]:
    """Get information about the active secret storage backend.

    Useful for debugging and status display.

    Returns:
        Dict with 'backend' and either 'keyring_backend' or 'location'.
    """
    if _keychain_selected(config):
        import keyring

        return {
            "backend": "keychain",
            "keyring_backend": type(keyring.get_keyring()).__name__,
        }
    return {
        "backend": "encrypted_file",
        "location": str(config.storage.resolve_store_dir() / ENCRYPTED_SECRETS_FILE),
    }
