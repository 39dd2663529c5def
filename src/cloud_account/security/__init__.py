"""Secure storage for cloud-account credentials.

This module provides:
- SecretStore interface (get/set/delete a secret by service and key)
- OS keychain backend with an encrypted-file fallback
"""

from cloud_account.security.secret_store import (
    EncryptedFileSecretStore,
    KeychainSecretStore,
    SecretStore,
    create_secret_store,
    get_secret_store_info,
)

__all__ = [
    "EncryptedFileSecretStore",
    "KeychainSecretStore",
    "SecretStore",
    "create_secret_store",
    "get_secret_store_info",
]
