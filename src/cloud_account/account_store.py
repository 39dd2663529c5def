"""Persistence of the IBM Cloud session fields.

AccountRecordStore is the single place that knows where each session field
lives:
- account id and email: host StateStore (non-secret)
- refresh token: SecretStore (keychain or encrypted file)

The access token is never persisted; TokenLifecycle keeps it in memory.
"""

from __future__ import annotations

__all__ = ["AccountRecordStore"]

from cloud_account.constants import ACCOUNT_KEY, EMAIL_KEY, REFRESH_TOKEN_KEY, SECRET_SERVICE
from cloud_account.security.secret_store import SecretStore
from cloud_account.state_store import StateStore


class AccountRecordStore:
    """Storage for authentication information for IBM Cloud."""

    def __init__(self, state_store: StateStore, secret_store: SecretStore) -> None:
        """Initialize the store.

        Args:
            state_store: Host key-value store for account id and email.
            secret_store: Secret backend for the refresh token.
        """
        self._state = state_store
        self._secrets = secret_store

    async def get_account(self) -> str | None:
        return await self._state.get(ACCOUNT_KEY)

    async def set_account(self, account: str) -> None:
        await self._state.set(ACCOUNT_KEY, account)

    async def delete_account(self) -> None:
        await self._state.delete(ACCOUNT_KEY)

    async def get_email(self) -> str | None:
        return await self._state.get(EMAIL_KEY)

    async def set_email(self, email: str) -> None:
        await self._state.set(EMAIL_KEY, email)

    async def delete_email(self) -> None:
        await self._state.delete(EMAIL_KEY)

    async def get_refresh_token(self) -> str | None:
        return await self._secrets.get_secret(SECRET_SERVICE, REFRESH_TOKEN_KEY)

    async def set_refresh_token(self, refresh_token: str) -> None:
        await self._secrets.set_secret(SECRET_SERVICE, REFRESH_TOKEN_KEY, refresh_token)

    async def delete_refresh_token(self) -> None:
        await self._secrets.delete_secret(SECRET_SERVICE, REFRESH_TOKEN_KEY)
