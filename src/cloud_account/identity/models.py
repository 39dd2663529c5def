"""Response models for IBM Cloud IAM and account management."""

from __future__ import annotations

__all__ = [
    "Account",
    "AccountsPage",
    "OpenIDConfiguration",
    "TokenResponse",
]

import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OpenIDConfiguration(BaseModel):
    """Subset of the IAM discovery document that cloud-account uses."""

    model_config = ConfigDict(extra="ignore")

    token_endpoint: str = Field(min_length=1)
    passcode_endpoint: str = Field(min_length=1)


class TokenResponse(BaseModel):
    """Result of a token exchange.

    Attributes:
        access_token: Short-lived bearer token.
        refresh_token: Long-lived refresh credential (may be rotated, may be absent).
        expires_at: Epoch seconds when access_token expires.
    """

    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expires_at: int

    @property
    def seconds_until_expiry(self) -> int:
        """Seconds until access token expires (negative if expired)."""
        return self.expires_at - int(time.time())

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "TokenResponse":
        """Parse an IAM token response.

        IAM returns both an absolute "expiration" (epoch seconds) and a
        relative "expires_in"; the absolute value wins when present.
        """
        expiration = data.get("expiration")
        if expiration is None:
            expiration = int(time.time()) + int(data.get("expires_in", 0))
        return cls(
            access_token=data.get("access_token", ""),
            refresh_token=data.get("refresh_token") or None,
            expires_at=int(expiration),
        )


class Account(BaseModel):
    """An IBM Cloud account (tenant) the user can act in."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str = ""
    email: str = ""

    @classmethod
    def from_resource(cls, resource: dict[str, Any]) -> "Account":
        """Map an account management resource to an Account.

        Resource shape: {"metadata": {"guid": ...},
                         "entity": {"name": ..., "owner_userid": ...}}
        """
        metadata = resource.get("metadata") or {}
        entity = resource.get("entity") or {}
        return cls(
            id=metadata.get("guid", ""),
            name=entity.get("name") or "",
            email=entity.get("owner_userid") or "",
        )


class AccountsPage(BaseModel):
    """One page of the account listing."""

    accounts: list[Account]
    next_url: str | None = None
