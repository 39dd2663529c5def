"""Shared fixtures for cloud-account tests.

FakeIBMCloud serves the IAM discovery document, the token endpoint and the
account listing through httpx.MockTransport, so the real IdentityClient and
TokenLifecycle run end to end without network access.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, AsyncIterator
from urllib.parse import parse_qsl

import httpx
import pytest
import pytest_asyncio

from cloud_account.account_store import AccountRecordStore
from cloud_account.config import CloudAccountConfig, StorageConfig
from cloud_account.identity.client import IdentityClient
from cloud_account.lifecycle import TokenLifecycle
from cloud_account.security.secret_store import SecretStore
from cloud_account.state_store import MemoryStateStore

IAM_URL = "https://iam.test"
ACCOUNTS_URL = "https://accounts.test"
TOKEN_ENDPOINT = f"{IAM_URL}/identity/token"
PASSCODE_ENDPOINT = f"{IAM_URL}/identity/passcode"


class InMemorySecretStore(SecretStore):
    """Secret store backed by a dict keyed by (service, key)."""

    def __init__(self) -> None:
        self.secrets: dict[tuple[str, str], str] = {}

    async def get_secret(self, service: str, key: str) -> str | None:
        return self.secrets.get((service, key))

    async def set_secret(self, service: str, key: str, value: str) -> None:
        self.secrets[(service, key)] = value

    async def delete_secret(self, service: str, key: str) -> None:
        self.secrets.pop((service, key), None)


def account_resource(guid: str, name: str = "", email: str = "") -> dict[str, Any]:
    """Build an account management resource."""
    return {
        "metadata": {"guid": guid, "url": f"/coe/v2/accounts/{guid}"},
        "entity": {"name": name, "owner_userid": email, "type": "TRIAL"},
    }


class FakeIBMCloud:
    """In-process IBM Cloud IAM and account management.

    Attributes:
        token_requests: Form fields of every token exchange, in order.
        expires_in: Lifetime of issued access tokens.
        token_error: When set, (status, json body) returned by the token endpoint.
        refresh_error: Like token_error, but only for refresh_token grants.
        omit_refresh_token: Issue tokens without a refresh token.
        token_delay: Seconds the token endpoint takes to answer.
        account_pages: Path (with query) -> account listing body.
    """

    def __init__(self) -> None:
        self.token_requests: list[dict[str, str]] = []
        self.token_auth: list[str | None] = []
        self.account_requests: list[httpx.Request] = []
        self.expires_in = 3600
        self.token_error: tuple[int, Any] | None = None
        self.refresh_error: tuple[int, Any] | None = None
        self.omit_refresh_token = False
        self.token_delay = 0.0
        self.account_pages: dict[str, dict[str, Any]] = {
            "/coe/v2/accounts": {"resources": [account_resource("acc-1", "Acme", "owner@acme.test")]},
        }

    @property
    def refresh_requests(self) -> list[dict[str, str]]:
        return [form for form in self.token_requests if form.get("grant_type") == "refresh_token"]

    def set_accounts(self, *pages: list[dict[str, Any]]) -> None:
        """Serve the given pages linked by relative next_url pointers."""
        self.account_pages = {}
        for index, resources in enumerate(pages):
            path = "/coe/v2/accounts" if index == 0 else f"/coe/v2/accounts?next_docid=page{index}"
            body: dict[str, Any] = {"resources": resources}
            if index + 1 < len(pages):
                body["next_url"] = f"/coe/v2/accounts?next_docid=page{index + 1}"
            self.account_pages[path] = body

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/identity/.well-known/openid-configuration":
            return httpx.Response(
                200,
                json={
                    "issuer": f"{IAM_URL}/identity",
                    "token_endpoint": TOKEN_ENDPOINT,
                    "passcode_endpoint": PASSCODE_ENDPOINT,
                },
            )

        if request.url.path == "/identity/token":
            return await self._token(request)

        if request.url.host == "accounts.test":
            self.account_requests.append(request)
            body = self.account_pages.get(request.url.raw_path.decode())
            if body is None:
                return httpx.Response(404, json={"message": "not found"})
            return httpx.Response(200, json=body)

        return httpx.Response(404)

    async def _token(self, request: httpx.Request) -> httpx.Response:
        form = dict(parse_qsl(request.content.decode()))
        self.token_requests.append(form)
        self.token_auth.append(request.headers.get("Authorization"))

        if self.token_delay:
            await asyncio.sleep(self.token_delay)

        if self.refresh_error is not None and form.get("grant_type") == "refresh_token":
            status, body = self.refresh_error
            return httpx.Response(status, json=body)
        if self.token_error is not None:
            status, body = self.token_error
            return httpx.Response(status, json=body)

        n = len(self.token_requests)
        body = {
            "access_token": f"access-{n}",
            "token_type": "Bearer",
            "expires_in": self.expires_in,
        }
        if not self.omit_refresh_token:
            body["refresh_token"] = f"refresh-{n}"
        return httpx.Response(200, json=body)


@pytest.fixture
def config(tmp_path: Path) -> CloudAccountConfig:
    """Config pointing at the fake IBM Cloud with storage under tmp_path."""
    return CloudAccountConfig(
        iam_url=IAM_URL,
        account_management_url=ACCOUNTS_URL,
        storage=StorageConfig(secret_backend="file", store_dir=str(tmp_path)),
    )


@pytest.fixture
def fake_cloud() -> FakeIBMCloud:
    return FakeIBMCloud()


@pytest_asyncio.fixture
async def http_client(fake_cloud: FakeIBMCloud) -> AsyncIterator[httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_cloud.handler))
    yield client
    await client.aclose()


@pytest.fixture
def identity_client(config: CloudAccountConfig, http_client: httpx.AsyncClient) -> IdentityClient:
    return IdentityClient(config, http_client=http_client)


@pytest.fixture
def secret_store() -> InMemorySecretStore:
    return InMemorySecretStore()


@pytest.fixture
def state_store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def record_store(state_store: MemoryStateStore, secret_store: InMemorySecretStore) -> AccountRecordStore:
    return AccountRecordStore(state_store, secret_store)


@pytest.fixture
def lifecycle(
    record_store: AccountRecordStore,
    identity_client: IdentityClient,
    config: CloudAccountConfig,
) -> TokenLifecycle:
    """TokenLifecycle wired to in-memory stores and the fake IBM Cloud."""
    return TokenLifecycle(record_store, identity_client, config)
