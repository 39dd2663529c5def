"""HTTP client for IBM Cloud IAM and account management.

Performs the three outbound operations the token lifecycle needs:
1. discover()            GET  {iam}/identity/.well-known/openid-configuration
2. exchange()            POST {token_endpoint} (form, HTTP Basic client auth)
3. list_accounts_page()  GET  {account_management}/coe/v2/accounts (bearer auth)

Error mapping:
- Non-2xx responses raise ProviderError. IAM error bodies
  ({"errorCode": ..., "errorDetails"/"errorMessage": ...}) become the message,
  otherwise "IBM Cloud <endpoint> returned HTTP <status>".
- Network-level failures raise TransportError.

Timeouts are enforced by httpx (config.http_timeout_seconds).
"""

from __future__ import annotations

__all__ = ["IdentityClient"]

from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from cloud_account.constants import ACCOUNTS_PATH, OPENID_CONFIGURATION_PATH
from cloud_account.exceptions import ProviderError, TransportError
from cloud_account.identity.models import Account, AccountsPage, OpenIDConfiguration, TokenResponse

if TYPE_CHECKING:
    from cloud_account.config import CloudAccountConfig


def _provider_error(response: httpx.Response, endpoint_name: str) -> ProviderError:
    """Build a ProviderError from a non-2xx response."""
    body: Any = None
    try:
        body = response.json()
    except ValueError:
        pass

    if isinstance(body, dict) and body.get("errorCode"):
        code = str(body["errorCode"])
        detail = body.get("errorDetails") or body.get("errorMessage")
        return ProviderError(
            f"{code}: {detail}",
            code=code,
            detail=detail,
            status_code=response.status_code,
        )

    return ProviderError(
        f"IBM Cloud {endpoint_name} returned HTTP {response.status_code}",
        status_code=response.status_code,
    )


def _json_body(response: httpx.Response, endpoint_name: str) -> dict[str, Any]:
    """Decode a successful JSON object response."""
    try:
        data = response.json()
    except ValueError as e:
        raise ProviderError(
            f"IBM Cloud {endpoint_name} returned an invalid response: {e}",
            status_code=response.status_code,
        ) from e
    if not isinstance(data, dict):
        raise ProviderError(
            f"IBM Cloud {endpoint_name} returned an invalid response: expected a JSON object",
            status_code=response.status_code,
        )
    return data


class IdentityClient:
    """Async client for IBM Cloud IAM and account management.

    Usage:
        async with IdentityClient(config) as client:
            endpoints = await client.discover()
            tokens = await client.exchange(
                endpoints.token_endpoint,
                {"grant_type": "urn:ibm:params:oauth:grant-type:apikey", "apikey": key},
            )
    """

    def __init__(
        self,
        config: "CloudAccountConfig",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Application config (URLs, client credentials, timeout).
            http_client: Optional httpx client (for testing).
        """
        self._config = config
        self._client = http_client or httpx.AsyncClient(timeout=config.http_timeout_seconds)
        self._owns_client = http_client is None

        self._discovery_url = config.iam_url.rstrip("/") + OPENID_CONFIGURATION_PATH
        self._accounts_url = config.account_management_url.rstrip("/") + ACCOUNTS_PATH

    async def __aenter__(self) -> "IdentityClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    @property
    def accounts_url(self) -> str:
        """First page of the account listing."""
        return self._accounts_url

    async def discover(self) -> OpenIDConfiguration:
        """Fetch the IAM discovery document.

        Returns:
            OpenIDConfiguration with token and passcode endpoints.

        Raises:
            ProviderError: On non-2xx status or an unusable document.
            TransportError: On network failure.
        """
        endpoint_name = "IAM discovery endpoint"
        try:
            response = await self._client.get(self._discovery_url)
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error fetching IAM discovery document: {e}") from e

        if not response.is_success:
            raise _provider_error(response, endpoint_name)

        try:
            return OpenIDConfiguration.model_validate(_json_body(response, endpoint_name))
        except ValidationError as e:
            raise ProviderError(
                f"IBM Cloud {endpoint_name} returned an incomplete document: {e}",
                status_code=response.status_code,
            ) from e

    async def exchange(self, endpoint: str, form: dict[str, str]) -> TokenResponse:
        """Exchange a grant for tokens.

        Args:
            endpoint: Token endpoint from discover().
            form: Grant form fields (grant_type plus grant-specific fields).

        Returns:
            TokenResponse with access token, optional refresh token and expiry.

        Raises:
            ProviderError: On non-2xx status (IAM error body mapped when present).
            TransportError: On network failure.
        """
        endpoint_name = "IAM token endpoint"
        try:
            response = await self._client.post(
                endpoint,
                data=form,
                auth=(self._config.client_id, self._config.client_secret),
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error during token exchange: {e}") from e

        if not response.is_success:
            raise _provider_error(response, endpoint_name)

        data = _json_body(response, endpoint_name)
        try:
            return TokenResponse.from_response(data)
        except (ValidationError, TypeError, ValueError) as e:
            raise ProviderError(
                f"IBM Cloud {endpoint_name} returned an invalid token response: {e}",
                status_code=response.status_code,
            ) from e

    async def list_accounts_page(self, url: str, access_token: str) -> AccountsPage:
        """Fetch one page of the account listing.

        Args:
            url: Page URL (accounts_url for the first page, then next_url).
            access_token: Bearer token valid for listing.

        Returns:
            AccountsPage with mapped accounts and the absolute next page URL.

        Raises:
            ProviderError: On non-2xx status or malformed resources.
            TransportError: On network failure.
        """
        endpoint_name = "account management endpoint"
        try:
            response = await self._client.get(
                url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error listing accounts: {e}") from e

        if not response.is_success:
            raise _provider_error(response, endpoint_name)

        data = _json_body(response, endpoint_name)
        try:
            accounts = [Account.from_resource(resource) for resource in data.get("resources") or []]
        except (ValidationError, AttributeError) as e:
            raise ProviderError(
                f"IBM Cloud {endpoint_name} returned a malformed account: {e}",
                status_code=response.status_code,
            ) from e

        next_url = data.get("next_url")
        if next_url:
            # IBM returns next_url relative to the API host
            next_url = str(httpx.URL(url).join(next_url))

        return AccountsPage(accounts=accounts, next_url=next_url or None)
