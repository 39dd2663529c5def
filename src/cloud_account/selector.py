"""IBM Cloud account selection.

Lists every account the logged-in identity can act in (following the
account management API's next_url pagination), auto-selects when there is
exactly one, otherwise asks the host's chooser. The chosen account is bound
to the session through TokenLifecycle.bind_account(), which persists it and
re-scopes the access token.
"""

from __future__ import annotations

__all__ = ["AccountSelector"]

from typing import TYPE_CHECKING

from cloud_account.exceptions import ProviderError
from cloud_account.telemetry.system_logger import get_system_logger
from cloud_account.utils.callbacks import maybe_await

if TYPE_CHECKING:
    from cloud_account.identity.client import IdentityClient
    from cloud_account.identity.models import Account
    from cloud_account.lifecycle import AccountChooser, TokenLifecycle

_logger = get_system_logger()


class AccountSelector:
    """Fetches the account list and applies the user's choice."""

    def __init__(self, lifecycle: "TokenLifecycle", client: "IdentityClient") -> None:
        self._lifecycle = lifecycle
        self._client = client

    async def list_accounts(self, access_token: str) -> list["Account"]:
        """Fetch all accounts, following next_url until it is absent.

        Args:
            access_token: Token valid for listing (no account scope needed).

        Returns:
            Accounts in page order.

        Raises:
            ProviderError: If a page links back to a page already fetched.
        """
        accounts: list[Account] = []
        url: str | None = self._client.accounts_url
        visited: set[str] = set()
        while url:
            if url in visited:
                raise ProviderError(f"Account listing repeated page {url}")
            visited.add(url)
            page = await self._client.list_accounts_page(url, access_token)
            accounts.extend(page.accounts)
            url = page.next_url

        _logger.debug({"event": "accounts_listed", "count": len(accounts), "pages": len(visited)})
        return accounts

    async def select_account(self, chooser: "AccountChooser") -> bool:
        """Select an account, asking the chooser only when there is a choice.

        Args:
            chooser: Called with the account list. Returns an account or None.

        Returns:
            True if an account was bound, False if the chooser cancelled.
        """
        access_token = await self._lifecycle.get_access_token(account_required=False)
        accounts = await self.list_accounts(access_token)

        if len(accounts) == 1:
            selected: Account | None = accounts[0]
        else:
            selected = await maybe_await(chooser(accounts))
            if selected is None:
                _logger.info(
                    {
                        "event": "account_selection_cancelled",
                        "message": "Account selection cancelled",
                        "available": len(accounts),
                    }
                )
                return False

        await self._lifecycle.bind_account(selected)
        return True
