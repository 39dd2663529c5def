"""Authentication state and access-token lifecycle for IBM Cloud.

TokenLifecycle is the session state machine:

    LOGGED_OUT --login_with_*--> LOGGED_IN_NO_ACCOUNT
    LOGGED_IN_NO_ACCOUNT --select_account--> LOGGED_IN_WITH_ACCOUNT
    LOGGED_IN_WITH_ACCOUNT --select_account--> LOGGED_IN_WITH_ACCOUNT
    any --logout--> LOGGED_OUT
    LOGGED_IN_* --refresh failure--> LOGGED_OUT (NotLoggedInError to the caller)

It owns the in-memory access token and its expiry, refreshes it when it is
within the refresh margin of expiring, and runs a background monitor that
refreshes proactively while logged in.

Every state-mutating step (login exchange, refresh, account binding, logout)
runs under one asyncio.Lock, so concurrent callers that observe a stale token
trigger a single refresh exchange. Interactive callbacks (passcode entry,
account choice) run outside the lock.

Usage:
    config = load_config()
    async with TokenLifecycle.from_config(config) as session:
        await session.login_with_api_key(api_key)
        await session.select_account(choose_account)
        token = await session.get_access_token()
"""

from __future__ import annotations

__all__ = [
    "AccountChooser",
    "PasscodeProvider",
    "SessionState",
    "TokenLifecycle",
]

import asyncio
import time
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Sequence

import httpx

from cloud_account.account_store import AccountRecordStore
from cloud_account.config import CloudAccountConfig
from cloud_account.constants import (
    GRANT_TYPE_API_KEY,
    GRANT_TYPE_PASSCODE,
    GRANT_TYPE_PASSWORD,
    GRANT_TYPE_REFRESH_TOKEN,
)
from cloud_account.events import ChangeListener, ChangeNotifier, SessionChanged
from cloud_account.exceptions import NoAccountSelectedError, NotLoggedInError, ProviderError
from cloud_account.identity.client import IdentityClient
from cloud_account.selector import AccountSelector
from cloud_account.telemetry.system_logger import get_system_logger
from cloud_account.utils.callbacks import maybe_await

if TYPE_CHECKING:
    from cloud_account.identity.models import Account
    from cloud_account.security.secret_store import SecretStore
    from cloud_account.state_store import StateStore

PasscodeProvider = Callable[[str], "Awaitable[str | None] | str | None"]
AccountChooser = Callable[[Sequence["Account"]], "Awaitable[Account | None] | Account | None"]

_logger = get_system_logger()


class SessionState(str, Enum):
    """Observable session state."""

    LOGGED_OUT = "logged_out"
    LOGGED_IN_NO_ACCOUNT = "logged_in_no_account"
    LOGGED_IN_WITH_ACCOUNT = "logged_in_with_account"


class TokenLifecycle:
    """Login, refresh, account selection and logout for one IBM Cloud session.

    The refresh token lives in the secret store, account id and email in the
    host state store, the access token only in memory. Presence of the refresh
    token defines "logged in"; every access path checks it first.
    """

    def __init__(
        self,
        store: AccountRecordStore,
        client: IdentityClient,
        config: CloudAccountConfig | None = None,
        notifier: ChangeNotifier | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            store: Persistence for refresh token, account id and email.
            client: IBM Cloud IAM and account management client.
            config: Timing settings (refresh margin, check interval).
            notifier: Change notifier (a new one is created if omitted).
        """
        self._store = store
        self._client = client
        self._config = config or CloudAccountConfig()
        self._notifier = notifier or ChangeNotifier()
        self._selector = AccountSelector(self, client)

        self._access_token: str | None = None
        self._expires_at: int = 0

        self._lock = asyncio.Lock()
        self._monitor_task: asyncio.Task[None] | None = None
        self._owns_client = False

    @classmethod
    def from_config(
        cls,
        config: CloudAccountConfig,
        *,
        state_store: "StateStore | None" = None,
        secret_store: "SecretStore | None" = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "TokenLifecycle":
        """Build a session with the configured storage backends.

        Args:
            config: Application config.
            state_store: Host state store. Defaults to the JSON state file.
            secret_store: Secret backend. Defaults to keychain / encrypted file.
            http_client: Optional httpx client (for testing).

        Returns:
            TokenLifecycle that owns its IdentityClient.
        """
        from cloud_account.security.secret_store import create_secret_store
        from cloud_account.state_store import JsonFileStateStore

        if state_store is None:
            state_store = JsonFileStateStore(config.storage.resolve_state_path())
        if secret_store is None:
            secret_store = create_secret_store(config)

        lifecycle = cls(
            AccountRecordStore(state_store, secret_store),
            IdentityClient(config, http_client=http_client),
            config,
        )
        lifecycle._owns_client = True
        return lifecycle

    async def __aenter__(self) -> "TokenLifecycle":
        self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop the monitor and close the identity client if we own it."""
        await self.stop()
        if self._owns_client:
            await self._client.aclose()

    # =========================================================================
    # Change notifications
    # =========================================================================

    @property
    def notifier(self) -> ChangeNotifier:
        return self._notifier

    def add_listener(self, listener: ChangeListener) -> ChangeListener:
        """Register a "changed" listener (sync or async callable)."""
        return self._notifier.add_listener(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        self._notifier.remove_listener(listener)

    def subscribe(self) -> asyncio.Queue[SessionChanged]:
        """Subscribe to "changed" events through a queue."""
        return self._notifier.subscribe()

    def unsubscribe(self, queue: asyncio.Queue[SessionChanged]) -> None:
        self._notifier.unsubscribe(queue)

    # =========================================================================
    # Login / logout
    # =========================================================================

    async def login_with_password(self, username: str, password: str) -> bool:
        """Log in to IBM Cloud using a username and password.

        Returns:
            True on success.

        Raises:
            ProviderError: IAM rejected the credentials.
            TransportError: IAM could not be reached.
        """
        try:
            await self._login_common(
                {"grant_type": GRANT_TYPE_PASSWORD, "username": username, "password": password},
                method="password",
            )
            return True
        finally:
            await self._notifier.notify("login")

    async def login_with_api_key(self, api_key: str) -> bool:
        """Log in to IBM Cloud using an API key.

        Returns:
            True on success.

        Raises:
            ProviderError: IAM rejected the API key.
            TransportError: IAM could not be reached.
        """
        try:
            await self._login_common(
                {"grant_type": GRANT_TYPE_API_KEY, "apikey": api_key},
                method="api_key",
            )
            return True
        finally:
            await self._notifier.notify("login")

    async def login_with_sso(self, passcode_provider: PasscodeProvider) -> bool:
        """Log in to IBM Cloud using Single Sign On (SSO).

        Args:
            passcode_provider: Called with the passcode endpoint URL (to open
                in a web browser). Returns the one-time passcode, or None to
                cancel. May be sync or async.

        Returns:
            True on success, False if the passcode provider cancelled
            (session state is left untouched).

        Raises:
            ProviderError: IAM rejected the passcode.
            TransportError: IAM could not be reached.
        """
        try:
            endpoints = await self._client.discover()
            passcode = await maybe_await(passcode_provider(endpoints.passcode_endpoint))
            if not passcode:
                _logger.info({"event": "login_cancelled", "message": "SSO login cancelled", "method": "sso"})
                return False
            await self._login_common(
                {"grant_type": GRANT_TYPE_PASSCODE, "passcode": passcode},
                method="sso",
                token_endpoint=endpoints.token_endpoint,
            )
            return True
        finally:
            await self._notifier.notify("login")

    async def _login_common(
        self,
        form: dict[str, str],
        *,
        method: str,
        token_endpoint: str | None = None,
    ) -> None:
        """Exchange a primary grant and persist the new session.

        A primary login always forgets the previously selected account and
        email: switching credentials invalidates the prior tenant selection.
        """
        async with self._lock:
            try:
                if token_endpoint is None:
                    token_endpoint = (await self._client.discover()).token_endpoint
                tokens = await self._client.exchange(token_endpoint, form)
                if not tokens.refresh_token:
                    raise ProviderError("IBM Cloud IAM token endpoint did not return a refresh token")

                await self._store.delete_account()
                await self._store.delete_email()
                await self._store.set_refresh_token(tokens.refresh_token)
            except Exception as e:
                _logger.warning(
                    {
                        "event": "login_failed",
                        "message": f"Login failed: {e}",
                        "method": method,
                        "error_type": type(e).__name__,
                    }
                )
                raise

            self._access_token = tokens.access_token
            self._expires_at = tokens.expires_at

        _logger.info(
            {
                "event": "login_succeeded",
                "message": "Logged into IBM Cloud",
                "method": method,
                "expires_at": tokens.expires_at,
            }
        )

    async def logout(self) -> None:
        """Log out from IBM Cloud.

        Unconditional: clears the refresh token, account id, email and the
        in-memory access token. Never raises for storage failures; every
        delete is attempted. Emits changed even if already logged out.
        """
        try:
            async with self._lock:
                await self._clear_session()
        finally:
            await self._notifier.notify("logout")

    async def _clear_session(self) -> None:
        """Forget every session field. Caller must hold the lock."""
        self._access_token = None
        self._expires_at = 0

        # Refresh token first: once it is gone the session is logged out,
        # whatever happens to the remaining deletes.
        deletes = (
            ("refresh_token", self._store.delete_refresh_token),
            ("account", self._store.delete_account),
            ("email", self._store.delete_email),
        )
        for field_name, delete in deletes:
            try:
                await delete()
            except Exception as e:
                _logger.error(
                    {
                        "event": "logout_delete_failed",
                        "message": f"Failed to delete {field_name} during logout: {e}",
                        "field": field_name,
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    }
                )

    # =========================================================================
    # State queries
    # =========================================================================

    async def is_logged_in(self) -> bool:
        """True if a refresh token is stored."""
        return bool(await self._store.get_refresh_token())

    async def is_account_selected(self) -> bool:
        """True if logged in with both account id and email stored.

        A half-written pair (crash between the two writes) counts as not
        selected; selecting again repairs it.
        """
        if not await self.is_logged_in():
            return False
        account = await self._store.get_account()
        email = await self._store.get_email()
        return bool(account) and email is not None

    async def get_state(self) -> SessionState:
        if not await self.is_logged_in():
            return SessionState.LOGGED_OUT
        if await self.is_account_selected():
            return SessionState.LOGGED_IN_WITH_ACCOUNT
        return SessionState.LOGGED_IN_NO_ACCOUNT

    async def get_account(self) -> str | None:
        """Stored account id. No network call, no event."""
        return await self._store.get_account()

    async def get_email(self) -> str | None:
        """Stored account email. No network call, no event."""
        return await self._store.get_email()

    @property
    def expires_at(self) -> int:
        """Epoch seconds when the in-memory access token expires (0 = none)."""
        return self._expires_at

    # =========================================================================
    # Tokens
    # =========================================================================

    async def get_access_token(self, account_required: bool = True) -> str:
        """Get an access token suitable for use with IBM Cloud APIs.

        Args:
            account_required: True to ensure that the user has selected an account.

        Returns:
            An access token valid for at least the refresh margin.

        Raises:
            NotLoggedInError: Not logged in, or the refresh failed (the
                session has been logged out).
            NoAccountSelectedError: account_required and no account selected.
        """
        try:
            await self._check_preconditions(account_required)
            await self.check_tokens()
            if not self._access_token:
                raise NotLoggedInError()
            return self._access_token
        finally:
            await self._notifier.notify("get_access_token")

    async def get_refresh_token(self, account_required: bool = True) -> str:
        """Get a refresh token suitable for use with IBM Cloud APIs.

        Token freshness is checked first, so a rotated or revoked refresh
        token is detected before it is handed out.

        Raises:
            NotLoggedInError: Not logged in, or the refresh failed.
            NoAccountSelectedError: account_required and no account selected.
        """
        try:
            await self._check_preconditions(account_required)
            await self.check_tokens()
            refresh_token = await self._store.get_refresh_token()
            if not refresh_token:
                raise NotLoggedInError()
            return refresh_token
        finally:
            await self._notifier.notify("get_refresh_token")

    async def _check_preconditions(self, account_required: bool) -> None:
        if not await self.is_logged_in():
            raise NotLoggedInError()
        if account_required and not await self.is_account_selected():
            raise NoAccountSelectedError()

    def _needs_refresh(self) -> bool:
        delta = self._expires_at - int(time.time())
        return not self._access_token or delta < self._config.refresh_margin_seconds

    async def check_tokens(self) -> bool:
        """Refresh the access token if it expires within the refresh margin.

        Returns:
            True if a refresh exchange was performed.

        Raises:
            NotLoggedInError: The refresh failed and the session was logged out.
        """
        if not self._needs_refresh():
            return False

        async with self._lock:
            # Another caller may have refreshed while we waited for the lock
            if not self._needs_refresh():
                return False
            await self._refresh_locked()
            return True

    async def _refresh_locked(self) -> None:
        """Refresh-token exchange bound to the stored account. Caller holds the lock.

        Any failure logs the session out and raises NotLoggedInError.
        """
        try:
            refresh_token = await self._store.get_refresh_token()
            if not refresh_token:
                raise NotLoggedInError()

            form = {"grant_type": GRANT_TYPE_REFRESH_TOKEN, "refresh_token": refresh_token}
            account = await self._store.get_account()
            if account:
                form["account"] = account

            token_endpoint = (await self._client.discover()).token_endpoint
            tokens = await self._client.exchange(token_endpoint, form)

            # IAM may rotate the refresh token
            if tokens.refresh_token and tokens.refresh_token != refresh_token:
                await self._store.set_refresh_token(tokens.refresh_token)
        except Exception as e:
            _logger.warning(
                {
                    "event": "token_refresh_failed",
                    "message": f"Token refresh failed, logging out: {e}",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                }
            )
            await self._clear_session()
            raise NotLoggedInError() from e

        self._access_token = tokens.access_token
        self._expires_at = tokens.expires_at
        _logger.info(
            {
                "event": "token_refreshed",
                "message": "Access token refreshed",
                "account_bound": bool(account),
                "expires_at": tokens.expires_at,
            }
        )

    # =========================================================================
    # Account selection
    # =========================================================================

    async def select_account(self, chooser: AccountChooser) -> bool:
        """Select the IBM Cloud account to use.

        Args:
            chooser: Called with the list of accounts when there is more than
                one. Returns the chosen account, or None to cancel. May be sync
                or async.

        Returns:
            True if an account was selected, False if the chooser cancelled.

        Raises:
            NotLoggedInError: Not logged in, or the refresh failed.
            ProviderError, TransportError: Account listing failed.
        """
        try:
            return await self._selector.select_account(chooser)
        finally:
            await self._notifier.notify("select_account")

    async def bind_account(self, account: "Account") -> None:
        """Persist account id and email, then refresh bound to that account.

        The refresh makes the access token carry the new account's scope.

        Raises:
            NotLoggedInError: The refresh failed and the session was logged out.
        """
        async with self._lock:
            await self._store.set_account(account.id)
            await self._store.set_email(account.email)
            await self._refresh_locked()

        _logger.info(
            {
                "event": "account_selected",
                "message": f"Selected IBM Cloud account {account.name or account.id}",
                "account": account.id,
            }
        )

    # =========================================================================
    # Background expiry monitor
    # =========================================================================

    def start(self) -> None:
        """Start the background expiry monitor (idempotent)."""
        if self._monitor_task is not None and not self._monitor_task.done():
            return
        self._monitor_task = asyncio.create_task(self._monitor_expiry())

    async def stop(self) -> None:
        """Stop the background expiry monitor."""
        if self._monitor_task is not None:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    async def _monitor_expiry(self) -> None:
        """Background task to monitor token expiry and refresh proactively."""
        while True:
            await asyncio.sleep(self._config.check_interval_seconds)
            await self.run_expiry_check()

    async def run_expiry_check(self) -> None:
        """One passive expiry check.

        There is no caller to report to, so failures are logged and
        swallowed. A failed refresh has already logged the session out; the
        next foreground call observes the logged-out state.
        """
        try:
            if not await self.is_logged_in():
                return
            await self.check_tokens()
        except NotLoggedInError as e:
            _logger.warning(
                {
                    "event": "background_refresh_failed",
                    "message": "Background token refresh failed, session logged out",
                    "error_type": type(e.__cause__ or e).__name__,
                    "error_message": str(e.__cause__ or e),
                }
            )
            await self._notifier.notify("refresh_failed")
        except Exception as e:
            _logger.error(
                {
                    "event": "background_check_failed",
                    "message": f"Background token check failed: {e}",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                }
            )
