"""Tests for TokenLifecycle.

Covers login, token refresh, logout, the state queries and the background
expiry monitor, against the in-process FakeIBMCloud.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cloud_account.account_store import AccountRecordStore
from cloud_account.constants import (
    ACCOUNT_KEY,
    EMAIL_KEY,
    GRANT_TYPE_API_KEY,
    GRANT_TYPE_PASSCODE,
    GRANT_TYPE_PASSWORD,
    GRANT_TYPE_REFRESH_TOKEN,
    REFRESH_TOKEN_KEY,
    SECRET_SERVICE,
)
from cloud_account.config import CloudAccountConfig
from cloud_account.exceptions import NoAccountSelectedError, NotLoggedInError, ProviderError, StateStoreError
from cloud_account.identity.client import IdentityClient
from cloud_account.identity.models import Account
from cloud_account.lifecycle import SessionState, TokenLifecycle
from cloud_account.state_store import JsonFileStateStore, MemoryStateStore

from conftest import PASSCODE_ENDPOINT, FakeIBMCloud, InMemorySecretStore

REFRESH_SECRET = (SECRET_SERVICE, REFRESH_TOKEN_KEY)


class TestLogin:
    """Tests for the primary-grant logins."""

    @pytest.mark.asyncio
    async def test_api_key_login_stores_refresh_token(
        self,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
        secret_store: InMemorySecretStore,
    ) -> None:
        """API key login exchanges the apikey grant and persists the refresh token."""
        # Act
        result = await lifecycle.login_with_api_key("k1")

        # Assert
        assert result is True
        assert fake_cloud.token_requests == [{"grant_type": GRANT_TYPE_API_KEY, "apikey": "k1"}]
        assert secret_store.secrets[REFRESH_SECRET] == "refresh-1"
        assert await lifecycle.get_state() is SessionState.LOGGED_IN_NO_ACCOUNT

    @pytest.mark.asyncio
    async def test_token_exchange_uses_basic_client_auth(
        self,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
    ) -> None:
        """Token requests authenticate as the bx/bx client."""
        # Act
        await lifecycle.login_with_api_key("k1")

        # Assert
        assert fake_cloud.token_auth == ["Basic Yng6Yng="]

    @pytest.mark.asyncio
    async def test_password_login_sends_password_grant(
        self,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
    ) -> None:
        """Password login sends username and password."""
        # Act
        result = await lifecycle.login_with_password("user@example.com", "s3cret")

        # Assert
        assert result is True
        assert fake_cloud.token_requests == [
            {"grant_type": GRANT_TYPE_PASSWORD, "username": "user@example.com", "password": "s3cret"}
        ]
        assert await lifecycle.is_logged_in() is True

    @pytest.mark.asyncio
    async def test_sso_login_asks_for_passcode_with_passcode_url(
        self,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
    ) -> None:
        """SSO login passes the discovered passcode URL to the provider."""
        # Arrange
        provider = MagicMock(return_value="abc123")

        # Act
        result = await lifecycle.login_with_sso(provider)

        # Assert
        assert result is True
        provider.assert_called_once_with(PASSCODE_ENDPOINT)
        assert fake_cloud.token_requests == [{"grant_type": GRANT_TYPE_PASSCODE, "passcode": "abc123"}]

    @pytest.mark.asyncio
    async def test_sso_login_accepts_async_provider(
        self,
        lifecycle: TokenLifecycle,
    ) -> None:
        """Passcode provider may be a coroutine function."""
        # Arrange
        provider = AsyncMock(return_value="abc123")

        # Act
        result = await lifecycle.login_with_sso(provider)

        # Assert
        assert result is True
        provider.assert_awaited_once_with(PASSCODE_ENDPOINT)

    @pytest.mark.asyncio
    async def test_sso_cancel_returns_false_and_leaves_state(
        self,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
        state_store: MemoryStateStore,
    ) -> None:
        """Cancelling the passcode prompt is not an error and changes nothing."""
        # Arrange
        await lifecycle.login_with_api_key("k1")
        await state_store.set(ACCOUNT_KEY, "acc-1")
        await state_store.set(EMAIL_KEY, "owner@acme.test")

        # Act
        result = await lifecycle.login_with_sso(lambda url: None)

        # Assert
        assert result is False
        assert len(fake_cloud.token_requests) == 1
        assert await lifecycle.get_account() == "acc-1"
        assert await lifecycle.is_logged_in() is True

    @pytest.mark.asyncio
    async def test_primary_login_clears_selected_account(
        self,
        lifecycle: TokenLifecycle,
        state_store: MemoryStateStore,
    ) -> None:
        """Logging in again forgets the previously selected account and email."""
        # Arrange
        await lifecycle.login_with_api_key("k1")
        await state_store.set(ACCOUNT_KEY, "acc-1")
        await state_store.set(EMAIL_KEY, "owner@acme.test")
        assert await lifecycle.is_account_selected() is True

        # Act
        await lifecycle.login_with_password("other@example.com", "pw")

        # Assert
        assert await lifecycle.get_account() is None
        assert await lifecycle.get_email() is None
        assert await lifecycle.get_state() is SessionState.LOGGED_IN_NO_ACCOUNT

    @pytest.mark.asyncio
    async def test_rejected_credentials_raise_provider_error(
        self,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
        secret_store: InMemorySecretStore,
    ) -> None:
        """IAM error bodies surface as ProviderError and nothing is stored."""
        # Arrange
        fake_cloud.token_error = (
            400,
            {"errorCode": "BXNIM0415E", "errorMessage": "Provided API key could not be found"},
        )

        # Act & Assert
        with pytest.raises(ProviderError) as exc_info:
            await lifecycle.login_with_api_key("bad-key")

        assert exc_info.value.code == "BXNIM0415E"
        assert exc_info.value.status_code == 400
        assert "Provided API key could not be found" in str(exc_info.value)
        assert secret_store.secrets == {}
        assert await lifecycle.is_logged_in() is False

    @pytest.mark.asyncio
    async def test_missing_refresh_token_fails_login(
        self,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
    ) -> None:
        """A primary grant without a refresh token cannot establish a session."""
        # Arrange
        fake_cloud.omit_refresh_token = True

        # Act & Assert
        with pytest.raises(ProviderError):
            await lifecycle.login_with_api_key("k1")
        assert await lifecycle.is_logged_in() is False

    @pytest.mark.asyncio
    async def test_login_emits_changed(self, lifecycle: TokenLifecycle) -> None:
        """Listeners observe a "login" event."""
        # Arrange
        listener = MagicMock()
        lifecycle.add_listener(listener)

        # Act
        await lifecycle.login_with_api_key("k1")

        # Assert
        listener.assert_called_once()
        assert listener.call_args.args[0].reason == "login"


class TestLogout:
    """Tests for logout."""

    @pytest.mark.asyncio
    async def test_logout_removes_session(
        self,
        lifecycle: TokenLifecycle,
        secret_store: InMemorySecretStore,
        state_store: MemoryStateStore,
    ) -> None:
        """Logout clears refresh token, account and email."""
        # Arrange
        await lifecycle.login_with_api_key("k1")
        assert secret_store.secrets[REFRESH_SECRET] == "refresh-1"
        await state_store.set(ACCOUNT_KEY, "acc-1")
        await state_store.set(EMAIL_KEY, "owner@acme.test")

        # Act
        await lifecycle.logout()

        # Assert
        assert await lifecycle.is_logged_in() is False
        assert REFRESH_SECRET not in secret_store.secrets
        assert await lifecycle.get_account() is None
        assert await lifecycle.get_email() is None
        assert lifecycle.expires_at == 0

    @pytest.mark.asyncio
    async def test_logout_is_idempotent(self, lifecycle: TokenLifecycle) -> None:
        """Logging out twice (or while logged out) succeeds and still notifies."""
        # Arrange
        listener = MagicMock()
        lifecycle.add_listener(listener)

        # Act
        await lifecycle.logout()
        await lifecycle.logout()

        # Assert
        assert await lifecycle.get_state() is SessionState.LOGGED_OUT
        assert [c.args[0].reason for c in listener.call_args_list] == ["logout", "logout"]

    @pytest.mark.asyncio
    async def test_logout_continues_when_a_delete_fails(
        self,
        lifecycle: TokenLifecycle,
        state_store: MemoryStateStore,
    ) -> None:
        """A failing refresh-token delete is logged and the other fields still go."""
        # Arrange
        await lifecycle.login_with_api_key("k1")
        await state_store.set(ACCOUNT_KEY, "acc-1")
        await state_store.set(EMAIL_KEY, "owner@acme.test")
        lifecycle._store.delete_refresh_token = AsyncMock(side_effect=RuntimeError("keychain locked"))

        # Act
        with patch("cloud_account.lifecycle._logger") as mock_logger:
            await lifecycle.logout()

        # Assert
        assert await lifecycle.get_account() is None
        assert await lifecycle.get_email() is None
        logged = mock_logger.error.call_args.args[0]
        assert logged["event"] == "logout_delete_failed"
        assert logged["field"] == "refresh_token"


class TestAccessToken:
    """Tests for get_access_token / get_refresh_token."""

    @pytest.mark.asyncio
    async def test_not_logged_in_raises(self, lifecycle: TokenLifecycle) -> None:
        """No stored refresh token means NotLoggedInError."""
        with pytest.raises(NotLoggedInError, match="You are not logged into IBM Cloud"):
            await lifecycle.get_access_token()

    @pytest.mark.asyncio
    async def test_account_required_without_selection_raises(self, lifecycle: TokenLifecycle) -> None:
        """Default account_required=True needs a selected account."""
        # Arrange
        await lifecycle.login_with_api_key("k1")

        # Act & Assert
        with pytest.raises(NoAccountSelectedError, match="You have not selected an IBM Cloud account to use"):
            await lifecycle.get_access_token()

    @pytest.mark.asyncio
    async def test_fresh_token_returned_without_refresh(
        self,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
    ) -> None:
        """Right after login the login's access token is served as is."""
        # Arrange
        await lifecycle.login_with_api_key("k1")

        # Act
        token = await lifecycle.get_access_token(account_required=False)

        # Assert
        assert token == "access-1"
        assert fake_cloud.refresh_requests == []

    @pytest.mark.asyncio
    async def test_token_inside_refresh_margin_is_refreshed(
        self,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
        secret_store: InMemorySecretStore,
    ) -> None:
        """A token expiring within 60 seconds is refreshed before being returned."""
        # Arrange
        fake_cloud.expires_in = 30
        await lifecycle.login_with_api_key("k1")
        fake_cloud.expires_in = 3600

        # Act
        token = await lifecycle.get_access_token(account_required=False)

        # Assert
        assert token == "access-2"
        assert fake_cloud.refresh_requests == [
            {"grant_type": GRANT_TYPE_REFRESH_TOKEN, "refresh_token": "refresh-1"}
        ]
        assert lifecycle.expires_at - int(time.time()) >= 60
        # Rotated refresh token is persisted
        assert secret_store.secrets[REFRESH_SECRET] == "refresh-2"

    @pytest.mark.asyncio
    async def test_refresh_is_bound_to_selected_account(
        self,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
        state_store: MemoryStateStore,
    ) -> None:
        """With an account selected the refresh form carries the account id."""
        # Arrange
        fake_cloud.expires_in = 30
        await lifecycle.login_with_api_key("k1")
        await state_store.set(ACCOUNT_KEY, "acc-1")
        await state_store.set(EMAIL_KEY, "owner@acme.test")

        # Act
        await lifecycle.get_access_token()

        # Assert
        assert fake_cloud.refresh_requests[0]["account"] == "acc-1"

    @pytest.mark.asyncio
    async def test_new_process_refreshes_from_stored_refresh_token(
        self,
        record_store: AccountRecordStore,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
    ) -> None:
        """A session restored from storage has no access token until it refreshes."""
        # Arrange
        await lifecycle.login_with_api_key("k1")
        restored = TokenLifecycle(record_store, lifecycle._client, lifecycle._config)

        # Act
        token = await restored.get_access_token(account_required=False)

        # Assert
        assert token == "access-2"
        assert len(fake_cloud.refresh_requests) == 1

    @pytest.mark.asyncio
    async def test_refresh_failure_logs_out(
        self,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
        state_store: MemoryStateStore,
    ) -> None:
        """A rejected refresh forces logout and raises NotLoggedInError."""
        # Arrange
        fake_cloud.expires_in = 30
        await lifecycle.login_with_api_key("k1")
        await state_store.set(ACCOUNT_KEY, "acc-1")
        await state_store.set(EMAIL_KEY, "owner@acme.test")
        fake_cloud.refresh_error = (400, {"errorCode": "BXNIM0407E", "errorMessage": "Session expired"})

        # Act & Assert
        with pytest.raises(NotLoggedInError) as exc_info:
            await lifecycle.get_access_token()

        assert isinstance(exc_info.value.__cause__, ProviderError)
        assert await lifecycle.is_logged_in() is False
        assert await lifecycle.get_account() is None

    @pytest.mark.asyncio
    async def test_concurrent_stale_callers_share_one_refresh(
        self,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
    ) -> None:
        """Concurrent callers that see a stale token trigger a single exchange."""
        # Arrange
        fake_cloud.expires_in = 30
        await lifecycle.login_with_api_key("k1")
        fake_cloud.expires_in = 3600
        fake_cloud.token_delay = 0.05

        # Act
        tokens = await asyncio.gather(
            *(lifecycle.get_access_token(account_required=False) for _ in range(5))
        )

        # Assert
        assert len(fake_cloud.refresh_requests) == 1
        assert set(tokens) == {"access-2"}

    @pytest.mark.asyncio
    async def test_get_refresh_token(self, lifecycle: TokenLifecycle) -> None:
        """get_refresh_token returns the stored refresh token."""
        # Arrange
        await lifecycle.login_with_api_key("k1")

        # Act
        token = await lifecycle.get_refresh_token(account_required=False)

        # Assert
        assert token == "refresh-1"

    @pytest.mark.asyncio
    async def test_get_access_token_emits_changed_on_failure(self, lifecycle: TokenLifecycle) -> None:
        """The changed event fires even when the call raises."""
        # Arrange
        queue = lifecycle.subscribe()

        # Act
        with pytest.raises(NotLoggedInError):
            await lifecycle.get_access_token()

        # Assert
        assert queue.get_nowait().reason == "get_access_token"


class TestBindAccount:
    """Tests for binding a chosen account."""

    @pytest.mark.asyncio
    async def test_bind_account_persists_and_rescopes_token(
        self,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
    ) -> None:
        """Binding stores id and email, then refreshes bound to the account."""
        # Arrange
        await lifecycle.login_with_api_key("k1")

        # Act
        await lifecycle.bind_account(Account(id="acc-2", name="Beta", email="beta@example.com"))

        # Assert
        assert await lifecycle.get_account() == "acc-2"
        assert await lifecycle.get_email() == "beta@example.com"
        assert fake_cloud.refresh_requests[-1]["account"] == "acc-2"
        assert await lifecycle.get_access_token() == "access-2"

    @pytest.mark.asyncio
    async def test_half_written_account_is_not_selected(
        self,
        lifecycle: TokenLifecycle,
        state_store: MemoryStateStore,
    ) -> None:
        """An account id without an email counts as no selection."""
        # Arrange
        await lifecycle.login_with_api_key("k1")
        await state_store.set(ACCOUNT_KEY, "acc-1")

        # Act & Assert
        assert await lifecycle.is_account_selected() is False
        assert await lifecycle.get_state() is SessionState.LOGGED_IN_NO_ACCOUNT

    @pytest.mark.asyncio
    async def test_corrupt_state_file_raises_state_store_error(
        self,
        identity_client: IdentityClient,
        config: CloudAccountConfig,
        secret_store: InMemorySecretStore,
        tmp_path: Path,
    ) -> None:
        """Queries over a damaged state file raise a CloudAccountError."""
        # Arrange
        path = tmp_path / "state.json"
        session = TokenLifecycle(AccountRecordStore(JsonFileStateStore(path), secret_store), identity_client, config)
        await session.login_with_api_key("k1")
        path.write_text("{not json")

        # Act & Assert
        with pytest.raises(StateStoreError):
            await session.is_account_selected()
        with pytest.raises(StateStoreError):
            await session.get_access_token()


class TestExpiryMonitor:
    """Tests for the background expiry monitor."""

    @pytest.mark.asyncio
    async def test_check_does_nothing_when_logged_out(
        self,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
    ) -> None:
        """A logged-out session makes no requests."""
        # Act
        await lifecycle.run_expiry_check()

        # Assert
        assert fake_cloud.token_requests == []

    @pytest.mark.asyncio
    async def test_check_refreshes_stale_token(
        self,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
    ) -> None:
        """A stale token is refreshed proactively."""
        # Arrange
        fake_cloud.expires_in = 30
        await lifecycle.login_with_api_key("k1")

        # Act
        await lifecycle.run_expiry_check()

        # Assert
        assert len(fake_cloud.refresh_requests) == 1

    @pytest.mark.asyncio
    async def test_check_refresh_failure_is_swallowed_and_notified(
        self,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
    ) -> None:
        """Background refresh failure logs out, notifies, and does not raise."""
        # Arrange
        fake_cloud.expires_in = 30
        await lifecycle.login_with_api_key("k1")
        fake_cloud.refresh_error = (401, {"errorCode": "BXNIM0408E", "errorMessage": "Revoked"})
        queue = lifecycle.subscribe()

        # Act
        with patch("cloud_account.lifecycle._logger") as mock_logger:
            await lifecycle.run_expiry_check()

        # Assert
        assert await lifecycle.is_logged_in() is False
        assert queue.get_nowait().reason == "refresh_failed"
        events = [c.args[0]["event"] for c in mock_logger.warning.call_args_list]
        assert "background_refresh_failed" in events

    @pytest.mark.asyncio
    async def test_start_and_stop(self, lifecycle: TokenLifecycle) -> None:
        """Monitor task starts once and stops cleanly."""
        # Act
        lifecycle.start()
        task = lifecycle._monitor_task
        lifecycle.start()

        # Assert
        assert lifecycle.is_monitoring is True
        assert lifecycle._monitor_task is task

        await lifecycle.stop()
        assert lifecycle.is_monitoring is False

    @pytest.mark.asyncio
    async def test_monitor_refreshes_in_background(
        self,
        lifecycle: TokenLifecycle,
        fake_cloud: FakeIBMCloud,
    ) -> None:
        """The running monitor refreshes without any foreground call."""
        # Arrange
        lifecycle._config = lifecycle._config.model_copy(update={"check_interval_seconds": 0.01})
        fake_cloud.expires_in = 30
        await lifecycle.login_with_api_key("k1")
        fake_cloud.expires_in = 3600

        # Act
        async with lifecycle:
            await asyncio.sleep(0.1)

        # Assert
        assert len(fake_cloud.refresh_requests) == 1
        assert lifecycle.is_monitoring is False
