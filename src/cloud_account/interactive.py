"""Host-side interactive flows built on TokenLifecycle.

The host supplies the UI as callbacks; each returns None when the user
cancels, and a cancelled flow returns False without touching the session:

- choose_credentials() -> Credentials | None
- choose_passcode(passcode_url) -> str | None
- choose_account(accounts) -> Account | None

Callbacks may be sync or async.
"""

from __future__ import annotations

__all__ = [
    "CredentialsChooser",
    "Credentials",
    "LoginMethod",
    "ensure_logged_in_and_select",
    "format_status",
    "login",
    "login_and_select",
]

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable

from cloud_account.telemetry.system_logger import get_system_logger
from cloud_account.utils.callbacks import maybe_await

if TYPE_CHECKING:
    from cloud_account.lifecycle import AccountChooser, PasscodeProvider, TokenLifecycle


class LoginMethod(str, Enum):
    """Ways to log in offered to the user."""

    PASSWORD = "password"
    API_KEY = "apikey"
    SSO = "sso"
    CREATE_ACCOUNT = "create_account"


@dataclass(frozen=True)
class Credentials:
    """The user's login choice.

    Attributes:
        method: Chosen login method.
        data: Method-specific fields: "username"/"password" for PASSWORD,
            "api_key" for API_KEY, nothing for SSO (the passcode is asked
            for separately, once the passcode URL is known).
    """

    method: LoginMethod
    data: dict[str, str] = field(default_factory=dict)


CredentialsChooser = Callable[[], "Awaitable[Credentials | None] | Credentials | None"]


async def login(
    lifecycle: "TokenLifecycle",
    choose_credentials: CredentialsChooser,
    choose_passcode: "PasscodeProvider",
) -> bool:
    """Ask how to log in, then log in with the chosen method.

    Returns:
        True if logged in. False if the user cancelled or chose to create an
        account instead (the host opens the registration page).
    """
    credentials = await maybe_await(choose_credentials())
    if credentials is None:
        return False

    method = credentials.method
    data = credentials.data

    if method is LoginMethod.PASSWORD:
        username = data.get("username")
        password = data.get("password")
        if not username or not password:
            return False
        return await lifecycle.login_with_password(username, password)

    if method is LoginMethod.API_KEY:
        api_key = data.get("api_key")
        if not api_key:
            return False
        return await lifecycle.login_with_api_key(api_key)

    if method is LoginMethod.SSO:
        return await lifecycle.login_with_sso(choose_passcode)

    get_system_logger().info(
        {"event": "login_skipped", "message": "User chose to create an account", "method": method.value}
    )
    return False


async def ensure_logged_in_and_select(
    lifecycle: "TokenLifecycle",
    choose_credentials: CredentialsChooser,
    choose_passcode: "PasscodeProvider",
    choose_account: "AccountChooser",
) -> bool:
    """Log in only if needed, then select an account."""
    if not await lifecycle.is_logged_in():
        if not await login(lifecycle, choose_credentials, choose_passcode):
            return False
    return await lifecycle.select_account(choose_account)


async def login_and_select(
    lifecycle: "TokenLifecycle",
    choose_credentials: CredentialsChooser,
    choose_passcode: "PasscodeProvider",
    choose_account: "AccountChooser",
) -> bool:
    """Always log in (switching identity), then select an account."""
    if not await login(lifecycle, choose_credentials, choose_passcode):
        return False
    return await lifecycle.select_account(choose_account)


async def format_status(lifecycle: "TokenLifecycle") -> str:
    """One-line session summary for a status display."""
    text = "IBM Cloud: "
    if not await lifecycle.is_logged_in():
        return text + "logged out"
    email = await lifecycle.get_email()
    return text + (email or "logged in")
