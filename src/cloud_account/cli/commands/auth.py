"""Session commands for the cloud-account CLI.

Commands:
    login           - Log into IBM Cloud and select an account
    logout          - Clear the stored session
    select-account  - Choose the IBM Cloud account to work in
    status          - Show session state and storage backend
    token           - Print an access (or refresh) token for scripts
    create-account  - Open the IBM Cloud registration page
"""

from __future__ import annotations

__all__ = [
    "create_account",
    "login",
    "logout",
    "select_account",
    "status",
    "token",
]

import asyncio
import json as json_module
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import click

from cloud_account.config import CloudAccountConfig, load_config
from cloud_account.constants import REGISTRATION_URL
from cloud_account.exceptions import CloudAccountError
from cloud_account.interactive import LoginMethod, login as interactive_login
from cloud_account.lifecycle import SessionState, TokenLifecycle
from cloud_account.security.secret_store import get_secret_store_info
from cloud_account.telemetry.system_logger import (
    configure_system_logger_file,
    configure_system_logger_level,
)

from ..prompts import CredentialsPrompt, choose_account, make_passcode_prompt, open_in_browser
from ..styling import style_dim, style_label, style_session_state, style_success, style_warning

T = TypeVar("T")


def _load_config_or_exit(ctx: click.Context) -> CloudAccountConfig:
    """Load configuration and apply its logging settings.

    Raises:
        click.ClickException: If the config file is invalid.
    """
    config_path: Path | None = (ctx.obj or {}).get("config_path")
    try:
        config = load_config(config_path)
    except CloudAccountError as e:
        raise click.ClickException(str(e))

    configure_system_logger_level(config.logging.log_level)
    log_path = config.logging.resolve_log_path()
    if log_path is not None:
        configure_system_logger_file(log_path)
    return config


def _create_lifecycle(config: CloudAccountConfig) -> TokenLifecycle:
    return TokenLifecycle.from_config(config)


def _run_session(
    config: CloudAccountConfig,
    operation: Callable[[TokenLifecycle], Awaitable[T]],
) -> T:
    """Run one operation against a fresh session and close it.

    CloudAccountError becomes a ClickException carrying the error's exit code.
    """

    async def _run() -> T:
        lifecycle = _create_lifecycle(config)
        try:
            return await operation(lifecycle)
        finally:
            await lifecycle.aclose()

    try:
        return asyncio.run(_run())
    except CloudAccountError as e:
        exc = click.ClickException(str(e))
        exc.exit_code = e.exit_code
        raise exc


@click.command()
@click.option(
    "--method",
    type=click.Choice([m.value for m in (LoginMethod.PASSWORD, LoginMethod.API_KEY, LoginMethod.SSO)]),
    default=None,
    help="Login method (asks when omitted)",
)
@click.option("--no-browser", is_flag=True, help="Don't automatically open browser")
@click.option("--no-select", is_flag=True, help="Skip account selection")
@click.pass_context
def login(ctx: click.Context, method: str | None, no_browser: bool, no_select: bool) -> None:
    """Log into IBM Cloud.

    Logging in always replaces the previous identity and clears the
    selected account. Unless --no-select is given, the account to work in
    is selected right after (automatically when there is only one).
    """
    config = _load_config_or_exit(ctx)
    credentials_prompt = CredentialsPrompt(LoginMethod(method) if method else None)
    passcode_prompt = make_passcode_prompt(no_browser)

    async def _login(lifecycle: TokenLifecycle) -> tuple[bool, bool]:
        logged_in = await interactive_login(lifecycle, credentials_prompt, passcode_prompt)
        if not logged_in or no_select:
            return logged_in, False
        return logged_in, await lifecycle.select_account(choose_account)

    logged_in, selected = _run_session(config, _login)

    if credentials_prompt.chosen is LoginMethod.CREATE_ACCOUNT:
        click.echo("Create your account at:")
        open_in_browser(REGISTRATION_URL, no_browser)
        click.echo()
        click.echo("Then run 'cloud-account login' to log in.")
        return

    if not logged_in:
        click.echo(style_dim("Login cancelled."))
        return

    click.echo(style_success("Logged into IBM Cloud", bold=True))
    if no_select:
        click.echo("Run 'cloud-account select-account' to choose an account.")
    elif not selected:
        click.echo(style_warning("No account selected"))
        click.echo("Run 'cloud-account select-account' to choose one.")
    else:
        click.echo(style_success("Account selected"))


@click.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Log out of IBM Cloud.

    Removes the refresh token and the selected account. Safe to run when
    already logged out.
    """
    config = _load_config_or_exit(ctx)

    async def _logout(lifecycle: TokenLifecycle) -> bool:
        was_logged_in = await lifecycle.is_logged_in()
        await lifecycle.logout()
        return was_logged_in

    if _run_session(config, _logout):
        click.echo(style_success("Logged out of IBM Cloud."))
    else:
        click.echo(style_dim("Not logged in."))


@click.command("select-account")
@click.pass_context
def select_account(ctx: click.Context) -> None:
    """Choose the IBM Cloud account to work in."""
    config = _load_config_or_exit(ctx)

    async def _select(lifecycle: TokenLifecycle) -> tuple[bool, str | None]:
        selected = await lifecycle.select_account(choose_account)
        return selected, await lifecycle.get_account()

    selected, account_id = _run_session(config, _select)
    if selected:
        click.echo(style_success(f"Account selected: {account_id}"))
    else:
        click.echo(style_dim("Account selection cancelled."))


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show session state, selected account and storage backend."""
    config = _load_config_or_exit(ctx)

    async def _status(lifecycle: TokenLifecycle) -> dict[str, Any]:
        state = await lifecycle.get_state()
        return {
            "state": state.value,
            "logged_in": state is not SessionState.LOGGED_OUT,
            "account": await lifecycle.get_account(),
            "email": await lifecycle.get_email(),
        }

    result = _run_session(config, _status)
    result["storage"] = get_secret_store_info(config)

    if as_json:
        click.echo(json_module.dumps(result, indent=2))
        return

    click.echo(style_label("Status") + f" {style_session_state(SessionState(result['state']))}")
    if result["logged_in"]:
        click.echo(style_label("Account") + f" {result['account'] or style_dim('none')}")
        click.echo(style_label("Email") + f" {result['email'] or style_dim('unknown')}")
    storage = result["storage"]
    location = storage.get("location") or storage.get("keyring_backend", "")
    click.echo(style_label("Storage") + f" {storage['backend']} {style_dim(location)}")

    if not result["logged_in"]:
        click.echo()
        click.echo("Run 'cloud-account login' to log in.")


@click.command()
@click.option("--refresh-token", "refresh", is_flag=True, help="Print the refresh token instead")
@click.option(
    "--no-account-required",
    is_flag=True,
    help="Don't require a selected account",
)
@click.pass_context
def token(ctx: click.Context, refresh: bool, no_account_required: bool) -> None:
    """Print a valid access token, refreshing it first if needed.

    Intended for scripts:

        curl -H "Authorization: Bearer $(cloud-account token)" ...
    """
    config = _load_config_or_exit(ctx)
    account_required = not no_account_required

    async def _token(lifecycle: TokenLifecycle) -> str:
        if refresh:
            return await lifecycle.get_refresh_token(account_required=account_required)
        return await lifecycle.get_access_token(account_required=account_required)

    click.echo(_run_session(config, _token))


@click.command("create-account")
@click.option("--no-browser", is_flag=True, help="Don't automatically open browser")
def create_account(no_browser: bool) -> None:
    """Open the IBM Cloud registration page."""
    click.echo("Create your account at:")
    open_in_browser(REGISTRATION_URL, no_browser)
