"""Interactive prompts for the CLI.

Terminal implementations of the callbacks the session flows ask for:
the login method and credentials, the SSO passcode, and the account to use.
Each returns None when the user cancels.
"""

from __future__ import annotations

__all__ = [
    "CredentialsPrompt",
    "choose_account",
    "make_passcode_prompt",
    "open_in_browser",
]

import webbrowser
from typing import TYPE_CHECKING, Callable, Sequence

import click

from cloud_account.interactive import Credentials, LoginMethod

from .styling import style_dim, style_label

if TYPE_CHECKING:
    from cloud_account.identity.models import Account

_METHOD_LABELS = {
    LoginMethod.PASSWORD: "Username and password",
    LoginMethod.API_KEY: "API key",
    LoginMethod.SSO: "Single Sign On (one-time passcode)",
    LoginMethod.CREATE_ACCOUNT: "Create a new IBM Cloud account",
}


def open_in_browser(url: str, no_browser: bool) -> None:
    """Show a URL and, unless disabled, open it in the default browser."""
    click.echo(f"  {click.style(url, fg='blue', underline=True)}")
    if no_browser:
        return
    try:
        webbrowser.open(url)
        click.echo("  Browser opened automatically.")
    except (OSError, webbrowser.Error) as e:
        click.echo(f"  (Could not open browser automatically: {e})")


class CredentialsPrompt:
    """Asks for the login method and the credentials it needs.

    Records the chosen method so the caller can tell a cancellation from a
    request to create an account.
    """

    def __init__(self, method: LoginMethod | None = None) -> None:
        self.method = method
        self.chosen: LoginMethod | None = None

    def _choose_method(self) -> LoginMethod | None:
        methods = list(_METHOD_LABELS)
        click.echo(style_label("How would you like to log in"))
        for index, method in enumerate(methods, start=1):
            click.echo(f"  {index}. {_METHOD_LABELS[method]}")
        click.echo("  0. Cancel")
        choice = click.prompt("Select an option", type=click.IntRange(0, len(methods)), default=1)
        if choice == 0:
            return None
        return methods[choice - 1]

    def __call__(self) -> Credentials | None:
        method = self.method or self._choose_method()
        self.chosen = method
        if method is None:
            return None

        if method is LoginMethod.PASSWORD:
            username = click.prompt("IBMid or username", default="", show_default=False).strip()
            if not username:
                return None
            password = click.prompt("Password", default="", hide_input=True, show_default=False)
            return Credentials(method, {"username": username, "password": password})

        if method is LoginMethod.API_KEY:
            api_key = click.prompt("API key", default="", hide_input=True, show_default=False).strip()
            return Credentials(method, {"api_key": api_key})

        return Credentials(method)


def make_passcode_prompt(no_browser: bool) -> Callable[[str], str | None]:
    """Build the SSO passcode callback.

    Args:
        no_browser: Only print the passcode URL instead of opening it.

    Returns:
        Callback that shows the passcode page and reads the passcode.
    """

    def prompt_passcode(passcode_url: str) -> str | None:
        click.echo("Get a one-time passcode from:")
        open_in_browser(passcode_url, no_browser)
        click.echo()
        passcode = click.prompt("One-time passcode", default="", hide_input=True, show_default=False)
        return passcode.strip() or None

    return prompt_passcode


def choose_account(accounts: Sequence["Account"]) -> "Account | None":
    """Numbered account list; 0 or an empty list cancels."""
    if not accounts:
        click.echo(style_dim("No IBM Cloud accounts are available to this login."))
        return None

    click.echo(style_label("Accounts"))
    for index, account in enumerate(accounts, start=1):
        details = f"{account.name or account.id} ({account.id})"
        if account.email:
            details += f" {style_dim(account.email)}"
        click.echo(f"  {index}. {details}")
    click.echo("  0. Cancel")

    choice = click.prompt("Select an account", type=click.IntRange(0, len(accounts)), default=1)
    if choice == 0:
        return None
    return accounts[choice - 1]
