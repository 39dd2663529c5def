"""Terminal styling for cloud-account output.

Session state is colored by how usable it is: green when tokens can be
issued for an account, yellow when an account still has to be chosen,
dim when logged out.
"""

from __future__ import annotations

__all__ = [
    "style_dim",
    "style_label",
    "style_session_state",
    "style_success",
    "style_warning",
]

import click

from cloud_account.lifecycle import SessionState

_SESSION_STATE_STYLES: dict[SessionState, tuple[str, dict[str, object]]] = {
    SessionState.LOGGED_OUT: ("Logged out", {"dim": True}),
    SessionState.LOGGED_IN_NO_ACCOUNT: ("Logged in (no account selected)", {"fg": "yellow"}),
    SessionState.LOGGED_IN_WITH_ACCOUNT: ("Logged in", {"fg": "green", "bold": True}),
}


def style_label(label: str) -> str:
    """Cyan "Label:" prefix for key/value lines (status, menus)."""
    return click.style(label + ":", fg="cyan", bold=True)


def style_session_state(state: SessionState) -> str:
    text, styles = _SESSION_STATE_STYLES[state]
    return click.style(text, **styles)


def style_success(message: str, *, bold: bool = False) -> str:
    return click.style("✓ " + message, fg="green", bold=bold)


def style_warning(message: str) -> str:
    return click.style("! " + message, fg="yellow")


def style_dim(message: str) -> str:
    return click.style(message, dim=True)
