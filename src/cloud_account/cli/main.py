"""Main CLI entry point for cloud-account.

Commands:
    login           - Log into IBM Cloud (password, API key or SSO)
    logout          - Clear the stored session
    select-account  - Choose the IBM Cloud account to work in
    status          - Show session state
    token           - Print an access token
    create-account  - Open the IBM Cloud registration page

Subcommand help:
    cloud-account COMMAND -h         Show help for a specific command
"""

from __future__ import annotations

__all__ = ["cli"]

import sys
from pathlib import Path

import click

from cloud_account import __version__

from .commands.auth import create_account, login, logout, select_account, status, token


class ReorderedGroup(click.Group):
    """Custom group that shows commands before custom help text."""

    def format_epilog(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        """Add extra help after commands section."""
        formatter.write(
            """
Quick Start:
  cloud-account login                   Log in and pick an account
  cloud-account login --method apikey   Log in with an API key
  cloud-account token                   Print an access token

Non-Interactive Use:
  export TOKEN=$(cloud-account token)
  cloud-account status --json
"""
        )


@click.group(
    cls=ReorderedGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: config.json in the app directory)",
)
@click.pass_context
def cli(ctx: click.Context, version: bool, config_path: Path | None) -> None:
    """cloud-account: IBM Cloud login and access tokens."""
    if version:
        click.echo(f"cloud-account {__version__}")
        sys.exit(0)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# Register commands
cli.add_command(login)
cli.add_command(logout)
cli.add_command(select_account)
cli.add_command(status)
cli.add_command(token)
cli.add_command(create_account)


def main() -> None:
    """CLI entry point."""
    cli()
