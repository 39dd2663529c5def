"""Command-line interface for cloud-account.

Provides commands to log into IBM Cloud, select the account to work in,
print access tokens for scripts, and log out.
"""

from .main import cli, main

__all__ = ["cli", "main"]
