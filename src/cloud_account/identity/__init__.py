"""IBM Cloud identity provider access.

This module provides:
- IdentityClient: discovery, token exchange, paginated account listing
- Response models: OpenIDConfiguration, TokenResponse, Account, AccountsPage
"""

from cloud_account.identity.client import IdentityClient
from cloud_account.identity.models import (
    Account,
    AccountsPage,
    OpenIDConfiguration,
    TokenResponse,
)

__all__ = [
    "Account",
    "AccountsPage",
    "IdentityClient",
    "OpenIDConfiguration",
    "TokenResponse",
]
