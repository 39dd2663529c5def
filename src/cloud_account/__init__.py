"""cloud-account: IBM Cloud authentication state and access-token lifecycle.

Logs a user into IBM Cloud IAM (password, API key or SSO passcode), keeps the
refresh token in the OS keychain (or an encrypted file), refreshes access
tokens before they expire, and tracks the selected IBM Cloud account.
"""

__version__ = "0.1.0"

from cloud_account.account_store import AccountRecordStore
from cloud_account.config import CloudAccountConfig, load_config
from cloud_account.events import ChangeNotifier, SessionChanged
from cloud_account.exceptions import (
    CloudAccountError,
    ConfigurationError,
    NoAccountSelectedError,
    NotLoggedInError,
    ProviderError,
    SecretStoreError,
    StateStoreError,
    TransportError,
)
from cloud_account.identity import Account, IdentityClient
from cloud_account.interactive import Credentials, LoginMethod
from cloud_account.lifecycle import SessionState, TokenLifecycle
from cloud_account.security import SecretStore, create_secret_store
from cloud_account.selector import AccountSelector
from cloud_account.state_store import JsonFileStateStore, MemoryStateStore, StateStore

__all__ = [
    "__version__",
    # Session
    "TokenLifecycle",
    "SessionState",
    "AccountSelector",
    "ChangeNotifier",
    "SessionChanged",
    "Credentials",
    "LoginMethod",
    # Storage
    "AccountRecordStore",
    "SecretStore",
    "create_secret_store",
    "StateStore",
    "JsonFileStateStore",
    "MemoryStateStore",
    # Identity provider
    "IdentityClient",
    "Account",
    # Config
    "CloudAccountConfig",
    "load_config",
    # Errors
    "CloudAccountError",
    "ConfigurationError",
    "NoAccountSelectedError",
    "NotLoggedInError",
    "ProviderError",
    "SecretStoreError",
    "StateStoreError",
    "TransportError",
]
