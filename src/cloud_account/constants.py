"""Application-wide constants for cloud-account.

Constants that define application behavior.
For user-configurable settings per deployment, see config.py.
"""

__all__ = [
    # Application identity
    "APP_NAME",
    # IBM Cloud endpoints
    "IAM_URL",
    "ACCOUNT_MANAGEMENT_URL",
    "REGISTRATION_URL",
    "OPENID_CONFIGURATION_PATH",
    "ACCOUNTS_PATH",
    "DEFAULT_CLIENT_ID",
    "DEFAULT_CLIENT_SECRET",
    # Grant types
    "GRANT_TYPE_PASSWORD",
    "GRANT_TYPE_API_KEY",
    "GRANT_TYPE_PASSCODE",
    "GRANT_TYPE_REFRESH_TOKEN",
    # Token lifecycle timing
    "TOKEN_REFRESH_MARGIN_SECONDS",
    "TOKEN_CHECK_INTERVAL_SECONDS",
    "DEFAULT_HTTP_TIMEOUT_SECONDS",
    "MIN_HTTP_TIMEOUT_SECONDS",
    "MAX_HTTP_TIMEOUT_SECONDS",
    # Storage keys
    "SECRET_SERVICE",
    "REFRESH_TOKEN_KEY",
    "ACCOUNT_KEY",
    "EMAIL_KEY",
    "ENCRYPTED_SECRETS_FILE",
    "STATE_FILE",
    "CONFIG_FILE",
    "SYSTEM_LOG_FILE",
    # Events
    "EVENT_QUEUE_MAXSIZE",
]

# ============================================================================
# Application Identity
# ============================================================================

# Application name used for directory names, logger names, keyring probes, etc.
APP_NAME: str = "cloud-account"

# ============================================================================
# IBM Cloud Endpoints
# ============================================================================

IAM_URL: str = "https://iam.cloud.ibm.com"
ACCOUNT_MANAGEMENT_URL: str = "https://accountmanagement.ng.bluemix.net"
REGISTRATION_URL: str = "https://cloud.ibm.com/registration"

# Discovery document, relative to IAM_URL
OPENID_CONFIGURATION_PATH: str = "/identity/.well-known/openid-configuration"

# Paginated account listing, relative to ACCOUNT_MANAGEMENT_URL
ACCOUNTS_PATH: str = "/coe/v2/accounts"

# Public client credentials used by IBM Cloud CLI tooling (HTTP Basic auth)
DEFAULT_CLIENT_ID: str = "bx"
DEFAULT_CLIENT_SECRET: str = "bx"

# ============================================================================
# Grant Types (wire values, must match the provider exactly)
# ============================================================================

GRANT_TYPE_PASSWORD: str = "password"
GRANT_TYPE_API_KEY: str = "urn:ibm:params:oauth:grant-type:apikey"
GRANT_TYPE_PASSCODE: str = "urn:ibm:params:oauth:grant-type:passcode"
GRANT_TYPE_REFRESH_TOKEN: str = "refresh_token"

# ============================================================================
# Token Lifecycle Timing
# ============================================================================

# Refresh when the access token has less than this many seconds left
TOKEN_REFRESH_MARGIN_SECONDS: int = 60

# How often the background monitor checks token expiry
TOKEN_CHECK_INTERVAL_SECONDS: int = 60

# HTTP timeout for IAM and account management calls (seconds)
DEFAULT_HTTP_TIMEOUT_SECONDS: int = 30
MIN_HTTP_TIMEOUT_SECONDS: int = 1
MAX_HTTP_TIMEOUT_SECONDS: int = 300  # 5 minutes

# ============================================================================
# Storage Keys
# ============================================================================

# Secret store location of the refresh token
SECRET_SERVICE: str = "VS Code IBM Cloud Account"
REFRESH_TOKEN_KEY: str = "Refresh Token"

# State store keys (non-secret session fields)
ACCOUNT_KEY: str = "ibmcloud-account-guid"
EMAIL_KEY: str = "ibmcloud-account-email"

# File names inside the store directory
ENCRYPTED_SECRETS_FILE: str = "secrets.enc"
STATE_FILE: str = "state.json"
CONFIG_FILE: str = "config.json"
SYSTEM_LOG_FILE: str = "system.jsonl"

# ============================================================================
# Events
# ============================================================================

# Per-subscriber queue bound; slow subscribers drop events past this
EVENT_QUEUE_MAXSIZE: int = 100
