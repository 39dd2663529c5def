"""Custom exceptions for cloud-account.

This module contains all custom exceptions used throughout the package.

Session errors (the caller must log in or select an account):
    - NotLoggedInError: No refresh token is stored, or refresh failed
    - NoAccountSelectedError: An account is required but none is selected

Provider and transport errors (raised to the immediate caller):
    - ProviderError: IAM or account management returned a non-2xx status
    - TransportError: Network-level failure talking to IBM Cloud

Local failures:
    - SecretStoreError: Secret backend could not read, write or delete
    - StateStoreError: State file is corrupt or cannot be written
    - ConfigurationError: Configuration file is invalid

Cancelling an interactive step is not an error: operations return False.

Usage:
    from cloud_account.exceptions import NotLoggedInError, ProviderError
"""

from __future__ import annotations

__all__ = [
    "CloudAccountError",
    "ConfigurationError",
    "NoAccountSelectedError",
    "NotLoggedInError",
    "ProviderError",
    "SecretStoreError",
    "StateStoreError",
    "TransportError",
]


class CloudAccountError(Exception):
    """Base exception for all cloud-account failures.

    Attributes:
        exit_code: Process exit code used by the CLI.
        failure_type: Category string for logging.
    """

    exit_code: int = 1
    failure_type: str = "unknown"


class NotLoggedInError(CloudAccountError):
    """No refresh token is available.

    Raised when:
    - No refresh token is stored (user never logged in or logged out)
    - A refresh exchange failed and the session was forcibly logged out
    """

    exit_code = 3
    failure_type = "not_logged_in"

    def __init__(self, message: str = "You are not logged into IBM Cloud") -> None:
        super().__init__(message)


class NoAccountSelectedError(CloudAccountError):
    """An account is required but none is selected."""

    exit_code = 4
    failure_type = "no_account_selected"

    def __init__(self, message: str = "You have not selected an IBM Cloud account to use") -> None:
        super().__init__(message)


class ProviderError(CloudAccountError):
    """IBM Cloud returned a non-2xx response.

    The message is provider-sourced when the response body carries an
    IAM error ("BXNIM0415E: Provided API key could not be found"),
    otherwise a generic "endpoint returned HTTP <status>" message.

    Attributes:
        code: Provider error code (e.g., "BXNIM0415E"), if present.
        detail: Provider error details or message, if present.
        status_code: HTTP status code of the response.
    """

    exit_code = 5
    failure_type = "provider_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        detail: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.detail = detail
        self.status_code = status_code

    def __repr__(self) -> str:
        return (
            f"ProviderError({self.message!r}, code={self.code!r}, "
            f"detail={self.detail!r}, status_code={self.status_code!r})"
        )

    def __str__(self) -> str:
        return self.message


class TransportError(CloudAccountError):
    """Network-level failure (connection refused, timeout, DNS, TLS)."""

    exit_code = 6
    failure_type = "transport_error"


class SecretStoreError(CloudAccountError):
    """Secret backend failure.

    Raised when:
    - The OS keychain rejects a read, write or delete
    - The encrypted secrets file cannot be decrypted or written
    """

    exit_code = 7
    failure_type = "secret_store_failure"


class ConfigurationError(CloudAccountError):
    """Configuration is invalid.

    Raised when:
    - Config file contains invalid JSON
    - Config file fails Pydantic validation
    """

    exit_code = 8
    failure_type = "configuration_failure"


class StateStoreError(CloudAccountError):
    """Non-secret state file failure.

    Raised when:
    - The state file is not valid JSON or not a JSON object
    - The state file cannot be read or replaced
    """

    exit_code = 9
    failure_type = "state_store_failure"
