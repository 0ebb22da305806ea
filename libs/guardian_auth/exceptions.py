"""Exception hierarchy for Guardian Auth.

Expected outcomes (password policy failures, rate limiting, bad tokens) are
returned as structured results. Exceptions are reserved for:

- setup problems that must stop the service from starting (ConfigError)
- login rejections that the session layer translates for the caller
  (AuthenticationError)
- infrastructure faults that callers must be able to tell apart from a
  wrong password (StorageError, EmailDeliveryError)
"""

from __future__ import annotations

from typing import Literal

AuthErrorCode = Literal[
    "invalid_credentials",
    "user_not_found",
    "account_locked",
    "unverified_email",
]


class GuardianAuthError(Exception):
    """Base exception for all Guardian Auth errors."""


class ConfigError(GuardianAuthError):
    """Raised when the toolkit is configured inconsistently.

    Fatal at startup. Example: email verification enabled without an email
    provider, or a redis rate-limit strategy without connection settings.
    """


class AuthenticationError(GuardianAuthError):
    """Raised when a login attempt is rejected.

    The ``code`` is machine readable and safe to return to the caller.
    These are expected outcomes and are never logged as server faults.
    """

    def __init__(self, code: AuthErrorCode, message: str | None = None) -> None:
        self.code: AuthErrorCode = code
        super().__init__(message or code)


class RegistrationError(GuardianAuthError):
    """Raised when user creation fails (duplicate email, storage fault)."""


class StorageError(GuardianAuthError):
    """Raised when a credential store adapter call fails or times out.

    Never converted into "user not found" or "invalid password".
    """

    def __init__(self, operation: str, message: str | None = None) -> None:
        self.operation = operation
        super().__init__(message or f"Credential store operation failed: {operation}")


class EmailDeliveryError(GuardianAuthError):
    """Raised by email senders when the transport rejects or drops a message."""

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        self.retryable = retryable
        super().__init__(message)


__all__ = [
    "AuthErrorCode",
    "GuardianAuthError",
    "ConfigError",
    "AuthenticationError",
    "RegistrationError",
    "StorageError",
    "EmailDeliveryError",
]
