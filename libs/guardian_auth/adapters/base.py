"""Credential store contract.

Every read and write of users, tokens and sessions goes through a
``CredentialStoreAdapter``. Two operations carry concurrency guarantees that
the login and verification flows depend on:

- ``update_user(..., expected=...)`` is a compare-and-set: the update only
  applies when every ``expected`` field still has the given value, otherwise
  ``None`` is returned and the caller re-reads and retries.
- ``use_verification_token`` is an atomic take: the record is returned and
  removed in one step, so two concurrent presentations of the same token
  cannot both succeed.

Callers wrap adapter calls in ``call_adapter`` which bounds them with a
timeout and converts backend failures into ``StorageError``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Mapping
from datetime import datetime
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from libs.guardian_auth.exceptions import GuardianAuthError, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TokenKind = Literal["otp", "link"]
TokenPurpose = Literal["email_verification", "password_reset"]


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)


class User(_Record):
    """Stored identity. ``email`` keeps its original case."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    email: str
    name: str | None = None
    password_hash: str | None = None
    role: str = "user"
    email_verified: datetime | None = None
    login_attempts: int = Field(default=0, ge=0)
    is_locked: bool = False
    lock_until: datetime | None = None
    last_login_at: datetime | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

    def field_value(self, name: str) -> Any:
        """Model attribute, falling back to ``extra`` for additional fields."""
        if name in type(self).model_fields:
            return getattr(self, name)
        return self.extra.get(name)


# Fields update_user may change; ``id`` is immutable.
USER_MUTABLE_FIELDS = frozenset(User.model_fields) - {"id"}


class VerificationToken(_Record):
    identifier: str
    token: str
    kind: TokenKind
    purpose: TokenPurpose
    expires: datetime


class Session(_Record):
    session_token: str
    user_id: str
    expires: datetime


class Account(_Record):
    user_id: str
    type: str = "credentials"
    provider: str = "credentials"
    provider_account_id: str


class CredentialStoreAdapter(ABC):
    """Storage backend used by every Guardian Auth flow."""

    @abstractmethod
    async def get_user_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup by email."""

    @abstractmethod
    async def get_user(self, user_id: str) -> User | None:
        ...

    @abstractmethod
    async def create_user(self, user: User) -> User:
        """Persist a new user.

        Raises:
            RegistrationError: If a user with the same email already exists
        """

    @abstractmethod
    async def update_user(
        self,
        user_id: str,
        changes: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> User | None:
        """Apply ``changes`` and return the updated user.

        Returns ``None`` when the user does not exist or when any ``expected``
        field no longer matches the stored value.
        """

    @abstractmethod
    async def link_account(self, account: Account) -> Account:
        ...

    @abstractmethod
    async def create_verification_token(self, token: VerificationToken) -> VerificationToken:
        """Store ``token``, deleting any earlier token for the same identifier and purpose.

        The delete and the insert happen atomically, so at most one token per
        identifier and purpose is ever redeemable.
        """

    @abstractmethod
    async def use_verification_token(
        self,
        identifier: str,
        token: str,
        *,
        purpose: TokenPurpose | None = None,
    ) -> VerificationToken | None:
        """Atomically fetch and delete the matching token (expired ones included)."""

    @abstractmethod
    async def create_session(self, session: Session) -> Session:
        ...

    @abstractmethod
    async def get_session_and_user(self, session_token: str) -> tuple[Session, User] | None:
        ...

    @abstractmethod
    async def delete_session(self, session_token: str) -> None:
        ...

    async def close(self) -> None:
        """Release backend resources. Default: nothing to release."""


def validate_user_changes(changes: Mapping[str, Any]) -> None:
    unknown = set(changes) - USER_MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown user fields: {sorted(unknown)}")


async def call_adapter(
    awaitable: Awaitable[T],
    *,
    operation: str,
    timeout: float | None,
) -> T:
    """Await an adapter call with a deadline.

    Guardian Auth errors raised by the adapter (e.g. a duplicate-user
    ``RegistrationError``) propagate unchanged. Timeouts and any other
    backend exception become ``StorageError``.

    Raises:
        StorageError: On timeout or backend failure
    """
    try:
        async with asyncio.timeout(timeout):
            return await awaitable
    except GuardianAuthError:
        raise
    except TimeoutError as exc:
        logger.exception(
            "credential_store_timeout",
            extra={"operation": operation, "timeout_seconds": timeout},
        )
        raise StorageError(operation, f"Credential store timed out: {operation}") from exc
    except Exception as exc:
        logger.exception(
            "credential_store_error",
            extra={"operation": operation, "error_type": type(exc).__name__},
        )
        raise StorageError(operation) from exc


__all__ = [
    "TokenKind",
    "TokenPurpose",
    "User",
    "USER_MUTABLE_FIELDS",
    "VerificationToken",
    "Session",
    "Account",
    "CredentialStoreAdapter",
    "validate_user_changes",
    "call_adapter",
]
