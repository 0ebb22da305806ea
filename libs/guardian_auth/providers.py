"""Credential login state machine.

``CredentialsProvider.authorize`` walks one login attempt through:

    format check -> user lookup -> lock check -> verification gate
    -> password check -> session projection

Every rejection raises ``AuthenticationError`` with a machine-readable code.
Credential store failures raise ``StorageError`` instead, so a caller can
always tell "wrong password" from "database unavailable".
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, NoReturn

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_random

from libs.guardian_auth.adapters.base import CredentialStoreAdapter, User, call_adapter
from libs.guardian_auth.clock import Clock, utc_now
from libs.guardian_auth.config import CredentialsProviderConfig, SecurityConfig
from libs.guardian_auth.events import AuthEventLogger
from libs.guardian_auth.exceptions import AuthenticationError, AuthErrorCode, StorageError
from libs.guardian_auth.security import (
    hash_password,
    needs_rehash,
    verify_decoy_password,
    verify_password,
)
from libs.guardian_auth.validation import validate_credentials

logger = logging.getLogger(__name__)

MAX_UPDATE_ATTEMPTS = 5

_PROJECTED_FIELDS = ("id", "email", "name", "role")


class ConcurrentUpdateError(Exception):
    """A compare-and-set update lost the race; the caller re-reads and retries."""


class CredentialsProvider:
    def __init__(
        self,
        adapter: CredentialStoreAdapter,
        security_config: SecurityConfig,
        credentials_config: CredentialsProviderConfig | None = None,
        *,
        clock: Clock | None = None,
        storage_timeout: float | None = None,
        events: AuthEventLogger | None = None,
    ) -> None:
        self.adapter = adapter
        self.security = security_config
        self.credentials = credentials_config or CredentialsProviderConfig()
        self.clock = clock or utc_now
        self.storage_timeout = (
            storage_timeout
            if storage_timeout is not None
            else security_config.storage_timeout_seconds
        )
        self.events = events or AuthEventLogger()

    async def authorize(self, email: object, password: object) -> dict[str, Any]:
        """Authenticate one login attempt and return the session-facing user.

        Raises:
            AuthenticationError: If the attempt is rejected
            StorageError: If the credential store fails
        """
        if (
            not isinstance(email, str)
            or not isinstance(password, str)
            or not validate_credentials(email, password)
        ):
            await self._reject("invalid_credentials", None)

        user = await call_adapter(
            self.adapter.get_user_by_email(email),
            operation="get_user_by_email",
            timeout=self.storage_timeout,
        )
        if user is None:
            # Same hash cost as a real user so response time does not reveal existence.
            await asyncio.to_thread(verify_decoy_password, password)
            await self._reject("user_not_found", email)

        now = self.clock()
        if user.is_locked and user.lock_until is not None and user.lock_until > now:
            await self._reject("account_locked", email, user_id=user.id)

        if self.security.require_email_verification and user.email_verified is None:
            await self._reject("unverified_email", email, user_id=user.id)

        if not await asyncio.to_thread(verify_password, user.password_hash, password):
            try:
                updated = await self._record_failed_attempt(user.id)
            except ConcurrentUpdateError as exc:
                raise StorageError(
                    "update_user", "Login attempt counter update kept conflicting"
                ) from exc
            await self._reject(
                "invalid_credentials",
                email,
                user_id=user.id,
                login_attempts=updated.login_attempts if updated else None,
                locked=bool(updated and updated.is_locked),
            )

        reset_fields: dict[str, Any] = {
            "login_attempts": 0,
            "is_locked": False,
            "lock_until": None,
            "last_login_at": now,
        }
        changes = dict(reset_fields)
        if user.password_hash is not None and needs_rehash(user.password_hash):
            changes["password_hash"] = await asyncio.to_thread(hash_password, password)
        updated = await call_adapter(
            self.adapter.update_user(user.id, changes),
            operation="update_user",
            timeout=self.storage_timeout,
        )
        current = updated or user

        projection: dict[str, Any] = {field: getattr(current, field) for field in _PROJECTED_FIELDS}
        for field in self.credentials.additional_user_fields:
            value = current.field_value(field)
            if value is not None:
                projection[field] = value
        projection.update(reset_fields)

        await self.events.emit("sign_in", "success", email=email, user_id=user.id)
        return projection

    @retry(
        stop=stop_after_attempt(MAX_UPDATE_ATTEMPTS),
        wait=wait_random(min=0, max=0.02),
        retry=retry_if_exception_type(ConcurrentUpdateError),
        reraise=True,
    )
    async def _record_failed_attempt(self, user_id: str) -> User | None:
        """Increment ``login_attempts`` with compare-and-set, locking at the threshold.

        Raises:
            ConcurrentUpdateError: If every attempt lost the race
        """
        current = await call_adapter(
            self.adapter.get_user(user_id),
            operation="get_user",
            timeout=self.storage_timeout,
        )
        if current is None:
            return None

        now = self.clock()
        previous_attempts = current.login_attempts
        changes: dict[str, Any] = {}
        if current.is_locked and (current.lock_until is None or current.lock_until <= now):
            # An expired lock starts a fresh count.
            previous_attempts = 0
            changes.update(is_locked=False, lock_until=None)

        attempts = previous_attempts + 1
        changes["login_attempts"] = attempts
        if attempts >= self.security.max_login_attempts:
            changes.update(
                is_locked=True,
                lock_until=now + timedelta(seconds=self.security.lockout_duration_seconds),
            )

        updated = await call_adapter(
            self.adapter.update_user(
                user_id,
                changes,
                expected={"login_attempts": current.login_attempts},
            ),
            operation="update_user",
            timeout=self.storage_timeout,
        )
        if updated is None:
            raise ConcurrentUpdateError(user_id)
        if updated.is_locked:
            logger.warning(
                "account_locked",
                extra={"user_id": user_id, "lock_until": updated.lock_until},
            )
        return updated

    async def _reject(
        self, code: AuthErrorCode, email: str | None, **context: Any
    ) -> NoReturn:
        await self.events.emit("sign_in", "rejected", email=email, code=code, **context)
        raise AuthenticationError(code)


__all__ = ["CredentialsProvider", "ConcurrentUpdateError", "MAX_UPDATE_ATTEMPTS"]
