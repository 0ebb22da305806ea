"""Password reset by emailed link."""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlencode

from libs.guardian_auth.adapters.base import CredentialStoreAdapter, call_adapter
from libs.guardian_auth.clock import Clock, utc_now
from libs.guardian_auth.config import PasswordPolicy, PasswordResetOptions
from libs.guardian_auth.email.base import EmailKind, EmailOptions, EmailSender
from libs.guardian_auth.events import AuthEventLogger
from libs.guardian_auth.features.email_verification import USER_NOT_REGISTERED
from libs.guardian_auth.features.results import FlowResult
from libs.guardian_auth.features.tokens import VerificationTokenService
from libs.guardian_auth.password_policy import validate_password
from libs.guardian_auth.security import hash_password

logger = logging.getLogger(__name__)

INVALID_OR_EXPIRED_LINK = "Invalid or expired link!"
LINK_EXPIRED = "Link has expired!"

RESET_SUBJECT = "Password Reset Request"


class PasswordResetService:
    def __init__(
        self,
        options: PasswordResetOptions,
        adapter: CredentialStoreAdapter,
        email_sender: EmailSender,
        *,
        app_url: str,
        password_policy: PasswordPolicy | None = None,
        clock: Clock | None = None,
        storage_timeout: float | None = 5.0,
        events: AuthEventLogger | None = None,
    ) -> None:
        self.options = options
        self.adapter = adapter
        self.email_sender = email_sender
        self.app_url = app_url.rstrip("/")
        self.password_policy = password_policy
        self.clock = clock or utc_now
        self.storage_timeout = storage_timeout
        self.events = events or AuthEventLogger()
        self.tokens = VerificationTokenService(
            adapter, clock=self.clock, storage_timeout=storage_timeout
        )

    async def initiate_password_reset(self, email: str) -> str | None:
        """Store a reset token and email the link.

        Unknown emails are accepted silently and return ``None`` so the
        response does not reveal whether an account exists.
        """
        user = await call_adapter(
            self.adapter.get_user_by_email(email),
            operation="get_user_by_email",
            timeout=self.storage_timeout,
        )
        if user is None:
            logger.info("password_reset_unknown_email", extra={"email": email})
            await self.events.emit("password_reset_requested", "rejected", email=email)
            return None

        token = await self.tokens.issue_link_token(
            email,
            expiration_minutes=self.options.token_expiration_minutes,
            purpose="password_reset",
        )
        link = f"{self.app_url}/reset-password?{urlencode({'token': token, 'email': email})}"
        await self.email_sender.send(
            EmailOptions(
                to=email,
                subject=RESET_SUBJECT,
                kind=EmailKind.PASSWORD_RESET,
                url=link,
            )
        )
        await self.events.emit("password_reset_requested", "success", email=email)
        return token

    async def reset_password(self, email: str, token: str, new_password: str) -> FlowResult:
        """Replace the password hash if ``token`` is live for ``email``.

        The new password is checked against the policy before the token is
        consumed, so a rejected password leaves the link usable.
        """
        policy_result = validate_password(new_password, self.password_policy)
        if not policy_result.success:
            return FlowResult.fail(policy_result.message, policy_result.messages)

        consumed = await self.tokens.consume(email, token, purpose="password_reset")
        if consumed.error == "not_found":
            return await self._reject(email, INVALID_OR_EXPIRED_LINK)
        if consumed.error == "expired":
            return await self._reject(email, LINK_EXPIRED)

        user = await call_adapter(
            self.adapter.get_user_by_email(email),
            operation="get_user_by_email",
            timeout=self.storage_timeout,
        )
        if user is None:
            return await self._reject(email, USER_NOT_REGISTERED)

        updated = await call_adapter(
            self.adapter.update_user(
                user.id,
                {
                    "password_hash": await asyncio.to_thread(hash_password, new_password),
                    "login_attempts": 0,
                    "is_locked": False,
                    "lock_until": None,
                },
            ),
            operation="update_user",
            timeout=self.storage_timeout,
        )
        if updated is None:
            return await self._reject(email, USER_NOT_REGISTERED)

        await self.events.emit("password_reset", "success", email=email, user_id=user.id)
        return FlowResult.ok()

    async def _reject(self, email: str, error: str) -> FlowResult:
        await self.events.emit("password_reset", "rejected", email=email, reason=error)
        return FlowResult.fail(error)


__all__ = [
    "PasswordResetService",
    "INVALID_OR_EXPIRED_LINK",
    "LINK_EXPIRED",
]
