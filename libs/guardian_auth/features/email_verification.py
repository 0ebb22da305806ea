"""Email ownership verification by OTP or emailed link."""

from __future__ import annotations

import logging
from urllib.parse import urlencode, urlparse

from libs.guardian_auth.adapters.base import CredentialStoreAdapter, User, call_adapter
from libs.guardian_auth.clock import Clock, utc_now
from libs.guardian_auth.config import EmailVerificationOptions
from libs.guardian_auth.email.base import EmailKind, EmailOptions, EmailSender
from libs.guardian_auth.events import AuthEventLogger
from libs.guardian_auth.features.results import FlowResult
from libs.guardian_auth.features.tokens import VerificationTokenService

logger = logging.getLogger(__name__)

USER_NOT_REGISTERED = "User not registered!"
OTP_DOES_NOT_EXIST = "OTP does not exist!"
INVALID_TOKEN = "Invalid token"
TOKEN_EXPIRED = "Token has expired!"

OTP_SUBJECT = "Your Verification Code"
LINK_SUBJECT = "Verify Your Email"


class EmailVerificationService:
    def __init__(
        self,
        options: EmailVerificationOptions,
        adapter: CredentialStoreAdapter,
        email_sender: EmailSender,
        *,
        app_url: str,
        clock: Clock | None = None,
        storage_timeout: float | None = 5.0,
        events: AuthEventLogger | None = None,
    ) -> None:
        self.options = options
        self.adapter = adapter
        self.email_sender = email_sender
        self.app_url = app_url.rstrip("/")
        self.clock = clock or utc_now
        self.storage_timeout = storage_timeout
        self.events = events or AuthEventLogger()
        self.tokens = VerificationTokenService(
            adapter, clock=self.clock, storage_timeout=storage_timeout
        )

    async def _find_user(self, email: str) -> User | None:
        return await call_adapter(
            self.adapter.get_user_by_email(email),
            operation="get_user_by_email",
            timeout=self.storage_timeout,
        )

    async def send_otp(self, email: str) -> str | None:
        """Issue and email an OTP. Unregistered addresses get nothing (``None``)."""
        if await self._find_user(email) is None:
            logger.info("verification_skipped_unknown_email", extra={"email": email})
            return None

        otp = await self.tokens.issue_otp(
            email,
            length=self.options.otp_length,
            expiration_minutes=self.options.otp_expiration_minutes,
            purpose="email_verification",
        )
        await self.email_sender.send(
            EmailOptions(
                to=email,
                subject=OTP_SUBJECT,
                kind=EmailKind.OTP,
                otp=otp,
                host=urlparse(self.app_url).netloc,
            )
        )
        await self.events.emit("email_verification_sent", "success", email=email, method="otp")
        return otp

    async def send_link(self, email: str) -> str | None:
        """Issue and email a verification link. Unregistered addresses get ``None``."""
        if await self._find_user(email) is None:
            logger.info("verification_skipped_unknown_email", extra={"email": email})
            return None

        token = await self.tokens.issue_link_token(
            email,
            expiration_minutes=self.options.token_expiration_minutes,
            purpose="email_verification",
        )
        link = f"{self.app_url}/verify-email?{urlencode({'token': token, 'email': email})}"
        await self.email_sender.send(
            EmailOptions(to=email, subject=LINK_SUBJECT, kind=EmailKind.MAGIC_LINK, url=link)
        )
        await self.events.emit("email_verification_sent", "success", email=email, method="link")
        return token

    async def initiate_email_verification(self, email: str) -> str | None:
        if self.options.method == "otp":
            return await self.send_otp(email)
        return await self.send_link(email)

    async def verify_otp(self, email: str, otp: str) -> FlowResult:
        return await self._verify(email, otp, missing_error=OTP_DOES_NOT_EXIST)

    async def verify_token(self, email: str, token: str) -> FlowResult:
        return await self._verify(email, token, missing_error=INVALID_TOKEN)

    async def _verify(self, email: str, presented: str, *, missing_error: str) -> FlowResult:
        user = await self._find_user(email)
        if user is None:
            return await self._reject(email, USER_NOT_REGISTERED)

        consumed = await self.tokens.consume(email, presented, purpose="email_verification")
        if consumed.error == "not_found":
            return await self._reject(email, missing_error)
        if consumed.error == "expired":
            return await self._reject(email, TOKEN_EXPIRED)

        updated = await call_adapter(
            self.adapter.update_user(user.id, {"email_verified": self.clock()}),
            operation="update_user",
            timeout=self.storage_timeout,
        )
        if updated is None:
            return await self._reject(email, USER_NOT_REGISTERED)

        await self.events.emit("email_verified", "success", email=email, user_id=user.id)
        return FlowResult.ok()

    async def _reject(self, email: str, error: str) -> FlowResult:
        await self.events.emit("email_verified", "rejected", email=email, reason=error)
        return FlowResult.fail(error)


__all__ = [
    "EmailVerificationService",
    "USER_NOT_REGISTERED",
    "OTP_DOES_NOT_EXIST",
    "INVALID_TOKEN",
    "TOKEN_EXPIRED",
]
