"""Single-use, time-bound verification tokens.

OTPs are fixed-length numeric strings; link tokens are uuid4 strings. Every
token is persisted with an explicit expiry and consumed through the adapter's
atomic take, so a token is gone after the first presentation whether or not
it had expired.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Literal

from libs.guardian_auth.adapters.base import (
    CredentialStoreAdapter,
    TokenKind,
    TokenPurpose,
    VerificationToken,
    call_adapter,
)
from libs.guardian_auth.clock import Clock, utc_now
from libs.guardian_auth.security import generate_otp, generate_secure_token
from libs.guardian_auth.validation import normalize_email

DEFAULT_EXPIRATION_MINUTES = 15

ConsumeError = Literal["not_found", "expired"]


@dataclass(frozen=True)
class TokenConsumeResult:
    success: bool
    error: ConsumeError | None = None
    record: VerificationToken | None = None


class VerificationTokenService:
    """Issues and consumes verification tokens through the credential store."""

    def __init__(
        self,
        adapter: CredentialStoreAdapter,
        *,
        clock: Clock | None = None,
        storage_timeout: float | None = 5.0,
    ) -> None:
        self.adapter = adapter
        self.clock = clock or utc_now
        self.storage_timeout = storage_timeout

    async def _store(
        self,
        identifier: str,
        value: str,
        *,
        kind: TokenKind,
        purpose: TokenPurpose,
        expiration_minutes: float,
    ) -> str:
        record = VerificationToken(
            identifier=normalize_email(identifier),
            token=value,
            kind=kind,
            purpose=purpose,
            expires=self.clock() + timedelta(minutes=expiration_minutes),
        )
        await call_adapter(
            self.adapter.create_verification_token(record),
            operation="create_verification_token",
            timeout=self.storage_timeout,
        )
        return value

    async def issue_otp(
        self,
        identifier: str,
        *,
        length: int = 6,
        expiration_minutes: float = DEFAULT_EXPIRATION_MINUTES,
        purpose: TokenPurpose = "email_verification",
    ) -> str:
        return await self._store(
            identifier,
            generate_otp(length),
            kind="otp",
            purpose=purpose,
            expiration_minutes=expiration_minutes,
        )

    async def issue_link_token(
        self,
        identifier: str,
        *,
        expiration_minutes: float = DEFAULT_EXPIRATION_MINUTES,
        purpose: TokenPurpose = "email_verification",
    ) -> str:
        return await self._store(
            identifier,
            generate_secure_token(),
            kind="link",
            purpose=purpose,
            expiration_minutes=expiration_minutes,
        )

    async def consume(
        self,
        identifier: str,
        presented: str,
        *,
        purpose: TokenPurpose | None = None,
    ) -> TokenConsumeResult:
        """Take the token in one adapter call, then check its expiry.

        Raises:
            StorageError: If the credential store fails
        """
        if not identifier or not presented:
            return TokenConsumeResult(success=False, error="not_found")

        record = await call_adapter(
            self.adapter.use_verification_token(
                normalize_email(identifier), presented, purpose=purpose
            ),
            operation="use_verification_token",
            timeout=self.storage_timeout,
        )
        if record is None:
            return TokenConsumeResult(success=False, error="not_found")
        if record.expires < self.clock():
            return TokenConsumeResult(success=False, error="expired", record=record)
        return TokenConsumeResult(success=True, record=record)


__all__ = [
    "DEFAULT_EXPIRATION_MINUTES",
    "ConsumeError",
    "TokenConsumeResult",
    "VerificationTokenService",
]
