"""Password hashing and token generation primitives.

Hashing is delegated to argon2id (argon2-cffi). Everything random comes from
the ``secrets`` module or uuid4, never from ``random``.
"""

from __future__ import annotations

import logging
import secrets
import uuid

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

logger = logging.getLogger(__name__)

_hasher = PasswordHasher()

# Hash of a random throwaway secret. Verifying against it costs the same as a
# real verification, which keeps "unknown user" indistinguishable by timing.
_DECOY_HASH = _hasher.hash(secrets.token_urlsafe(16))


def hash_password(password: str) -> str:
    return _hasher.hash(password)


def verify_password(password_hash: str | None, password: str) -> bool:
    """Return True when ``password`` matches ``password_hash``.

    A missing or malformed hash is a mismatch, not an error. The decoy hash
    is verified in that case so the call still takes a full hash round.
    """
    if not password_hash:
        verify_decoy_password(password)
        return False
    try:
        return _hasher.verify(password_hash, password)
    except VerifyMismatchError:
        return False
    except (InvalidHashError, VerificationError):
        logger.warning("password_hash_unverifiable")
        return False


def verify_decoy_password(password: str) -> None:
    try:
        _hasher.verify(_DECOY_HASH, password)
    except VerificationError:
        pass


def needs_rehash(password_hash: str) -> bool:
    try:
        return _hasher.check_needs_rehash(password_hash)
    except InvalidHashError:
        return True


def generate_otp(length: int = 6) -> str:
    """Fixed-length numeric code; leading zeros are kept."""
    if length < 1:
        raise ValueError("OTP length must be positive")
    return str(secrets.randbelow(10**length)).zfill(length)


def generate_secure_token() -> str:
    return str(uuid.uuid4())


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


__all__ = [
    "hash_password",
    "verify_password",
    "verify_decoy_password",
    "needs_rehash",
    "generate_otp",
    "generate_secure_token",
    "generate_session_token",
]
