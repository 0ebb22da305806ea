"""Basic format checks for login and registration input."""

from __future__ import annotations

import re

EMAIL_MAX_LENGTH = 255
PASSWORD_MAX_INPUT_LENGTH = 1024

_EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def normalize_email(email: str) -> str:
    """Canonical form used for lookups; the stored address keeps its case."""
    return email.strip().lower()


def validate_email(email: object) -> bool:
    if not isinstance(email, str):
        return False
    candidate = email.strip()
    if not candidate or len(candidate) > EMAIL_MAX_LENGTH:
        return False
    return bool(_EMAIL_PATTERN.match(candidate))


def validate_credentials(email: object, password: object) -> bool:
    """Format gate for a login attempt.

    Password *policy* is deliberately not applied here: tightening the policy
    must not lock out users whose existing password predates it.
    """
    if not validate_email(email):
        return False
    if not isinstance(password, str) or not password:
        return False
    return len(password) <= PASSWORD_MAX_INPUT_LENGTH


__all__ = [
    "EMAIL_MAX_LENGTH",
    "PASSWORD_MAX_INPUT_LENGTH",
    "normalize_email",
    "validate_email",
    "validate_credentials",
]
