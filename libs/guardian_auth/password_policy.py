"""Password policy validation.

Counts characters per class rather than testing for presence, so a policy
can demand e.g. two digits. All violated rules are reported together so a
form can show the complete list in one round trip.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from libs.guardian_auth.config import PasswordPolicy

DEFAULT_SPECIAL_CHARS = '!@#$%^&*(),.?":{}|<>'
DEFAULT_MIN_LENGTH = 8
DEFAULT_MAX_LENGTH = 64

EMPTY_PASSWORD_MESSAGE = "Password cannot be empty"

_UPPERCASE = re.compile(r"[A-Z]")
_LOWERCASE = re.compile(r"[a-z]")
_DIGITS = re.compile(r"[0-9]")


@dataclass(frozen=True)
class PasswordValidationResult:
    """Outcome of a policy check."""

    success: bool
    messages: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        return "; ".join(self.messages)


def _required_count(rule: bool | int | None) -> int:
    """Translate a ``bool | int`` rule into a minimum count (0 = disabled)."""
    if rule is None or rule is False:
        return 0
    if rule is True:
        return 1
    return max(int(rule), 0)


def _class_message(required: int, singular: str, plural: str, suffix: str = "") -> str:
    if required == 1:
        return f"Password must contain at least one {singular}{suffix}"
    return f"Password must contain at least {required} {plural}{suffix}"


def validate_password(
    password: str | None, policy: PasswordPolicy | None = None
) -> PasswordValidationResult:
    """Validate ``password`` against ``policy`` (defaults when omitted).

    Never raises for string input; an empty or whitespace-only password is
    rejected up front without running the remaining rules.
    """
    if password is None or not password.strip():
        return PasswordValidationResult(success=False, messages=[EMPTY_PASSWORD_MESSAGE])

    min_length = policy.min_length if policy else DEFAULT_MIN_LENGTH
    max_length = policy.max_length if policy else DEFAULT_MAX_LENGTH
    special_chars = policy.special_chars if policy else DEFAULT_SPECIAL_CHARS

    messages: list[str] = []

    if len(password) < min_length:
        messages.append(f"Password must be at least {min_length} characters long")
    if len(password) > max_length:
        messages.append(f"Password must be no more than {max_length} characters long")

    rules = [
        (
            policy.require_uppercase if policy else True,
            _UPPERCASE,
            "uppercase letter",
            "uppercase letters",
        ),
        (
            policy.require_lowercase if policy else True,
            _LOWERCASE,
            "lowercase letter",
            "lowercase letters",
        ),
        (policy.require_numbers if policy else True, _DIGITS, "number", "numbers"),
    ]
    for rule, pattern, singular, plural in rules:
        required = _required_count(rule)
        if required and len(pattern.findall(password)) < required:
            messages.append(_class_message(required, singular, plural))

    required_special = _required_count(policy.require_special_chars if policy else True)
    if required_special:
        # Only characters listed in special_chars count; digits and letters
        # never do, even if someone lists them.
        allowed = "".join(ch for ch in special_chars if not ch.isalnum())
        count = len(re.findall(f"[{re.escape(allowed)}]", password)) if allowed else 0
        if count < required_special:
            messages.append(
                _class_message(
                    required_special,
                    "special character",
                    "special characters",
                    f" from: {special_chars}",
                )
            )

    return PasswordValidationResult(success=not messages, messages=messages)


__all__ = [
    "DEFAULT_SPECIAL_CHARS",
    "DEFAULT_MIN_LENGTH",
    "DEFAULT_MAX_LENGTH",
    "EMPTY_PASSWORD_MESSAGE",
    "PasswordValidationResult",
    "validate_password",
]
