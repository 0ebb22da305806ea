"""Result types returned by the auth flows."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from libs.guardian_auth.adapters.base import User


@dataclass(frozen=True)
class FlowResult:
    """``{success, error?}`` outcome returned to auth endpoint callers."""

    success: bool
    error: str | None = None
    messages: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls) -> FlowResult:
        return cls(success=True)

    @classmethod
    def fail(cls, error: str, messages: list[str] | None = None) -> FlowResult:
        return cls(success=False, error=error, messages=messages or [])

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.error is not None:
            payload["error"] = self.error
        if self.messages:
            payload["messages"] = list(self.messages)
        return payload


@dataclass(frozen=True)
class RegistrationResult:
    success: bool
    user: User | None = None
    error: str | None = None
    messages: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SignInResult:
    session_token: str
    expires: datetime
    user: dict[str, Any]

    def public_user(self) -> dict[str, Any]:
        """JSON-safe subset of the user projection."""
        return {key: self.user.get(key) for key in ("id", "email", "name", "role")}


__all__ = ["FlowResult", "RegistrationResult", "SignInResult"]
