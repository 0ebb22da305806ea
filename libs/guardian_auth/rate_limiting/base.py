"""Rate limiter contract, result type and request key derivation."""

from __future__ import annotations

import math
import sys
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from starlette.requests import HTTPConnection

from libs.guardian_auth.client_ip import TrustedProxy, get_client_ip
from libs.guardian_auth.session import get_session, session_user_id

EpochClock = Callable[[], float]
KeyGenerator = Callable[[HTTPConnection], str]


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one rate limit check. Times are epoch seconds.

    ``Retry-After`` is measured from ``checked_at``, the limiter clock reading
    taken during the check.
    """

    allowed: bool
    remaining: int
    reset_time: float
    limit: int
    blocked_until: float | None = None
    checked_at: float | None = None

    def headers(self, now: float | None = None) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(self.remaining, 0)),
            "X-RateLimit-Reset": str(math.ceil(self.reset_time)),
        }
        if not self.allowed:
            if now is None:
                now = self.checked_at if self.checked_at is not None else time.time()
            retry_at = self.blocked_until if self.blocked_until is not None else self.reset_time
            headers["Retry-After"] = str(max(math.ceil(retry_at - now), 0))
        return headers


class RateLimiter(ABC):
    backend: str

    @abstractmethod
    async def check(self, key: str) -> RateLimitResult:
        """Count one request for ``key`` and report whether it may proceed."""

    async def close(self) -> None:
        """Release backend connections. Default: nothing to release."""


class DisabledRateLimiter(RateLimiter):
    """Always allows; touches no backend."""

    backend = "disabled"

    def __init__(self, clock: EpochClock | None = None) -> None:
        self.clock = clock or time.time

    async def check(self, key: str) -> RateLimitResult:
        now = self.clock()
        return RateLimitResult(
            allowed=True,
            remaining=sys.maxsize,
            reset_time=now,
            limit=sys.maxsize,
            checked_at=now,
        )


def make_key_generator(trusted_proxies: Iterable[TrustedProxy] = ()) -> KeyGenerator:
    """Key by signed-in user (``user:<id>``), else by client IP (``ip:<addr>``)."""
    proxies = tuple(trusted_proxies)

    def key_generator(connection: HTTPConnection) -> str:
        user_id = session_user_id(get_session(connection))
        if user_id:
            return f"user:{user_id}"
        return f"ip:{get_client_ip(connection, proxies)}"

    return key_generator


default_key_generator = make_key_generator()


__all__ = [
    "EpochClock",
    "KeyGenerator",
    "RateLimitResult",
    "RateLimiter",
    "DisabledRateLimiter",
    "make_key_generator",
    "default_key_generator",
]
