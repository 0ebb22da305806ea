"""Shared logic for rate limiters backed by a remote Redis-compatible store.

One Lua script performs the whole check server-side, so concurrent requests
from many instances cannot interleave between the block check, the counter
increment and the block write. Any backend failure or timeout fails open.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import abstractmethod
from collections.abc import Sequence
from typing import Any

from libs.guardian_auth.metrics import rate_limit_backend_errors_total, rate_limit_checks_total
from libs.guardian_auth.rate_limiting.base import EpochClock, RateLimiter, RateLimitResult

logger = logging.getLogger(__name__)

# KEYS[1]: counter key
# KEYS[2]: block key
# ARGV[1]: max requests per window
# ARGV[2]: window length (ms)
# ARGV[3]: block duration (ms)
# Returns {allowed, count, window_ttl_ms, block_ttl_ms}; block_ttl_ms is -1 when not blocked.
FIXED_WINDOW_SCRIPT = """
local counter_key = KEYS[1]
local block_key = KEYS[2]
local max_requests = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])
local block_ms = tonumber(ARGV[3])

local block_ttl = redis.call('PTTL', block_key)
if block_ttl > 0 then
    return {0, 0, block_ttl, block_ttl}
end

local count = redis.call('INCR', counter_key)
if count == 1 then
    redis.call('PEXPIRE', counter_key, window_ms)
end
local window_ttl = redis.call('PTTL', counter_key)
if window_ttl < 0 then
    redis.call('PEXPIRE', counter_key, window_ms)
    window_ttl = window_ms
end

if count > max_requests then
    if block_ms > 0 then
        redis.call('SET', block_key, 'blocked', 'PX', block_ms)
        return {0, count, window_ttl, block_ms}
    end
    return {0, count, window_ttl, -1}
end

return {1, count, window_ttl, -1}
"""


class ScriptRateLimiter(RateLimiter):
    """Runs ``FIXED_WINDOW_SCRIPT`` through a subclass-provided ``_eval``."""

    def __init__(
        self,
        *,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        block_duration_seconds: float = 300.0,
        key_prefix: str = "rate_limit:",
        timeout_seconds: float = 0.5,
        clock: EpochClock | None = None,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.block_duration_seconds = block_duration_seconds
        self.key_prefix = key_prefix
        self.timeout_seconds = timeout_seconds
        self.clock = clock or time.time

    @abstractmethod
    async def _eval(self, keys: Sequence[str], args: Sequence[str]) -> Any:
        """Evaluate the script on the backend and return its raw reply."""

    def keys_for(self, key: str) -> tuple[str, str]:
        return f"{self.key_prefix}{key}", f"{self.key_prefix}block:{key}"

    async def check(self, key: str) -> RateLimitResult:
        args = [
            str(self.max_requests),
            str(int(self.window_seconds * 1000)),
            str(int(self.block_duration_seconds * 1000)),
        ]
        try:
            async with asyncio.timeout(self.timeout_seconds):
                reply = await self._eval(self.keys_for(key), args)
            allowed, count, window_ttl_ms, block_ttl_ms = (int(value) for value in reply)
        except Exception as exc:
            rate_limit_backend_errors_total.labels(backend=self.backend).inc()
            rate_limit_checks_total.labels(backend=self.backend, result="error").inc()
            logger.warning(
                "rate_limit_backend_unavailable",
                extra={"backend": self.backend, "key": key, "error_type": type(exc).__name__},
            )
            return self._fail_open()

        now = self.clock()
        blocked_until = now + block_ttl_ms / 1000 if block_ttl_ms > 0 else None
        result = RateLimitResult(
            allowed=bool(allowed),
            remaining=max(self.max_requests - count, 0) if allowed else 0,
            reset_time=blocked_until or now + max(window_ttl_ms, 0) / 1000,
            limit=self.max_requests,
            blocked_until=blocked_until,
            checked_at=now,
        )
        rate_limit_checks_total.labels(
            backend=self.backend, result="allowed" if result.allowed else "blocked"
        ).inc()
        return result

    def _fail_open(self) -> RateLimitResult:
        now = self.clock()
        return RateLimitResult(
            allowed=True,
            remaining=self.max_requests,
            reset_time=now + self.window_seconds,
            limit=self.max_requests,
            checked_at=now,
        )


__all__ = ["FIXED_WINDOW_SCRIPT", "ScriptRateLimiter"]
