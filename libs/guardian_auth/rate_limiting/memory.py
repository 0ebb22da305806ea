"""Fixed-window rate limiter held in process memory.

Suitable for single-instance deployments; state is lost on restart. Expired
windows are dropped lazily on the next check for the same key, and checks
run ``sweep()`` at most once per window so keys that never return do not
accumulate.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from libs.guardian_auth.metrics import rate_limit_checks_total
from libs.guardian_auth.rate_limiting.base import EpochClock, RateLimiter, RateLimitResult

logger = logging.getLogger(__name__)


@dataclass
class _WindowRecord:
    window_start: float
    count: int = 0
    blocked_until: float | None = None


class InMemoryRateLimiter(RateLimiter):
    backend = "memory"

    def __init__(
        self,
        *,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        block_duration_seconds: float = 300.0,
        clock: EpochClock | None = None,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.block_duration_seconds = block_duration_seconds
        self.clock = clock or time.time
        self._records: dict[str, _WindowRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._last_sweep = self.clock()

    async def check(self, key: str) -> RateLimitResult:
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            now = self.clock()
            result = self._check(key, now)
        if now - self._last_sweep >= self.window_seconds:
            self._last_sweep = now
            removed = self.sweep()
            if removed:
                logger.debug(
                    "rate_limit_records_swept",
                    extra={"removed": removed, "backend": self.backend},
                )
        rate_limit_checks_total.labels(
            backend=self.backend, result="allowed" if result.allowed else "blocked"
        ).inc()
        return result

    def _check(self, key: str, now: float) -> RateLimitResult:
        record = self._records.get(key)

        # A live block wins over any window accounting.
        if record is not None and record.blocked_until is not None:
            if record.blocked_until > now:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_time=record.blocked_until,
                    limit=self.max_requests,
                    blocked_until=record.blocked_until,
                    checked_at=now,
                )
            record.blocked_until = None

        if record is None or now - record.window_start >= self.window_seconds:
            record = _WindowRecord(window_start=now)
            self._records[key] = record

        record.count += 1
        window_end = record.window_start + self.window_seconds

        if record.count > self.max_requests:
            blocked_until = None
            if self.block_duration_seconds > 0:
                blocked_until = now + self.block_duration_seconds
                record.blocked_until = blocked_until
                logger.info(
                    "rate_limit_blocked",
                    extra={"key": key, "blocked_until": blocked_until, "backend": self.backend},
                )
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_time=blocked_until or window_end,
                limit=self.max_requests,
                blocked_until=blocked_until,
                checked_at=now,
            )

        return RateLimitResult(
            allowed=True,
            remaining=self.max_requests - record.count,
            reset_time=window_end,
            limit=self.max_requests,
            checked_at=now,
        )

    def sweep(self) -> int:
        """Drop records whose window and block have both lapsed. Returns the count removed."""
        now = self.clock()
        stale = [
            key
            for key, record in self._records.items()
            if now - record.window_start >= self.window_seconds
            and (record.blocked_until is None or record.blocked_until <= now)
        ]
        for key in stale:
            del self._records[key]
            lock = self._locks.get(key)
            if lock is not None and not lock.locked():
                del self._locks[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._records)


__all__ = ["InMemoryRateLimiter"]
