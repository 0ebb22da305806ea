"""Request rate limiting with interchangeable backends.

Limiters are built explicitly with ``create_rate_limiter`` and passed to the
middleware that uses them; there is no shared module-level instance.
"""

from __future__ import annotations

from typing import Any

from libs.guardian_auth.config import RateLimitingConfig
from libs.guardian_auth.exceptions import ConfigError
from libs.guardian_auth.rate_limiting.base import (
    DisabledRateLimiter,
    EpochClock,
    KeyGenerator,
    RateLimiter,
    RateLimitResult,
    default_key_generator,
    make_key_generator,
)
from libs.guardian_auth.rate_limiting.memory import InMemoryRateLimiter
from libs.guardian_auth.rate_limiting.script import FIXED_WINDOW_SCRIPT, ScriptRateLimiter


def create_rate_limiter(
    config: RateLimitingConfig,
    *,
    redis_client: Any = None,
    clock: EpochClock | None = None,
) -> RateLimiter:
    """Build the limiter for ``config.strategy``.

    ``redis_client`` replaces the client the factory would otherwise build
    from ``config.redis`` (a ``redis.asyncio.Redis`` for the redis strategy,
    an ``upstash_redis.asyncio.Redis`` for upstash).

    Raises:
        ConfigError: If a networked strategy has no connection settings
    """
    if not config.enabled:
        return DisabledRateLimiter(clock=clock)

    limits: dict[str, Any] = {
        "max_requests": config.max_requests,
        "window_seconds": config.window_seconds,
        "block_duration_seconds": config.block_duration_seconds,
        "clock": clock,
    }

    if config.strategy == "memory":
        return InMemoryRateLimiter(**limits)

    remote = {**limits, "key_prefix": config.key_prefix, "timeout_seconds": config.timeout_seconds}

    if config.strategy == "redis":
        from libs.guardian_auth.rate_limiting.redis_limiter import (
            RedisRateLimiter,
            create_redis_client,
        )

        if redis_client is None:
            if config.redis is None or not config.redis.has_server:
                raise ConfigError("Redis configuration is required for the redis strategy")
            redis_client = create_redis_client(config.redis)
        return RedisRateLimiter(redis_client, **remote)

    if config.strategy == "upstash":
        from libs.guardian_auth.rate_limiting.upstash_limiter import (
            UpstashRateLimiter,
            create_upstash_client,
        )

        if redis_client is None:
            if config.redis is None or not config.redis.url or config.redis.token is None:
                raise ConfigError("Upstash url and token are required for the upstash strategy")
            redis_client = create_upstash_client(config.redis)
        return UpstashRateLimiter(redis_client, **remote)

    raise ConfigError(f"Unknown rate limit strategy: {config.strategy}")


__all__ = [
    "FIXED_WINDOW_SCRIPT",
    "DisabledRateLimiter",
    "EpochClock",
    "InMemoryRateLimiter",
    "KeyGenerator",
    "RateLimitResult",
    "RateLimiter",
    "ScriptRateLimiter",
    "create_rate_limiter",
    "default_key_generator",
    "make_key_generator",
]
