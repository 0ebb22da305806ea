"""Rate limiter on a Redis server via ``redis.asyncio``."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import redis.asyncio as redis_asyncio

from libs.guardian_auth.config import RedisConfig
from libs.guardian_auth.rate_limiting.script import FIXED_WINDOW_SCRIPT, ScriptRateLimiter


def create_redis_client(config: RedisConfig) -> redis_asyncio.Redis:
    password = config.password.get_secret_value() if config.password else None
    if config.url:
        return redis_asyncio.Redis.from_url(
            config.url,
            username=config.username,
            password=password,
            socket_connect_timeout=config.connect_timeout_seconds,
        )
    return redis_asyncio.Redis(
        host=config.host or "localhost",
        port=config.port,
        db=config.db,
        username=config.username,
        password=password,
        ssl=config.tls,
        socket_connect_timeout=config.connect_timeout_seconds,
    )


class RedisRateLimiter(ScriptRateLimiter):
    backend = "redis"

    def __init__(self, client: redis_asyncio.Redis, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.client = client

    async def _eval(self, keys: Sequence[str], args: Sequence[str]) -> Any:
        return await self.client.eval(  # type: ignore[misc]
            FIXED_WINDOW_SCRIPT, len(keys), *keys, *args
        )

    async def close(self) -> None:
        await self.client.aclose()


__all__ = ["RedisRateLimiter", "create_redis_client"]
