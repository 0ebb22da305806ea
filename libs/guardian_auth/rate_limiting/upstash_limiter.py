"""Rate limiter on Upstash Redis through its REST API (``upstash-redis``)."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from upstash_redis.asyncio import Redis as UpstashRedis

from libs.guardian_auth.config import RedisConfig
from libs.guardian_auth.rate_limiting.script import FIXED_WINDOW_SCRIPT, ScriptRateLimiter


def create_upstash_client(config: RedisConfig) -> UpstashRedis:
    token = config.token.get_secret_value() if config.token else ""
    return UpstashRedis(url=config.url or "", token=token)


class UpstashRateLimiter(ScriptRateLimiter):
    backend = "upstash"

    def __init__(self, client: UpstashRedis, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.client = client

    async def _eval(self, keys: Sequence[str], args: Sequence[str]) -> Any:
        return await self.client.eval(FIXED_WINDOW_SCRIPT, keys=list(keys), args=list(args))

    async def close(self) -> None:
        await self.client.close()


__all__ = ["UpstashRateLimiter", "create_upstash_client"]
