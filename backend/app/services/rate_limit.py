from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

import redis
import redis.asyncio as aioredis

from app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class RateDecision:
    allowed: bool
    retry_after: float = 0.0


class SharedRateLimiter:
    """Fixed-window counter kept in Redis so every process instance shares it.

    One key per (bucket, window); the key expires with its window, so there is
    nothing to clean up. Redis being unreachable fails open.
    """

    def __init__(self, prefix: str, limit: int, window_seconds: float, client: aioredis.Redis | None = None):
        self.prefix = prefix
        self.limit = max(1, int(limit))
        self.window_seconds = float(window_seconds)
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
        return self._client

    async def hit(self, bucket: str, now: float | None = None) -> RateDecision:
        now = time.time() if now is None else now
        window = int(now // self.window_seconds)
        key = f"{self.prefix}:{bucket}:{window}"
        try:
            count = await self.client.incr(key)
            if count == 1:
                await self.client.expire(key, max(1, int(self.window_seconds) + 1))
        except redis.RedisError as e:
            logger.warning("rate limiter unavailable prefix=%s err=%s", self.prefix, str(e)[:220])
            return RateDecision(allowed=True)
        if count <= self.limit:
            return RateDecision(allowed=True)
        retry_after = (window + 1) * self.window_seconds - now
        return RateDecision(allowed=False, retry_after=max(0.0, retry_after))

    async def wait(self, bucket: str) -> None:
        """Block until the bucket has room in the current window."""
        while True:
            decision = await self.hit(bucket)
            if decision.allowed:
                return
            await asyncio.sleep(decision.retry_after or self.window_seconds)

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


def webhook_limiter() -> SharedRateLimiter:
    return SharedRateLimiter(
        prefix=f"{settings.APP_NAME}:ratelimit:webhook",
        limit=settings.WEBHOOK_RATE_LIMIT_PER_MINUTE,
        window_seconds=60,
    )


def partner_limiter() -> SharedRateLimiter:
    return SharedRateLimiter(
        prefix=f"{settings.APP_NAME}:ratelimit:esimaccess",
        limit=settings.ESIMACCESS_RATE_LIMIT_PER_SECOND,
        window_seconds=1,
    )
