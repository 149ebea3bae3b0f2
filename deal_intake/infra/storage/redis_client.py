"""Redis client accessor for async operations."""
from __future__ import annotations

from typing import Optional

from redis import asyncio as aioredis

from deal_intake.infra.config.settings import settings
from deal_intake.shared.logging import get_logger

logger = get_logger(__name__)


class _RedisHolder:
    """Container for Redis client singleton."""

    client: Optional[aioredis.Redis] = None

    def get(self) -> Optional[aioredis.Redis]:
        """Get cached client."""
        return self.client

    def set(self, val: Optional[aioredis.Redis]) -> None:
        """Set client."""
        self.client = val


_holder = _RedisHolder()


async def get_redis() -> aioredis.Redis:
    """Async Redis client accessor (cached)."""
    if _holder.client is not None:
        return _holder.client
    if not settings.redis_url:
        raise RuntimeError("REDIS_URL is not set")
    _holder.client = aioredis.Redis.from_url(settings.redis_url, decode_responses=True)
    logger.info("Using Redis client (redis.asyncio)")
    return _holder.client


async def close_redis() -> None:
    """Close the cached client, if any."""
    client = _holder.get()
    if client is None:
        return
    _holder.set(None)
    await client.aclose()
