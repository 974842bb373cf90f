"""Redis client for request idempotency keys.

Usage:
    from escrow_settlement.infrastructure.redis_client import init_redis, close_redis

    client = await init_redis()
    keys = RedisIdempotencyStore(client, ttl_seconds=86400)
    existing = await keys.reserve("create-abc")
"""

from __future__ import annotations

import redis.asyncio as aioredis

from escrow_settlement.config import get_settings
from escrow_settlement.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None

PENDING = "pending"


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


class RedisIdempotencyStore:
    """Request idempotency keys with a TTL.

    A key is reserved atomically (SET NX) as ``pending`` before the work
    starts and overwritten with the result id once it finished.
    """

    def __init__(self, client: aioredis.Redis, ttl_seconds: int) -> None:
        self._client = client
        self._ttl_seconds = ttl_seconds

    @staticmethod
    def _key(key: str) -> str:
        return f"idempotency:{key}"

    async def reserve(self, key: str) -> str | None:
        """Reserve ``key``. Returns None if it was free, else its current value."""
        reserved = await self._client.set(self._key(key), PENDING, ex=self._ttl_seconds, nx=True)
        if reserved:
            return None
        return await self._client.get(self._key(key)) or PENDING

    async def complete(self, key: str, value: str) -> None:
        await self._client.set(self._key(key), value, ex=self._ttl_seconds)

    async def release(self, key: str) -> None:
        await self._client.delete(self._key(key))
