"""Redis client for idempotency keys.

Usage:
    from escrow_engine.infrastructure.redis_client import get_redis, close_redis

    redis = get_redis()
    await redis.set("key", "value", ex=3600)
"""

from __future__ import annotations

import json

import redis.asyncio as aioredis

from escrow_engine.config import get_settings
from escrow_engine.domain.exceptions import DuplicateOperationError
from escrow_engine.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


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


# --- Idempotency ---

_PENDING = "pending"


class RedisIdempotencyStore:
    """Claim/complete/release protocol for idempotency keys.

    A key moves ``absent -> "pending" -> <entity reference JSON>``. A failed
    operation deletes its key so the caller may retry with the same key.
    """

    def __init__(self, redis: aioredis.Redis, ttl_seconds: int = 86400) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    @staticmethod
    def key_for(operation: str, actor_id: str, idempotency_key: str) -> str:
        return f"idempotency:{operation}:{actor_id}:{idempotency_key}"

    async def claim(self, operation: str, actor_id: str, idempotency_key: str) -> dict | None:
        """Claim a key.

        Returns:
            None if the key was free and is now claimed by this call, or the
            stored entity reference if the operation already completed.

        Raises:
            DuplicateOperationError: If another call holds the key in flight.
        """
        full_key = self.key_for(operation, actor_id, idempotency_key)
        for _ in range(2):
            if await self._redis.set(full_key, _PENDING, nx=True, ex=self._ttl):
                return None
            stored = await self._redis.get(full_key)
            if stored is None:
                # Expired between SET and GET; try to claim again.
                continue
            if stored == _PENDING:
                raise DuplicateOperationError(idempotency_key)
            return json.loads(stored)
        raise DuplicateOperationError(idempotency_key)

    async def complete(
        self, operation: str, actor_id: str, idempotency_key: str, reference: dict
    ) -> None:
        await self._redis.set(
            self.key_for(operation, actor_id, idempotency_key),
            json.dumps(reference),
            ex=self._ttl,
        )

    async def release(self, operation: str, actor_id: str, idempotency_key: str) -> None:
        await self._redis.delete(self.key_for(operation, actor_id, idempotency_key))
