"""
Redis Client
============

Async Redis client backing the shared screening-result cache.

All keys are namespaced with `settings.redis.key_prefix`, so several
deployments can share one Redis database. Entry count is bounded by the
server's eviction policy; `health_check` reports it so a missing
`allkeys-lru` policy shows up on /health.

Version: 0.1.0
"""

import time
from typing import Any

import redis.asyncio as aioredis
from redis.asyncio import Redis

from shared.config import settings
from shared.logging import get_logger

logger = get_logger(__name__)

# Keys deleted per UNLINK call during pattern invalidation
_DELETE_BATCH = 500

EXPECTED_EVICTION_POLICY = "allkeys-lru"


class RedisClient:
    """
    Async Redis client wrapper.

    Stores opaque string payloads with a TTL; serialization is the
    caller's concern.
    """

    _client: Redis | None = None  # type: ignore[type-arg]

    @classmethod
    def get_client(cls) -> Redis:  # type: ignore[type-arg]
        """Get or create the async client."""
        if cls._client is None:
            cls._client = aioredis.from_url(
                settings.redis.url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=settings.redis.max_connections,
                socket_timeout=settings.redis.socket_timeout_seconds,
            )
            logger.info("redis_client_created", host=settings.redis.host, db=settings.redis.db)
        return cls._client

    @classmethod
    async def close(cls) -> None:
        """Close the client and release all connections."""
        if cls._client is not None:
            await cls._client.aclose()
            cls._client = None
            logger.info("redis_client_closed")

    @classmethod
    async def health_check(cls) -> dict[str, Any]:
        """Ping latency, memory use and eviction policy."""
        try:
            start = time.perf_counter()
            client = cls.get_client()
            pong = await client.ping()
            latency_ms = (time.perf_counter() - start) * 1000

            memory = await client.info("memory")
            policy = memory.get("maxmemory_policy", "unknown")
            if policy != EXPECTED_EVICTION_POLICY:
                logger.warning(
                    "redis_eviction_policy_unbounded",
                    policy=policy,
                    expected=EXPECTED_EVICTION_POLICY,
                )

            return {
                "status": "healthy" if pong else "unhealthy",
                "latency_ms": round(latency_ms, 2),
                "used_memory": memory.get("used_memory_human", "unknown"),
                "maxmemory_policy": policy,
            }
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e),
            }

    @classmethod
    def namespaced(cls, key: str) -> str:
        return f"{settings.redis.key_prefix}:{key}"

    # =========================================================================
    # Payload Storage
    # =========================================================================

    @classmethod
    async def get_cached(cls, key: str) -> str | None:
        """Stored payload, or None when absent or expired."""
        return await cls.get_client().get(cls.namespaced(key))

    @classmethod
    async def set_cached(cls, key: str, value: str, ttl_seconds: int = 3600) -> bool:
        """
        Store a payload with SETEX.

        Args:
            key: Cache key, without namespace
            value: Serialized payload
            ttl_seconds: Time to live; at least one second

        Returns:
            True if stored
        """
        client = cls.get_client()
        return bool(await client.setex(cls.namespaced(key), max(1, ttl_seconds), value))

    @classmethod
    async def delete_pattern(cls, pattern: str) -> int:
        """
        Delete every key matching a glob pattern.

        Uses SCAN and batched UNLINK so a large invalidation never blocks
        the server.

        Args:
            pattern: Key pattern without namespace, e.g. "screening:org-1:*"

        Returns:
            Number of keys deleted
        """
        client = cls.get_client()
        deleted = 0
        batch: list[str] = []

        async for key in client.scan_iter(match=cls.namespaced(pattern), count=_DELETE_BATCH):
            batch.append(key)
            if len(batch) >= _DELETE_BATCH:
                deleted += await client.unlink(*batch)
                batch.clear()

        if batch:
            deleted += await client.unlink(*batch)

        logger.debug("redis_keys_deleted", pattern=pattern, deleted=deleted)
        return deleted
