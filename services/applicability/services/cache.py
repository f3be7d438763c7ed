"""
Screening Cache
===============

Get-or-compute cache for screening results, keyed by organization and tier.

Guarantees:
- At most one computation in flight per (key, tier). Concurrent callers
  share it and all see the same result or the same failure.
- Failures are never cached.
- Entries expire after their own TTL; the in-memory backend also caps the
  entry count and evicts least-recently-used first.
- A computation that started before `invalidate(key)` is still returned to
  its waiters but never stored.
- Storage errors never fail a caller. A failed read is a miss; a failed
  write is logged and the computed value is still returned to every waiter.

Backends:
- InMemoryScreeningCache: per-process OrderedDict
- RedisScreeningCache: shared Redis, entries as JSON with SETEX

Version: 0.1.0
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from redis.exceptions import RedisError

from shared.config import CacheBackend, ScreeningSettings, settings
from shared.database.redis import RedisClient
from shared.logging import get_logger

from services.applicability.models.screening import ComplexityTier, ScreeningResult


logger = get_logger(__name__)

Slot = tuple[str, ComplexityTier]
ComputeFn = Callable[[], Awaitable[Any]]


def location_key_prefix(organization_id: str) -> str:
    """Common prefix of every location key of an organization."""
    return f"{organization_id}:location:"


def location_cache_key(organization_id: str, location_id: str) -> str:
    """Cache identity of one location screened on its own."""
    return f"{location_key_prefix(organization_id)}{location_id}"


@dataclass
class CacheStats:
    """Counters for cache behaviour."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    computations: int = 0
    failures: int = 0
    store_failures: int = 0
    size: int = 0


class ScreeningCache(ABC):
    """
    Single-flight front shared by every backend.

    Subclasses only provide storage: `_load`, `_save`, `_delete_key`,
    `_delete_prefix` and `_delete_all`. Storage failures never fail a
    caller: a failed save is logged and the computed value still returned.
    """

    def __init__(self) -> None:
        self._inflight: dict[Slot, asyncio.Future[Any]] = {}
        # Invalidation generation and running computations per key; both
        # are dropped once the key's last computation finishes
        self._generations: dict[str, int] = {}
        self._running: dict[str, int] = {}
        self._stats = CacheStats()

    async def get_or_compute(
        self,
        key: str,
        tier: ComplexityTier,
        compute_fn: ComputeFn,
        ttl_seconds: int,
    ) -> Any:
        """
        Return the fresh cached value or compute it once.

        Args:
            key: Organization (or location) identity
            tier: Complexity tier of the value
            compute_fn: Coroutine factory producing the value
            ttl_seconds: Time to live for a stored value

        Returns:
            Cached or freshly computed value

        Raises:
            Whatever compute_fn raises, to every concurrent waiter
        """
        slot = (key, tier)

        cached = await self._load(slot)
        if cached is not None:
            self._stats.hits += 1
            return cached

        self._stats.misses += 1

        inflight = self._inflight.get(slot)
        if inflight is not None:
            logger.debug("screening_cache_join", key=key, tier=tier.value)
            return await asyncio.shield(inflight)

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._inflight[slot] = future
        generation = self._generations.get(key, 0)
        self._running[key] = self._running.get(key, 0) + 1
        self._stats.computations += 1

        try:
            value = await compute_fn()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            self._stats.failures += 1
            future.set_exception(e)
            # Mark retrieved so an unwaited future doesn't log a warning
            future.exception()
            logger.warning(
                "screening_compute_failed",
                key=key,
                tier=tier.value,
                error=str(e),
            )
            raise
        else:
            # Waiters get the value before storage is attempted
            future.set_result(value)
            if self._generations.get(key, 0) == generation:
                await self._store(slot, value, ttl_seconds)
            else:
                logger.debug("screening_result_superseded", key=key, tier=tier.value)
            return value
        finally:
            if self._inflight.get(slot) is future:
                del self._inflight[slot]
            self._computation_finished(key)

    async def invalidate(self, key: str) -> int:
        """
        Drop every tier cached for a key.

        In-flight computations for the key finish for their current waiters
        but are not stored; later callers start a fresh computation.

        Returns:
            Number of entries removed
        """
        self._supersede(lambda k: k == key)
        removed = await self._delete_key(key)
        logger.debug("screening_cache_invalidated", key=key, removed=removed)
        return removed

    async def invalidate_prefix(self, prefix: str) -> int:
        """
        Drop every tier cached under any key starting with `prefix`.

        Used for location keys, whose ids may no longer be known.

        Returns:
            Number of entries removed
        """
        self._supersede(lambda k: k.startswith(prefix))
        removed = await self._delete_prefix(prefix)
        logger.debug("screening_cache_prefix_invalidated", prefix=prefix, removed=removed)
        return removed

    async def clear(self) -> None:
        """Drop every entry."""
        self._supersede(lambda k: True)
        await self._delete_all()

    async def peek(self, key: str, tier: ComplexityTier) -> Any:
        """Fresh cached value without computing, or None."""
        return await self._load((key, tier), touch=False)

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._stats.hits,
            misses=self._stats.misses,
            evictions=self._stats.evictions,
            computations=self._stats.computations,
            failures=self._stats.failures,
            store_failures=self._stats.store_failures,
            size=self._size(),
        )

    def tracked_keys(self) -> int:
        """Keys holding single-flight bookkeeping right now."""
        return len(self._running.keys() | self._generations.keys())

    def _supersede(self, matches: Callable[[str], bool]) -> None:
        # Only running computations can be superseded
        for key in [k for k in self._running if matches(k)]:
            self._generations[key] = self._generations.get(key, 0) + 1
        for slot in [s for s in self._inflight if matches(s[0])]:
            del self._inflight[slot]

    def _computation_finished(self, key: str) -> None:
        remaining = self._running.get(key, 0) - 1
        if remaining > 0:
            self._running[key] = remaining
        else:
            self._running.pop(key, None)
            self._generations.pop(key, None)

    async def _store(self, slot: Slot, value: Any, ttl_seconds: int) -> None:
        try:
            await self._save(slot, value, ttl_seconds)
        except Exception as e:
            self._stats.store_failures += 1
            logger.warning(
                "screening_cache_store_failed",
                key=slot[0],
                tier=slot[1].value,
                error=str(e),
            )

    @abstractmethod
    async def _load(self, slot: Slot, touch: bool = True) -> Any: ...

    @abstractmethod
    async def _save(self, slot: Slot, value: Any, ttl_seconds: int) -> None: ...

    @abstractmethod
    async def _delete_key(self, key: str) -> int: ...

    @abstractmethod
    async def _delete_prefix(self, prefix: str) -> int: ...

    @abstractmethod
    async def _delete_all(self) -> None: ...

    def _size(self) -> int:
        return 0


# =============================================================================
# In-Memory Backend
# =============================================================================


@dataclass
class _Entry:
    value: Any
    expires_at: float


class InMemoryScreeningCache(ScreeningCache):
    """
    Per-process LRU cache with per-entry expiry.

    The clock is injectable so tests can move time forward.
    """

    def __init__(
        self,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__()
        self.max_entries = max_entries or settings.screening.cache_max_entries
        self._clock = clock
        self._entries: OrderedDict[Slot, _Entry] = OrderedDict()

    async def _load(self, slot: Slot, touch: bool = True) -> Any:
        entry = self._entries.get(slot)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[slot]
            return None
        if touch:
            self._entries.move_to_end(slot)
        return entry.value

    async def _save(self, slot: Slot, value: Any, ttl_seconds: int) -> None:
        self._entries[slot] = _Entry(value=value, expires_at=self._clock() + ttl_seconds)
        self._entries.move_to_end(slot)

        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self._stats.evictions += 1
            logger.debug("screening_cache_evicted", key=evicted[0], tier=evicted[1].value)

    async def _delete_key(self, key: str) -> int:
        slots = [slot for slot in self._entries if slot[0] == key]
        for slot in slots:
            del self._entries[slot]
        return len(slots)

    async def _delete_prefix(self, prefix: str) -> int:
        slots = [slot for slot in self._entries if slot[0].startswith(prefix)]
        for slot in slots:
            del self._entries[slot]
        return len(slots)

    async def _delete_all(self) -> None:
        self._entries.clear()

    def _size(self) -> int:
        return len(self._entries)


# =============================================================================
# Redis Backend
# =============================================================================


class RedisScreeningCache(ScreeningCache):
    """
    Shared cache in Redis.

    Entries are ScreeningResult JSON under `screening:{key}:{tier}` with a
    SETEX TTL. Size is bounded by the server's allkeys-lru eviction policy.
    """

    def __init__(self, prefix: str = "screening") -> None:
        super().__init__()
        self.prefix = prefix

    def _redis_key(self, slot: Slot) -> str:
        key, tier = slot
        return f"{self.prefix}:{key}:{tier.value}"

    async def _load(self, slot: Slot, touch: bool = True) -> ScreeningResult | None:
        try:
            payload = await RedisClient.get_cached(self._redis_key(slot))
        except RedisError as e:
            logger.warning(
                "screening_cache_load_failed",
                key=slot[0],
                tier=slot[1].value,
                error=str(e),
            )
            return None
        if payload is None:
            return None
        return ScreeningResult.model_validate_json(payload)

    async def _save(self, slot: Slot, value: ScreeningResult, ttl_seconds: int) -> None:
        await RedisClient.set_cached(
            self._redis_key(slot),
            value.model_dump_json(),
            ttl_seconds=ttl_seconds,
        )

    async def _delete_key(self, key: str) -> int:
        return await RedisClient.delete_pattern(f"{self.prefix}:{key}:*")

    async def _delete_prefix(self, prefix: str) -> int:
        return await RedisClient.delete_pattern(f"{self.prefix}:{prefix}*")

    async def _delete_all(self) -> None:
        await RedisClient.delete_pattern(f"{self.prefix}:*")


def create_cache(screening: ScreeningSettings | None = None) -> ScreeningCache:
    """Build the configured cache backend."""
    screening = screening or settings.screening
    if screening.cache_backend == CacheBackend.REDIS:
        return RedisScreeningCache()
    return InMemoryScreeningCache(max_entries=screening.cache_max_entries)
