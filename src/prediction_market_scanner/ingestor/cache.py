"""TTL cache with stale-on-error fallback and an optional Redis mirror.

One store holds every logical bucket (``market_list_*``, ``trades_*``,
``holders_*`` ...); the TTL is supplied per lookup, so the same entry can be
fresh for one caller and stale for another. Expired entries are kept until
``stale_retention_seconds`` so a failing loader can still be answered.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError

from prediction_market_scanner.clock import Clock, now_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default configuration
DEFAULT_KEY_PREFIX = "pms:cache:"
DEFAULT_STALE_RETENTION_SECONDS = 86_400  # 24 hours


@dataclass(frozen=True)
class CacheEntry:
    """A cached value tagged with its wall-clock insertion time (epoch seconds)."""

    value: Any
    ts: float

    def age(self, now_ts: float) -> float:
        return now_ts - self.ts

    def to_json(self) -> str:
        return json.dumps({"ts": self.ts, "value": self.value})

    @classmethod
    def from_json(cls, raw: str | bytes) -> CacheEntry:
        if isinstance(raw, bytes):
            raw = raw.decode()
        data = json.loads(raw)
        return cls(value=data["value"], ts=float(data["ts"]))


@dataclass
class CacheStats:
    """Statistics for cache usage."""

    hits: int = 0
    misses: int = 0
    loads: int = 0
    load_failures: int = 0
    stale_served: int = 0
    redis_hits: int = 0
    redis_errors: int = 0


class TTLCache:
    """Key -> (value, ts) store shared by every adapter.

    ``compute`` is the main entry point: it returns a fresh entry when one
    exists, otherwise calls the loader. When the loader raises, the most
    recent entry for the key is returned even if it has expired; only when
    no entry exists does the exception propagate. Failures are never cached.

    Values mirrored to Redis must be JSON-serializable, which is why adapters
    cache raw venue payloads and decode after the lookup.

    Example:
        ```python
        cache = TTLCache(redis=Redis.from_url("redis://localhost:6379"))
        markets = await cache.compute(
            "market_list_active_50", settings.cache.market_list_ttl, load_markets
        )
        ```
    """

    def __init__(
        self,
        *,
        clock: Clock = now_utc,
        redis: Redis | None = None,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        stale_retention_seconds: int = DEFAULT_STALE_RETENTION_SECONDS,
    ) -> None:
        """Initialize the cache.

        Args:
            clock: Wall clock used to stamp and age entries.
            redis: Optional Redis client mirroring entries across replicas.
            key_prefix: Redis key prefix.
            stale_retention_seconds: How long expired entries stay usable
                for stale-on-error and in Redis.
        """
        self._clock = clock
        self._redis = redis
        self._key_prefix = key_prefix
        self._stale_retention = stale_retention_seconds
        self._entries: dict[str, CacheEntry] = {}
        self._stats = CacheStats()

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def __len__(self) -> int:
        return len(self._entries)

    def _now_ts(self) -> float:
        return self._clock().timestamp()

    def _redis_key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    async def _lookup(self, key: str) -> CacheEntry | None:
        """Return the newest entry for ``key`` regardless of TTL."""
        entry = self._entries.get(key)
        if entry is not None and entry.age(self._now_ts()) >= self._stale_retention:
            # Lazy eviction on access
            del self._entries[key]
            entry = None

        if entry is None and self._redis is not None:
            entry = await self._redis_get(key)
            if entry is not None:
                self._stats.redis_hits += 1
                self._entries[key] = entry

        return entry

    async def _redis_get(self, key: str) -> CacheEntry | None:
        assert self._redis is not None
        try:
            raw = await self._redis.get(self._redis_key(key))
        except RedisError as e:
            self._stats.redis_errors += 1
            logger.warning("Redis read failed for %s: %s", key, e)
            return None
        if not raw:
            return None
        try:
            return CacheEntry.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable cache entry %s: %s", key, e)
            return None

    async def get(self, key: str, ttl: float) -> tuple[bool, Any]:
        """Look up ``key``.

        Args:
            key: Cache key.
            ttl: Freshness window in seconds.

        Returns:
            ``(True, value)`` on a hit (entry younger than ``ttl``),
            otherwise ``(False, None)``.
        """
        entry = await self._lookup(key)
        if entry is not None and entry.age(self._now_ts()) < ttl:
            self._stats.hits += 1
            return True, entry.value
        self._stats.misses += 1
        return False, None

    async def set(self, key: str, value: Any) -> None:
        """Insert ``value`` stamped with the current time (last writer wins)."""
        entry = CacheEntry(value=value, ts=self._now_ts())
        self._entries[key] = entry

        if self._redis is not None:
            try:
                await self._redis.set(
                    self._redis_key(key), entry.to_json(), ex=self._stale_retention
                )
            except (RedisError, TypeError, ValueError) as e:
                self._stats.redis_errors += 1
                logger.warning("Redis write failed for %s: %s", key, e)

    async def compute(
        self,
        key: str,
        ttl: float,
        loader: Callable[[], Awaitable[T]],
    ) -> T:
        """Return a fresh cached value or load, store and return a new one.

        Args:
            key: Cache key.
            ttl: Freshness window in seconds.
            loader: Coroutine function producing the value on a miss.

        Returns:
            The cached or freshly loaded value.

        Raises:
            Exception: Whatever ``loader`` raised, when no entry (fresh or
                stale) exists for ``key``.
        """
        entry = await self._lookup(key)
        if entry is not None and entry.age(self._now_ts()) < ttl:
            self._stats.hits += 1
            value: T = entry.value
            return value

        self._stats.misses += 1
        self._stats.loads += 1
        try:
            loaded = await loader()
        except Exception as e:
            self._stats.load_failures += 1
            if entry is None:
                raise
            self._stats.stale_served += 1
            logger.warning(
                "Serving stale entry for %s (age %.0fs) after load failure: %s",
                key,
                entry.age(self._now_ts()),
                e,
            )
            stale: T = entry.value
            return stale

        await self.set(key, loaded)
        return loaded

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every in-process entry."""
        self._entries.clear()
