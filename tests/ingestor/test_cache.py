"""Tests for the TTL cache."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from conftest import NOW
from redis.exceptions import RedisError

from prediction_market_scanner.clock import FrozenClock
from prediction_market_scanner.ingestor.cache import CacheEntry, TTLCache


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def cache(clock: FrozenClock) -> TTLCache:
    """In-process cache on the frozen clock."""
    return TTLCache(clock=clock)


class _Loader:
    """Counts calls and optionally fails."""

    def __init__(self, value: object = "fresh") -> None:
        self.value = value
        self.calls = 0
        self.error: Exception | None = None

    async def __call__(self) -> object:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.value


class TestGetSet:
    @pytest.mark.asyncio
    async def test_hit_within_ttl(self, cache: TTLCache, clock: FrozenClock) -> None:
        await cache.set("k", [1, 2])
        clock.advance(seconds=59)
        assert await cache.get("k", 60) == (True, [1, 2])

    @pytest.mark.asyncio
    async def test_miss_after_ttl(self, cache: TTLCache, clock: FrozenClock) -> None:
        await cache.set("k", [1, 2])
        clock.advance(seconds=60)
        assert await cache.get("k", 60) == (False, None)
        assert cache.stats.misses == 1

    @pytest.mark.asyncio
    async def test_same_entry_fresh_for_longer_ttl(
        self, cache: TTLCache, clock: FrozenClock
    ) -> None:
        await cache.set("k", "v")
        clock.advance(minutes=10)
        assert (await cache.get("k", 5 * 60))[0] is False
        assert (await cache.get("k", 15 * 60))[0] is True

    @pytest.mark.asyncio
    async def test_invalidate_and_clear(self, cache: TTLCache) -> None:
        await cache.set("a", 1)
        await cache.set("b", 2)
        cache.invalidate("a")
        assert len(cache) == 1
        cache.clear()
        assert len(cache) == 0


class TestCompute:
    @pytest.mark.asyncio
    async def test_loads_once_while_fresh(self, cache: TTLCache) -> None:
        loader = _Loader()
        assert await cache.compute("k", 60, loader) == "fresh"
        assert await cache.compute("k", 60, loader) == "fresh"
        assert loader.calls == 1
        assert cache.stats.hits == 1

    @pytest.mark.asyncio
    async def test_reloads_after_expiry(self, cache: TTLCache, clock: FrozenClock) -> None:
        loader = _Loader()
        await cache.compute("k", 60, loader)
        clock.advance(minutes=2)
        loader.value = "newer"
        assert await cache.compute("k", 60, loader) == "newer"
        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_stale_on_error(self, cache: TTLCache, clock: FrozenClock) -> None:
        loader = _Loader("old")
        await cache.compute("k", 60, loader)
        clock.advance(hours=1)
        loader.error = RuntimeError("venue down")

        assert await cache.compute("k", 60, loader) == "old"
        assert cache.stats.stale_served == 1
        assert cache.stats.load_failures == 1

    @pytest.mark.asyncio
    async def test_error_propagates_without_entry(self, cache: TTLCache) -> None:
        loader = _Loader()
        loader.error = RuntimeError("venue down")
        with pytest.raises(RuntimeError, match="venue down"):
            await cache.compute("k", 60, loader)
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_entries_expire_past_retention(self, clock: FrozenClock) -> None:
        cache = TTLCache(clock=clock, stale_retention_seconds=3600)
        await cache.set("k", "old")
        clock.advance(hours=2)
        loader = _Loader()
        loader.error = RuntimeError("venue down")
        with pytest.raises(RuntimeError):
            await cache.compute("k", 60, loader)


class TestRedisMirror:
    @pytest.mark.asyncio
    async def test_set_writes_through(self, clock: FrozenClock) -> None:
        redis = AsyncMock()
        cache = TTLCache(clock=clock, redis=redis, key_prefix="t:")
        await cache.set("k", {"a": 1})

        redis.set.assert_awaited_once()
        key, raw = redis.set.await_args.args
        assert key == "t:k"
        assert json.loads(raw) == {"ts": NOW.timestamp(), "value": {"a": 1}}

    @pytest.mark.asyncio
    async def test_reads_from_redis_on_local_miss(self, clock: FrozenClock) -> None:
        redis = AsyncMock()
        redis.get.return_value = CacheEntry(value=[1], ts=NOW.timestamp() - 10).to_json().encode()
        cache = TTLCache(clock=clock, redis=redis)

        assert await cache.get("k", 60) == (True, [1])
        assert cache.stats.redis_hits == 1

    @pytest.mark.asyncio
    async def test_redis_errors_degrade_to_local(self, clock: FrozenClock) -> None:
        redis = AsyncMock()
        redis.get.side_effect = RedisError("down")
        redis.set.side_effect = RedisError("down")
        cache = TTLCache(clock=clock, redis=redis)

        assert await cache.compute("k", 60, _Loader("v")) == "v"
        assert cache.stats.redis_errors == 2
        assert await cache.get("k", 60) == (True, "v")

    @pytest.mark.asyncio
    async def test_unreadable_redis_entry_is_a_miss(self, clock: FrozenClock) -> None:
        redis = AsyncMock()
        redis.get.return_value = b"not json"
        cache = TTLCache(clock=clock, redis=redis)
        assert await cache.get("k", 60) == (False, None)
