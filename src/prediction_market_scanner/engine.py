"""Engine context shared by every scan operation.

The engine owns the process-wide state (TTL cache, velocity ring, HTTP
client) and the two venue adapters built on top of it. Operations receive
it explicitly instead of reaching for module-level singletons.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from redis.asyncio import Redis

from prediction_market_scanner.clock import Clock, now_utc
from prediction_market_scanner.config import Settings, get_settings
from prediction_market_scanner.detector.velocity import VelocityTracker
from prediction_market_scanner.ingestor.cache import TTLCache
from prediction_market_scanner.ingestor.fetcher import Fetcher
from prediction_market_scanner.ingestor.kalshi import KalshiAdapter
from prediction_market_scanner.ingestor.polymarket import PolymarketAdapter

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    """Cache, velocity store, clock, fetcher and venue adapters.

    Example:
        ```python
        engine = Engine.create(get_settings())
        try:
            result = await scan(engine, ScanOptions(limit=50))
        finally:
            await engine.aclose()
        ```
    """

    settings: Settings
    cache: TTLCache
    velocity: VelocityTracker
    clock: Clock
    fetcher: Fetcher
    polymarket: PolymarketAdapter
    kalshi: KalshiAdapter
    redis: Redis | None = field(default=None, repr=False)

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        *,
        clock: Clock = now_utc,
        fetcher: Fetcher | None = None,
        redis: Redis | None = None,
    ) -> Engine:
        """Wire an engine from settings.

        Args:
            settings: Application settings (defaults to ``get_settings()``).
            clock: Wall clock for cache ageing and scoring.
            fetcher: Pre-built fetcher (tests pass one over a MockTransport).
            redis: Pre-built Redis client; otherwise one is created from
                ``REDIS_URL`` when set.
        """
        settings = settings or get_settings()
        if redis is None and settings.redis.url:
            redis = Redis.from_url(settings.redis.url)

        fetcher = fetcher or Fetcher(
            timeout=settings.http.timeout_seconds,
            max_concurrency=settings.http.max_concurrency,
            requests_per_second=settings.http.requests_per_second,
            user_agent=settings.http.user_agent,
        )
        cache = TTLCache(
            clock=clock,
            redis=redis,
            key_prefix=settings.cache.key_prefix,
            stale_retention_seconds=settings.cache.stale_retention,
        )
        polymarket = PolymarketAdapter(
            fetcher,
            cache,
            gamma_url=settings.polymarket.gamma_url,
            data_url=settings.polymarket.data_url,
            clob_url=settings.polymarket.clob_url,
            crawl_page_size=settings.polymarket.crawl_page_size,
            crawl_max_failures=settings.polymarket.crawl_max_failures,
            ttls=settings.cache,
            clock=clock,
        )
        kalshi = KalshiAdapter(
            fetcher,
            cache,
            api_url=settings.kalshi.api_url,
            batch_size=settings.kalshi.batch_size,
            batch_delay_ms=settings.kalshi.batch_delay_ms,
            page_delay_ms=settings.kalshi.page_delay_ms,
            max_pages=settings.kalshi.max_pages,
            exclude_sports=settings.kalshi.exclude_sports,
            ttls=settings.cache,
        )
        logger.debug("Engine created (redis=%s)", "on" if redis is not None else "off")
        return cls(
            settings=settings,
            cache=cache,
            velocity=VelocityTracker(),
            clock=clock,
            fetcher=fetcher,
            polymarket=polymarket,
            kalshi=kalshi,
            redis=redis,
        )

    def now(self) -> datetime:
        return self.clock()

    async def aclose(self) -> None:
        """Close the HTTP client and the Redis connection."""
        await self.fetcher.aclose()
        if self.redis is not None:
            await self.redis.aclose()
        logger.debug("Engine closed")
