"""Polymarket adapter over the Gamma, Data and CLOB REST APIs.

All lookups go through the shared TTL cache. Loaders raise
``PayloadUnavailableError`` on a soft-null fetch so the cache can serve a
stale entry; when there is none the adapter logs and returns an empty
default. Raw JSON payloads are cached and decoded on the way out.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from prediction_market_scanner.clock import Clock, now_utc
from prediction_market_scanner.config import CacheSettings
from prediction_market_scanner.ingestor.cache import TTLCache
from prediction_market_scanner.ingestor.fetcher import Fetcher, PayloadUnavailableError
from prediction_market_scanner.ingestor.models import (
    Market,
    PricePoint,
    Trade,
    to_float,
)

logger = logging.getLogger(__name__)

# Default API endpoints
DEFAULT_GAMMA_URL = "https://gamma-api.polymarket.com"
DEFAULT_DATA_URL = "https://data-api.polymarket.com"
DEFAULT_CLOB_URL = "https://clob.polymarket.com"

# Crawl configuration
DEFAULT_CRAWL_PAGE_SIZE = 100
DEFAULT_CRAWL_MAX_FAILURES = 3

# Data API limits
HOLDERS_LIMIT = 20
POSITIONS_LIMIT = 20
WHALE_TRADES_LIMIT = 100
ACTIVITY_LIMIT = 100
DEFAULT_WHALE_MIN_USD = 500


def _as_list(payload: Any) -> list[Any]:
    return payload if isinstance(payload, list) else []


def _flatten_holders(payload: Any) -> list[dict[str, Any]]:
    """Holders arrive either flat or grouped per outcome token."""
    holders: list[dict[str, Any]] = []
    for item in _as_list(payload):
        if not isinstance(item, dict):
            continue
        nested = item.get("holders")
        if isinstance(nested, list):
            holders.extend(h for h in nested if isinstance(h, dict))
        else:
            holders.append(item)
    return holders


def _volume_24h(raw: dict[str, Any]) -> float:
    return to_float(raw.get("volume24hr"))


class PolymarketAdapter:
    """Fetch and normalize Polymarket markets, trades and wallet data.

    Example:
        ```python
        adapter = PolymarketAdapter(fetcher, cache)
        markets = await adapter.active_markets(50)
        trades = await adapter.trades(markets[0].market_id, limit=300)
        ```
    """

    def __init__(
        self,
        fetcher: Fetcher,
        cache: TTLCache,
        *,
        gamma_url: str = DEFAULT_GAMMA_URL,
        data_url: str = DEFAULT_DATA_URL,
        clob_url: str = DEFAULT_CLOB_URL,
        crawl_page_size: int = DEFAULT_CRAWL_PAGE_SIZE,
        crawl_max_failures: int = DEFAULT_CRAWL_MAX_FAILURES,
        ttls: CacheSettings | None = None,
        clock: Clock = now_utc,
    ) -> None:
        self._fetcher = fetcher
        self._cache = cache
        self._gamma_url = gamma_url.rstrip("/")
        self._data_url = data_url.rstrip("/")
        self._clob_url = clob_url.rstrip("/")
        self._crawl_page_size = crawl_page_size
        self._crawl_max_failures = crawl_max_failures
        self._ttl = ttls or CacheSettings()
        self._clock = clock

    async def _fetch(self, url: str, params: dict[str, Any] | None = None) -> Any:
        payload = await self._fetcher.get_json(url, params=params)
        if payload is None:
            raise PayloadUnavailableError(url)
        return payload

    async def _cached(
        self,
        key: str,
        ttl: float,
        loader: Callable[[], Awaitable[Any]],
        default: Any,
    ) -> Any:
        try:
            return await self._cache.compute(key, ttl, loader)
        except PayloadUnavailableError as e:
            logger.warning("No data for %s and nothing cached: %s", key, e)
            return default

    # ------------------------------------------------------------------
    # Markets
    # ------------------------------------------------------------------

    async def active_markets(self, limit: int) -> list[Market]:
        """Top ``limit`` open markets ordered by 24h volume."""

        async def load() -> list[Any]:
            payload = await self._fetch(
                f"{self._gamma_url}/markets",
                {"closed": "false", "limit": limit, "order": "volume24hr", "ascending": "false"},
            )
            return _as_list(payload)

        raw = await self._cached(
            f"market_list_active_{limit}", self._ttl.market_list_ttl, load, []
        )
        return [Market.from_gamma(m) for m in raw if isinstance(m, dict)]

    async def crawl_active_markets(self, max_markets: int) -> list[Market]:
        """Paginate every active market, deduplicate and sort by 24h volume.

        A failed page is skipped; the crawl stops on an empty or short page,
        after ``crawl_max_failures`` failed pages, or at ``max_markets``.
        """

        async def load() -> list[Any]:
            collected: list[dict[str, Any]] = []
            offset = 0
            failures = 0
            while len(collected) < max_markets and failures < self._crawl_max_failures:
                page = await self._fetcher.get_json(
                    f"{self._gamma_url}/markets",
                    params={"active": "true", "limit": self._crawl_page_size, "offset": offset},
                )
                if page is None:
                    failures += 1
                    logger.warning("Market crawl page at offset %d failed", offset)
                    offset += self._crawl_page_size
                    continue
                if not isinstance(page, list) or not page:
                    break
                collected.extend(m for m in page if isinstance(m, dict))
                offset += self._crawl_page_size
                if len(page) < self._crawl_page_size:
                    break

            if not collected and failures:
                raise PayloadUnavailableError(f"{self._gamma_url}/markets")

            seen: set[str] = set()
            deduped: list[dict[str, Any]] = []
            for m in collected:
                key = m.get("conditionId") or m.get("slug")
                if key and key not in seen:
                    seen.add(key)
                    deduped.append(m)
            deduped.sort(key=_volume_24h, reverse=True)
            logger.info("Crawled %d active markets (%d pages failed)", len(deduped), failures)
            return deduped[:max_markets]

        raw = await self._cached(
            f"market_list_all_{max_markets}", self._ttl.market_list_ttl, load, []
        )
        return [Market.from_gamma(m) for m in raw]

    async def resolved_markets(self, limit: int) -> list[Market]:
        """Most recently closed markets that have a settled (0 or 1) price."""

        async def load() -> list[Any]:
            payload = await self._fetch(
                f"{self._gamma_url}/markets",
                {"closed": "true", "limit": limit, "order": "closedTime", "ascending": "false"},
            )
            return _as_list(payload)

        raw = await self._cached(
            f"market_list_resolved_{limit}", self._ttl.market_list_ttl, load, []
        )
        markets = [Market.from_gamma(m) for m in raw if isinstance(m, dict)]
        return [m for m in markets if m.is_resolved]

    async def market_by_slug(self, slug: str) -> Market | None:
        raw = await self.raw_market_by_slug(slug)
        return Market.from_gamma(raw) if raw else None

    async def raw_market_by_slug(self, slug: str) -> dict[str, Any] | None:
        """Gamma record for ``slug`` (includes ``active``/``closed`` flags)."""

        async def load() -> list[Any]:
            payload = await self._fetch(f"{self._gamma_url}/markets", {"slug": slug, "limit": 1})
            return _as_list(payload)

        raw = await self._cached(f"slug_{slug}", self._ttl.slug_ttl, load, [])
        return raw[0] if raw and isinstance(raw[0], dict) else None

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    async def _raw_trades(self, market_id: str, limit: int) -> list[dict[str, Any]]:
        async def load() -> list[Any]:
            payload = await self._fetch(
                f"{self._data_url}/trades", {"market": market_id, "limit": limit}
            )
            return _as_list(payload)

        raw = await self._cached(f"trades_{market_id}_{limit}", self._ttl.trades_ttl, load, [])
        return [t for t in raw if isinstance(t, dict)]

    async def trades(self, market_id: str, limit: int = 300) -> list[Trade]:
        """Most recent trades for a market, in venue order."""
        return [Trade.from_data_api(t) for t in await self._raw_trades(market_id, limit)]

    async def recent_trades(
        self, market_id: str, window_hours: int, limit: int = 500
    ) -> list[Trade]:
        """Trades inside the trailing ``window_hours`` window."""
        cutoff = self._clock().timestamp() - window_hours * 3600
        return [t for t in await self.trades(market_id, limit) if t.timestamp >= cutoff]

    # ------------------------------------------------------------------
    # Whale data
    # ------------------------------------------------------------------

    async def holders(self, market_id: str) -> list[dict[str, Any]]:
        async def load() -> list[Any]:
            payload = await self._fetch(
                f"{self._data_url}/holders", {"market": market_id, "limit": HOLDERS_LIMIT}
            )
            return _flatten_holders(payload)

        return await self._cached(f"holders_{market_id}", self._ttl.whale_ttl, load, [])

    async def positions(self, market_id: str) -> list[dict[str, Any]]:
        """Top open positions by token size."""

        async def load() -> list[Any]:
            payload = await self._fetch(
                f"{self._data_url}/v1/market-positions",
                {
                    "market": market_id,
                    "status": "OPEN",
                    "sortBy": "TOKENS",
                    "limit": POSITIONS_LIMIT,
                },
            )
            if isinstance(payload, dict):
                payload = payload.get("positions")
            return [p for p in _as_list(payload) if isinstance(p, dict)]

        return await self._cached(f"positions_{market_id}", self._ttl.whale_ttl, load, [])

    async def whale_trades(
        self, market_id: str, min_usd: int = DEFAULT_WHALE_MIN_USD
    ) -> list[dict[str, Any]]:
        """Trades at or above ``min_usd`` cash value."""

        async def load() -> list[Any]:
            payload = await self._fetch(
                f"{self._data_url}/trades",
                {
                    "market": market_id,
                    "filterType": "CASH",
                    "filterAmount": min_usd,
                    "limit": WHALE_TRADES_LIMIT,
                },
            )
            return [t for t in _as_list(payload) if isinstance(t, dict)]

        return await self._cached(
            f"whale_trades_{market_id}_{min_usd}", self._ttl.whale_ttl, load, []
        )

    async def activity(self, wallet: str) -> list[dict[str, Any]]:
        """A wallet's recent activity feed."""

        async def load() -> list[Any]:
            payload = await self._fetch(
                f"{self._data_url}/activity", {"user": wallet, "limit": ACTIVITY_LIMIT}
            )
            return [a for a in _as_list(payload) if isinstance(a, dict)]

        return await self._cached(f"activity_{wallet}", self._ttl.activity_ttl, load, [])

    # ------------------------------------------------------------------
    # Price history
    # ------------------------------------------------------------------

    async def price_history(self, token_id: str, start: datetime) -> list[PricePoint]:
        """Daily YES-token price history from ``start``.

        Not cached: backtests ask for a different start per call.
        """
        payload = await self._fetcher.get_json(
            f"{self._clob_url}/prices-history",
            params={
                "market": token_id,
                "startTs": int(start.timestamp()),
                "resolution": "1d",
                "fidelity": 1,
            },
        )
        if not isinstance(payload, dict):
            return []
        points = [
            PricePoint.from_dict(p) for p in _as_list(payload.get("history")) if isinstance(p, dict)
        ]
        return [p for p in points if p.t > 0]
