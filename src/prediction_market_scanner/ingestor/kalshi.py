"""Kalshi adapter over the public trade API (v2).

Kalshi prices are quoted in cents and trades carry no trader identity; see
``Trade.from_kalshi`` for the synthetic per-trade wallet. Event listing is
cursor-paginated; per-event market fetches run in small batches with a
fixed gap between them to stay under the venue's rate limit.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from prediction_market_scanner.config import CacheSettings
from prediction_market_scanner.ingestor.cache import TTLCache
from prediction_market_scanner.ingestor.fetcher import Fetcher, PayloadUnavailableError
from prediction_market_scanner.ingestor.models import Market, Trade, to_float

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.elections.kalshi.com/trade-api/v2"

# Rate-limit discipline
DEFAULT_BATCH_SIZE = 25
DEFAULT_BATCH_DELAY_MS = 120
DEFAULT_PAGE_DELAY_MS = 150
DEFAULT_MAX_PAGES = 20
EVENTS_PAGE_LIMIT = 200

SPORTS_TICKER_RE = re.compile(
    r"^KX(NBA|NHL|NFL|MLB|NCAAF|NCAAB|MLS|EPL|UFC|WNBA|PGA|ATP|WTA|F1)", re.IGNORECASE
)


def is_sports_ticker(ticker: str) -> bool:
    return bool(SPORTS_TICKER_RE.match(ticker or ""))


class KalshiAdapter:
    """Fetch and normalize Kalshi markets and trades.

    Example:
        ```python
        adapter = KalshiAdapter(fetcher, cache)
        markets = await adapter.active_markets(100)
        ```
    """

    def __init__(
        self,
        fetcher: Fetcher,
        cache: TTLCache,
        *,
        api_url: str = DEFAULT_API_URL,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay_ms: int = DEFAULT_BATCH_DELAY_MS,
        page_delay_ms: int = DEFAULT_PAGE_DELAY_MS,
        max_pages: int = DEFAULT_MAX_PAGES,
        exclude_sports: bool = True,
        ttls: CacheSettings | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._cache = cache
        self._api_url = api_url.rstrip("/")
        self._batch_size = batch_size
        self._batch_delay_ms = batch_delay_ms
        self._page_delay_ms = page_delay_ms
        self._max_pages = max_pages
        self._exclude_sports = exclude_sports
        self._ttl = ttls or CacheSettings()

    async def _open_events(self) -> list[dict[str, Any]]:
        """Walk the open-events cursor until an empty page or no cursor."""
        events: list[dict[str, Any]] = []
        cursor: str | None = None
        url = f"{self._api_url}/events"

        for page_number in range(self._max_pages):
            if page_number > 0:
                await self._fetcher.sleep_ms(self._page_delay_ms)
            params: dict[str, Any] = {"status": "open", "limit": EVENTS_PAGE_LIMIT}
            if cursor:
                params["cursor"] = cursor

            payload = await self._fetcher.get_json(url, params=params)
            if not isinstance(payload, dict):
                if not events:
                    raise PayloadUnavailableError(url)
                logger.warning(
                    "Kalshi event page %d failed; keeping %d events", page_number, len(events)
                )
                break

            page = [e for e in payload.get("events") or [] if isinstance(e, dict)]
            if not page:
                break
            events.extend(page)

            cursor = payload.get("cursor") or None
            if cursor is None:
                break

        return events

    async def _event_markets(self, event: dict[str, Any]) -> list[dict[str, Any]]:
        payload = await self._fetcher.get_json(
            f"{self._api_url}/markets",
            params={"event_ticker": event.get("event_ticker"), "status": "open"},
        )
        if not isinstance(payload, dict):
            return []
        category = event.get("category")
        markets = []
        for m in payload.get("markets") or []:
            if isinstance(m, dict):
                markets.append({**m, "_category": category})
        return markets

    async def active_markets(self, limit: int) -> list[Market]:
        """Up to ``limit`` open markets ordered by 24h volume."""

        async def load() -> list[Any]:
            events = await self._open_events()
            if self._exclude_sports:
                events = [e for e in events if not is_sports_ticker(str(e.get("event_ticker", "")))]

            collected: list[dict[str, Any]] = []

            async def fetch_event(event: dict[str, Any]) -> int:
                markets = await self._event_markets(event)
                collected.extend(markets)
                return len(markets)

            results = await self._fetcher.batch(
                events,
                fetch_event,
                batch_size=self._batch_size,
                delay_ms=self._batch_delay_ms,
                should_stop=lambda: len(collected) >= limit * 2,
            )
            for event, result in results:
                if isinstance(result, BaseException):
                    logger.warning(
                        "Kalshi markets for %s failed: %s", event.get("event_ticker"), result
                    )
            if self._exclude_sports:
                collected = [m for m in collected if not is_sports_ticker(str(m.get("ticker", "")))]

            collected.sort(key=lambda m: to_float(m.get("volume_24h")), reverse=True)
            logger.info("Fetched %d Kalshi markets from %d events", len(collected), len(events))
            return collected[:limit]

        try:
            raw = await self._cache.compute(
                f"market_list_kalshi_{limit}", self._ttl.market_list_ttl, load
            )
        except PayloadUnavailableError as e:
            logger.warning("Kalshi market list unavailable: %s", e)
            return []
        return [Market.from_kalshi(m, category=m.get("_category")) for m in raw]

    async def trades(self, ticker: str, limit: int = 300) -> list[Trade]:
        """Most recent fills for a market."""
        url = f"{self._api_url}/markets/{ticker}/trades"

        async def load() -> list[Any]:
            payload = await self._fetcher.get_json(url, params={"limit": limit})
            if not isinstance(payload, dict):
                raise PayloadUnavailableError(url)
            return [t for t in payload.get("trades") or [] if isinstance(t, dict)]

        try:
            raw = await self._cache.compute(
                f"trades_kalshi_{ticker}_{limit}", self._ttl.trades_ttl, load
            )
        except PayloadUnavailableError as e:
            logger.warning("Kalshi trades unavailable: %s", e)
            return []
        return [Trade.from_kalshi(t, ticker) for t in raw]
