"""Data ingestion layer - rate-limited venue fetches behind a shared TTL cache."""

from prediction_market_scanner.ingestor.cache import CacheStats, TTLCache
from prediction_market_scanner.ingestor.cross_venue import (
    CrossVenueMatch,
    find_cross_venue_matches,
)
from prediction_market_scanner.ingestor.fetcher import (
    Fetcher,
    FetcherError,
    PayloadUnavailableError,
    RateLimiter,
)
from prediction_market_scanner.ingestor.kalshi import KalshiAdapter
from prediction_market_scanner.ingestor.models import (
    Market,
    Trade,
    TradeSide,
    Venue,
)
from prediction_market_scanner.ingestor.polymarket import PolymarketAdapter

__all__ = [
    "CacheStats",
    "CrossVenueMatch",
    "Fetcher",
    "FetcherError",
    "KalshiAdapter",
    "Market",
    "PayloadUnavailableError",
    "PolymarketAdapter",
    "RateLimiter",
    "TTLCache",
    "Trade",
    "TradeSide",
    "Venue",
    "find_cross_venue_matches",
]
