"""Cross-market correlation pass over the most active Polymarket markets."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from prediction_market_scanner.detector.correlation import (
    CorrelationInput,
    SignalStrength,
    build_clusters,
)
from prediction_market_scanner.ingestor.models import Market

if TYPE_CHECKING:
    from prediction_market_scanner.engine import Engine

logger = logging.getLogger(__name__)

MAX_CRAWL_MARKETS = 300
WINDOW_HOURS_RANGE = (1, 72)
MIN_SHARED_RANGE = (2, 20)
MAX_MARKETS_RANGE = (10, 150)


def _clamp(value: int, bounds: tuple[int, int]) -> int:
    low, high = bounds
    return min(high, max(low, value))


@dataclass
class CorrelationOptions:
    """Correlation parameters; out-of-range values are clamped, unknown strengths ignored."""

    window_hours: int | None = None
    min_shared_wallets: int | None = None
    max_markets: int | None = None
    min_strength: str | None = None

    def resolve(self, engine: Engine) -> CorrelationOptions:
        cfg = engine.settings.correlation
        strength = (self.min_strength or "").upper() or None
        if strength is not None and strength not in SignalStrength.__members__:
            logger.debug("Ignoring unknown signal strength %r", self.min_strength)
            strength = None
        return CorrelationOptions(
            window_hours=_clamp(self.window_hours or cfg.window_hours, WINDOW_HOURS_RANGE),
            min_shared_wallets=_clamp(
                self.min_shared_wallets or cfg.min_shared_wallets, MIN_SHARED_RANGE
            ),
            max_markets=_clamp(self.max_markets or cfg.max_markets, MAX_MARKETS_RANGE),
            min_strength=strength,
        )


async def correlation_universe(engine: Engine, limit: int) -> list[Market]:
    """Top markets plus the broad crawl, deduplicated and sorted by 24h volume."""
    top, broad = await asyncio.gather(
        engine.polymarket.active_markets(limit),
        engine.polymarket.crawl_active_markets(min(limit * 2, MAX_CRAWL_MARKETS)),
        return_exceptions=True,
    )
    seen: set[str] = set()
    markets: list[Market] = []
    for name, result in (("top", top), ("crawl", broad)):
        if isinstance(result, BaseException):
            logger.warning("Correlation %s market list failed: %s", name, result)
            continue
        for market in result:
            if market.market_id and market.market_id not in seen:
                seen.add(market.market_id)
                markets.append(market)
    markets.sort(key=lambda m: m.volume_24h_or_zero, reverse=True)
    return markets[:limit]


async def _analyze(engine: Engine, markets: list[Market], opts: CorrelationOptions) -> dict[str, Any]:
    cfg = engine.settings.correlation
    window = opts.window_hours or cfg.window_hours

    async def fetch(market: Market) -> Any:
        return await engine.polymarket.recent_trades(
            market.market_id, window, cfg.trade_fetch_limit
        )

    inputs: list[CorrelationInput] = []
    for market, trades in await engine.fetcher.batch(markets, fetch, batch_size=cfg.batch_size):
        if isinstance(trades, BaseException):
            logger.warning("Correlation trades for %s failed: %s", market.short_id, trades)
            trades = []
        inputs.append(
            CorrelationInput.from_trades(
                market.market_id,
                market.question,
                trades,
                slug=market.slug,
                exchange=market.venue.value,
                volume_24h=market.volume_24h_or_zero,
            )
        )

    now = engine.now()
    clusters = build_clusters(
        inputs, now, min_shared_wallets=opts.min_shared_wallets or cfg.min_shared_wallets
    )
    return {
        "clusters": [c.to_dict() for c in clusters],
        "meta": {
            "markets_analyzed": len(inputs),
            "clusters_found": len(clusters),
            "min_shared_wallets_threshold": opts.min_shared_wallets,
            "window_hours": window,
            "computed_at": now.isoformat(),
        },
    }


async def correlations(
    engine: Engine, options: CorrelationOptions | None = None
) -> dict[str, Any]:
    """Find clusters of markets traded by the same wallets.

    The unfiltered result is cached per (max_markets, window, min_shared)
    in the ``correlation_*`` bucket; the strength filter applies on top.

    Example:
        ```python
        doc = await correlations(engine, CorrelationOptions(min_strength="MODERATE"))
        for cluster in doc["clusters"]:
            print(cluster["signal_strength"], cluster["narrative"])
        ```
    """
    opts = (options or CorrelationOptions()).resolve(engine)
    params = {
        "window_hours": opts.window_hours,
        "min_wallets": opts.min_shared_wallets,
        "limit": opts.max_markets,
        "min_strength": opts.min_strength,
    }

    markets = await correlation_universe(engine, opts.max_markets or 0)
    if not markets:
        return {"clusters": [], "meta": {"error": "No markets available", "params": params}}

    key = f"correlation_{opts.max_markets}_{opts.window_hours}_{opts.min_shared_wallets}"
    result = await engine.cache.compute(
        key, engine.settings.cache.correlation_ttl, lambda: _analyze(engine, markets, opts)
    )

    clusters = result["clusters"]
    if opts.min_strength:
        floor = SignalStrength(opts.min_strength).rank
        clusters = [c for c in clusters if SignalStrength(c["signal_strength"]).rank >= floor]

    in_clusters = {m["condition_id"] for c in clusters for m in c["markets"]}
    logger.info("Correlations: %d clusters over %d markets", len(clusters), len(markets))
    return {
        "clusters": clusters,
        "meta": {**result["meta"], "markets_in_clusters": len(in_clusters), "params": params},
    }
