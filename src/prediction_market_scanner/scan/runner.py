"""Market scan orchestration.

A scan fetches the market universe from the selected venues, pairs markets
listed on both venues, splits the universe by 24h volume into a deep set
(trades fetched and scored) and a lightweight set (metadata only), and
returns the scored entries sorted by threat score.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from prediction_market_scanner import __version__
from prediction_market_scanner.detector.aggregator import (
    MIN_TRADES,
    MIN_VOLUME_USD,
    MIN_WALLETS,
    aggregate_trades,
    passes_volume_floor,
)
from prediction_market_scanner.detector.dampening import compute_dampening
from prediction_market_scanner.detector.models import (
    MarketSignals,
    ScoreResult,
    ThreatLevel,
    round2,
)
from prediction_market_scanner.detector.scorer import CONVICTION_WEIGHTS, score_market
from prediction_market_scanner.detector.signals import derive_signals
from prediction_market_scanner.detector.velocity import VelocityResult, snapshot_at
from prediction_market_scanner.detector.whale import WhaleAnalyzer, WhaleIntelligence
from prediction_market_scanner.ingestor.cross_venue import find_cross_venue_matches
from prediction_market_scanner.ingestor.models import Market, Trade, Venue

if TYPE_CHECKING:
    from datetime import datetime

    from prediction_market_scanner.engine import Engine

logger = logging.getLogger(__name__)

ENGINE_NAME = f"prediction-market-scanner v{__version__}"

# Venue-P lists above this size are crawled page by page
CRAWL_THRESHOLD = 50


class ScanError(RuntimeError):
    """Raised when a scan cannot run with the given options."""


class ScanCancelledError(ScanError):
    """Raised when a scan is cancelled and partial results were not requested."""


class Exchange(str, Enum):
    POLYMARKET = "polymarket"
    KALSHI = "kalshi"
    BOTH = "both"


@dataclass
class ScanOptions:
    """Options for a single scan.

    Attributes:
        limit: Entries returned after sorting.
        exchange: Venue filter.
        slug: Scan a single Venue-P market by slug instead of a list.
        cancel_event: Set by the caller to stop between trade batches.
        return_partial: Return the entries scored so far on cancellation
            instead of raising ``ScanCancelledError``.
        include_whale: Override ``ScanSettings.whale_enabled``.
        include_velocity: Override ``ScanSettings.velocity_enabled``.
    """

    limit: int = 100
    exchange: Exchange = Exchange.BOTH
    slug: str | None = None
    cancel_event: asyncio.Event | None = None
    return_partial: bool = False
    include_whale: bool | None = None
    include_velocity: bool | None = None

    def validate(self, max_limit: int) -> None:
        if self.limit < 1:
            raise ScanError(f"limit must be positive, got {self.limit}")
        if self.limit > max_limit:
            raise ScanError(f"limit {self.limit} exceeds maximum {max_limit}")
        if self.slug is not None and not self.slug.strip():
            raise ScanError("slug must not be blank")

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass(frozen=True)
class DeepAnalysis:
    """Signals and score of one market from its trades."""

    market: Market
    signals: MarketSignals
    score: ScoreResult


def analyze_market(
    market: Market,
    trades: list[Trade],
    now: datetime,
    *,
    sample_cap: int | None = None,
) -> DeepAnalysis | None:
    """Aggregate, derive and score one market.

    Returns:
        The analysis, or None when the market has fewer than three trades or
        misses the wallet/volume floor.
    """
    if len(trades) < MIN_TRADES:
        logger.debug("Skipping %s: %d trades", market.short_id, len(trades))
        return None
    agg = aggregate_trades(trades)
    if not passes_volume_floor(agg):
        logger.debug(
            "Skipping %s: %d wallets, $%.0f volume",
            market.short_id,
            agg.total_wallets,
            agg.total_volume,
        )
        return None
    if sample_cap is None:
        signals = derive_signals(market, agg, now)
    else:
        signals = derive_signals(market, agg, now, sample_cap=sample_cap)
    return DeepAnalysis(market=market, signals=signals, score=score_market(market, signals, now))


def market_identity(market: Market) -> dict[str, Any]:
    """Identification fields shared by deep and lightweight entries."""
    return {
        "exchange": market.venue.value,
        "question": market.question,
        "condition_id": market.market_id,
        "slug": market.slug,
        "volume_24h": market.volume_24h_or_zero,
        "volume_total": market.volume_total or 0.0,
        "liquidity": market.liquidity or 0.0,
        "end_date": market.end_date.isoformat() if market.end_date else None,
        "current_prices": market.current_prices,
    }


@dataclass
class ScanEntry:
    """One row of the scan output."""

    market: Market
    analysis: DeepAnalysis | None = None
    velocity: VelocityResult | None = None
    whale: WhaleIntelligence | None = None
    cross_exchange: dict[str, Any] | None = None
    lightweight_dampening: str | None = None

    @property
    def threat_score(self) -> int:
        return self.analysis.score.threat_score if self.analysis else 0

    @property
    def is_dampened(self) -> bool:
        if self.analysis is not None:
            return self.analysis.score.dampening.is_dampened
        return self.lightweight_dampening is not None

    def to_dict(self) -> dict[str, Any]:
        entry = market_identity(self.market)
        if self.analysis is None:
            entry.update(
                {
                    "threat_score": 0,
                    "threat_level": ThreatLevel.LOW.value,
                    "scan_depth": "lightweight",
                    "venue_has_wallet_identity": self.market.has_wallet_identity,
                    "is_dampened": self.lightweight_dampening is not None,
                    "dampening_reason": self.lightweight_dampening,
                }
            )
        else:
            entry.update(_deep_fields(self.analysis))
            if self.velocity is not None:
                entry["velocity"] = self.velocity.to_dict()
            if self.whale is not None:
                entry["whale_intelligence"] = self.whale.to_dict()
        if self.cross_exchange is not None:
            entry["cross_exchange"] = self.cross_exchange
        return entry


def _deep_fields(analysis: DeepAnalysis) -> dict[str, Any]:
    s, score = analysis.signals, analysis.score
    fields: dict[str, Any] = {
        "fresh_wallets": s.fresh_wallet_count,
        "fresh_wallet_ratio": round2(s.fresh_wallet_ratio),
        "fresh_wallet_excess": round2(s.fresh_wallet_excess),
        "sample_capped": s.sample_capped,
        "total_wallets": s.total_wallets,
        "total_trades": s.total_trades,
        "total_volume_usd": round2(s.total_volume),
        "flow_direction": s.flow_direction,
        "flow_imbalance": round2(abs(s.flow_imbalance)),
        "large_positions": s.large_position_count,
        "large_position_ratio": round2(s.large_position_ratio),
        "volume_vs_liquidity": round2(s.volume_vs_liquidity),
        "threat_score": score.threat_score,
        "threat_level": score.threat_level.value,
        "conviction_weights": dict(CONVICTION_WEIGHTS),
        "breakdown": score.breakdown,
        "near_expiry_consensus": score.near_expiry_consensus,
        "flow_direction_v2": s.flow_direction_v2.value,
        "minority_side_flow_usd": round2(s.minority_side_flow),
        "majority_side_flow_usd": round2(s.majority_side_flow),
        "minority_outcome": s.minority_outcome,
        "majority_outcome": s.majority_outcome,
        "consensus_dampened": score.consensus_dampened,
        "fresh_excess_capped": score.fresh_excess_capped,
        "market_category": score.context.category.value,
        "fw_excess_multiplier": score.context.fw_excess_multiplier,
        "context_note": score.context.context_note,
        "live_event": score.live_event,
        "new_market_flag": score.new_market_flag,
        "new_market_boost": score.new_market_boost,
        "veteran_minority_flow_score": score.veteran_minority_flow_score,
        "veteran_flow_note": score.veteran_flow_note,
        "off_hours_trade_pct": round2(s.off_hours_fraction * 100),
        "off_hours_multiplier": score.off_hours_multiplier,
        "off_hours_amplified": score.off_hours_amplified,
        "venue_has_wallet_identity": analysis.market.has_wallet_identity,
        "modifiers": list(score.modifiers),
        "is_dampened": score.dampening.is_dampened,
        "scan_depth": "deep",
    }
    if score.dampening.is_dampened:
        fields["dampening_factor"] = score.dampening.factor
        fields["dampening_reason"] = score.dampening.reason
    return fields


@dataclass
class ScanResult:
    entries: list[ScanEntry]
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"scan": [e.to_dict() for e in self.entries], "meta": self.meta}


@dataclass
class Universe:
    """Markets to scan plus per-venue counts and cross-venue annotations."""

    markets: list[Market]
    polymarket_count: int = 0
    kalshi_count: int = 0
    cross_exchange: dict[str, dict[str, Any]] = field(default_factory=dict)


async def _polymarket_list(engine: Engine, limit: int) -> list[Market]:
    if limit > CRAWL_THRESHOLD:
        return await engine.polymarket.crawl_active_markets(limit)
    return await engine.polymarket.active_markets(limit)


async def fetch_universe(engine: Engine, options: ScanOptions) -> Universe:
    """Fetch, pair and deduplicate the markets a scan covers."""
    if options.slug:
        market = await engine.polymarket.market_by_slug(options.slug.strip())
        markets = [market] if market is not None else []
        return Universe(markets=markets, polymarket_count=len(markets))

    both = options.exchange is Exchange.BOTH
    tasks: dict[Venue, Any] = {}
    if options.exchange in (Exchange.POLYMARKET, Exchange.BOTH):
        poly_limit = options.limit * (2 if both else 3)
        tasks[Venue.POLYMARKET] = _polymarket_list(engine, poly_limit)
    if options.exchange in (Exchange.KALSHI, Exchange.BOTH):
        kalshi_limit = options.limit * (1 if both else 2)
        tasks[Venue.KALSHI] = engine.kalshi.active_markets(kalshi_limit)

    results = await asyncio.gather(*tasks.values(), return_exceptions=True)
    lists: dict[Venue, list[Market]] = {}
    for venue, result in zip(tasks, results, strict=True):
        if isinstance(result, BaseException):
            logger.warning("%s market list failed: %s", venue.value, result)
            lists[venue] = []
        else:
            lists[venue] = result

    polymarkets = lists.get(Venue.POLYMARKET, [])
    kalshi_markets = lists.get(Venue.KALSHI, [])

    cross: dict[str, dict[str, Any]] = {}
    matched_kalshi: set[str] = set()
    if polymarkets and kalshi_markets:
        for match in find_cross_venue_matches(polymarkets, kalshi_markets):
            cross.setdefault(match.polymarket.market_id, match.to_cross_exchange())
            matched_kalshi.add(match.kalshi.market_id)
        if matched_kalshi:
            logger.info("Paired %d markets across venues", len(matched_kalshi))
        kalshi_markets = [k for k in kalshi_markets if k.market_id not in matched_kalshi]

    seen: set[tuple[str, str]] = set()
    markets: list[Market] = []
    for market in [*polymarkets, *kalshi_markets]:
        if not market.market_id or market.key in seen:
            continue
        seen.add(market.key)
        markets.append(market)

    return Universe(
        markets=markets,
        polymarket_count=len(polymarkets),
        kalshi_count=len(kalshi_markets),
        cross_exchange=cross,
    )


async def fetch_trades(engine: Engine, market: Market, limit: int) -> list[Trade]:
    if market.venue is Venue.KALSHI:
        return await engine.kalshi.trades(market.market_id, limit)
    return await engine.polymarket.trades(market.market_id, limit)


def _passes_output_floor(entry: ScanEntry) -> bool:
    if entry.analysis is None:
        return True
    s = entry.analysis.signals
    return s.total_wallets >= MIN_WALLETS and s.total_volume >= MIN_VOLUME_USD


async def scan(engine: Engine, options: ScanOptions | None = None) -> ScanResult:
    """Scan markets and score the most active ones.

    Args:
        engine: Shared engine context.
        options: Scan options (defaults to the configured limit, both venues).

    Returns:
        ScanResult with entries sorted by threat score (descending, stable)
        and the scan meta block.

    Raises:
        ScanError: If the options are invalid.
        ScanCancelledError: If ``options.cancel_event`` was set and
            ``options.return_partial`` is False.

    Example:
        ```python
        engine = Engine.create()
        result = await scan(engine, ScanOptions(limit=25, exchange=Exchange.POLYMARKET))
        for row in result.to_dict()["scan"][:5]:
            print(row["threat_score"], row["question"])
        ```
    """
    settings = engine.settings.scan
    options = options or ScanOptions(limit=settings.default_limit)
    options.validate(settings.max_limit)
    now = engine.now()

    universe = await fetch_universe(engine, options)
    ordered = sorted(universe.markets, key=lambda m: m.volume_24h_or_zero, reverse=True)
    deep_markets = ordered[: settings.deep_limit]
    light_markets = ordered[settings.deep_limit :]

    entries: list[ScanEntry] = []
    filtered = 0

    async def fetch(market: Market) -> list[Trade]:
        return await fetch_trades(engine, market, settings.trade_fetch_limit)

    results = await engine.fetcher.batch(
        deep_markets,
        fetch,
        batch_size=settings.trade_batch_size,
        should_stop=lambda: options.cancelled,
    )
    for market, trades in results:
        if isinstance(trades, BaseException):
            logger.warning("Trades for %s failed: %s", market.short_id, trades)
            continue
        try:
            analysis = analyze_market(market, trades, now)
        except Exception:
            logger.warning("Scoring %s failed", market.short_id, exc_info=True)
            continue
        if analysis is None:
            filtered += 1
            continue
        entries.append(
            ScanEntry(
                market=market,
                analysis=analysis,
                cross_exchange=universe.cross_exchange.get(market.market_id),
            )
        )

    cancelled = len(results) < len(deep_markets)
    if cancelled:
        if not options.return_partial:
            raise ScanCancelledError(
                f"scan cancelled after {len(results)} of {len(deep_markets)} markets"
            )
        logger.info("Scan cancelled; returning %d partial entries", len(entries))

    include_velocity = (
        settings.velocity_enabled if options.include_velocity is None else options.include_velocity
    )
    if include_velocity:
        _attach_velocity(engine, entries, now)

    include_whale = (
        settings.whale_enabled if options.include_whale is None else options.include_whale
    )
    if include_whale and not cancelled:
        await _attach_whale(engine, entries, now)

    if not cancelled:
        for market in light_markets:
            dampening = compute_dampening(market, now)
            entries.append(
                ScanEntry(
                    market=market,
                    cross_exchange=universe.cross_exchange.get(market.market_id),
                    lightweight_dampening=dampening.reason if dampening.is_dampened else None,
                )
            )

    entries = [e for e in entries if _passes_output_floor(e)]
    entries.sort(key=lambda e: e.threat_score, reverse=True)
    entries = entries[: options.limit]

    meta = {
        "markets_scanned": len(entries),
        "total_markets_analyzed": len(universe.markets),
        "deep_scanned": len(results),
        "volume_floor_filtered": filtered,
        "dampened_markets": sum(1 for e in entries if e.is_dampened),
        "polymarket_markets": universe.polymarket_count,
        "kalshi_markets": universe.kalshi_count,
        "cancelled": cancelled,
        "timestamp": now.isoformat(),
        "engine": ENGINE_NAME,
    }
    logger.info(
        "Scan complete: %d entries from %d markets (%d filtered)",
        len(entries),
        len(universe.markets),
        filtered,
    )
    return ScanResult(entries=entries, meta=meta)


def _attach_velocity(engine: Engine, entries: list[ScanEntry], now: datetime) -> None:
    for entry in entries:
        if entry.analysis is None:
            continue
        s, score = entry.analysis.signals, entry.analysis.score
        snapshot = snapshot_at(
            now,
            volume_24h=s.volume_24h,
            total_volume=s.total_volume,
            total_wallets=s.total_wallets,
            fresh_wallets=s.fresh_wallet_count,
            flow_direction_v2=s.flow_direction_v2,
            minority_side_flow=s.minority_side_flow,
            majority_side_flow=s.majority_side_flow,
            threat_score=score.threat_score,
        )
        try:
            entry.velocity = engine.velocity.compute(
                entry.market.market_id, snapshot, liquidity=entry.market.liquidity
            )
        except Exception:
            logger.warning("Velocity for %s failed", entry.market.short_id, exc_info=True)


async def _attach_whale(engine: Engine, entries: list[ScanEntry], now: datetime) -> None:
    analyzer = WhaleAnalyzer(engine.polymarket, batch_size=engine.settings.scan.whale_batch_size)
    targets = [e for e in entries if e.analysis is not None and e.market.has_wallet_identity]

    async def analyze(entry: ScanEntry) -> WhaleIntelligence:
        return await analyzer.analyze(entry.market, now)

    results = await engine.fetcher.batch(
        targets, analyze, batch_size=engine.settings.scan.whale_batch_size
    )
    for entry, result in results:
        if isinstance(result, BaseException):
            logger.warning("Whale intelligence for %s failed: %s", entry.market.short_id, result)
            continue
        entry.whale = result
