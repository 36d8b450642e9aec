"""Aggregate market pulse.

Combines a post-mortem of recently resolved markets (how many wallets look
prescient) with a quick score of the most active open markets and a whale
activity summary, into one threat level for the whole venue.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from prediction_market_scanner import __version__
from prediction_market_scanner.detector.aggregator import aggregate_trades
from prediction_market_scanner.detector.models import (
    FlowDirection,
    TradeAggregate,
    round2,
    round_half_up,
)
from prediction_market_scanner.detector.prescience import compute_prescience
from prediction_market_scanner.detector.signals import classify_flow, flow_v2_score
from prediction_market_scanner.detector.whale import WhaleAnalyzer
from prediction_market_scanner.ingestor.models import Market, Trade

if TYPE_CHECKING:
    from datetime import datetime

    from prediction_market_scanner.engine import Engine

logger = logging.getLogger(__name__)

ENGINE_NAME = f"prediction-market-scanner pulse v{__version__}"

RESOLVED_MARKETS = 20
ACTIVE_MARKETS = 10
PULSE_TRADE_LIMIT = 200
HOT_MARKETS = 10
HOT_SCORE = 25
MIN_WALLET_TRADES = 2  # wallets scored for prescience

# Quick active-market score
MIN_PULSE_TRADES = 5
MIN_PULSE_WALLETS = 3
PULSE_SAMPLE_CAP = 195
BASELINE_FRESH_RATIO = 0.30
CAPPED_BASELINE_FRESH_RATIO = 0.60
MAJORITY_FLOW_WEIGHT = 0.3
MAJORITY_VOLUME_LIQUIDITY_WEIGHT = 0.3
MAJORITY_ALIGNED_CAP = 8
ZERO_EXCESS_CAP = 6
NO_LARGE_POSITION_CAP = 50
THIN_MARKET_CAP = 15
THIN_MARKET_VOLUME_USD = 5000
THIN_MARKET_WALLETS = 10
CONSENSUS_PRICE = 0.98
CONSENSUS_MAX_EXCESS = 0.20
CONSENSUS_MULTIPLIER = 0.4
NEAR_EXPIRY_HOURS = 48
NEAR_EXPIRY_PRICE = 0.95
NEAR_EXPIRY_MULTIPLIER = 0.3


class PulseLevel(str, Enum):
    SEVERE = "SEVERE"
    ELEVATED = "ELEVATED"
    GUARDED = "GUARDED"
    LOW = "LOW"

    @classmethod
    def from_score(cls, score: int) -> PulseLevel:
        if score >= 75:
            return cls.SEVERE
        if score >= 50:
            return cls.ELEVATED
        if score >= 25:
            return cls.GUARDED
        return cls.LOW


@dataclass(frozen=True)
class QuickScore:
    score: int
    flow_direction_v2: FlowDirection


def quick_score(market: Market, trades: list[Trade], now: datetime) -> QuickScore | None:
    """Simplified threat score for the pulse's active-market sample.

    Returns:
        None when the market has fewer than 5 trades or 3 wallets.
    """
    if len(trades) < MIN_PULSE_TRADES:
        return None
    agg = aggregate_trades(trades)
    total_wallets = agg.total_wallets
    if total_wallets < MIN_PULSE_WALLETS:
        return None

    fresh_ratio = agg.fresh_count(now.timestamp()) / total_wallets
    baseline = (
        CAPPED_BASELINE_FRESH_RATIO if len(trades) >= PULSE_SAMPLE_CAP else BASELINE_FRESH_RATIO
    )
    excess = max(0.0, fresh_ratio - baseline)
    large_count = agg.large_count
    large_ratio = min(large_count / total_wallets, 1.0)
    norm_excess = min(excess / 0.4, 1.0)
    liquidity = market.liquidity or 1.0
    vol_liq = min(market.volume_24h_or_zero / liquidity, 5) / 5

    minority_flow, majority_flow = _side_flows(market, agg)
    direction, minority_ratio = classify_flow(minority_flow, majority_flow)
    if direction in (FlowDirection.MINORITY_HEAVY, FlowDirection.MIXED):
        flow_score = flow_v2_score(direction, minority_ratio, agg.flow_imbalance)
    else:
        flow_score = abs(agg.flow_imbalance) * MAJORITY_FLOW_WEIGHT
    majority = direction is FlowDirection.MAJORITY_ALIGNED
    vol_liq_weight = MAJORITY_VOLUME_LIQUIDITY_WEIGHT if majority else 1.0

    raw = flow_score + large_ratio * 3 + norm_excess * 2 + vol_liq * vol_liq_weight
    score = round_half_up(raw / 11 * 100)
    if majority:
        score = min(score, MAJORITY_ALIGNED_CAP)
    if excess <= 0:
        score = min(score, ZERO_EXCESS_CAP)
    if large_count == 0:
        score = min(score, NO_LARGE_POSITION_CAP)
    if agg.total_volume < THIN_MARKET_VOLUME_USD or total_wallets < THIN_MARKET_WALLETS:
        score = min(score, THIN_MARKET_CAP)

    max_price = market.max_price
    if max_price >= CONSENSUS_PRICE and excess <= CONSENSUS_MAX_EXCESS:
        score = round_half_up(score * CONSENSUS_MULTIPLIER)
    hours = market.hours_to_end(now)
    hours = math.inf if hours is None else hours
    if hours < NEAR_EXPIRY_HOURS and max_price >= NEAR_EXPIRY_PRICE:
        score = round_half_up(score * NEAR_EXPIRY_MULTIPLIER)
    return QuickScore(score=score, flow_direction_v2=direction)


def _side_flows(market: Market, agg: TradeAggregate) -> tuple[float, float]:
    if not market.is_binary:
        return 0.0, 0.0
    p0, p1 = (0.0 if math.isnan(p) else p for p in market.outcome_prices)
    majority_idx = 0 if p0 >= p1 else 1
    majority = agg.outcome_buy_volume.get(market.outcomes[majority_idx], 0.0)
    minority = agg.outcome_buy_volume.get(market.outcomes[1 - majority_idx], 0.0)
    return minority, majority


@dataclass
class _ResolvedStats:
    volume: float = 0.0
    wallets: int = 0
    suspicious: int = 0
    highest: int = 0


def _post_mortem(market: Market, trades: list[Trade], now: datetime) -> _ResolvedStats:
    stats = _ResolvedStats(volume=sum(t.usd_size for t in trades))
    by_wallet: dict[str, list[Trade]] = {}
    for trade in trades:
        if trade.wallet:
            by_wallet.setdefault(trade.wallet, []).append(trade)
    stats.wallets = len(by_wallet)

    for wallet_trades in by_wallet.values():
        if len(wallet_trades) < MIN_WALLET_TRADES:
            continue
        result = compute_prescience(wallet_trades, [market], now)
        if result.is_suspicious:
            stats.suspicious += 1
        stats.highest = max(stats.highest, result.score)
    return stats


async def _trades_by_market(engine: Engine, markets: list[Market]) -> list[tuple[Market, Any]]:
    async def fetch(market: Market) -> list[Trade]:
        return await engine.polymarket.trades(market.market_id, PULSE_TRADE_LIMIT)

    return await engine.fetcher.batch(
        markets, fetch, batch_size=engine.settings.scan.trade_batch_size
    )


async def pulse(engine: Engine) -> dict[str, Any]:
    """Build the pulse document.

    Per-market failures are logged and skipped; the pulse always returns.

    Example:
        ```python
        doc = await pulse(engine)
        print(doc["pulse"]["threat_level"], len(doc["hot_markets"]))
        ```
    """
    now = engine.now()
    resolved = await engine.polymarket.resolved_markets(RESOLVED_MARKETS)
    active = await engine.polymarket.active_markets(ACTIVE_MARKETS)

    total_wallets = total_suspicious = 0
    total_volume = 0.0
    resolved_highest = 0
    hot: list[dict[str, Any]] = []

    for market, trades in await _trades_by_market(engine, resolved):
        if isinstance(trades, BaseException):
            logger.warning("Pulse trades for %s failed: %s", market.short_id, trades)
            continue
        try:
            stats = _post_mortem(market, trades, now)
        except Exception:
            logger.warning("Pulse post-mortem for %s failed", market.short_id, exc_info=True)
            continue
        total_volume += stats.volume
        total_wallets += stats.wallets
        total_suspicious += stats.suspicious
        # markets with a close time are history and do not drive the live level
        if market.closed_time is None:
            resolved_highest = max(resolved_highest, stats.highest)
            if stats.suspicious:
                hot.append(
                    {
                        "question": market.question,
                        "condition_id": market.market_id,
                        "slug": market.slug,
                        "volume": market.volume_total,
                        "suspicious_wallets": stats.suspicious,
                    }
                )

    active_highest = 0
    for market, trades in await _trades_by_market(engine, active):
        if isinstance(trades, BaseException):
            logger.warning("Pulse trades for %s failed: %s", market.short_id, trades)
            continue
        try:
            result = quick_score(market, trades, now)
        except Exception:
            logger.warning("Pulse score for %s failed", market.short_id, exc_info=True)
            continue
        if result is None:
            continue
        active_highest = max(active_highest, result.score)
        if result.score >= HOT_SCORE:
            hot.append(
                {
                    "question": market.question,
                    "condition_id": market.market_id,
                    "slug": market.slug,
                    "threat_score": result.score,
                    "flow_direction_v2": result.flow_direction_v2.value,
                }
            )

    hot.sort(
        key=lambda m: m.get("threat_score") or m.get("suspicious_wallets") or 0, reverse=True
    )

    analyzer = WhaleAnalyzer(engine.polymarket, batch_size=engine.settings.scan.whale_batch_size)
    whales = await analyzer.aggregate([m.market_id for m in active if m.market_id], now)

    highest = max(resolved_highest, active_highest)
    ratio = round_half_up(total_suspicious / total_wallets * 10000) / 100 if total_wallets else 0
    logger.info(
        "Pulse: %d markets, %d suspicious of %d wallets, highest %d",
        len(resolved) + len(active),
        total_suspicious,
        total_wallets,
        highest,
    )
    return {
        "pulse": {
            "timestamp": now.isoformat(),
            "markets_scanned": len(resolved) + len(active),
            "total_wallets": total_wallets,
            "suspicious_wallets": total_suspicious,
            "suspicious_ratio": ratio,
            "highest_score": highest,
            "total_volume_usd": round2(total_volume),
            "threat_level": PulseLevel.from_score(highest).value,
        },
        "whale_intelligence": whales.to_dict(),
        "hot_markets": hot[:HOT_MARKETS],
        "engine": ENGINE_NAME,
    }
