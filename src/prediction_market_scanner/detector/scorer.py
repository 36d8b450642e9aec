"""Threat score pipeline.

Turns derived market signals into a bounded 0-100 threat score through a
fixed sequence of weighting, multipliers, caps, boosts and dampening. Each
modifier that fires is recorded by name on the result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from prediction_market_scanner.detector.classifier import is_live_event
from prediction_market_scanner.detector.dampening import (
    apply_dampening,
    compute_context,
    compute_dampening,
)
from prediction_market_scanner.detector.models import (
    FlowDirection,
    MarketSignals,
    ScoreResult,
    ThreatLevel,
    round_half_up,
)
from prediction_market_scanner.detector.signals import flow_v2_score
from prediction_market_scanner.ingestor.models import Market

logger = logging.getLogger(__name__)

# Conviction weights (total 11)
CONVICTION_WEIGHTS = {
    "flow_direction_v2": 5,
    "large_position_ratio": 3,
    "fresh_wallet_excess": 2,
    "volume_vs_liquidity": 1,
}
TOTAL_WEIGHT = sum(CONVICTION_WEIGHTS.values())
FRESH_EXCESS_NORMALIZER = 0.4

FLOW_EXCESS_MULTIPLIERS = {
    FlowDirection.MAJORITY_ALIGNED: 0.2,
    FlowDirection.MIXED: 0.6,
    FlowDirection.MINORITY_HEAVY: 1.0,
    FlowDirection.NEUTRAL: 1.0,
}
MAJORITY_VOLUME_LIQUIDITY_MULTIPLIER = 0.5

# Off-hours multipliers
OFF_HOURS_HEAVY_USD = 5000
OFF_HOURS_LARGE_USD = 1000
OFF_HOURS_MAJORITY_FRACTION = 0.5

# Consensus
CONSENSUS_PRICE = 0.98
CONSENSUS_MAX_EXCESS = 0.20
CONSENSUS_MULTIPLIER = 0.4
CONSENSUS_TIGHT_EXCESS = 0.10
CONSENSUS_TIGHT_CAP = 5
CONSENSUS_CAP = 10

NO_LARGE_POSITION_CAP = 50
ZERO_EXCESS_CAP = 6

# New-market boost: (points, largest wallet USD, total volume USD)
NEW_MARKET_MAX_AGE_HOURS = 48
NEW_MARKET_TIERS = ((5, 10_000, 50_000), (4, 5_000, 20_000), (3, 2_000, 5_000))

# Veteran minority-flow bonus: (minority flow USD, base points)
VETERAN_MAX_EXCESS = 0.05
VETERAN_MIN_FLOW = 50_000
VETERAN_TIERS = ((500_000, 6), (250_000, 4), (100_000, 3), (50_000, 2))

NEAR_EXPIRY_HOURS = 48
NEAR_EXPIRY_PRICE = 0.95
NEAR_EXPIRY_MULTIPLIER = 0.3


def off_hours_multiplier(signals: MarketSignals) -> float:
    if signals.off_hours_large_usd >= OFF_HOURS_HEAVY_USD:
        return 1.5
    if signals.off_hours_large_usd >= OFF_HOURS_LARGE_USD:
        return 1.3
    if signals.off_hours_fraction > OFF_HOURS_MAJORITY_FRACTION:
        return 1.15
    return 1.0


def is_consensus(market: Market, fresh_wallet_excess: float) -> bool:
    return market.max_price >= CONSENSUS_PRICE and fresh_wallet_excess <= CONSENSUS_MAX_EXCESS


def new_market_boost(signals: MarketSignals) -> int:
    for points, wallet_floor, volume_floor in NEW_MARKET_TIERS:
        if signals.max_wallet_volume >= wallet_floor or signals.total_volume >= volume_floor:
            return points
    return 0


def veteran_time_multiplier(days_to_end: float | None) -> float:
    if days_to_end is None:
        return 1.0
    if days_to_end <= 7:
        return 1.5
    if days_to_end <= 30:
        return 1.2
    if days_to_end > 365:
        return 0.5
    return 1.0


def qualifies_for_veteran_bonus(signals: MarketSignals, consensus_dampened: bool) -> bool:
    """Large minority-side buying by established (non-fresh) wallets."""
    return (
        signals.flow_direction_v2 is FlowDirection.MINORITY_HEAVY
        and signals.fresh_wallet_excess < VETERAN_MAX_EXCESS
        and signals.minority_side_flow >= VETERAN_MIN_FLOW
        and not consensus_dampened
    )


def _format_usd(value: float) -> str:
    if value >= 1_000_000:
        return f"${value / 1_000_000:.1f}M"
    return f"${round_half_up(value / 1000)}K"


@dataclass
class _Trail:
    score: int
    modifiers: list[str] = field(default_factory=list)

    def fire(self, name: str) -> None:
        self.modifiers.append(name)

    def cap(self, name: str, ceiling: int) -> None:
        self.fire(name)
        self.score = min(self.score, ceiling)

    def scale(self, name: str, factor: float) -> None:
        self.fire(name)
        self.score = round_half_up(self.score * factor)


def score_market(market: Market, signals: MarketSignals, now: datetime) -> ScoreResult:
    """Run the threat score pipeline for one deep-scanned market.

    Args:
        market: The market being scored.
        signals: Output of ``derive_signals`` for the market's trades.
        now: Reference time.

    Returns:
        ScoreResult with the final score, level and modifier trail.

    Example:
        ```python
        agg = aggregate_trades(trades)
        signals = derive_signals(market, agg, now)
        result = score_market(market, signals, now)
        print(result.threat_score, result.threat_level, result.modifiers)
        ```
    """
    excess = signals.fresh_wallet_excess
    direction = signals.flow_direction_v2
    consensus = is_consensus(market, excess)
    context = compute_context(
        market,
        now,
        fresh_wallet_excess=excess,
        flow_direction=direction,
        consensus_dampened=consensus,
    )
    modifiers: list[str] = []

    # 1-2. Fresh excess damped by flow direction, then by topic context
    effective_excess = excess * FLOW_EXCESS_MULTIPLIERS[direction]
    if context.fw_excess_multiplier < 1.0:
        effective_excess *= context.fw_excess_multiplier
        modifiers.append("sports_longshot")

    # 3-4. Raw conviction
    flow_score = flow_v2_score(direction, signals.minority_ratio, signals.flow_imbalance)
    vol_liq_mult = (
        MAJORITY_VOLUME_LIQUIDITY_MULTIPLIER if direction is FlowDirection.MAJORITY_ALIGNED else 1.0
    )
    components = {
        "flow_direction_v2": flow_score / 5,
        "large_position_ratio": min(signals.large_position_ratio, 1.0),
        "fresh_wallet_excess": min(effective_excess / FRESH_EXCESS_NORMALIZER, 1.0),
        "volume_vs_liquidity": signals.volume_vs_liquidity * vol_liq_mult,
    }
    raw = sum(components[name] * weight for name, weight in CONVICTION_WEIGHTS.items())

    # 5-6. Off-hours multiplier and scaling
    off_mult = off_hours_multiplier(signals)
    if off_mult > 1.0:
        modifiers.append("off_hours")
    trail = _Trail(score=round_half_up(raw / TOTAL_WEIGHT * 100 * off_mult), modifiers=modifiers)

    # 7. Consensus dampening
    if consensus:
        trail.scale("consensus_dampened", CONSENSUS_MULTIPLIER)

    # 8. Large-position floor
    if signals.large_position_count == 0:
        trail.cap("large_position_floor", NO_LARGE_POSITION_CAP)

    # 9. Fresh-excess-zero cap; established-wallet minority flow is exempt
    veteran = qualifies_for_veteran_bonus(signals, consensus)
    fresh_capped = False
    if excess <= 0 and not veteran:
        trail.cap("fresh_excess_capped", ZERO_EXCESS_CAP)
        fresh_capped = True

    # 10. New-market boost
    age_hours = market.age_hours(now)
    is_new = age_hours is not None and age_hours < NEW_MARKET_MAX_AGE_HOURS
    boost = 0
    if is_new and not consensus:
        boost = new_market_boost(signals)
        if boost:
            trail.fire("new_market_boost")
            trail.score += boost

    # 11. Veteran minority-flow bonus
    veteran_points = 0
    veteran_note: str | None = None
    if veteran:
        base = next(points for floor, points in VETERAN_TIERS if signals.minority_side_flow >= floor)
        days_to_end = market.days_to_end(now)
        veteran_points = round_half_up(base * veteran_time_multiplier(days_to_end))
        if veteran_points:
            trail.fire("veteran_minority_flow")
            trail.score += veteran_points
        horizon = f", {round_half_up(days_to_end)}d to end" if days_to_end is not None else ""
        veteran_note = (
            f"{_format_usd(signals.minority_side_flow)} minority-side buying on "
            f"{signals.minority_outcome} by established wallets{horizon}"
        )

    # 12. Near-expiry consensus
    hours_to_end = market.hours_to_end(now)
    near_expiry = (
        hours_to_end is not None
        and hours_to_end < NEAR_EXPIRY_HOURS
        and market.max_price >= NEAR_EXPIRY_PRICE
    )
    if near_expiry:
        trail.scale("near_expiry_consensus", NEAR_EXPIRY_MULTIPLIER)

    # 13. Keyword, price and expiry dampening
    dampening = compute_dampening(market, now)
    if dampening.is_dampened:
        trail.fire("dampening")
        trail.score = apply_dampening(trail.score, dampening.factor)

    # 14. Consensus hard cap
    if consensus:
        ceiling = CONSENSUS_TIGHT_CAP if excess < CONSENSUS_TIGHT_EXCESS else CONSENSUS_CAP
        trail.cap("consensus_hard_cap", ceiling)

    # 15. Topic context
    if context.context_dampening < 1.0:
        trail.scale("context_dampening", context.context_dampening)
    if context.threat_score_cap is not None:
        trail.cap("extreme_longshot_cap", context.threat_score_cap)

    # 16. Live events are not scored
    live = is_live_event(market, now)
    if live:
        trail.fire("live_event")
        trail.score = 0

    # 17. Clamp, re-assert the large-position floor, band
    score = max(0, min(100, trail.score))
    if signals.large_position_count == 0:
        score = min(score, NO_LARGE_POSITION_CAP)

    breakdown = {
        name: {
            "value": round(components[name], 4),
            "weight": weight,
            "contribution": round(components[name] * weight, 4),
        }
        for name, weight in CONVICTION_WEIGHTS.items()
    }

    return ScoreResult(
        threat_score=score,
        threat_level=ThreatLevel.from_score(score),
        raw_conviction=raw,
        effective_fresh_excess=effective_excess,
        flow_v2_score=flow_score,
        breakdown=breakdown,
        modifiers=tuple(trail.modifiers),
        context=context,
        dampening=dampening,
        off_hours_multiplier=off_mult,
        consensus_dampened=consensus,
        fresh_excess_capped=fresh_capped,
        near_expiry_consensus=near_expiry,
        live_event=live,
        new_market_flag=is_new,
        new_market_boost=boost,
        veteran_minority_flow_score=veteran_points,
        veteran_flow_note=veteran_note,
    )
