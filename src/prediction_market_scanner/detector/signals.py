"""Signal derivation: fresh-wallet excess, flow direction, sizing ratios.

Everything here is a pure function of the market, its trade aggregate and
the reference time.
"""

from __future__ import annotations

import math
from datetime import datetime

from prediction_market_scanner.detector.models import (
    FlowDirection,
    MarketSignals,
    TradeAggregate,
    round2,
)
from prediction_market_scanner.ingestor.models import Market

# Fresh-wallet baseline
BASELINE_FRESH_RATIO = 0.30
CAPPED_BASELINE_FRESH_RATIO = 0.60
SAMPLE_CAP_TRADES = 295  # venue returns at most ~300 trades per request

# Flow direction bands on the minority share of outcome buy flow
MINORITY_HEAVY_RATIO = 0.3
MIXED_RATIO = 0.1

VOLUME_LIQUIDITY_CAP = 5

# Fair value
FAIR_VALUE_MIN = 0.05
FAIR_VALUE_MAX = 0.95
FLOW_WEIGHT = 0.60
LARGE_POSITION_WEIGHT = 0.25
FRESH_WEIGHT = 0.15


def classify_flow(minority_flow: float, majority_flow: float) -> tuple[FlowDirection, float]:
    """Label the minority/majority buy split.

    Returns:
        ``(direction, minority_ratio)``; NEUTRAL with ratio 0 when there is
        no outcome flow at all.
    """
    total = minority_flow + majority_flow
    if total <= 0:
        return FlowDirection.NEUTRAL, 0.0
    ratio = minority_flow / total
    if ratio > MINORITY_HEAVY_RATIO:
        return FlowDirection.MINORITY_HEAVY, ratio
    if ratio > MIXED_RATIO:
        return FlowDirection.MIXED, ratio
    return FlowDirection.MAJORITY_ALIGNED, ratio


def flow_v2_score(direction: FlowDirection, minority_ratio: float, flow_imbalance: float) -> float:
    """Flow component on a 0-5 scale."""
    if direction is FlowDirection.MINORITY_HEAVY:
        return 4 + min(1.0, minority_ratio)
    if direction is FlowDirection.MIXED:
        return 2 + min(1.0, minority_ratio * 3)
    return abs(flow_imbalance)


def derive_signals(
    market: Market,
    agg: TradeAggregate,
    now: datetime,
    *,
    sample_cap: int = SAMPLE_CAP_TRADES,
    capped_baseline: float = CAPPED_BASELINE_FRESH_RATIO,
) -> MarketSignals:
    """Derive scan signals from a market's trade aggregate.

    Args:
        market: Market the trades belong to.
        agg: Aggregate from ``aggregate_trades``.
        now: Reference time for wallet freshness.
        sample_cap: Trade count at which the sample is considered truncated
            by the venue, which raises the fresh baseline.
        capped_baseline: Baseline fresh ratio for truncated samples.

    Returns:
        MarketSignals for the scorer.
    """
    now_ts = now.timestamp()
    total_wallets = agg.total_wallets

    fresh_count = agg.fresh_count(now_ts)
    fresh_ratio = fresh_count / total_wallets if total_wallets else 0.0
    sample_capped = agg.trade_count >= sample_cap
    baseline = capped_baseline if sample_capped else BASELINE_FRESH_RATIO
    excess = max(0.0, fresh_ratio - baseline)

    large_count = agg.large_count
    large_ratio = large_count / total_wallets if total_wallets else 0.0

    liquidity = market.liquidity or 1.0
    volume_24h = market.volume_24h or agg.total_volume
    vol_liq = min(volume_24h / liquidity, VOLUME_LIQUIDITY_CAP) / VOLUME_LIQUIDITY_CAP

    minority_outcome: str | None = None
    majority_outcome: str | None = None
    minority_flow = majority_flow = 0.0
    if market.is_binary:
        p0, p1 = (0.0 if math.isnan(p) else p for p in market.outcome_prices)
        majority_idx = 0 if p0 >= p1 else 1
        majority_outcome = market.outcomes[majority_idx]
        minority_outcome = market.outcomes[1 - majority_idx]
        majority_flow = agg.outcome_buy_volume.get(majority_outcome, 0.0)
        minority_flow = agg.outcome_buy_volume.get(minority_outcome, 0.0)
    direction, minority_ratio = classify_flow(minority_flow, majority_flow)

    return MarketSignals(
        total_trades=agg.trade_count,
        total_wallets=total_wallets,
        total_volume=agg.total_volume,
        buy_volume=agg.buy_volume,
        sell_volume=agg.sell_volume,
        fresh_wallet_count=fresh_count,
        fresh_wallet_ratio=fresh_ratio,
        baseline_fresh_ratio=baseline,
        fresh_wallet_excess=excess,
        sample_capped=sample_capped,
        large_position_count=large_count,
        large_position_ratio=large_ratio,
        max_wallet_volume=agg.max_wallet_volume,
        flow_imbalance=agg.flow_imbalance,
        flow_direction_v2=direction,
        minority_ratio=minority_ratio,
        minority_outcome=minority_outcome,
        majority_outcome=majority_outcome,
        minority_side_flow=minority_flow,
        majority_side_flow=majority_flow,
        volume_24h=volume_24h,
        liquidity=liquidity,
        volume_vs_liquidity=vol_liq,
        off_hours_fraction=agg.off_hours_fraction,
        off_hours_large_usd=agg.off_hours_large_usd,
        outcome_buy_volume=dict(agg.outcome_buy_volume),
    )


def estimate_fair_value(
    current_price: float | None,
    signals: MarketSignals,
) -> float | None:
    """Flow-implied fair value of the minority outcome.

    Blends the minority share of buy flow with the current price nudged up
    by large-position and fresh-wallet activity.

    Returns:
        Fair value rounded to 2 dp in [0.05, 0.95], or None when there is no
        outcome flow or no price.
    """
    total_flow = signals.minority_side_flow + signals.majority_side_flow
    if total_flow == 0 or not current_price:
        return None

    flow_implied = min(FAIR_VALUE_MAX, max(FAIR_VALUE_MIN, signals.minority_side_flow / total_flow))

    lpr = signals.large_position_ratio
    large_boost = 0.05 + lpr * 0.3 if lpr > 0.05 else 0.0
    fr = signals.fresh_wallet_ratio
    fresh_boost = 0.03 + (fr - 0.4) * 0.15 if fr > 0.4 else 0.0

    fair_value = (
        flow_implied * FLOW_WEIGHT
        + (current_price + large_boost) * LARGE_POSITION_WEIGHT
        + (current_price + fresh_boost) * FRESH_WEIGHT
    )
    return round2(min(FAIR_VALUE_MAX, max(FAIR_VALUE_MIN, fair_value)))
