"""Actionable trading signals.

Scores the most active markets with the full threat pipeline and turns the
result into a call: buy the minority side when flow, score and confidence
agree and the flow-implied fair value leaves enough edge, or watch. A second
price-only sweep adds favorite-longshot (FLB) and bond calls.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from prediction_market_scanner import __version__
from prediction_market_scanner.detector.dampening import compute_dampening
from prediction_market_scanner.detector.models import FlowDirection, round2, round_half_up
from prediction_market_scanner.detector.signals import estimate_fair_value
from prediction_market_scanner.ingestor.cross_venue import CrossVenueMatch, find_cross_venue_matches
from prediction_market_scanner.ingestor.models import Market, Trade
from prediction_market_scanner.scan.runner import (
    DeepAnalysis,
    ScanError,
    analyze_market,
    fetch_trades,
)

if TYPE_CHECKING:
    from prediction_market_scanner.engine import Engine

logger = logging.getLogger(__name__)

ENGINE_NAME = f"prediction-market-scanner signals v{__version__}"

# Confidence
CONFIDENCE_LABELS = {"HIGH": 4, "MEDIUM": 3, "LOW": 1}
MAX_CONFIDENCE = 5

# Action thresholds
AVOID_SCORE = 3
BUY_SCORE = 20
BUY_MIN_CONFIDENCE = 3
WATCH_FLOW_SCORE = 5
WATCH_SCORE = 10
EXPIRY_NOISE_HOURS = 48
EXPIRY_NOISE_PRICE = 0.95

# Urgency
URGENT_DAYS = 3
MODERATE_DAYS = 14
ACCELERATING_VOLUME_RATIO = 2

# Favorite-longshot bias and bonds
FLB_LOSS_RATE = 0.60
FLB_MIN_PRICE = 0.02
FLB_MAX_PRICE = 0.10
FLB_MIN_EDGE = 0.05
BOND_MIN_PRICE = 0.90
BOND_MAX_DAYS = 365
BOND_MIN_YIELD_PCT = 5


class SignalAction(str, Enum):
    BUY_YES = "BUY_YES"
    BUY_NO = "BUY_NO"
    WATCH = "WATCH"
    BOND = "BOND"
    AVOID = "AVOID"


@dataclass
class SignalOptions:
    """Filters for a signal run.

    Attributes:
        min_confidence: "HIGH", "MEDIUM" or "LOW" (None keeps everything).
        actions: Keep only these actions.
        limit: Signals returned (clamped to ``SignalSettings.max_limit``).
        max_days: Skip markets resolving later than this.
        min_edge: Minimum |edge| for a BUY call; smaller edges become WATCH.
    """

    min_confidence: str | None = None
    actions: tuple[SignalAction, ...] | None = None
    limit: int | None = None
    max_days: int | None = None
    min_edge: float | None = None

    def validate(self) -> None:
        if self.min_confidence is not None:
            self.min_confidence = self.min_confidence.upper()
            if self.min_confidence not in CONFIDENCE_LABELS:
                raise ScanError(f"unknown confidence level {self.min_confidence!r}")
        if self.limit is not None and self.limit < 1:
            raise ScanError(f"limit must be positive, got {self.limit}")
        if self.max_days is not None and self.max_days < 1:
            raise ScanError(f"max_days must be positive, got {self.max_days}")


@dataclass
class Signal:
    market: Market
    action: SignalAction
    confidence_score: int
    thesis: str
    signals: dict[str, Any]
    edge: dict[str, Any]
    timing: dict[str, Any]
    risk: dict[str, Any]
    signal_type: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)
    arb_opportunity: dict[str, Any] | None = None
    current_price: dict[str, float | None] = field(default_factory=dict)

    @property
    def slug(self) -> str:
        return self.market.slug or self.market.market_id

    @property
    def confidence(self) -> str:
        if self.confidence_score >= 4:
            return "HIGH"
        if self.confidence_score >= 3:
            return "MEDIUM"
        return "LOW"

    @property
    def edge_pct(self) -> float:
        return abs(self.edge.get("edge_pct") or 0)

    def to_dict(self, updated_at: datetime) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "market": self.market.question,
            "slug": self.slug,
            "exchange": self.market.venue.value,
            "action": self.action.value,
        }
        if self.signal_type:
            doc["signal_type"] = self.signal_type
        doc.update(
            {
                "current_price": self.current_price,
                "confidence": self.confidence,
                "confidence_score": self.confidence_score,
                "thesis": self.thesis,
                "signals": self.signals,
                "edge": self.edge,
                **self.extras,
                "timing": self.timing,
                "risk": self.risk,
                "updated_at": updated_at.isoformat(),
            }
        )
        if self.arb_opportunity is not None:
            doc["arb_opportunity"] = self.arb_opportunity
        return doc


def compute_confidence(
    *,
    threat_score: int,
    flow_direction: FlowDirection,
    effective_excess: float,
    large_position_ratio: float,
    total_wallets: int,
    is_dampened: bool,
) -> int:
    """Confidence on a 1-5 scale."""
    if is_dampened:
        return 1
    score = 1.0
    if threat_score > 40:
        score += 2
    elif threat_score > 20:
        score += 1
    if flow_direction is FlowDirection.MINORITY_HEAVY:
        score += 1
    if effective_excess > 0.10:
        score += 0.5
    if large_position_ratio > 0.05:
        score += 0.5
    if total_wallets > 50:
        score += 0.5
    return min(MAX_CONFIDENCE, round_half_up(score))


def build_thesis(analysis: DeepAnalysis) -> str:
    s = analysis.signals
    parts: list[str] = []
    if s.fresh_wallet_count > 5:
        parts.append(f"{s.fresh_wallet_count} fresh wallets")
    if s.flow_direction_v2 is FlowDirection.MINORITY_HEAVY:
        ratio = f"{s.minority_side_flow / s.majority_side_flow:.1f}" if s.majority_side_flow else "∞"
        parts.append(
            f"MINORITY_HEAVY flow ({ratio}:1 {s.minority_outcome}/{s.majority_outcome})"
        )
    elif s.flow_direction_v2 is FlowDirection.MIXED:
        parts.append("MIXED flow direction")
    if s.large_position_count > 0:
        parts.append(f"{s.large_position_count} large positions")
    if s.fresh_wallet_ratio > 0.5:
        parts.append(f"{round_half_up(s.fresh_wallet_ratio * 100)}% fresh wallet ratio")
    return ", ".join(parts) or "Low signal activity"


def days_to_resolution(market: Market, now: datetime) -> int | None:
    days = market.days_to_end(now)
    return None if days is None else round_half_up(days)


def urgency(days: int | None, *, accelerating: bool = False) -> str:
    if accelerating:
        return "URGENT"
    if days is not None and days < URGENT_DAYS:
        return "URGENT"
    if days is not None and days < MODERATE_DAYS:
        return "MODERATE"
    return "LOW"


def _named_price(market: Market, name: str) -> float | None:
    for outcome, price in market.current_prices.items():
        if outcome.lower() == name and price:
            return price
    return None


def _choose_action(
    analysis: DeepAnalysis,
    *,
    confidence: int,
    edge: float | None,
    expiry_noise: bool,
    min_edge: float,
) -> SignalAction:
    s, score = analysis.signals, analysis.score
    threat = score.threat_score
    direction = s.flow_direction_v2
    if score.dampening.is_dampened or expiry_noise or threat < AVOID_SCORE:
        return SignalAction.AVOID
    if (
        threat > BUY_SCORE
        and direction is FlowDirection.MINORITY_HEAVY
        and confidence >= BUY_MIN_CONFIDENCE
    ):
        if edge is not None and abs(edge) < min_edge:
            return SignalAction.WATCH
        return SignalAction.BUY_YES if s.minority_outcome == "Yes" else SignalAction.BUY_NO
    if threat >= WATCH_FLOW_SCORE and direction in (
        FlowDirection.MINORITY_HEAVY,
        FlowDirection.MIXED,
    ):
        return SignalAction.WATCH
    if threat >= WATCH_SCORE:
        return SignalAction.WATCH
    return SignalAction.AVOID


def flow_signal(
    analysis: DeepAnalysis,
    now: datetime,
    *,
    min_edge: float,
    max_days: int,
) -> Signal | None:
    """Turn one scored market into a signal.

    Returns:
        None when the market resolves beyond ``max_days`` or the action is
        AVOID.
    """
    market, s, score = analysis.market, analysis.signals, analysis.score
    days = days_to_resolution(market, now)
    if days is not None and days > max_days:
        return None

    hours = market.hours_to_end(now)
    expiry_noise = (
        hours is not None and hours < EXPIRY_NOISE_HOURS and market.max_price >= EXPIRY_NOISE_PRICE
    )

    minority_price = market.price_of(s.minority_outcome) or 0.0
    effective_excess = score.effective_fresh_excess
    confidence = compute_confidence(
        threat_score=score.threat_score,
        flow_direction=s.flow_direction_v2,
        effective_excess=effective_excess,
        large_position_ratio=s.large_position_ratio,
        total_wallets=s.total_wallets,
        is_dampened=score.dampening.is_dampened,
    )
    fair_value = estimate_fair_value(minority_price, s)
    edge = round2(fair_value - minority_price) if fair_value is not None else None
    edge_pct = (
        round_half_up(edge / minority_price * 10000) / 100
        if edge is not None and minority_price > 0
        else None
    )

    action = _choose_action(
        analysis, confidence=confidence, edge=edge, expiry_noise=expiry_noise, min_edge=min_edge
    )
    if action is SignalAction.AVOID:
        return None

    flags: list[str] = []
    if score.dampening.is_dampened and score.dampening.reason:
        flags.append(score.dampening.reason)
    if score.consensus_dampened:
        flags.append("consensus_dampened")
    if expiry_noise:
        flags.append("near_expiry_noise")

    return Signal(
        market=market,
        action=action,
        confidence_score=confidence,
        thesis=build_thesis(analysis),
        current_price={"yes": _named_price(market, "yes"), "no": _named_price(market, "no")},
        signals={
            "threat_score": score.threat_score,
            "flow_direction": s.flow_direction_v2.value,
            "fresh_wallet_ratio": round2(s.fresh_wallet_ratio),
            "fresh_wallet_excess": round2(effective_excess),
            "large_position_ratio": round2(s.large_position_ratio),
            "volume_24hr": s.volume_24h,
        },
        edge={
            "estimated_fair_value": fair_value,
            "edge": edge,
            "edge_pct": edge_pct,
            "minority_outcome": s.minority_outcome,
        },
        timing={
            "resolves": market.end_date.date().isoformat() if market.end_date else None,
            "days_to_resolution": days,
            "urgency": urgency(days, accelerating=s.volume_24h > s.liquidity * 2),
        },
        risk={
            "false_positive_flags": flags,
            "dampened": score.dampening.is_dampened,
            "expiry_noise": expiry_noise,
        },
    )


def _round3(value: float) -> float:
    return round_half_up(value * 1000) / 1000


def price_signal(market: Market, days: int) -> Signal | None:
    """Favorite-longshot or bond call from price alone.

    A YES priced in (0.02, 0.10) is assumed ~60% overpriced and yields a
    BUY_NO when the implied edge exceeds 5 cents. A YES above 0.90 resolving
    within a year yields a BOND when the annualized spread is at least 5%.
    """
    if not market.is_binary:
        return None
    idx = market.yes_index
    if idx is None:
        return None
    yes_price, no_price = market.outcome_prices[idx], market.outcome_prices[1 - idx]
    if math.isnan(yes_price) or math.isnan(no_price):
        return None

    timing = {
        "resolves": market.end_date.date().isoformat() if market.end_date else None,
        "days_to_resolution": days,
        "urgency": urgency(days),
    }
    risk = {"false_positive_flags": [], "dampened": False, "expiry_noise": False}
    current = {"yes": _round3(yes_price), "no": _round3(no_price)}

    if FLB_MIN_PRICE < yes_price < FLB_MAX_PRICE:
        flb_edge = round2(yes_price * FLB_LOSS_RATE)
        if flb_edge > FLB_MIN_EDGE:
            yes_cents = round_half_up(yes_price * 100)
            return Signal(
                market=market,
                action=SignalAction.BUY_NO,
                signal_type="FLB",
                confidence_score=4,
                thesis=(
                    f"Longshot bias: YES at {yes_cents}¢, historically ~60% overpriced. "
                    f"FLB NO edge: {round_half_up(flb_edge * 100)}¢"
                ),
                current_price=current,
                signals={"threat_score": 0, "flow_direction": "N/A", "flb_based": True},
                edge={
                    "estimated_fair_value": round2(1 - current["yes"] * (1 - FLB_LOSS_RATE)),
                    "edge": flb_edge,
                    "edge_pct": round_half_up(flb_edge / current["no"] * 10000) / 100
                    if current["no"]
                    else None,
                    "minority_outcome": "No",
                },
                extras={"flb_edge": flb_edge, "historical_loss_rate": FLB_LOSS_RATE},
                timing=timing,
                risk=risk,
            )

    if yes_price > BOND_MIN_PRICE and 0 < days <= BOND_MAX_DAYS:
        profit = _round3(1 - yes_price)
        bond_yield = round_half_up(profit / yes_price * (365 / days) * 10000) / 100
        if bond_yield >= BOND_MIN_YIELD_PCT:
            return Signal(
                market=market,
                action=SignalAction.BOND,
                signal_type="BOND",
                confidence_score=4,
                thesis=(
                    f"Bond: YES at {round_half_up(yes_price * 100)}¢, "
                    f"{round_half_up(profit * 100)}¢ profit in {days}d = {bond_yield}% annualized"
                ),
                current_price=current,
                signals={"threat_score": 0, "flow_direction": "N/A", "flb_based": True},
                edge={
                    "estimated_fair_value": current["yes"],
                    "edge": profit,
                    "edge_pct": None,
                    "minority_outcome": "Yes",
                },
                extras={"bond_yield_annualized": bond_yield},
                timing=timing,
                risk=risk,
            )
    return None


async def _signal_universe(engine: Engine) -> tuple[list[Market], list[CrossVenueMatch]]:
    cfg = engine.settings.signals
    polymarkets, kalshi_markets = await asyncio.gather(
        engine.polymarket.active_markets(cfg.deep_limit),
        engine.kalshi.active_markets(cfg.kalshi_limit) if cfg.kalshi_limit else _empty(),
        return_exceptions=True,
    )
    if isinstance(polymarkets, BaseException):
        logger.warning("Polymarket market list failed: %s", polymarkets)
        polymarkets = []
    if isinstance(kalshi_markets, BaseException):
        logger.warning("Kalshi market list failed: %s", kalshi_markets)
        kalshi_markets = []
    matches = (
        find_cross_venue_matches(polymarkets, kalshi_markets) if kalshi_markets else []
    )
    return [*polymarkets, *kalshi_markets], matches


async def _empty() -> list[Market]:
    return []


async def generate_signals(engine: Engine, options: SignalOptions | None = None) -> dict[str, Any]:
    """Build the signals document.

    Args:
        engine: Shared engine context.
        options: Filters; unset fields fall back to ``SignalSettings``.

    Returns:
        ``{"signals": [...], "meta": {...}}`` with signals sorted by
        |edge_pct| (descending).

    Example:
        ```python
        doc = await generate_signals(engine, SignalOptions(min_confidence="MEDIUM"))
        for signal in doc["signals"]:
            print(signal["action"], signal["market"], signal["edge"]["edge_pct"])
        ```
    """
    cfg = engine.settings.signals
    options = options or SignalOptions()
    options.validate()
    limit = min(options.limit or cfg.default_limit, cfg.max_limit)
    max_days = options.max_days or cfg.max_days
    min_edge = cfg.min_edge if options.min_edge is None else options.min_edge
    now = engine.now()

    markets, matches = await _signal_universe(engine)
    arb_by_market: dict[str, CrossVenueMatch] = {}
    for match in matches:
        arb_by_market[match.polymarket.market_id] = match

    async def fetch(market: Market) -> list[Trade]:
        return await fetch_trades(engine, market, engine.settings.scan.trade_fetch_limit)

    signals: list[Signal] = []
    for market, trades in await engine.fetcher.batch(markets, fetch, batch_size=cfg.batch_size):
        if isinstance(trades, BaseException):
            logger.warning("Trades for %s failed: %s", market.short_id, trades)
            continue
        try:
            analysis = analyze_market(market, trades, now)
            if analysis is None:
                continue
            signal = flow_signal(analysis, now, min_edge=min_edge, max_days=max_days)
        except Exception:
            logger.warning("Signal for %s failed", market.short_id, exc_info=True)
            continue
        if signal is None:
            continue
        match = arb_by_market.get(market.market_id)
        if match is not None:
            signal.arb_opportunity = match.to_arb_opportunity()
        signals.append(signal)

    seen = {s.slug for s in signals}
    for market in markets:
        days = days_to_resolution(market, now)
        if not days or days <= 0 or days > max_days:
            continue
        if compute_dampening(market, now).is_dampened:
            continue
        signal = price_signal(market, days)
        if signal is None or signal.slug in seen:
            continue
        seen.add(signal.slug)
        signals.append(signal)

    signals.sort(key=lambda s: s.edge_pct, reverse=True)
    generated = len(signals)

    if options.min_confidence:
        floor = CONFIDENCE_LABELS[options.min_confidence]
        signals = [s for s in signals if s.confidence_score >= floor]
    if options.actions:
        signals = [s for s in signals if s.action in options.actions]
    output = signals[:limit]

    logger.info("Signals: %d generated, %d returned", generated, len(output))
    return {
        "signals": [s.to_dict(now) for s in output],
        "meta": {
            "total_markets_scanned": len(markets),
            "signals_generated": len(output),
            "signals_before_filter": generated,
            "flb_signals": sum(1 for s in output if s.signal_type == "FLB"),
            "bond_signals": sum(1 for s in output if s.signal_type == "BOND"),
            "scan_timestamp": now.isoformat(),
            "filters": {
                "max_resolution_days": max_days,
                "min_edge": min_edge,
                "min_confidence": options.min_confidence or "none",
                "action_filter": [a.value for a in options.actions] if options.actions else "all",
            },
            "engine": ENGINE_NAME,
        },
    }
