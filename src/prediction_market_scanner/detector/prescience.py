"""Wallet archetypes and the long-horizon prescience score.

Used for resolved-market post-mortems: given one wallet's trades and the
markets they touched, how early and how right was the wallet, and what kind
of trader does it look like?
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from prediction_market_scanner.detector.models import round2, round_half_up
from prediction_market_scanner.ingestor.models import Market, Trade

WEIGHTS = {
    "wallet_age": 0.10,
    "timing": 0.25,
    "win_rate": 0.20,
    "liquidity_size": 0.20,
    "domain_edge": 0.10,
    "concentration": 0.08,
    "volume": 0.07,
}

SOFT_MOVE = 0.05  # price move that counts as a soft win/loss
SOFT_WEIGHT = 0.5
DEFAULT_TIMING_SCORE = 30
WALLET_AGE_HORIZON_DAYS = 180
LIQUIDITY_SIZE_FULL = 0.05
CONCENTRATION_MARKETS = 20
FULL_TIMING_HOURS = 24 * 7
UNRESOLVED_TIMING_FACTOR = 0.3

EXPIRY_WINDOW_HOURS = 48
EXPIRY_CONSENSUS_PRICE = 0.95
EXPIRY_DISCOUNT = 0.3

SUSPICIOUS_SCORE = 50


class Archetype(str, Enum):
    FRESH_INSIDER = "fresh_insider"
    YIELD_FARMER = "yield_farmer"
    SCALPER = "scalper"
    INSIDER = "insider"
    WHALE = "whale"
    RETAIL = "retail"
    UNKNOWN = "unknown"


# Ceiling (or floor, for fresh insiders) applied to the raw score
ARCHETYPE_CAPS = {
    Archetype.YIELD_FARMER: 30,
    Archetype.SCALPER: 25,
    Archetype.RETAIL: 40,
}
FRESH_INSIDER_FLOOR = 75


@dataclass(frozen=True)
class WinLoss:
    wins: int = 0
    losses: int = 0
    soft_wins: int = 0
    soft_losses: int = 0

    @property
    def total(self) -> int:
        return self.wins + self.losses

    @property
    def blended_win_rate(self) -> float:
        """Hard results plus half-weighted soft results; 0.5 with no data."""
        soft_total = self.soft_wins + self.soft_losses
        denominator = self.total + soft_total * SOFT_WEIGHT
        if denominator <= 0:
            return 0.5
        return (self.wins + self.soft_wins * SOFT_WEIGHT) / denominator


@dataclass(frozen=True)
class PrescienceScore:
    score: int
    confidence: str
    trade_count: int
    archetype: Archetype
    breakdown: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def risk_level(self) -> str:
        if self.score >= 75:
            return "CRITICAL"
        if self.score >= 50:
            return "HIGH"
        if self.score >= 25:
            return "MEDIUM"
        return "LOW"

    @property
    def is_suspicious(self) -> bool:
        return self.score >= SUSPICIOUS_SCORE

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "confidence": self.confidence,
            "trade_count": self.trade_count,
            "archetype": self.archetype.value,
            "risk_level": self.risk_level,
            "breakdown": self.breakdown,
        }


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _group_by_market(trades: Sequence[Trade]) -> dict[str, list[Trade]]:
    grouped: dict[str, list[Trade]] = {}
    for trade in trades:
        grouped.setdefault(trade.market_id, []).append(trade)
    return grouped


def compute_win_loss(trades: Sequence[Trade], markets: dict[str, Market]) -> WinLoss:
    """Count BUY results on resolved markets and price moves on open ones."""
    wins = losses = soft_wins = soft_losses = 0
    for market_id, market_trades in _group_by_market(trades).items():
        market = markets.get(market_id)
        if market is None or not market.outcome_prices:
            continue
        buys = [t for t in market_trades if t.is_buy]
        winner = market.winning_outcome
        if winner is not None:
            for buy in buys:
                if buy.outcome == winner:
                    wins += 1
                else:
                    losses += 1
            continue
        for buy in buys:
            if buy.outcome not in market.outcomes:
                continue
            current = market.outcome_prices[market.outcomes.index(buy.outcome)]
            current = 0.0 if math.isnan(current) else current
            if buy.price <= 0 or current <= 0:
                continue
            move = current - buy.price
            if move > SOFT_MOVE:
                soft_wins += 1
            elif move < -SOFT_MOVE:
                soft_losses += 1
    return WinLoss(wins, losses, soft_wins, soft_losses)


def _index(markets: Sequence[Market]) -> dict[str, Market]:
    return {m.market_id: m for m in markets if m.market_id}


def _liquidity_relative_sizes(trades: Sequence[Trade], markets: dict[str, Market]) -> list[float]:
    sizes = []
    for trade in trades:
        market = markets.get(trade.market_id)
        liquidity = market.liquidity if market else None
        if liquidity and liquidity > 0:
            sizes.append(trade.usd_size / liquidity)
    return sizes


def classify_archetype(
    trades: Sequence[Trade],
    markets: Sequence[Market],
    now: datetime,
) -> Archetype:
    """Classify a wallet by age, bet size, breadth, market length and hit rate.

    Rules are checked in order; the first that matches wins.
    """
    index = _index(markets)
    now_ts = now.timestamp()

    unique_markets = len({t.market_id for t in trades})
    total_volume = sum(t.usd_size for t in trades)
    avg_bet = total_volume / len(trades) if trades else 0.0
    results = compute_win_loss(trades, index)
    win_rate = results.blended_win_rate
    total_bets = results.total

    durations: dict[str, float] = {}
    for market in markets:
        if market.created_at and market.closed_time and market.closed_time > market.created_at:
            durations[market.market_id] = (
                market.closed_time - market.created_at
            ).total_seconds() / 3600
    traded_durations = [durations[t.market_id] for t in trades if t.market_id in durations]
    short_pref = (
        sum(1 for d in traded_durations if d < 24) / len(traded_durations)
        if traded_durations
        else 0.0
    )

    rel_sizes = [s for s in _liquidity_relative_sizes(trades, index) if s]
    avg_rel_size = sum(rel_sizes) / len(rel_sizes) if rel_sizes else 0.0

    timestamps = [t.timestamp for t in trades if t.timestamp]
    first_ts = min(timestamps) if timestamps else now_ts
    age_days = (now_ts - first_ts) / 86400
    is_fresh = age_days < 14
    is_very_fresh = age_days < 3

    traded = {t.market_id for t in trades}
    odds_moving = any(
        m.market_id in traded and m.liquidity and (m.volume_24h or 0.0) / m.liquidity > 0.02
        for m in markets
    )

    if is_fresh and avg_bet > 500 and odds_moving:
        return Archetype.FRESH_INSIDER
    if is_very_fresh and avg_bet > 100 and odds_moving:
        return Archetype.FRESH_INSIDER
    if is_fresh and avg_bet > 500:
        return Archetype.YIELD_FARMER
    if unique_markets > 10 and avg_bet < 200 and short_pref > 0.5 and win_rate < 0.65:
        return Archetype.SCALPER
    if total_volume >= 10_000:
        return Archetype.WHALE
    if unique_markets <= 5 and avg_rel_size > 0.02 and win_rate > 0.7 and total_bets >= 2:
        return Archetype.INSIDER
    if unique_markets <= 8 and win_rate > 0.65 and avg_rel_size > 0.01 and total_bets >= 2:
        return Archetype.INSIDER
    if is_fresh and total_volume > 1000 and unique_markets <= 3:
        return Archetype.INSIDER
    if total_volume >= 5000:
        return Archetype.WHALE
    return Archetype.RETAIL


def _timing_scores(
    trades: Sequence[Trade], markets: dict[str, Market]
) -> list[float]:
    scores = []
    for trade in trades:
        market = markets.get(trade.market_id)
        if market is None or market.closed_time is None:
            continue
        close_ts = market.closed_time.timestamp()
        if trade.timestamp >= close_ts:
            continue
        hours_before = (close_ts - trade.timestamp) / 3600
        duration = (
            (close_ts - market.created_at.timestamp()) / 3600 if market.created_at else None
        )
        if duration and duration > 0:
            fraction_remaining = hours_before / duration
            duration_mult = min(1.0, duration / FULL_TIMING_HOURS)
            timing = _clamp((1 - fraction_remaining) * 100 * duration_mult)
        else:
            timing = _clamp(100 - hours_before / FULL_TIMING_HOURS * 100) * 0.5

        winner = market.winning_outcome
        if winner is not None and trade.is_buy:
            scores.append(timing if trade.outcome == winner else 0.0)
        else:
            scores.append(timing * UNRESOLVED_TIMING_FACTOR)
    return scores


def _domain_edge(trades: Sequence[Trade], markets: dict[str, Market]) -> tuple[float, str | None]:
    tag_results: dict[str, list[int]] = {}
    for market_id, market_trades in _group_by_market(trades).items():
        market = markets.get(market_id)
        tag = market.tags[0] if market and market.tags else "unknown"
        results = tag_results.setdefault(tag, [0, 0])
        winner = market.winning_outcome if market else None
        if winner is None:
            continue
        for trade in market_trades:
            if not trade.is_buy:
                continue
            results[1] += 1
            if trade.outcome == winner:
                results[0] += 1

    score = 0.0
    top: str | None = None
    entries = [(tag, w, t) for tag, (w, t) in tag_results.items() if t >= 2]
    for tag, wins, total in entries:
        rate = wins / total
        if rate > 0.7 and total >= 3:
            candidate = min(100.0, (rate - 0.5) * 200 * min(1.0, total / 5))
            if candidate > score:
                score, top = candidate, tag
    # Winning everywhere is breadth, not domain knowledge
    if sum(1 for _, wins, total in entries if wins / total > 0.6) > 3:
        score *= 0.5
    return score, top


def _expiry_discount(markets: Sequence[Market], now: datetime) -> float:
    discount = 1.0
    for market in markets:
        end = market.end_date or market.closed_time
        if end is None:
            continue
        hours = (end - now).total_seconds() / 3600
        if hours <= 0 or hours > EXPIRY_WINDOW_HOURS:
            continue
        if market.max_price >= EXPIRY_CONSENSUS_PRICE:
            discount = min(discount, EXPIRY_DISCOUNT)
    return discount


def _confidence(total_bets: int) -> str:
    if total_bets >= 10:
        return "high"
    if total_bets >= 5:
        return "medium"
    if total_bets >= 2:
        return "low"
    return "insufficient"


def compute_prescience(
    trades: Sequence[Trade],
    markets: Sequence[Market],
    now: datetime,
) -> PrescienceScore:
    """Score how prescient one wallet's trading looks, 0-100.

    Args:
        trades: The wallet's trades.
        markets: Markets those trades belong to (resolved or not).
        now: Reference time.

    Returns:
        PrescienceScore with archetype, confidence and a per-component
        breakdown.

    Example:
        ```python
        wallet_trades = [t for t in trades if t.wallet == wallet]
        result = compute_prescience(wallet_trades, [market], now)
        if result.is_suspicious:
            print(result.archetype, result.score)
        ```
    """
    if not trades:
        return PrescienceScore(0, "none", 0, Archetype.UNKNOWN)

    index = _index(markets)
    now_ts = now.timestamp()
    archetype = classify_archetype(trades, markets, now)

    age_days = (now_ts - min(t.timestamp for t in trades)) / 86400
    wallet_age = _clamp(100 - age_days / WALLET_AGE_HORIZON_DAYS * 100)

    rel_sizes = _liquidity_relative_sizes(trades, index)
    avg_rel_size = sum(rel_sizes) / len(rel_sizes) if rel_sizes else 0.0
    liquidity_size = _clamp(avg_rel_size / LIQUIDITY_SIZE_FULL * 100)

    timing_samples = _timing_scores(trades, index)
    timing = (
        sum(timing_samples) / len(timing_samples) if timing_samples else DEFAULT_TIMING_SCORE
    )

    results = compute_win_loss(trades, index)
    win_rate = results.blended_win_rate
    win_rate_score = _clamp((win_rate - 0.5) * 200)

    unique_markets = len({t.market_id for t in trades})
    concentration = _clamp(100 - unique_markets / CONCENTRATION_MARKETS * 100)

    domain_edge, top_domain = _domain_edge(trades, index)

    total_volume = sum(t.usd_size for t in trades)
    volume = min(100.0, math.log10(max(1.0, total_volume)) / 5 * 100)

    components = {
        "wallet_age": wallet_age,
        "timing": timing,
        "win_rate": win_rate_score,
        "liquidity_size": liquidity_size,
        "domain_edge": domain_edge,
        "concentration": concentration,
        "volume": volume,
    }
    raw = sum(components[name] * weight for name, weight in WEIGHTS.items())

    discount = _expiry_discount(markets, now)
    raw *= discount
    if archetype is Archetype.FRESH_INSIDER and discount >= 1.0:
        raw = max(raw, FRESH_INSIDER_FLOOR)
    elif archetype in ARCHETYPE_CAPS:
        raw = min(raw, ARCHETYPE_CAPS[archetype])

    score = round_half_up(_clamp(raw))
    breakdown = {
        "wallet_age": {
            "score": round_half_up(wallet_age),
            "days": round_half_up(age_days),
            "weight": WEIGHTS["wallet_age"],
        },
        "timing": {
            "score": round_half_up(timing),
            "samples": len(timing_samples),
            "weight": WEIGHTS["timing"],
        },
        "win_rate": {
            "score": round_half_up(win_rate_score),
            "rate": round2(win_rate),
            "wins": results.wins,
            "losses": results.losses,
            "weight": WEIGHTS["win_rate"],
        },
        "liquidity_size": {
            "score": round_half_up(liquidity_size),
            "avg_pct_of_liquidity": round2(avg_rel_size * 100),
            "weight": WEIGHTS["liquidity_size"],
        },
        "domain_edge": {
            "score": round_half_up(domain_edge),
            "top_domain": top_domain,
            "weight": WEIGHTS["domain_edge"],
        },
        "concentration": {
            "score": round_half_up(concentration),
            "unique_markets": unique_markets,
            "weight": WEIGHTS["concentration"],
        },
        "volume": {
            "score": round_half_up(volume),
            "total_usd": round2(total_volume),
            "weight": WEIGHTS["volume"],
        },
    }
    return PrescienceScore(
        score=score,
        confidence=_confidence(results.total),
        trade_count=len(trades),
        archetype=archetype,
        breakdown=breakdown,
    )
