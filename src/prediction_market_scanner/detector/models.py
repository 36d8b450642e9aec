"""Data models for the detector module."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum

# Wallet thresholds
FRESH_WALLET_MAX_AGE_DAYS = 7
FRESH_WALLET_MIN_VOLUME_USD = 50
LARGE_POSITION_MIN_USD = 1000

# Threat level bands
CRITICAL_THRESHOLD = 70
HIGH_THRESHOLD = 45
MODERATE_THRESHOLD = 25


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (``floor(x + 0.5)``)."""
    return math.floor(value + 0.5)


def round2(value: float) -> float:
    return round_half_up(value * 100) / 100


class TopicCategory(str, Enum):
    GEOPOLITICAL = "geopolitical"
    POLITICAL = "political"
    CRYPTO = "crypto"
    SPORTS = "sports"
    GENERAL = "general"


class FlowDirection(str, Enum):
    """Buy-flow split between the minority and majority outcome."""

    MINORITY_HEAVY = "MINORITY_HEAVY"
    MIXED = "MIXED"
    MAJORITY_ALIGNED = "MAJORITY_ALIGNED"
    NEUTRAL = "NEUTRAL"


class ThreatLevel(str, Enum):
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @classmethod
    def from_score(cls, score: int) -> ThreatLevel:
        if score >= CRITICAL_THRESHOLD:
            return cls.CRITICAL
        if score >= HIGH_THRESHOLD:
            return cls.HIGH
        if score >= MODERATE_THRESHOLD:
            return cls.MODERATE
        return cls.LOW


@dataclass
class WalletAgg:
    """Per-market aggregate of one wallet's trades within a scan."""

    first_seen_ts: float
    volume_usd: float = 0.0
    trade_count: int = 0

    def age_days(self, now_ts: float) -> float:
        return (now_ts - self.first_seen_ts) / 86400

    def is_fresh(self, now_ts: float) -> bool:
        return (
            self.age_days(now_ts) < FRESH_WALLET_MAX_AGE_DAYS
            and self.volume_usd > FRESH_WALLET_MIN_VOLUME_USD
        )

    @property
    def is_large(self) -> bool:
        return self.volume_usd >= LARGE_POSITION_MIN_USD


@dataclass
class TradeAggregate:
    """Everything the signal derivator needs from one market's trade stream.

    Attributes:
        wallets: wallet -> aggregate, in first-seen order.
        outcome_buy_volume: outcome -> USD bought ("unknown" when omitted).
        buy_volume: Total USD on BUY trades.
        sell_volume: Total USD on every other trade.
        trade_count: Trades received (including ones without a wallet).
        counted_trades: Trades that carried a wallet.
        off_hours_trades: Trades in the off-hours window.
        off_hours_large_usd: USD of off-hours trades at or above the
            off-hours size floor.
    """

    wallets: dict[str, WalletAgg] = field(default_factory=dict)
    outcome_buy_volume: dict[str, float] = field(default_factory=dict)
    buy_volume: float = 0.0
    sell_volume: float = 0.0
    trade_count: int = 0
    counted_trades: int = 0
    off_hours_trades: int = 0
    off_hours_large_usd: float = 0.0

    @property
    def total_volume(self) -> float:
        return self.buy_volume + self.sell_volume

    @property
    def total_wallets(self) -> int:
        return len(self.wallets)

    @property
    def flow_imbalance(self) -> float:
        """(buy - sell) / total, in [-1, 1]."""
        total = self.total_volume
        return (self.buy_volume - self.sell_volume) / total if total > 0 else 0.0

    @property
    def off_hours_fraction(self) -> float:
        return self.off_hours_trades / self.counted_trades if self.counted_trades else 0.0

    @property
    def large_count(self) -> int:
        return sum(1 for w in self.wallets.values() if w.is_large)

    @property
    def max_wallet_volume(self) -> float:
        return max((w.volume_usd for w in self.wallets.values()), default=0.0)

    def fresh_count(self, now_ts: float) -> int:
        return sum(1 for w in self.wallets.values() if w.is_fresh(now_ts))


@dataclass(frozen=True)
class MarketSignals:
    """Derived per-market signals for one scan."""

    total_trades: int
    total_wallets: int
    total_volume: float
    buy_volume: float
    sell_volume: float
    fresh_wallet_count: int
    fresh_wallet_ratio: float
    baseline_fresh_ratio: float
    fresh_wallet_excess: float
    sample_capped: bool
    large_position_count: int
    large_position_ratio: float
    max_wallet_volume: float
    flow_imbalance: float
    flow_direction_v2: FlowDirection
    minority_ratio: float
    minority_outcome: str | None
    majority_outcome: str | None
    minority_side_flow: float
    majority_side_flow: float
    volume_24h: float
    liquidity: float
    volume_vs_liquidity: float
    off_hours_fraction: float
    off_hours_large_usd: float
    outcome_buy_volume: dict[str, float] = field(default_factory=dict)

    @property
    def flow_direction(self) -> str:
        """Coarse BUY/SELL/NEUTRAL label from the signed imbalance."""
        if self.flow_imbalance > 0.1:
            return "BUY"
        if self.flow_imbalance < -0.1:
            return "SELL"
        return "NEUTRAL"


@dataclass(frozen=True)
class DampeningResult:
    """Noise dampening from question keywords, price and expiry."""

    factor: float
    reasons: tuple[str, ...] = ()

    @property
    def is_dampened(self) -> bool:
        return self.factor > 0

    @property
    def reason(self) -> str | None:
        return "; ".join(self.reasons) if self.reasons else None


@dataclass(frozen=True)
class ContextResult:
    """Topic-aware adjustments applied on top of the raw score."""

    category: TopicCategory
    fw_excess_multiplier: float = 1.0
    threat_score_cap: int | None = None
    context_dampening: float = 1.0
    notes: tuple[str, ...] = ()

    @property
    def context_note(self) -> str | None:
        return "; ".join(self.notes) if self.notes else None


@dataclass(frozen=True)
class ScoreResult:
    """Final threat score with every modifier that fired.

    Attributes:
        threat_score: Integer score in [0, 100].
        threat_level: Band label for ``threat_score``.
        raw_conviction: Weighted sum before scaling, in [0, 11].
        effective_fresh_excess: Fresh excess after flow and context damping.
        breakdown: Named sub-scores with their weights.
        modifiers: Names of caps, multipliers and boosts in the order fired.
    """

    threat_score: int
    threat_level: ThreatLevel
    raw_conviction: float
    effective_fresh_excess: float
    flow_v2_score: float
    breakdown: dict[str, dict[str, float]]
    modifiers: tuple[str, ...]
    context: ContextResult
    dampening: DampeningResult
    off_hours_multiplier: float = 1.0
    consensus_dampened: bool = False
    fresh_excess_capped: bool = False
    near_expiry_consensus: bool = False
    live_event: bool = False
    new_market_flag: bool = False
    new_market_boost: int = 0
    veteran_minority_flow_score: int = 0
    veteran_flow_note: str | None = None

    @property
    def off_hours_amplified(self) -> bool:
        return self.off_hours_multiplier > 1.0
