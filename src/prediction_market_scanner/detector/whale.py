"""Whale intelligence from holder, position and large-trade data.

This module provides the WhaleAnalyzer class that looks at who holds a
market's outcome tokens and how the largest traders are positioned:
holder concentration, freshly created whales, PnL divergence of the top
positions and whale counter-flow against the market consensus.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from prediction_market_scanner.detector.models import round2, round_half_up
from prediction_market_scanner.ingestor.fetcher import run_in_batches
from prediction_market_scanner.ingestor.models import (
    ActivityRecord,
    Holder,
    Market,
    PositionPnl,
    TradeSide,
    WhaleTrade,
)
from prediction_market_scanner.ingestor.polymarket import PolymarketAdapter

logger = logging.getLogger(__name__)

# Concentration
CONCENTRATION_MIN_HOLDERS = 5
CONCENTRATION_TOP_N = 5
CONCENTRATION_THRESHOLD = 0.50

# Fresh whales
LARGE_HOLDER_MIN_USD = 10_000
LARGE_HOLDER_MIN_PRICE = 0.5  # price floor when estimating holder USD value
MAX_PROFILES = 5
FRESH_WHALE_MAX_TRADES = 5

# PnL divergence over the top positions
PNL_TOP_POSITIONS = 10
PNL_MIN_SAMPLES = 3
PNL_WINNING_RATIO = 0.7
PNL_LOSING_RATIO = 0.3

# Counter-flow
COUNTER_FLOW_MIN_TRADES = 3
COUNTER_FLOW_MIN_RECENT = 2
COUNTER_FLOW_WINDOW_SECONDS = 86400
STRONG_CONSENSUS_PRICE = 0.75
WEAK_CONSENSUS_PRICE = 0.25
WHALE_SELLING_RATIO = 0.3
WHALE_BUYING_RATIO = 0.7

WHALE_TRADE_MIN_USD = 500
AGGREGATE_WHALE_TRADE_MIN_USD = 1000
AGGREGATE_BATCH_SIZE = 10
AGGREGATE_HOLDERS_PER_MARKET = 3
AGGREGATE_TOP_POSITIONS = 10


class WalletClass(str, Enum):
    """Coarse wallet classification from its activity feed."""

    FRESH_INSIDER = "fresh_insider"
    FRESH = "fresh"
    VETERAN_WHALE = "veteran_whale"
    WHALE = "whale"
    MARKET_MAKER = "market_maker"
    RETAIL = "retail"
    UNKNOWN = "unknown"


class PnlDivergence(str, Enum):
    WHALES_WINNING = "WHALES_WINNING"
    WHALES_LOSING = "WHALES_LOSING"
    MIXED = "MIXED"


@dataclass(frozen=True)
class WalletProfile:
    """Activity summary of one wallet."""

    total_trades: int
    total_markets: int
    estimated_volume: float
    classification: WalletClass
    win_rate: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_trades": self.total_trades,
            "total_markets": self.total_markets,
            "estimated_volume": self.estimated_volume,
            "classification": self.classification.value,
            "win_rate": self.win_rate,
        }


@dataclass(frozen=True)
class FreshWhale:
    wallet: str
    total_trades: int
    total_markets: int
    classification: WalletClass
    pseudonym: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "wallet": self.wallet,
            "total_trades": self.total_trades,
            "total_markets": self.total_markets,
            "classification": self.classification.value,
            "pseudonym": self.pseudonym,
        }


@dataclass
class WhaleIntelligence:
    """Whale signals for one market."""

    whale_concentration: bool = False
    whale_concentration_pct: int = 0
    fresh_whales: list[FreshWhale] = field(default_factory=list)
    whale_pnl_divergence: PnlDivergence | None = None
    counter_flow: bool = False
    counter_flow_detail: str | None = None
    top_holders_count: int = 0
    whale_trades_count: int = 0
    positions_count: int = 0

    @property
    def fresh_whale(self) -> FreshWhale | None:
        """The first (most notable) fresh whale."""
        return self.fresh_whales[0] if self.fresh_whales else None

    def to_dict(self) -> dict[str, Any]:
        fresh = self.fresh_whale
        return {
            "whale_concentration": self.whale_concentration,
            "whale_concentration_pct": self.whale_concentration_pct,
            "fresh_whale": fresh.to_dict() if fresh else None,
            "fresh_whale_count": len(self.fresh_whales),
            "whale_pnl_divergence": (
                self.whale_pnl_divergence.value if self.whale_pnl_divergence else None
            ),
            "counter_flow": self.counter_flow,
            "counter_flow_detail": self.counter_flow_detail,
            "top_holders_count": self.top_holders_count,
            "whale_trades_count": self.whale_trades_count,
            "positions_count": self.positions_count,
        }


@dataclass
class WhaleAggregate:
    """Whale activity summed over many markets (pulse)."""

    whale_trades_24h: int = 0
    concentration_alerts: int = 0
    top_positions: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "whale_trades_24h": self.whale_trades_24h,
            "concentration_alerts": self.concentration_alerts,
            "top_positions": self.top_positions,
        }


def _mask(wallet: str) -> str:
    return wallet[:8] + "..."


def profile_wallet(activities: list[ActivityRecord]) -> WalletProfile:
    """Classify a wallet from its activity feed.

    Trades are records typed TRADE or carrying a side; resolutions are
    REDEEM/PAYOUT records and count as wins when they paid out.

    Example:
        ```python
        records = [ActivityRecord.from_dict(a) for a in await adapter.activity(wallet)]
        profile = profile_wallet(records)
        if profile.classification is WalletClass.FRESH_INSIDER:
            ...
        ```
    """
    if not activities:
        return WalletProfile(0, 0, 0.0, WalletClass.UNKNOWN, None)

    markets: set[str] = set()
    trades = 0
    volume = 0.0
    wins = 0
    resolved = 0
    for record in activities:
        if record.market:
            markets.add(record.market)
        if record.is_trade:
            trades += 1
            volume += abs(record.cash_amount)
        if record.is_resolution:
            resolved += 1
            if record.payout > 0:
                wins += 1

    win_rate = wins / resolved if resolved else None

    if trades <= 5 and volume > 10_000:
        classification = WalletClass.FRESH_INSIDER
    elif trades <= 5:
        classification = WalletClass.FRESH
    elif volume > 100_000 and win_rate is not None and win_rate > 0.65:
        classification = WalletClass.VETERAN_WHALE
    elif volume > 50_000:
        classification = WalletClass.WHALE
    elif trades > 50 and len(markets) > 20:
        classification = WalletClass.MARKET_MAKER
    else:
        classification = WalletClass.RETAIL

    return WalletProfile(
        total_trades=trades,
        total_markets=len(markets),
        estimated_volume=round2(volume),
        classification=classification,
        win_rate=round2(win_rate) if win_rate is not None else None,
    )


def holder_concentration(holders: list[Holder]) -> float | None:
    """Share of tokens held by the top 5 holders, None below 5 holders."""
    if len(holders) < CONCENTRATION_MIN_HOLDERS:
        return None
    total = sum(h.amount for h in holders)
    if total <= 0:
        return None
    return sum(h.amount for h in holders[:CONCENTRATION_TOP_N]) / total


def pnl_divergence(positions: list[PositionPnl]) -> PnlDivergence | None:
    profit = loss = 0
    for pos in positions[:PNL_TOP_POSITIONS]:
        if pos.pnl > 0:
            profit += 1
        elif pos.pnl < 0:
            loss += 1
    total = profit + loss
    if total < PNL_MIN_SAMPLES:
        return None
    ratio = profit / total
    if ratio > PNL_WINNING_RATIO:
        return PnlDivergence.WHALES_WINNING
    if ratio < PNL_LOSING_RATIO:
        return PnlDivergence.WHALES_LOSING
    return PnlDivergence.MIXED


def counter_flow(trades: list[WhaleTrade], max_price: float, now_ts: float) -> str | None:
    """Detect whales trading against a strong (or weak) consensus.

    Returns:
        WHALES_SELLING_CONSENSUS, WHALES_BUYING_UNDERDOG or None.
    """
    if len(trades) < COUNTER_FLOW_MIN_TRADES:
        return None
    recent = [t for t in trades if now_ts - t.timestamp < COUNTER_FLOW_WINDOW_SECONDS]
    if len(recent) < COUNTER_FLOW_MIN_RECENT:
        return None

    buy = sum(t.usd_value for t in recent if t.side is TradeSide.BUY)
    sell = sum(t.usd_value for t in recent if t.side is not TradeSide.BUY)
    total = buy + sell
    if total <= 0:
        return None

    buy_ratio = buy / total
    if max_price > STRONG_CONSENSUS_PRICE and buy_ratio < WHALE_SELLING_RATIO:
        return "WHALES_SELLING_CONSENSUS"
    if max_price < WEAK_CONSENSUS_PRICE and buy_ratio > WHALE_BUYING_RATIO:
        return "WHALES_BUYING_UNDERDOG"
    return None


class WhaleAnalyzer:
    """Compute whale signals for markets through the Polymarket adapter.

    Example:
        ```python
        analyzer = WhaleAnalyzer(engine.polymarket)
        intel = await analyzer.analyze(market, now)
        if intel.whale_concentration:
            print(f"Top 5 hold {intel.whale_concentration_pct}%")
        ```
    """

    def __init__(
        self,
        adapter: PolymarketAdapter,
        *,
        max_profiles: int = MAX_PROFILES,
        batch_size: int = AGGREGATE_BATCH_SIZE,
    ) -> None:
        self._adapter = adapter
        self._max_profiles = max_profiles
        self._batch_size = batch_size

    async def profile(self, wallet: str) -> WalletProfile:
        activity = await self._adapter.activity(wallet)
        return profile_wallet([ActivityRecord.from_dict(a) for a in activity])

    async def analyze(self, market: Market, now: datetime) -> WhaleIntelligence:
        """Fetch holder, position and whale-trade data and derive the signals.

        Fetch failures degrade to empty inputs; the signals they feed stay at
        their defaults.
        """
        market_id = market.market_id
        raw_holders, raw_positions, raw_trades = await asyncio.gather(
            self._adapter.holders(market_id),
            self._adapter.positions(market_id),
            self._adapter.whale_trades(market_id, WHALE_TRADE_MIN_USD),
        )
        holders = [Holder.from_dict(h) for h in raw_holders]
        positions = [PositionPnl.from_dict(p) for p in raw_positions]
        whale_trades = [WhaleTrade.from_dict(t) for t in raw_trades]

        result = WhaleIntelligence(
            top_holders_count=len(holders),
            whale_trades_count=len(whale_trades),
            positions_count=len(positions),
        )

        concentration = holder_concentration(holders)
        if concentration is not None:
            result.whale_concentration_pct = round_half_up(concentration * 100)
            result.whale_concentration = concentration > CONCENTRATION_THRESHOLD

        result.fresh_whales = await self._fresh_whales(holders, market)
        result.whale_pnl_divergence = pnl_divergence(positions) if positions else None

        detail = counter_flow(whale_trades, market.max_price, now.timestamp())
        if detail:
            result.counter_flow = True
            result.counter_flow_detail = detail

        return result

    async def _fresh_whales(self, holders: list[Holder], market: Market) -> list[FreshWhale]:
        price = max(market.max_price, LARGE_HOLDER_MIN_PRICE)
        large = [h for h in holders if h.amount * price > LARGE_HOLDER_MIN_USD]

        fresh: list[FreshWhale] = []
        for holder in large[: self._max_profiles]:
            if not holder.wallet:
                continue
            try:
                profile = await self.profile(holder.wallet)
            except Exception as e:
                logger.warning("Failed to profile holder %s: %s", _mask(holder.wallet), e)
                continue
            if 0 < profile.total_trades < FRESH_WHALE_MAX_TRADES:
                fresh.append(
                    FreshWhale(
                        wallet=_mask(holder.wallet),
                        total_trades=profile.total_trades,
                        total_markets=profile.total_markets,
                        classification=profile.classification,
                        pseudonym=holder.pseudonym,
                    )
                )
        return fresh

    async def aggregate(self, market_ids: list[str], now: datetime) -> WhaleAggregate:
        """Whale trade counts, concentration alerts and top positions across markets."""
        now_ts = now.timestamp()
        agg = WhaleAggregate()
        positions: list[dict[str, Any]] = []

        async def fetch(market_id: str) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
            trades, holders = await asyncio.gather(
                self._adapter.whale_trades(market_id, AGGREGATE_WHALE_TRADE_MIN_USD),
                self._adapter.holders(market_id),
            )
            return trades, holders

        results = await run_in_batches(market_ids, fetch, batch_size=self._batch_size)
        for market_id, outcome in results:
            if isinstance(outcome, BaseException):
                logger.warning("Whale aggregate failed for %s: %s", market_id[:10] + "...", outcome)
                continue
            raw_trades, raw_holders = outcome
            trades = [WhaleTrade.from_dict(t) for t in raw_trades]
            holders = [Holder.from_dict(h) for h in raw_holders]

            agg.whale_trades_24h += sum(
                1 for t in trades if now_ts - t.timestamp < COUNTER_FLOW_WINDOW_SECONDS
            )
            concentration = holder_concentration(holders)
            if concentration is not None and concentration > CONCENTRATION_THRESHOLD:
                agg.concentration_alerts += 1

            for holder in holders[:AGGREGATE_HOLDERS_PER_MARKET]:
                if holder.amount > 0:
                    positions.append(
                        {
                            "condition_id": market_id,
                            "wallet": _mask(holder.wallet),
                            "pseudonym": holder.pseudonym,
                            "token_amount": round_half_up(holder.amount),
                        }
                    )

        positions.sort(key=lambda p: p["token_amount"], reverse=True)
        agg.top_positions = positions[:AGGREGATE_TOP_POSITIONS]
        return agg
