"""Per-wallet and per-outcome aggregation of a market's trade stream."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime

from prediction_market_scanner.detector.models import TradeAggregate, WalletAgg
from prediction_market_scanner.ingestor.models import Trade

# Off-hours window: UTC hours [3, 11) roughly maps to 22:00-06:00 US-Eastern.
# The offset moves with DST; the window does not.
OFF_HOURS_START_UTC = 3
OFF_HOURS_END_UTC = 11
OFF_HOURS_MIN_TRADE_USD = 5

# Volume floor for deep scoring
MIN_TRADES = 3
MIN_WALLETS = 10
MIN_VOLUME_USD = 500

UNKNOWN_OUTCOME = "unknown"


def is_off_hours(timestamp: float) -> bool:
    """True for trades in the UTC off-hours window or on a weekend."""
    moment = datetime.fromtimestamp(timestamp, tz=UTC)
    return OFF_HOURS_START_UTC <= moment.hour < OFF_HOURS_END_UTC or moment.weekday() >= 5


def aggregate_trades(trades: Iterable[Trade]) -> TradeAggregate:
    """Fold trades into wallet, outcome and off-hours aggregates.

    Trades without a wallet are counted in ``trade_count`` and otherwise
    ignored. Order matters only for wallet insertion order.
    """
    agg = TradeAggregate()
    for trade in trades:
        agg.trade_count += 1
        if not trade.wallet:
            continue
        agg.counted_trades += 1

        usd = trade.usd_size
        wallet = agg.wallets.get(trade.wallet)
        if wallet is None:
            wallet = agg.wallets[trade.wallet] = WalletAgg(first_seen_ts=trade.timestamp)
        wallet.volume_usd += usd
        wallet.trade_count += 1
        if trade.timestamp < wallet.first_seen_ts:
            wallet.first_seen_ts = trade.timestamp

        if trade.is_buy:
            agg.buy_volume += usd
            outcome = trade.outcome or UNKNOWN_OUTCOME
            agg.outcome_buy_volume[outcome] = agg.outcome_buy_volume.get(outcome, 0.0) + usd
        else:
            agg.sell_volume += usd

        if trade.timestamp > 0 and is_off_hours(trade.timestamp):
            agg.off_hours_trades += 1
            if usd >= OFF_HOURS_MIN_TRADE_USD:
                agg.off_hours_large_usd += usd

    return agg


def passes_volume_floor(agg: TradeAggregate) -> bool:
    """Markets under 10 wallets or $500 are too thin to score."""
    return agg.total_wallets >= MIN_WALLETS and agg.total_volume >= MIN_VOLUME_USD
