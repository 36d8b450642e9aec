"""Tests for trade aggregation and derived market signals."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from conftest import NOW, make_market, make_trade

from prediction_market_scanner.detector.aggregator import (
    UNKNOWN_OUTCOME,
    aggregate_trades,
    is_off_hours,
    passes_volume_floor,
)
from prediction_market_scanner.detector.models import FlowDirection
from prediction_market_scanner.detector.signals import (
    BASELINE_FRESH_RATIO,
    CAPPED_BASELINE_FRESH_RATIO,
    classify_flow,
    derive_signals,
    estimate_fair_value,
    flow_v2_score,
)
from prediction_market_scanner.ingestor.models import Trade, TradeSide

RECENT = NOW - timedelta(hours=1)


class TestOffHours:
    @pytest.mark.parametrize(
        ("moment", "expected"),
        [
            (datetime(2026, 3, 4, 2, 59, tzinfo=UTC), False),
            (datetime(2026, 3, 4, 3, 0, tzinfo=UTC), True),
            (datetime(2026, 3, 4, 10, 59, tzinfo=UTC), True),
            (datetime(2026, 3, 4, 11, 0, tzinfo=UTC), False),
            (datetime(2026, 3, 7, 15, 0, tzinfo=UTC), True),  # Saturday
            (datetime(2026, 3, 8, 15, 0, tzinfo=UTC), True),  # Sunday
        ],
    )
    def test_window(self, moment: datetime, expected: bool) -> None:
        assert is_off_hours(moment.timestamp()) is expected


class TestAggregateTrades:
    def test_wallets_outcomes_and_sides(self) -> None:
        trades = [
            make_trade("0xa", "Yes", 100, RECENT),
            make_trade("0xa", "No", 50, RECENT),
            make_trade("0xb", "Yes", 30, RECENT, side=TradeSide.SELL),
            make_trade("0xc", None, 20, RECENT),
        ]
        agg = aggregate_trades(trades)

        assert agg.trade_count == 4
        assert list(agg.wallets) == ["0xa", "0xb", "0xc"]
        assert agg.wallets["0xa"].volume_usd == pytest.approx(150)
        assert agg.wallets["0xa"].trade_count == 2
        assert agg.buy_volume == pytest.approx(170)
        assert agg.sell_volume == pytest.approx(30)
        assert agg.outcome_buy_volume == pytest.approx(
            {"Yes": 100, "No": 50, UNKNOWN_OUTCOME: 20}
        )

    def test_trades_without_wallet_are_counted_only(self) -> None:
        trades = [
            make_trade("0xa", "Yes", 100, RECENT),
            Trade(
                timestamp=RECENT.timestamp(),
                market_id="0xmarket",
                outcome="Yes",
                side=TradeSide.BUY,
                size=1000,
                price=0.5,
                wallet="",
            ),
        ]
        agg = aggregate_trades(trades)
        assert agg.trade_count == 2
        assert agg.counted_trades == 1
        assert agg.total_volume == pytest.approx(100)

    def test_first_seen_is_earliest_trade(self) -> None:
        early = NOW - timedelta(days=10)
        agg = aggregate_trades(
            [make_trade("0xa", "Yes", 10, RECENT), make_trade("0xa", "Yes", 10, early)]
        )
        assert agg.wallets["0xa"].first_seen_ts == early.timestamp()

    def test_off_hours_large_usd(self) -> None:
        night = datetime(2026, 3, 4, 4, 0, tzinfo=UTC)
        agg = aggregate_trades(
            [
                make_trade("0xa", "Yes", 4, night),
                make_trade("0xb", "Yes", 6_000, night),
                make_trade("0xc", "Yes", 100, RECENT),
            ]
        )
        assert agg.off_hours_trades == 2
        assert agg.off_hours_large_usd == pytest.approx(6_000)
        assert agg.off_hours_fraction == pytest.approx(2 / 3)


class TestVolumeFloor:
    def test_ten_wallets_and_500_usd_pass(self) -> None:
        trades = [make_trade(f"0x{i}", "Yes", 50, RECENT) for i in range(10)]
        assert passes_volume_floor(aggregate_trades(trades))

    def test_nine_wallets_fail(self) -> None:
        trades = [make_trade(f"0x{i}", "Yes", 100, RECENT) for i in range(9)]
        assert not passes_volume_floor(aggregate_trades(trades))

    def test_499_usd_fails(self) -> None:
        trades = [make_trade(f"0x{i}", "Yes", 49.9, RECENT) for i in range(10)]
        assert not passes_volume_floor(aggregate_trades(trades))


class TestFlowClassification:
    @pytest.mark.parametrize(
        ("minority", "majority", "expected"),
        [
            (0, 0, FlowDirection.NEUTRAL),
            (31, 69, FlowDirection.MINORITY_HEAVY),
            (30, 70, FlowDirection.MIXED),
            (11, 89, FlowDirection.MIXED),
            (10, 90, FlowDirection.MAJORITY_ALIGNED),
        ],
    )
    def test_bands(self, minority: float, majority: float, expected: FlowDirection) -> None:
        direction, _ = classify_flow(minority, majority)
        assert direction is expected

    def test_flow_score_scale(self) -> None:
        assert flow_v2_score(FlowDirection.MINORITY_HEAVY, 0.75, 0.0) == 4.75
        assert flow_v2_score(FlowDirection.MIXED, 0.2, 0.0) == pytest.approx(2.6)
        assert flow_v2_score(FlowDirection.MAJORITY_ALIGNED, 0.05, -0.4) == 0.4


class TestDeriveSignals:
    def test_fresh_baseline_rises_for_capped_samples(self) -> None:
        market = make_market()
        trades = [make_trade(f"0x{i % 20}", "Yes", 10, RECENT) for i in range(295)]
        signals = derive_signals(market, aggregate_trades(trades), NOW)
        assert signals.sample_capped
        assert signals.baseline_fresh_ratio == CAPPED_BASELINE_FRESH_RATIO

        signals = derive_signals(market, aggregate_trades(trades[:294]), NOW)
        assert not signals.sample_capped
        assert signals.baseline_fresh_ratio == BASELINE_FRESH_RATIO

    def test_excess_never_negative(self) -> None:
        old = NOW - timedelta(days=30)
        trades = [make_trade(f"0x{i}", "Yes", 100, old) for i in range(10)]
        signals = derive_signals(make_market(), aggregate_trades(trades), NOW)
        assert signals.fresh_wallet_ratio == 0
        assert signals.fresh_wallet_excess == 0

    def test_small_fresh_wallets_are_not_fresh(self) -> None:
        trades = [make_trade(f"0x{i}", "Yes", 50, RECENT) for i in range(10)]
        signals = derive_signals(make_market(), aggregate_trades(trades), NOW)
        assert signals.fresh_wallet_count == 0

    def test_minority_picks_lower_priced_outcome(self) -> None:
        market = make_market(prices=(0.8, 0.2))
        trades = [make_trade("0xa", "No", 400, RECENT), make_trade("0xb", "Yes", 100, RECENT)]
        signals = derive_signals(market, aggregate_trades(trades), NOW)
        assert signals.minority_outcome == "No"
        assert signals.majority_outcome == "Yes"
        assert signals.flow_direction_v2 is FlowDirection.MINORITY_HEAVY
        assert signals.minority_ratio == pytest.approx(0.8)

    def test_volume_vs_liquidity_is_capped(self) -> None:
        market = make_market(volume_24h=10_000_000.0, liquidity=1_000.0)
        signals = derive_signals(market, aggregate_trades([]), NOW)
        assert signals.volume_vs_liquidity == 1.0

    def test_side_flows_bounded_by_buy_volume(self) -> None:
        trades = [make_trade(f"0xy{i}", "Yes", 700 + 90 * i, RECENT) for i in range(15)]
        trades += [make_trade(f"0xn{i}", "No", 300 + 40 * i, RECENT) for i in range(15)]
        trades += [
            make_trade(f"0xs{i}", "Yes", 2_000, RECENT, side=TradeSide.SELL) for i in range(5)
        ]
        trades += [make_trade(f"0xu{i}", None, 1_500, RECENT) for i in range(5)]
        signals = derive_signals(make_market(prices=(0.35, 0.65)), aggregate_trades(trades), NOW)

        buys = sum(t.usd_size for t in trades if t.side is TradeSide.BUY)
        assert signals.minority_side_flow > 0
        assert signals.majority_side_flow > 0
        assert signals.minority_side_flow + signals.majority_side_flow <= buys + 1e-9
        assert signals.buy_volume == pytest.approx(buys)


class TestFairValue:
    def test_no_flow_means_no_estimate(self) -> None:
        signals = derive_signals(make_market(), aggregate_trades([]), NOW)
        assert estimate_fair_value(0.3, signals) is None

    def test_estimate_is_bounded(self) -> None:
        market = make_market(prices=(0.1, 0.9))
        trades = [make_trade(f"0x{i}", "Yes", 2_000, RECENT) for i in range(10)]
        signals = derive_signals(market, aggregate_trades(trades), NOW)
        value = estimate_fair_value(0.1, signals)
        assert value is not None
        assert 0.05 <= value <= 0.95
        assert value > 0.1
