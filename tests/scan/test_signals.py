"""Tests for trading-signal generation."""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import NOW, VenueRouter, gamma_market, make_market

from prediction_market_scanner.detector.models import FlowDirection
from prediction_market_scanner.engine import Engine
from prediction_market_scanner.scan.runner import ScanError
from prediction_market_scanner.scan.signals import (
    SignalAction,
    SignalOptions,
    compute_confidence,
    generate_signals,
    price_signal,
    urgency,
)


class TestConfidence:
    def test_dampened_is_floor(self) -> None:
        assert (
            compute_confidence(
                threat_score=80,
                flow_direction=FlowDirection.MINORITY_HEAVY,
                effective_excess=0.5,
                large_position_ratio=0.5,
                total_wallets=100,
                is_dampened=True,
            )
            == 1
        )

    def test_all_factors_capped_at_five(self) -> None:
        assert (
            compute_confidence(
                threat_score=50,
                flow_direction=FlowDirection.MINORITY_HEAVY,
                effective_excess=0.2,
                large_position_ratio=0.1,
                total_wallets=60,
                is_dampened=False,
            )
            == 5
        )

    def test_moderate_score(self) -> None:
        assert (
            compute_confidence(
                threat_score=25,
                flow_direction=FlowDirection.MIXED,
                effective_excess=0.0,
                large_position_ratio=0.0,
                total_wallets=12,
                is_dampened=False,
            )
            == 2
        )


class TestUrgency:
    @pytest.mark.parametrize(
        ("days", "accelerating", "expected"),
        [
            (1, False, "URGENT"),
            (5, False, "MODERATE"),
            (30, False, "LOW"),
            (None, False, "LOW"),
            (30, True, "URGENT"),
        ],
    )
    def test_urgency(self, days: int | None, accelerating: bool, expected: str) -> None:
        assert urgency(days, accelerating=accelerating) == expected


class TestPriceSignal:
    def test_longshot_yields_buy_no(self) -> None:
        signal = price_signal(make_market(prices=(0.095, 0.905)), 10)

        assert signal is not None
        assert signal.action is SignalAction.BUY_NO
        assert signal.signal_type == "FLB"
        assert signal.extras["flb_edge"] == 0.06
        assert signal.edge["minority_outcome"] == "No"

    def test_small_longshot_edge_is_ignored(self) -> None:
        assert price_signal(make_market(prices=(0.05, 0.95)), 10) is None

    def test_bond(self) -> None:
        signal = price_signal(make_market(prices=(0.95, 0.05)), 30)

        assert signal is not None
        assert signal.action is SignalAction.BOND
        assert signal.extras["bond_yield_annualized"] == pytest.approx(64.04)

    def test_low_yield_bond_is_ignored(self) -> None:
        assert price_signal(make_market(prices=(0.99, 0.01)), 365) is None

    def test_non_binary_market(self) -> None:
        market = make_market(outcomes=("A", "B", "C"), prices=(0.05, 0.05, 0.9))
        assert price_signal(market, 10) is None


class TestSignalOptions:
    def test_confidence_is_normalized(self) -> None:
        options = SignalOptions(min_confidence="medium")
        options.validate()
        assert options.min_confidence == "MEDIUM"

    @pytest.mark.parametrize(
        "options",
        [SignalOptions(min_confidence="bogus"), SignalOptions(limit=0), SignalOptions(max_days=0)],
    )
    def test_invalid(self, options: SignalOptions) -> None:
        with pytest.raises(ScanError):
            options.validate()


class TestGenerateSignals:
    @pytest.mark.asyncio
    async def test_price_only_signals(self, engine: Engine, router: VenueRouter) -> None:
        router.route(
            "gamma:/markets",
            [
                gamma_market("0xlong", "Will the merger close this year?", prices=(0.095, 0.905)),
                gamma_market("0xeven", "Will the index rise this month?", prices=(0.5, 0.5)),
            ],
        )
        doc = await generate_signals(engine)

        assert [s["slug"] for s in doc["signals"]] == ["long"]
        signal = doc["signals"][0]
        assert signal["action"] == "BUY_NO"
        assert signal["signal_type"] == "FLB"
        assert signal["updated_at"] == NOW.isoformat()
        assert doc["meta"]["flb_signals"] == 1
        assert doc["meta"]["total_markets_scanned"] == 2

    @pytest.mark.asyncio
    async def test_action_filter(self, engine: Engine, router: VenueRouter) -> None:
        router.route("gamma:/markets", [gamma_market("0xlong", "Q?", prices=(0.095, 0.905))])
        doc = await generate_signals(engine, SignalOptions(actions=(SignalAction.BOND,)))

        assert doc["signals"] == []
        assert doc["meta"]["signals_before_filter"] == 1
        assert doc["meta"]["filters"]["action_filter"] == ["BOND"]

    @pytest.mark.asyncio
    async def test_max_days_excludes_far_markets(
        self, engine: Engine, router: VenueRouter
    ) -> None:
        far = gamma_market(
            "0xlong",
            "Q?",
            prices=(0.095, 0.905),
            endDate=(NOW + timedelta(days=200)).isoformat(),
        )
        router.route("gamma:/markets", [far])
        doc = await generate_signals(engine)
        assert doc["signals"] == []
