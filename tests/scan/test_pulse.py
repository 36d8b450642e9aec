"""Tests for the aggregate market pulse."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import httpx
import pytest
from conftest import NOW, VenueRouter, gamma_market, make_market, make_trade

from prediction_market_scanner.detector.models import FlowDirection
from prediction_market_scanner.engine import Engine
from prediction_market_scanner.scan.pulse import HOT_SCORE, PulseLevel, pulse, quick_score

RECENT = NOW - timedelta(hours=2)
OLD = NOW - timedelta(days=40)


def _minority_rush(market_id: str = "0xmarket") -> list:
    """Twelve fresh wallets each putting $1,000 on the cheap side."""
    return [
        make_trade(f"0xfresh{i}", "Yes", 1_000, RECENT, market_id=market_id) for i in range(12)
    ]


class TestPulseLevel:
    @pytest.mark.parametrize(
        ("score", "level"),
        [
            (0, PulseLevel.LOW),
            (24, PulseLevel.LOW),
            (25, PulseLevel.GUARDED),
            (50, PulseLevel.ELEVATED),
            (75, PulseLevel.SEVERE),
        ],
    )
    def test_from_score(self, score: int, level: PulseLevel) -> None:
        assert PulseLevel.from_score(score) is level


class TestQuickScore:
    def test_needs_five_trades(self) -> None:
        trades = [make_trade(f"0x{i}", "Yes", 100, RECENT) for i in range(4)]
        assert quick_score(make_market(), trades, NOW) is None

    def test_needs_three_wallets(self) -> None:
        trades = [make_trade(f"0x{i % 2}", "Yes", 100, RECENT) for i in range(6)]
        assert quick_score(make_market(), trades, NOW) is None

    def test_minority_rush_is_hot(self) -> None:
        market = make_market(prices=(0.27, 0.73), liquidity=25_000.0, volume_24h=10_000.0)
        result = quick_score(market, _minority_rush(), NOW)

        assert result is not None
        assert result.flow_direction_v2 is FlowDirection.MINORITY_HEAVY
        assert result.score >= HOT_SCORE

    def test_majority_flow_capped(self) -> None:
        market = make_market(prices=(0.73, 0.27), liquidity=25_000.0, volume_24h=10_000.0)
        result = quick_score(market, _minority_rush(), NOW)

        assert result is not None
        assert result.flow_direction_v2 is FlowDirection.MAJORITY_ALIGNED
        assert result.score <= 8

    def test_thin_market_capped(self) -> None:
        trades = [make_trade(f"0xfresh{i}", "Yes", 200, RECENT) for i in range(6)]
        result = quick_score(make_market(prices=(0.27, 0.73)), trades, NOW)
        assert result is not None
        assert result.score <= 15

    def test_old_wallets_capped_at_zero_excess(self) -> None:
        trades = [make_trade(f"0xold{i}", "Yes", 1_000, OLD) for i in range(12)]
        result = quick_score(make_market(prices=(0.27, 0.73)), trades, NOW)
        assert result is not None
        assert result.score <= 6

    def test_near_expiry_discount(self) -> None:
        hot = make_market(prices=(0.27, 0.73), liquidity=25_000.0, volume_24h=10_000.0)
        expiring = make_market(
            prices=(0.97, 0.03),
            liquidity=25_000.0,
            volume_24h=10_000.0,
            end_in=timedelta(hours=12),
        )
        trades = [make_trade(f"0xfresh{i}", "No", 1_000, RECENT) for i in range(12)]
        hot_score = quick_score(hot, _minority_rush(), NOW)
        expiring_score = quick_score(expiring, trades, NOW)
        assert hot_score is not None and expiring_score is not None
        assert expiring_score.flow_direction_v2 is FlowDirection.MINORITY_HEAVY
        assert expiring_score.score < hot_score.score


def _data_trade(trade: Any) -> dict[str, Any]:
    return {
        "proxyWallet": trade.wallet,
        "side": trade.side.value,
        "outcome": trade.outcome,
        "size": trade.size,
        "price": trade.price,
        "timestamp": trade.timestamp,
    }


class TestPulse:
    @pytest.mark.asyncio
    async def test_empty_venue(self, engine: Engine) -> None:
        doc = await pulse(engine)
        assert doc["pulse"]["markets_scanned"] == 0
        assert doc["pulse"]["threat_level"] == "LOW"
        assert doc["pulse"]["suspicious_ratio"] == 0
        assert doc["hot_markets"] == []

    @pytest.mark.asyncio
    async def test_hot_active_market(self, engine: Engine, router: VenueRouter) -> None:
        hot = gamma_market("0xhot", "Will the merger close?", prices=(0.27, 0.73))

        def markets(request: httpx.Request) -> Any:
            return [] if request.url.params.get("closed") == "true" else [hot]

        def trades(request: httpx.Request) -> Any:
            if "filterType" in request.url.params:
                return []
            return [_data_trade(t) for t in _minority_rush("0xhot")]

        router.route("gamma:/markets", markets)
        router.route("data:/trades", trades)
        doc = await pulse(engine)

        assert doc["pulse"]["markets_scanned"] == 1
        assert doc["pulse"]["highest_score"] >= HOT_SCORE
        assert doc["pulse"]["threat_level"] != "LOW"
        assert doc["hot_markets"][0]["condition_id"] == "0xhot"
        assert doc["hot_markets"][0]["flow_direction_v2"] == "MINORITY_HEAVY"
        assert doc["whale_intelligence"]["whale_trades_24h"] == 0
