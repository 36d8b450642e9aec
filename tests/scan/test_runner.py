"""Tests for scan orchestration."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

import httpx
import pytest
from conftest import NOW, VenueRouter, gamma_market, make_market, make_trade

from prediction_market_scanner.engine import Engine
from prediction_market_scanner.scan.runner import (
    Exchange,
    ScanCancelledError,
    ScanError,
    ScanOptions,
    analyze_market,
    fetch_universe,
    scan,
)

RECENT = NOW - timedelta(hours=2)


def _data_trades(wallets: int, usd: float = 100.0) -> list[dict[str, Any]]:
    return [
        {
            "proxyWallet": f"0xwallet{i:03d}",
            "side": "BUY",
            "outcome": "Yes",
            "size": usd * 2,
            "price": 0.5,
            "timestamp": RECENT.timestamp(),
        }
        for i in range(wallets)
    ]


def _route_trades(router: VenueRouter, by_market: dict[str, list[dict[str, Any]]]) -> None:
    def trades(request: httpx.Request) -> Any:
        return by_market.get(request.url.params["market"], [])

    router.route("data:/trades", trades)


@pytest.fixture
def two_markets(router: VenueRouter) -> VenueRouter:
    """A busy market that passes the floor and a thin one that does not."""
    router.route(
        "gamma:/markets",
        [
            gamma_market("0xbusy", "Will the central bank cut rates?", volume_24h=20_000),
            gamma_market("0xthin", "Will the merger close this quarter?", volume_24h=10_000),
        ],
    )
    _route_trades(router, {"0xbusy": _data_trades(12), "0xthin": _data_trades(2)})
    return router


class TestAnalyzeMarket:
    def test_needs_three_trades(self) -> None:
        trades = [make_trade(f"0x{i}", "Yes", 500, RECENT) for i in range(2)]
        assert analyze_market(make_market(), trades, NOW) is None

    def test_needs_volume_floor(self) -> None:
        trades = [make_trade(f"0x{i}", "Yes", 500, RECENT) for i in range(3)]
        assert analyze_market(make_market(), trades, NOW) is None

    def test_scores_busy_market(self) -> None:
        trades = [make_trade(f"0x{i}", "Yes", 100, RECENT) for i in range(12)]
        analysis = analyze_market(make_market(), trades, NOW)
        assert analysis is not None
        assert analysis.signals.total_wallets == 12
        assert 0 <= analysis.score.threat_score <= 100


class TestScanOptions:
    @pytest.mark.parametrize(
        "options",
        [ScanOptions(limit=0), ScanOptions(limit=501), ScanOptions(slug="   ")],
    )
    def test_invalid_options(self, options: ScanOptions) -> None:
        with pytest.raises(ScanError):
            options.validate(500)


class TestScan:
    @pytest.mark.asyncio
    async def test_deep_scan_filters_thin_markets(
        self, engine: Engine, two_markets: VenueRouter
    ) -> None:
        result = await scan(engine, ScanOptions(limit=10, exchange=Exchange.POLYMARKET))
        doc = result.to_dict()

        assert [row["condition_id"] for row in doc["scan"]] == ["0xbusy"]
        row = doc["scan"][0]
        assert row["scan_depth"] == "deep"
        assert row["total_wallets"] == 12
        assert row["venue_has_wallet_identity"] is True
        assert "velocity" in row
        assert "whale_intelligence" not in row

        meta = doc["meta"]
        assert meta["deep_scanned"] == 2
        assert meta["volume_floor_filtered"] == 1
        assert meta["polymarket_markets"] == 2
        assert meta["kalshi_markets"] == 0
        assert meta["cancelled"] is False
        assert meta["timestamp"] == NOW.isoformat()

    @pytest.mark.asyncio
    async def test_markets_past_deep_limit_are_lightweight(
        self, engine: Engine, two_markets: VenueRouter
    ) -> None:
        engine.settings.scan.deep_limit = 1
        result = await scan(engine, ScanOptions(limit=10, exchange=Exchange.POLYMARKET))
        rows = {row["condition_id"]: row for row in result.to_dict()["scan"]}

        assert rows["0xthin"]["scan_depth"] == "lightweight"
        assert rows["0xthin"]["threat_score"] == 0
        assert rows["0xbusy"]["scan_depth"] == "deep"
        assert len(two_markets.calls("/trades")) == 1

    @pytest.mark.asyncio
    async def test_cancelled_scan_raises(self, engine: Engine, two_markets: VenueRouter) -> None:
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(ScanCancelledError):
            await scan(engine, ScanOptions(limit=10, cancel_event=cancel))

    @pytest.mark.asyncio
    async def test_cancelled_scan_returns_partial(
        self, engine: Engine, two_markets: VenueRouter
    ) -> None:
        cancel = asyncio.Event()
        cancel.set()
        result = await scan(engine, ScanOptions(limit=10, cancel_event=cancel, return_partial=True))
        assert result.entries == []
        assert result.meta["cancelled"] is True

    @pytest.mark.asyncio
    async def test_velocity_history_accumulates(
        self, engine: Engine, two_markets: VenueRouter
    ) -> None:
        await scan(engine, ScanOptions(limit=10, exchange=Exchange.POLYMARKET))
        assert len(engine.velocity.snapshots("0xbusy")) == 1

    @pytest.mark.asyncio
    async def test_slug_scan(self, engine: Engine, router: VenueRouter) -> None:
        router.route("gamma:/markets", [gamma_market("0xbusy", "Q?", slug="busy")])
        _route_trades(router, {"0xbusy": _data_trades(12)})
        result = await scan(engine, ScanOptions(limit=5, slug="busy"))
        assert [e.market.market_id for e in result.entries] == ["0xbusy"]


class TestUniverse:
    @pytest.mark.asyncio
    async def test_cross_venue_pairs_drop_kalshi_twin(
        self, engine: Engine, router: VenueRouter
    ) -> None:
        router.route(
            "gamma:/markets", [gamma_market("0xfed", "Will the Fed cut rates in March 2026?")]
        )
        router.route("kalshi:/events", {"events": [{"event_ticker": "KXFED"}]})
        router.route(
            "kalshi:/markets",
            {
                "markets": [
                    {"ticker": "KXFED-A", "title": "Fed cut rates March 2026", "last_price": 45},
                    {"ticker": "KXGDP-B", "title": "GDP growth above trend", "last_price": 30},
                ]
            },
        )
        universe = await fetch_universe(engine, ScanOptions(limit=10))

        assert [m.market_id for m in universe.markets] == ["0xfed", "KXGDP-B"]
        assert universe.cross_exchange["0xfed"]["kalshi_ticker"] == "KXFED-A"
        assert universe.kalshi_count == 1
