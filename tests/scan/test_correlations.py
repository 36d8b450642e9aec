"""Tests for the correlation pass."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import httpx
import pytest
from conftest import NOW, VenueRouter, gamma_market

from prediction_market_scanner.engine import Engine
from prediction_market_scanner.scan.correlations import CorrelationOptions, correlations

RECENT = NOW - timedelta(hours=3)
STALE = NOW - timedelta(hours=30)


def _trades(wallets: list[str], at: float = RECENT.timestamp()) -> list[dict[str, Any]]:
    return [
        {
            "proxyWallet": w,
            "side": "BUY",
            "outcome": "Yes",
            "size": 100,
            "price": 0.5,
            "timestamp": at,
        }
        for w in wallets
    ]


@pytest.fixture
def linked_markets(router: VenueRouter) -> VenueRouter:
    """Two markets sharing six wallets and a third with its own crowd."""
    shared = [f"0xshared{i}" for i in range(6)]
    by_market = {
        "0xa": _trades(shared + ["0xonlya"]),
        "0xb": _trades(shared) + _trades(["0xlate"], STALE.timestamp()),
        "0xc": _trades([f"0xother{i}" for i in range(6)]),
    }
    router.route(
        "gamma:/markets",
        [
            gamma_market("0xa", "Will the Fed cut rates?", volume_24h=30_000),
            gamma_market("0xb", "Will the ECB cut rates?", volume_24h=20_000),
            gamma_market("0xc", "Will the merger close?", volume_24h=10_000),
        ],
    )

    def trades(request: httpx.Request) -> Any:
        return by_market.get(request.url.params["market"], [])

    router.route("data:/trades", trades)
    return router


class TestCorrelationOptions:
    def test_values_are_clamped(self, engine: Engine) -> None:
        opts = CorrelationOptions(window_hours=500, min_shared_wallets=1, max_markets=5).resolve(
            engine
        )
        assert (opts.window_hours, opts.min_shared_wallets, opts.max_markets) == (72, 2, 10)

    def test_defaults_from_settings(self, engine: Engine) -> None:
        opts = CorrelationOptions().resolve(engine)
        cfg = engine.settings.correlation
        assert opts.window_hours == cfg.window_hours
        assert opts.min_shared_wallets == cfg.min_shared_wallets
        assert opts.max_markets == cfg.max_markets

    def test_unknown_strength_is_ignored(self, engine: Engine) -> None:
        assert CorrelationOptions(min_strength="huge").resolve(engine).min_strength is None

    def test_strength_is_case_insensitive(self, engine: Engine) -> None:
        assert CorrelationOptions(min_strength="strong").resolve(engine).min_strength == "STRONG"


class TestCorrelations:
    @pytest.mark.asyncio
    async def test_cluster_found(self, engine: Engine, linked_markets: VenueRouter) -> None:
        doc = await correlations(engine)

        assert len(doc["clusters"]) == 1
        cluster = doc["clusters"][0]
        assert {m["condition_id"] for m in cluster["markets"]} == {"0xa", "0xb"}
        assert cluster["shared_wallet_count"] == 6
        assert cluster["signal_strength"] == "WEAK"
        assert doc["meta"]["markets_analyzed"] == 3
        assert doc["meta"]["markets_in_clusters"] == 2
        assert doc["meta"]["params"]["min_wallets"] == 5

    @pytest.mark.asyncio
    async def test_strength_filter_uses_cached_result(
        self, engine: Engine, linked_markets: VenueRouter
    ) -> None:
        await correlations(engine)
        trade_calls = len(linked_markets.calls("/trades"))

        doc = await correlations(engine, CorrelationOptions(min_strength="moderate"))

        assert doc["clusters"] == []
        assert doc["meta"]["clusters_found"] == 1
        assert len(linked_markets.calls("/trades")) == trade_calls

    @pytest.mark.asyncio
    async def test_no_markets(self, engine: Engine) -> None:
        doc = await correlations(engine)
        assert doc["clusters"] == []
        assert doc["meta"]["error"] == "No markets available"
