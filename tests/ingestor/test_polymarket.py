"""Tests for the Polymarket adapter."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import httpx
import pytest
from conftest import NOW, VenueRouter, gamma_market

from prediction_market_scanner.clock import FrozenClock
from prediction_market_scanner.engine import Engine


def _trade(wallet: str, hours_ago: float, **extra: Any) -> dict[str, Any]:
    record = {
        "proxyWallet": wallet,
        "side": "BUY",
        "conditionId": "0xm",
        "outcome": "Yes",
        "size": 100,
        "price": 0.5,
        "timestamp": (NOW - timedelta(hours=hours_ago)).timestamp(),
    }
    record.update(extra)
    return record


class TestMarketLists:
    @pytest.mark.asyncio
    async def test_active_markets_decoded_and_cached(
        self, engine: Engine, router: VenueRouter
    ) -> None:
        router.route("gamma:/markets", [gamma_market("0xa", "A?"), gamma_market("0xb", "B?")])

        first = await engine.polymarket.active_markets(2)
        second = await engine.polymarket.active_markets(2)

        assert [m.market_id for m in first] == ["0xa", "0xb"]
        assert second == first
        assert len(router.calls("/markets")) == 1
        params = router.requests[0].url.params
        assert params["closed"] == "false"
        assert params["order"] == "volume24hr"

    @pytest.mark.asyncio
    async def test_failure_without_cache_returns_empty(self, engine: Engine) -> None:
        assert await engine.polymarket.active_markets(10) == []

    @pytest.mark.asyncio
    async def test_stale_list_served_when_venue_fails(
        self, engine: Engine, router: VenueRouter, clock: FrozenClock
    ) -> None:
        router.route("gamma:/markets", [gamma_market("0xa", "A?")])
        await engine.polymarket.active_markets(5)

        clock.advance(hours=1)
        router.route("gamma:/markets", httpx.Response(503))
        markets = await engine.polymarket.active_markets(5)

        assert [m.market_id for m in markets] == ["0xa"]
        assert len(router.calls("/markets")) == 2

    @pytest.mark.asyncio
    async def test_crawl_dedupes_and_sorts(self, engine: Engine, router: VenueRouter) -> None:
        page_size = engine.settings.polymarket.crawl_page_size
        full_page = [
            gamma_market(f"0x{i}", f"Q{i}?", volume_24h=float(i)) for i in range(page_size)
        ]
        last_page = [gamma_market("0x5", "dupe"), gamma_market("0xbig", "Big?", volume_24h=1e9)]

        def markets(request: httpx.Request) -> Any:
            return full_page if request.url.params["offset"] == "0" else last_page

        router.route("gamma:/markets", markets)
        result = await engine.polymarket.crawl_active_markets(1000)

        assert len(result) == page_size + 1
        assert result[0].market_id == "0xbig"
        assert len(router.calls("/markets")) == 2

    @pytest.mark.asyncio
    async def test_crawl_stops_at_max(self, engine: Engine, router: VenueRouter) -> None:
        page_size = engine.settings.polymarket.crawl_page_size
        router.route(
            "gamma:/markets",
            lambda request: [
                gamma_market(f"0x{request.url.params['offset']}-{i}", "Q?") for i in range(page_size)
            ],
        )
        result = await engine.polymarket.crawl_active_markets(page_size + 1)
        assert len(result) == page_size + 1
        assert len(router.calls("/markets")) == 2

    @pytest.mark.asyncio
    async def test_resolved_markets_filter_unsettled(
        self, engine: Engine, router: VenueRouter
    ) -> None:
        router.route(
            "gamma:/markets",
            [
                gamma_market("0xdone", "Done?", prices=(1.0, 0.0)),
                gamma_market("0xopen", "Open?", prices=(0.6, 0.4)),
            ],
        )
        resolved = await engine.polymarket.resolved_markets(10)
        assert [m.market_id for m in resolved] == ["0xdone"]

    @pytest.mark.asyncio
    async def test_market_by_slug(self, engine: Engine, router: VenueRouter) -> None:
        router.route("gamma:/markets", [gamma_market("0xa", "A?", slug="a-market")])
        market = await engine.polymarket.market_by_slug("a-market")
        assert market is not None
        assert market.slug == "a-market"
        assert router.requests[0].url.params["slug"] == "a-market"


class TestTrades:
    @pytest.mark.asyncio
    async def test_trades_decoded(self, engine: Engine, router: VenueRouter) -> None:
        router.route("data:/trades", [_trade("0xAAA", 1), {"bad": "record"}, "junk"])
        trades = await engine.polymarket.trades("0xm", limit=50)

        assert len(trades) == 2
        assert trades[0].wallet == "0xaaa"
        assert router.requests[0].url.params["limit"] == "50"

    @pytest.mark.asyncio
    async def test_recent_trades_window(self, engine: Engine, router: VenueRouter) -> None:
        router.route("data:/trades", [_trade("0xa", 1), _trade("0xb", 30)])
        trades = await engine.polymarket.recent_trades("0xm", window_hours=24)
        assert [t.wallet for t in trades] == ["0xa"]


class TestWhaleData:
    @pytest.mark.asyncio
    async def test_holders_flattened(self, engine: Engine, router: VenueRouter) -> None:
        router.route(
            "data:/holders",
            [
                {"token": "yes", "holders": [{"proxyWallet": "0xa"}, {"proxyWallet": "0xb"}]},
                {"token": "no", "holders": [{"proxyWallet": "0xc"}]},
            ],
        )
        holders = await engine.polymarket.holders("0xm")
        assert [h["proxyWallet"] for h in holders] == ["0xa", "0xb", "0xc"]

    @pytest.mark.asyncio
    async def test_positions_accept_wrapped_payload(
        self, engine: Engine, router: VenueRouter
    ) -> None:
        router.route("data:/v1/market-positions", {"positions": [{"pnl": 5}]})
        assert await engine.polymarket.positions("0xm") == [{"pnl": 5}]

    @pytest.mark.asyncio
    async def test_whale_trades_use_cash_filter(self, engine: Engine, router: VenueRouter) -> None:
        router.route("data:/trades", [{"cashAmount": 900}])
        await engine.polymarket.whale_trades("0xm", min_usd=800)
        params = router.requests[0].url.params
        assert params["filterType"] == "CASH"
        assert params["filterAmount"] == "800"

    @pytest.mark.asyncio
    async def test_activity(self, engine: Engine, router: VenueRouter) -> None:
        router.route("data:/activity", [{"type": "TRADE"}])
        assert await engine.polymarket.activity("0xw") == [{"type": "TRADE"}]
        assert router.requests[0].url.params["user"] == "0xw"


class TestPriceHistory:
    @pytest.mark.asyncio
    async def test_history_points(self, engine: Engine, router: VenueRouter) -> None:
        router.route(
            "clob:/prices-history",
            {"history": [{"t": 1_772_000_000, "p": 0.4}, {"t": 0, "p": 0.5}, "junk"]},
        )
        points = await engine.polymarket.price_history("tok", NOW - timedelta(days=7))

        assert [(p.t, p.p) for p in points] == [(1_772_000_000, 0.4)]
        assert router.requests[0].url.params["resolution"] == "1d"

    @pytest.mark.asyncio
    async def test_history_unavailable(self, engine: Engine) -> None:
        assert await engine.polymarket.price_history("tok", NOW) == []
