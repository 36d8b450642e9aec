"""Pytest configuration and fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest
import pytest_asyncio

from prediction_market_scanner.clock import FrozenClock
from prediction_market_scanner.config import Settings
from prediction_market_scanner.engine import Engine
from prediction_market_scanner.ingestor.fetcher import Fetcher
from prediction_market_scanner.ingestor.models import Market, Trade, TradeSide, Venue

# Wednesday afternoon: outside the off-hours window
NOW = datetime(2026, 3, 4, 16, 0, tzinfo=UTC)


async def _no_sleep(_: float) -> None:
    return None


def make_market(
    market_id: str = "0xmarket",
    question: str = "Will the central bank cut interest rates in March?",
    *,
    prices: tuple[float, float] = (0.5, 0.5),
    outcomes: tuple[str, str] = ("Yes", "No"),
    now: datetime = NOW,
    end_in: timedelta | None = timedelta(days=20),
    age: timedelta | None = timedelta(days=60),
    **kwargs: Any,
) -> Market:
    """Build a binary market relative to ``now``."""
    fields: dict[str, Any] = {
        "market_id": market_id,
        "question": question,
        "slug": market_id.removeprefix("0x") or None,
        "outcomes": outcomes,
        "outcome_prices": prices,
        "volume_24h": 100_000.0,
        "volume_total": 1_000_000.0,
        "liquidity": 50_000.0,
        "created_at": now - age if age is not None else None,
        "end_date": now + end_in if end_in is not None else None,
        "venue": Venue.POLYMARKET,
    }
    fields.update(kwargs)
    return Market(**fields)


def make_trade(
    wallet: str,
    outcome: str | None,
    usd: float,
    at: datetime,
    *,
    market_id: str = "0xmarket",
    side: TradeSide = TradeSide.BUY,
) -> Trade:
    """Build a trade worth ``usd`` (price fixed at 0.5)."""
    return Trade(
        timestamp=at.timestamp(),
        market_id=market_id,
        outcome=outcome,
        side=side,
        size=usd * 2,
        price=0.5,
        wallet=wallet,
    )


def gamma_market(
    condition_id: str,
    question: str,
    *,
    prices: tuple[float, float] = (0.5, 0.5),
    volume_24h: float = 10_000.0,
    slug: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """A Gamma API market record with JSON-encoded list fields."""
    record: dict[str, Any] = {
        "conditionId": condition_id,
        "question": question,
        "slug": slug or condition_id.removeprefix("0x"),
        "outcomes": '["Yes", "No"]',
        "outcomePrices": f'["{prices[0]}", "{prices[1]}"]',
        "volume24hr": volume_24h,
        "volumeNum": volume_24h * 10,
        "liquidityNum": 25_000.0,
        "endDate": (NOW + timedelta(days=10)).isoformat(),
        "createdAt": (NOW - timedelta(days=30)).isoformat(),
        "active": True,
        "closed": False,
        "clobTokenIds": f'["{condition_id}-yes", "{condition_id}-no"]',
    }
    record.update(extra)
    return record


def _venue(host: str) -> str:
    if "kalshi" in host:
        return "kalshi"
    return host.split(".")[0].removesuffix("-api")


class VenueRouter:
    """MockTransport handler dispatching on venue and path.

    Routes are keyed ``"<venue>:<path>"`` (``gamma:/markets``,
    ``data:/trades``, ``kalshi:/events`` ...) and map to either a JSON value
    or a callable taking the request. Unrouted requests answer 404.
    """

    def __init__(self) -> None:
        self.routes: dict[str, Any] = {}
        self.requests: list[httpx.Request] = []

    def route(self, key: str, payload: Any) -> None:
        self.routes[key] = payload

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/trade-api/v2")
        key = f"{_venue(request.url.host)}:{path}"
        if key not in self.routes:
            return httpx.Response(404, json={"error": "not found"})
        payload = self.routes[key]
        if callable(payload):
            payload = payload(request)
        if isinstance(payload, httpx.Response):
            return payload
        return httpx.Response(200, json=payload)

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(path)]


@pytest.fixture
def sample_market_id() -> str:
    """Sample market ID for testing."""
    return "0x1234567890abcdef1234567890abcdef12345678"


@pytest.fixture
def now() -> datetime:
    """Reference time used by every scoring test."""
    return NOW


@pytest.fixture
def clock() -> FrozenClock:
    """Frozen clock at the reference time."""
    return FrozenClock(NOW)


@pytest.fixture
def settings(tmp_path: Any) -> Settings:
    """Default settings with the signal log under ``tmp_path``."""
    settings = Settings()
    settings.storage.directory = tmp_path
    settings.redis.url = None
    return settings


@pytest.fixture
def router() -> VenueRouter:
    """Empty venue router; tests add routes."""
    return VenueRouter()


@pytest_asyncio.fixture
async def engine(settings: Settings, clock: FrozenClock, router: VenueRouter) -> Any:
    """Engine over a MockTransport with the frozen clock."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(router))
    fetcher = Fetcher(client, requests_per_second=1000, sleep=_no_sleep)
    engine = Engine.create(settings, clock=clock, fetcher=fetcher)
    yield engine
    await engine.aclose()
    await client.aclose()
