"""Canonical data models shared by both venue adapters.

Venue payloads are loosely shaped: fields are omitted, carry the wrong type,
or arrive as JSON-encoded strings. Everything here decodes defensively and
falls back to zero or empty values instead of raising.
"""

import contextlib
import json
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

# Epoch values above this are milliseconds
_MS_THRESHOLD = 1e12


class Venue(str, Enum):
    """Supported prediction-market venues."""

    POLYMARKET = "polymarket"
    KALSHI = "kalshi"


class TradeSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class Parsed:
    """Outcome of a defensive JSON-list parse.

    ``ok`` is False when the raw value could not be read; ``value`` is then
    empty, so callers that do not care may use it directly.
    """

    value: tuple[Any, ...]
    ok: bool

    def __bool__(self) -> bool:
        return bool(self.value)


def parse_json_list(raw: Any) -> Parsed:
    """Parse a list that may arrive either decoded or as a JSON string."""
    if raw is None or raw == "":
        return Parsed(value=(), ok=True)
    if isinstance(raw, list | tuple):
        return Parsed(value=tuple(raw), ok=True)
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except ValueError:
            return Parsed(value=(), ok=False)
        if isinstance(decoded, list):
            return Parsed(value=tuple(decoded), ok=True)
    return Parsed(value=(), ok=False)


def first_of(data: dict[str, Any], *names: str, default: Any = None) -> Any:
    """Return the first truthy field among ``names``.

    The priority order of ``names`` is part of the payload contract; keep it
    stable.
    """
    for name in names:
        value = data.get(name)
        if value:
            return value
    return default


def to_float(value: Any, default: float = 0.0) -> float:
    """Coerce a number or numeric string to float, else ``default``.

    NaN and infinities are treated as unparseable.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result


def to_optional_float(value: Any) -> float | None:
    result = to_float(value, math.nan)
    return None if math.isnan(result) else result


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch number (seconds or ms) to UTC."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, int | float):
        ts = float(value)
        if ts > _MS_THRESHOLD:
            ts = ts / 1000
        with contextlib.suppress(OverflowError, OSError, ValueError):
            return datetime.fromtimestamp(ts, tz=UTC)
        return None
    if isinstance(value, str):
        stripped = value.strip()
        with contextlib.suppress(ValueError):
            return parse_timestamp(float(stripped))
        with contextlib.suppress(ValueError):
            parsed = datetime.fromisoformat(stripped.replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def parse_epoch_seconds(value: Any) -> float:
    """Return epoch seconds for a timestamp field, 0.0 when unreadable."""
    parsed = parse_timestamp(value)
    return parsed.timestamp() if parsed else 0.0


def _price(value: Any) -> float:
    """Decode a single outcome price; unreadable values become NaN."""
    return to_float(value, math.nan)


def _decode_tags(raw: Any) -> tuple[str, ...]:
    tags: list[str] = []
    for item in parse_json_list(raw).value:
        if isinstance(item, dict):
            label = first_of(item, "label", "slug", "name")
            if label:
                tags.append(str(label))
        elif item:
            tags.append(str(item))
    return tuple(tags)


@dataclass(frozen=True)
class Market:
    """A prediction market normalized across venues.

    ``outcomes`` and ``outcome_prices`` are parallel; a price that could not
    be read is NaN so it never wins a max() and is reported as null.
    """

    market_id: str
    question: str
    venue: Venue = Venue.POLYMARKET
    description: str = ""
    slug: str | None = None
    outcomes: tuple[str, ...] = ()
    outcome_prices: tuple[float, ...] = ()
    volume_24h: float | None = None
    volume_total: float | None = None
    liquidity: float | None = None
    created_at: datetime | None = None
    end_date: datetime | None = None
    closed_time: datetime | None = None
    tags: tuple[str, ...] = ()
    active: bool = True
    closed: bool = False
    clob_token_ids: tuple[str, ...] = ()
    resolved_outcome: str | None = None

    @classmethod
    def from_gamma(cls, data: dict[str, Any]) -> "Market":
        """Create a Market from a Gamma API market record."""
        outcomes = [str(o) for o in parse_json_list(data.get("outcomes")).value]
        prices = [_price(p) for p in parse_json_list(data.get("outcomePrices")).value]
        size = min(len(outcomes), len(prices))

        tags = _decode_tags(data.get("tags"))
        if not tags and data.get("category"):
            tags = (str(data["category"]),)

        return cls(
            market_id=str(first_of(data, "conditionId", "condition_id", "id", default="")),
            question=str(data.get("question") or ""),
            venue=Venue.POLYMARKET,
            description=str(data.get("description") or ""),
            slug=data.get("slug") or None,
            outcomes=tuple(outcomes[:size]),
            outcome_prices=tuple(prices[:size]),
            volume_24h=to_optional_float(first_of(data, "volume24hr", "volume24h")),
            volume_total=to_optional_float(first_of(data, "volumeNum", "volume")),
            liquidity=to_optional_float(first_of(data, "liquidityNum", "liquidity")),
            created_at=parse_timestamp(first_of(data, "createdAt", "startDate")),
            end_date=parse_timestamp(first_of(data, "endDate", "endDateIso")),
            closed_time=parse_timestamp(data.get("closedTime")),
            tags=tags,
            active=bool(data.get("active", True)),
            closed=bool(data.get("closed", False)),
            clob_token_ids=tuple(str(t) for t in parse_json_list(data.get("clobTokenIds")).value),
            resolved_outcome=data.get("resolvedOutcome") or None,
        )

    @classmethod
    def from_kalshi(cls, data: dict[str, Any], *, category: str | None = None) -> "Market":
        """Create a Market from a Kalshi market record (prices in cents)."""
        ticker = str(data.get("ticker") or "")
        yes_bid = to_float(data.get("yes_bid"))
        yes_ask = to_float(data.get("yes_ask"))
        if yes_bid > 0 and yes_ask > 0:
            yes_price = (yes_bid + yes_ask) / 2 / 100
        else:
            yes_price = to_float(data.get("last_price")) / 100

        liquidity = to_optional_float(data.get("liquidity_dollars"))
        if liquidity is None:
            cents = to_optional_float(data.get("liquidity"))
            liquidity = cents / 100 if cents else to_optional_float(data.get("open_interest"))

        status = str(data.get("status") or "").lower()
        return cls(
            market_id=ticker,
            question=str(first_of(data, "title", "subtitle", default="")),
            venue=Venue.KALSHI,
            description=str(data.get("rules_primary") or ""),
            slug=ticker.lower() or None,
            outcomes=("Yes", "No"),
            outcome_prices=(yes_price, 1 - yes_price),
            volume_24h=to_optional_float(data.get("volume_24h")),
            volume_total=to_optional_float(data.get("volume")),
            liquidity=liquidity,
            created_at=parse_timestamp(data.get("open_time")),
            end_date=parse_timestamp(
                first_of(data, "close_time", "expiration_time", "expected_expiration_time")
            ),
            closed_time=None,
            tags=(category,) if category else (),
            active=status in ("", "active", "open", "initialized"),
            closed=status in ("closed", "settled", "finalized"),
        )

    @property
    def key(self) -> tuple[str, str]:
        return (self.venue.value, self.market_id)

    @property
    def has_wallet_identity(self) -> bool:
        """Kalshi trades carry no wallet, so wallet signals are synthetic there."""
        return self.venue is Venue.POLYMARKET

    @property
    def is_binary(self) -> bool:
        return len(self.outcomes) == 2 and len(self.outcome_prices) == 2

    @property
    def current_prices(self) -> dict[str, float | None]:
        """Outcome -> price, with unreadable prices as None."""
        return {
            outcome: (None if math.isnan(price) else price)
            for outcome, price in zip(self.outcomes, self.outcome_prices, strict=False)
        }

    @property
    def max_price(self) -> float:
        return max((0.0 if math.isnan(p) else p for p in self.outcome_prices), default=0.0)

    @property
    def min_price(self) -> float:
        """Lowest readable price, 1.0 when none can be read."""
        readable = [p for p in self.outcome_prices if not math.isnan(p)]
        return min(readable, default=1.0)

    @property
    def volume_24h_or_zero(self) -> float:
        return self.volume_24h or 0.0

    def price_of(self, outcome: str | None) -> float | None:
        if outcome is None:
            return None
        return self.current_prices.get(outcome)

    @property
    def yes_index(self) -> int | None:
        for i, outcome in enumerate(self.outcomes):
            if outcome.lower() == "yes":
                return i
        return None

    @property
    def yes_price(self) -> float | None:
        idx = self.yes_index
        if idx is None:
            return None
        price = self.outcome_prices[idx]
        return None if math.isnan(price) else price

    @property
    def winning_outcome(self) -> str | None:
        """Outcome priced at exactly 1.0, if the market has resolved."""
        for outcome, price in zip(self.outcomes, self.outcome_prices, strict=False):
            if price == 1:
                return outcome
        return None

    @property
    def is_resolved(self) -> bool:
        """True when any outcome is priced at exactly 1 or 0."""
        return any(p in (0, 1) for p in self.outcome_prices)

    def hours_to_end(self, now: datetime) -> float | None:
        if self.end_date is None:
            return None
        return (self.end_date - now).total_seconds() / 3600

    def days_to_end(self, now: datetime) -> float | None:
        hours = self.hours_to_end(now)
        return None if hours is None else hours / 24

    def age_hours(self, now: datetime) -> float | None:
        if self.created_at is None:
            return None
        return (now - self.created_at).total_seconds() / 3600

    @property
    def short_id(self) -> str:
        return self.market_id[:10] + "..."


@dataclass(frozen=True)
class Trade:
    """A single fill. ``wallet`` is lowercased; empty when the venue omits it."""

    timestamp: float
    market_id: str
    outcome: str | None
    side: TradeSide
    size: float
    price: float
    wallet: str

    @classmethod
    def from_data_api(cls, data: dict[str, Any]) -> "Trade":
        """Create a Trade from a Polymarket Data API record."""
        side = str(data.get("side") or "").upper()
        return cls(
            timestamp=parse_epoch_seconds(data.get("timestamp")),
            market_id=str(first_of(data, "conditionId", "market", default="")),
            outcome=data.get("outcome") or None,
            side=TradeSide.BUY if side == "BUY" else TradeSide.SELL,
            size=to_float(data.get("size")),
            price=to_float(data.get("price")),
            wallet=str(data.get("proxyWallet") or "").lower(),
        )

    @classmethod
    def from_kalshi(cls, data: dict[str, Any], market_id: str) -> "Trade":
        """Create a Trade from a Kalshi fill.

        Kalshi exposes no trader identity, so each fill gets its own
        pseudo-wallet ``k_<trade_id>``.
        """
        taker_side = str(data.get("taker_side") or "").lower()
        outcome = "Yes" if taker_side == "yes" else "No" if taker_side == "no" else None

        action = str(first_of(data, "action", "type", default="buy")).lower()
        side = TradeSide.SELL if action == "sell" else TradeSide.BUY

        price_field = "no_price" if outcome == "No" else "yes_price"
        price_cents = to_float(first_of(data, price_field, "price"), 50.0)

        trade_id = str(first_of(data, "trade_id", "id", default=""))
        return cls(
            timestamp=parse_epoch_seconds(first_of(data, "created_time", "ts")),
            market_id=market_id,
            outcome=outcome,
            side=side,
            size=to_float(first_of(data, "count", "contracts"), 1.0),
            price=price_cents / 100,
            wallet=f"k_{trade_id}" if trade_id else "",
        )

    @property
    def usd_size(self) -> float:
        return self.size * self.price

    @property
    def is_buy(self) -> bool:
        return self.side is TradeSide.BUY


@dataclass(frozen=True)
class Holder:
    """A top holder of one outcome token."""

    wallet: str
    amount: float
    pseudonym: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Holder":
        return cls(
            wallet=str(first_of(data, "wallet", "address", "proxyWallet", default="")),
            amount=to_float(first_of(data, "amount", "tokens", "tokenAmount")),
            pseudonym=first_of(data, "pseudonym", "name"),
        )


@dataclass(frozen=True)
class PositionPnl:
    """PnL of an open position; the first non-zero PnL field wins."""

    pnl: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PositionPnl":
        return cls(pnl=to_float(first_of(data, "pnl", "unrealizedPnl", "realizedPnl")))


@dataclass(frozen=True)
class WhaleTrade:
    """A cash-filtered large trade."""

    timestamp: float
    side: TradeSide
    usd_value: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WhaleTrade":
        cash = first_of(data, "cashAmount", "amount")
        if cash:
            value = to_float(cash)
        else:
            value = to_float(data.get("size")) * to_float(data.get("price"))
        side = str(data.get("side") or "").upper()
        return cls(
            timestamp=parse_epoch_seconds(data.get("timestamp")),
            side=TradeSide.BUY if side == "BUY" else TradeSide.SELL,
            usd_value=value,
        )


@dataclass(frozen=True)
class ActivityRecord:
    """One entry of a wallet's activity feed."""

    market: str | None
    type: str
    side: str | None
    cash_amount: float
    payout: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActivityRecord":
        return cls(
            market=first_of(data, "conditionId", "market"),
            type=str(data.get("type") or "").upper(),
            side=data.get("side") or None,
            cash_amount=to_float(first_of(data, "cashAmount", "size")),
            payout=to_float(first_of(data, "cashAmount", "amount")),
        )

    @property
    def is_trade(self) -> bool:
        return self.type == "TRADE" or bool(self.side)

    @property
    def is_resolution(self) -> bool:
        return self.type in ("REDEEM", "PAYOUT")


@dataclass(frozen=True)
class PricePoint:
    """One point of a CLOB price history (``t`` in epoch seconds)."""

    t: float
    p: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PricePoint":
        return cls(t=parse_epoch_seconds(data.get("t")), p=to_float(data.get("p")))

    def to_dict(self) -> dict[str, float]:
        return {"t": self.t, "p": self.p}
