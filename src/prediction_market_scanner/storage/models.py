"""Records persisted in the append-only signal and resolution logs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from prediction_market_scanner.detector.models import FlowDirection
from prediction_market_scanner.ingestor.models import first_of, parse_timestamp, to_optional_float


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class CallDirection(str, Enum):
    BUY_YES = "BUY_YES"
    BUY_NO = "BUY_NO"


def infer_call_direction(
    yes_price: float | None, flow_direction: str | None
) -> CallDirection | None:
    """Direction implied by a logged call.

    Minority-heavy flow into a cheap YES reads as BUY_YES, into a cheap NO as
    BUY_NO. Any other flow makes no directional call.
    """
    if flow_direction != FlowDirection.MINORITY_HEAVY.value or yes_price is None:
        return None
    return CallDirection.BUY_YES if yes_price < 0.5 else CallDirection.BUY_NO


@dataclass(frozen=True)
class SignalRecord:
    """One posted call, as stored in the post log."""

    slug: str
    question: str
    timestamp: datetime | None
    yes_price: float | None = None
    flow_direction: str | None = None
    score: float = 0
    threat_score: int | None = None

    @property
    def call_direction(self) -> CallDirection | None:
        return infer_call_direction(self.yes_price, self.flow_direction)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SignalRecord:
        threat = first_of(data, "threat_score", "threatScore")
        return cls(
            slug=str(first_of(data, "slug", "conditionId", default="")),
            question=str(first_of(data, "question", "market", default="")),
            timestamp=parse_timestamp(first_of(data, "timestamp", "called_at")),
            yes_price=to_optional_float(first_of(data, "yesPrice", "entry_price")),
            flow_direction=first_of(data, "flowDirection", "flow_direction"),
            score=to_optional_float(data.get("score")) or 0,
            threat_score=int(threat) if isinstance(threat, int | float) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "slug": self.slug,
            "question": self.question,
            "score": self.score,
            "yesPrice": self.yes_price,
            "flowDirection": self.flow_direction,
            "timestamp": _iso(self.timestamp),
        }
        if self.threat_score is not None:
            record["threat_score"] = self.threat_score
        return record


@dataclass(frozen=True)
class ResolutionReceipt:
    """A settled call.

    Attributes:
        outcome: "YES" or "NO".
        final_price: Final YES price when known.
        implied_pnl: Return (percent) of buying the winning side at the
            call's YES price.
        days_ahead: Whole days between the call and its resolution.
        correct: Whether the inferred call direction won (None without one).
        pnl: Return (percent) of the inferred call direction.
    """

    slug: str
    question: str
    outcome: str
    called_at: datetime | None
    resolved_at: datetime | None
    entry_price: float | None = None
    final_price: float | None = None
    signal_score: float = 0
    flow_direction: str | None = None
    implied_pnl: float | None = None
    days_ahead: int = 0
    correct: bool | None = None
    pnl: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResolutionReceipt:
        correct = data.get("correct")
        return cls(
            slug=str(data.get("slug") or ""),
            question=str(first_of(data, "question", "market", default="")),
            outcome=str(data.get("outcome") or "").upper(),
            called_at=parse_timestamp(first_of(data, "called_at", "signalDate", "signal_timestamp")),
            resolved_at=parse_timestamp(first_of(data, "resolved_at", "resolvedAt")),
            entry_price=to_optional_float(first_of(data, "entry_price", "signalYesPrice", "yesPrice")),
            final_price=to_optional_float(data.get("final_price")),
            signal_score=to_optional_float(first_of(data, "signal_score", "signalScore")) or 0,
            flow_direction=first_of(data, "flow_direction", "signalFlowDirection"),
            implied_pnl=to_optional_float(data.get("implied_pnl")),
            days_ahead=int(to_optional_float(data.get("days_ahead")) or 0),
            correct=correct if isinstance(correct, bool) else None,
            pnl=to_optional_float(data.get("pnl")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "question": self.question,
            "outcome": self.outcome,
            "final_price": self.final_price,
            "entry_price": self.entry_price,
            "signal_score": self.signal_score,
            "flow_direction": self.flow_direction,
            "implied_pnl": self.implied_pnl,
            "days_ahead": self.days_ahead,
            "correct": self.correct,
            "pnl": self.pnl,
            "called_at": _iso(self.called_at),
            "resolved_at": _iso(self.resolved_at),
        }

    def to_scorecard_entry(self) -> dict[str, Any]:
        """Flat scorecard row: P&L for whichever side won."""
        yes_won = self.outcome == "YES"
        return {
            "slug": self.slug,
            "question": self.question,
            "outcome": self.outcome,
            "signal_date": _iso(self.called_at),
            "signal_score": self.signal_score,
            "signal_yes_price": self.entry_price,
            "resolved_at": _iso(self.resolved_at),
            "implied_pnl_yes": self.implied_pnl if yes_won else None,
            "implied_pnl_no": None if yes_won else self.implied_pnl,
        }
