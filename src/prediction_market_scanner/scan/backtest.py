"""Feedback loop over posted calls: backtest, resolution tracking and scorecard.

All three read the append-only post log written by call selection. The
resolution tracker is the only writer of receipts and scorecard rows; it
skips any slug that already has a receipt, so reruns are harmless.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from prediction_market_scanner.detector.models import round2, round_half_up
from prediction_market_scanner.ingestor.models import Market, PricePoint
from prediction_market_scanner.scan.runner import ScanError
from prediction_market_scanner.storage import (
    CallDirection,
    ResolutionReceipt,
    SignalLog,
    SignalRecord,
)

if TYPE_CHECKING:
    from prediction_market_scanner.engine import Engine

logger = logging.getLogger(__name__)

BACKTEST_DEFAULT_LIMIT = 20
BACKTEST_STATUSES = ("all", "correct", "incorrect", "pending", "no_call", "data_unavailable")
RESOLVED_HIGH = 0.99
RESOLVED_LOW = 0.01
WIN_HIGH = 0.95
WIN_LOW = 0.05
HISTORY_POINTS = 30
DIRECTION_NOTE = (
    "Call direction inferred: MINORITY_HEAVY + yesPrice<0.5 -> BUY_YES, yesPrice>=0.5 -> BUY_NO"
)

# Resolution tracker outcome thresholds on the final YES price
OUTCOME_YES_ABOVE = 0.9
OUTCOME_NO_BELOW = 0.1


# ----------------------------------------------------------------------
# Backtest
# ----------------------------------------------------------------------


def calc_pnl(
    direction: CallDirection | None, entry_yes: float | None, exit_yes: float | None
) -> dict[str, float] | None:
    """P&L of a call between two YES prices; BUY_NO trades the complement."""
    if direction is None or not entry_yes or exit_yes is None:
        return None
    if direction is CallDirection.BUY_YES:
        entry, exit_ = entry_yes, exit_yes
    else:
        entry, exit_ = 1 - entry_yes, 1 - exit_yes
    if entry <= 0:
        return None
    pnl = exit_ - entry
    return {
        "entry": entry,
        "exit": exit_,
        "pnl": pnl,
        "pct": round_half_up(pnl / entry * 1000) / 10,
    }


def evaluate_call(direction: CallDirection | None, resolved_yes: float | None) -> str:
    """``correct``, ``incorrect`` or ``pending``; ``no_call`` without a direction."""
    if direction is None:
        return "no_call"
    if resolved_yes is None:
        return "pending"
    yes_won = resolved_yes >= WIN_HIGH
    no_won = resolved_yes <= WIN_LOW
    if direction is CallDirection.BUY_YES:
        won, lost = yes_won, no_won
    else:
        won, lost = no_won, yes_won
    if won:
        return "correct"
    if lost:
        return "incorrect"
    return "pending"


def price_after(history: list[PricePoint], start_ts: float, seconds: int) -> float | None:
    """First price at or after ``start_ts + seconds``."""
    target = start_ts + seconds
    return next((point.p for point in history if point.t >= target), None)


def downsample(history: list[PricePoint], points: int = HISTORY_POINTS) -> list[PricePoint]:
    if len(history) <= points:
        return history
    step = math.ceil(len(history) / points)
    return history[::step]


def first_calls(records: list[SignalRecord]) -> list[SignalRecord]:
    """Earliest record per slug, oldest first."""
    first: dict[str, SignalRecord] = {}
    for record in records:
        if not record.slug:
            continue
        current = first.get(record.slug)
        if current is None or _ts(record) < _ts(current):
            first[record.slug] = record
    return sorted(first.values(), key=_ts)


def _ts(record: SignalRecord) -> float:
    return record.timestamp.timestamp() if record.timestamp else math.inf


def _current_yes_price(market: Market, history: list[PricePoint]) -> float | None:
    if market.outcome_prices and not math.isnan(market.outcome_prices[0]):
        return market.outcome_prices[0]
    if history:
        return history[-1].p
    return None


async def _backtest_call(engine: Engine, record: SignalRecord) -> dict[str, Any]:
    direction = record.call_direction
    doc: dict[str, Any] = {
        "slug": record.slug,
        "question": record.question,
        "call_direction": direction.value if direction else None,
        "entry_price": record.yes_price,
        "signal_at": record.timestamp.isoformat() if record.timestamp else None,
        "signal_score": record.score,
        "flow_direction": record.flow_direction,
    }

    market = await engine.polymarket.market_by_slug(record.slug)
    if market is None:
        return {
            **doc,
            "current_price": None,
            "outcome": "data_unavailable",
            "pnl": None,
            "price_history": [],
            "error": "market_not_found",
        }

    signal_at = record.timestamp or engine.now()
    token = market.clob_token_ids[0] if market.clob_token_ids else None
    history = await engine.polymarket.price_history(token, signal_at) if token else []

    current = _current_yes_price(market, history)
    is_resolved = not market.active or (
        current is not None and (current >= RESOLVED_HIGH or current <= RESOLVED_LOW)
    )
    start_ts = signal_at.timestamp()
    price_24h = price_after(history, start_ts, 86_400)
    price_48h = price_after(history, start_ts, 172_800)

    return {
        **doc,
        "question": record.question or market.question,
        "current_price": current,
        "is_resolved": is_resolved,
        "outcome": evaluate_call(direction, current if is_resolved else None),
        "pnl": calc_pnl(direction, record.yes_price, current),
        "pnl_24h": calc_pnl(direction, record.yes_price, price_24h),
        "pnl_48h": calc_pnl(direction, record.yes_price, price_48h),
        "end_date": market.end_date.isoformat() if market.end_date else None,
        "volume": market.volume_total or 0.0,
        "price_history": [p.to_dict() for p in downsample(history)],
    }


async def backtest(
    engine: Engine,
    log: SignalLog,
    *,
    limit: int = BACKTEST_DEFAULT_LIMIT,
    status: str = "all",
) -> dict[str, Any]:
    """Replay the oldest posted calls against current and historical prices.

    Args:
        engine: Shared engine context.
        log: Post log to read.
        limit: Calls evaluated, oldest first.
        status: Keep only calls with this outcome (``"all"`` keeps every call).
            Stats always cover every evaluated call.

    Raises:
        ScanError: On an unknown status or a non-positive limit.

    Example:
        ```python
        doc = await backtest(engine, SignalLog.from_settings(settings.storage), limit=10)
        print(doc["stats"]["win_rate_pct"])
        ```
    """
    if status not in BACKTEST_STATUSES:
        raise ScanError(f"unknown status {status!r}")
    if limit < 1:
        raise ScanError(f"limit must be positive, got {limit}")

    calls = first_calls(log.load_posts())[:limit]

    async def evaluate(record: SignalRecord) -> dict[str, Any]:
        return await _backtest_call(engine, record)

    results: list[dict[str, Any]] = []
    for record, result in await engine.fetcher.batch(
        calls, evaluate, batch_size=engine.settings.signals.batch_size
    ):
        if isinstance(result, BaseException):
            logger.warning("Backtest for %s failed: %s", record.slug, result)
            continue
        results.append(result)

    filtered = results if status == "all" else [r for r in results if r["outcome"] == status]
    correct = sum(1 for r in results if r["outcome"] == "correct")
    incorrect = sum(1 for r in results if r["outcome"] == "incorrect")
    resolved = correct + incorrect
    pnl_24h = [r["pnl_24h"]["pct"] for r in results if r.get("pnl_24h")]

    logger.info("Backtest: %d calls, %d resolved", len(results), resolved)
    return {
        "signals": filtered,
        "stats": {
            "total_signals": len(results),
            "resolved": resolved,
            "correct": correct,
            "incorrect": incorrect,
            "pending": sum(1 for r in results if r["outcome"] == "pending"),
            "win_rate_pct": round_half_up(correct / resolved * 100) if resolved else None,
            "avg_pnl_24h_pct": round_half_up(sum(pnl_24h) / len(pnl_24h) * 10) / 10
            if pnl_24h
            else None,
            "note": DIRECTION_NOTE,
        },
        "meta": {
            "generated_at": engine.now().isoformat(),
            "signal_log": str(log.post_log_path),
            "filter_status": status,
        },
    }


# ----------------------------------------------------------------------
# Scorecard
# ----------------------------------------------------------------------


def scorecard(log: SignalLog, now: datetime) -> dict[str, Any]:
    """Open and resolved calls with win/loss stats.

    Resolved calls come from the receipts; open calls are posted slugs
    without a receipt.
    """
    receipts = log.load_receipts()
    resolved_slugs = {r.slug for r in receipts}

    open_calls = [
        {
            "slug": p.slug,
            "question": p.question,
            "signal_score": p.score or p.threat_score,
            "entry_price": p.yes_price,
            "flow_direction": p.flow_direction,
            "called_at": p.timestamp,
            "status": "open",
        }
        for p in log.load_posts()
        if p.slug not in resolved_slugs
    ]
    resolved_calls = [
        {
            "slug": r.slug,
            "question": r.question,
            "signal_score": r.signal_score,
            "entry_price": r.entry_price,
            "outcome": r.outcome,
            "resolution_price": {"YES": 1.0, "NO": 0.0}.get(r.outcome),
            "pnl": r.pnl,
            "called_at": r.called_at,
            "resolved_at": r.resolved_at,
            "status": "resolved",
            "correct": r.correct,
        }
        for r in receipts
    ]

    resolved = [c for c in resolved_calls if c["outcome"]]
    wins = sum(1 for c in resolved if c["correct"] is True)
    losses = sum(1 for c in resolved if c["correct"] is False)
    cumulative = sum(c["pnl"] for c in resolved if c["pnl"] is not None)

    calls = resolved_calls + open_calls
    calls.sort(
        key=lambda c: c["called_at"].timestamp() if c["called_at"] else -math.inf, reverse=True
    )
    for call in calls:
        for field_name in ("called_at", "resolved_at"):
            if isinstance(call.get(field_name), datetime):
                call[field_name] = call[field_name].isoformat()

    return {
        "stats": {
            "total_calls": len(calls),
            "resolved": len(resolved),
            "open": len(open_calls),
            "wins": wins,
            "losses": losses,
            "win_rate": round_half_up(wins / len(resolved) * 1000) / 10 if resolved else None,
            "cumulative_pnl": round2(cumulative),
        },
        "calls": calls,
        "updated_at": now.isoformat(),
    }


# ----------------------------------------------------------------------
# Resolution tracker
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class Resolution:
    outcome: str | None
    final_yes_price: float | None
    question: str


def resolve_outcome(raw: dict[str, Any]) -> Resolution | None:
    """Outcome of a Gamma market record.

    Returns:
        None while the market is still open. A Resolution with ``outcome``
        None when it closed without a readable YES/NO result.
    """
    closed = raw.get("resolved") is True or raw.get("closed") is True or raw.get("active") is False
    if not closed:
        return None
    market = Market.from_gamma(raw)
    final = market.outcome_prices[0] if market.outcome_prices else None
    if final is not None and math.isnan(final):
        final = None

    outcome: str | None = None
    if final is not None:
        if final > OUTCOME_YES_ABOVE:
            outcome = "YES"
        elif final < OUTCOME_NO_BELOW:
            outcome = "NO"
    if outcome is None and market.resolved_outcome:
        named = str(market.resolved_outcome).upper()
        outcome = named if named in ("YES", "NO") else None
    return Resolution(outcome=outcome, final_yes_price=final, question=market.question)


def implied_pnl(outcome: str, yes_price: float | None) -> float | None:
    """Return (percent) of buying the winning side at the call's YES price."""
    if yes_price is None or not 0 < yes_price < 1:
        return None
    if outcome == "YES":
        return round2((1 - yes_price) / yes_price * 100)
    return round2(yes_price / (1 - yes_price) * 100)


def build_receipt(record: SignalRecord, resolution: Resolution, now: datetime) -> ResolutionReceipt:
    if resolution.outcome is None:
        raise ValueError(f"{record.slug} has no outcome")
    direction = record.call_direction
    correct: bool | None = None
    pnl: float | None = None
    if direction is not None:
        winning = CallDirection.BUY_YES if resolution.outcome == "YES" else CallDirection.BUY_NO
        correct = direction is winning
        pnl = implied_pnl(resolution.outcome, record.yes_price) if correct else -100.0

    days_ahead = 0
    if record.timestamp is not None:
        days_ahead = round_half_up((now - record.timestamp) / timedelta(days=1))
    return ResolutionReceipt(
        slug=record.slug,
        question=record.question or resolution.question,
        outcome=resolution.outcome,
        called_at=record.timestamp,
        resolved_at=now,
        entry_price=record.yes_price,
        final_price=resolution.final_yes_price,
        signal_score=record.score,
        flow_direction=record.flow_direction,
        implied_pnl=implied_pnl(resolution.outcome, record.yes_price),
        days_ahead=days_ahead,
        correct=correct,
        pnl=pnl,
    )


def _best_records(records: list[SignalRecord], skip: set[str]) -> list[SignalRecord]:
    """Highest-score record per unprocessed slug, in first-seen order."""
    best: dict[str, SignalRecord] = {}
    for record in records:
        if not record.slug or record.slug in skip:
            continue
        current = best.get(record.slug)
        if current is None or record.score > current.score:
            best[record.slug] = record
    return list(best.values())


async def track_resolutions(
    engine: Engine, log: SignalLog, *, dry_run: bool = False
) -> dict[str, Any]:
    """Write receipts for posted calls whose markets have resolved.

    Args:
        engine: Shared engine context.
        log: Signal log holding the post log, receipts and scorecard.
        dry_run: Resolve and report, but write nothing.

    Returns:
        Counts plus the receipts written (or that would be written).
    """
    now = engine.now()
    processed = {r.slug for r in log.load_receipts()}
    pending = _best_records(log.load_posts(), processed)
    if not pending:
        return {"checked": 0, "resolved": 0, "reason": "No unprocessed signals", "dry_run": dry_run}

    receipts: list[ResolutionReceipt] = []
    unresolved: list[str] = []
    errors: list[dict[str, str]] = []
    for record in pending:
        try:
            raw = await engine.polymarket.raw_market_by_slug(record.slug)
        except Exception as e:
            logger.warning("Resolution lookup for %s failed: %s", record.slug, e)
            errors.append({"slug": record.slug, "error": str(e)})
            continue
        resolution = resolve_outcome(raw) if raw else None
        if resolution is None:
            unresolved.append(record.slug)
            continue
        if resolution.outcome is None:
            logger.info("%s resolved but outcome unclear, skipping", record.slug)
            continue
        receipts.append(build_receipt(record, resolution, now))

    if receipts and not dry_run:
        await log.append_resolutions(receipts)
    logger.info(
        "Resolution tracker: %d checked, %d resolved%s",
        len(pending),
        len(receipts),
        " (dry run)" if dry_run else "",
    )
    return {
        "checked": len(pending),
        "resolved": len(receipts),
        "unresolved": unresolved,
        "errors": errors,
        "resolved_markets": [r.to_dict() for r in receipts],
        "dry_run": dry_run,
    }