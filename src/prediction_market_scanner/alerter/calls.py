"""Call selection: the only writer of the post log.

Scan entries are scored 0-9 on three dimensions (how contested the price
is, how many data signals agree, how soon the market resolves), minus two
when dampened. Calls scoring at least ``min_call_score`` are posted, up to
``max_posts_per_day`` per UTC day, never twice for the same slug.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, time
from typing import TYPE_CHECKING, Any

from prediction_market_scanner.alerter.formatter import format_call_message, named_price
from prediction_market_scanner.detector.classifier import matches_sports_pattern
from prediction_market_scanner.detector.models import FlowDirection, TopicCategory, round_half_up
from prediction_market_scanner.ingestor.models import parse_timestamp
from prediction_market_scanner.scan.runner import ScanOptions, scan
from prediction_market_scanner.storage import SignalLog, SignalRecord

if TYPE_CHECKING:
    from prediction_market_scanner.engine import Engine

logger = logging.getLogger(__name__)

DEFAULT_YES_PRICE = 0.5
DEFAULT_DAYS = 365
DATA_EDGE_CAP = 5  # max score with fewer than two data signals
DAMPENED_PENALTY = 2

# (low, high, points, reason): inclusive YES price bands
CONSENSUS_BANDS = (
    (0.35, 0.65, 3, "Near 50/50, max edge"),
    (0.15, 0.85, 2, "Meaningful divergence"),
    (0.05, 0.95, 1, "Mild lean"),
)
# (min signals, points, reason)
DATA_SIGNAL_POINTS = (
    (3, 3, "Multiple converging signals"),
    (2, 2, "Clear flow signal"),
    (1, 1, "Mild signal"),
)
# (max days, points, reason)
TIME_POINTS = (
    (3, 3, "Resolves in <3 days"),
    (14, 2, "Resolves in <2 weeks"),
    (60, 1, "Resolves in <2 months"),
)


@dataclass(frozen=True)
class CallScore:
    score: int
    reasons: tuple[str, ...] = ()
    days: int = DEFAULT_DAYS
    data_signals: int = 0


@dataclass
class CallCandidate:
    entry: dict[str, Any]
    call: CallScore
    message: str = ""

    @property
    def slug(self) -> str:
        return str(self.entry.get("slug") or self.entry.get("condition_id") or "")

    def to_record(self, now: datetime) -> SignalRecord:
        return SignalRecord(
            slug=self.slug,
            question=self.entry.get("question") or "",
            timestamp=now,
            yes_price=named_price(self.entry, "yes"),
            flow_direction=self.entry.get("flow_direction_v2"),
            score=self.call.score,
            threat_score=self.entry.get("threat_score"),
        )


def is_sports_entry(entry: dict[str, Any]) -> bool:
    if entry.get("market_category") == TopicCategory.SPORTS.value:
        return True
    return matches_sports_pattern(entry.get("question") or "")


def count_data_signals(entry: dict[str, Any]) -> int:
    """Independent data signals on a scan entry that point the same way."""
    velocity = entry.get("velocity") or {}
    return sum(
        (
            entry.get("flow_direction_v2") == FlowDirection.MINORITY_HEAVY.value,
            (entry.get("fresh_wallet_excess") or 0) > 0.10,
            (entry.get("large_position_ratio") or 0) > 0.05,
            (entry.get("veteran_minority_flow_score") or 0) > 0,
            (velocity.get("velocity_score") or 0) > 20,
        )
    )


def score_call(entry: dict[str, Any], now: datetime) -> CallScore:
    """Score a scan entry as a potential call.

    Sports markets always score 0.

    Example:
        ```python
        call = score_call(entry, datetime.now(UTC))
        print(call.score, call.reasons)
        ```
    """
    if is_sports_entry(entry):
        return CallScore(score=0, reasons=("Sports, skip",), days=0)

    score = 0
    reasons: list[str] = []

    yes = named_price(entry, "yes")
    yes = DEFAULT_YES_PRICE if yes is None else yes
    for low, high, points, reason in CONSENSUS_BANDS:
        if low <= yes <= high:
            score += points
            reasons.append(reason)
            break

    signals = count_data_signals(entry)
    for minimum, points, reason in DATA_SIGNAL_POINTS:
        if signals >= minimum:
            score += points
            reasons.append(reason)
            break

    end = parse_timestamp(entry.get("end_date"))
    days_left = max(0.0, (end - now).total_seconds() / 86_400) if end else float(DEFAULT_DAYS)
    for maximum, points, reason in TIME_POINTS:
        if days_left <= maximum:
            score += points
            reasons.append(reason)
            break

    if entry.get("is_dampened") or entry.get("consensus_dampened"):
        score -= DAMPENED_PENALTY
        reasons.append("Dampened")
    if signals < 2:
        score = min(score, DATA_EDGE_CAP)
    return CallScore(
        score=max(0, score),
        reasons=tuple(reasons),
        days=round_half_up(days_left),
        data_signals=signals,
    )


def posts_today(posts: list[SignalRecord], now: datetime) -> int:
    start = datetime.combine(now.astimezone(UTC).date(), time.min, tzinfo=UTC)
    return sum(1 for p in posts if p.timestamp is not None and p.timestamp >= start)


def select_calls(
    entries: list[dict[str, Any]],
    posts: list[SignalRecord],
    now: datetime,
    *,
    max_posts_per_day: int,
    min_call_score: int,
) -> list[CallCandidate]:
    """Pick the calls to post now.

    Returns:
        Candidates sorted by call score (descending), at most the posts left
        for the current UTC day, none whose slug was ever posted.
    """
    remaining = max_posts_per_day - posts_today(posts, now)
    if remaining <= 0:
        logger.info("Daily call limit reached (%d)", max_posts_per_day)
        return []

    posted = {p.slug for p in posts}
    candidates: list[CallCandidate] = []
    seen: set[str] = set()
    for entry in entries:
        candidate = CallCandidate(entry=entry, call=score_call(entry, now))
        if candidate.call.score < min_call_score:
            continue
        if not candidate.slug or candidate.slug in posted or candidate.slug in seen:
            continue
        seen.add(candidate.slug)
        candidates.append(candidate)

    candidates.sort(key=lambda c: c.call.score, reverse=True)
    return candidates[:remaining]


@dataclass
class CallRun:
    posted: list[CallCandidate] = field(default_factory=list)
    today_before: int = 0
    dry_run: bool = False

    def to_dict(self, max_per_day: int) -> dict[str, Any]:
        return {
            "posted": [
                {
                    "slug": c.slug,
                    "question": c.entry.get("question"),
                    "score": c.call.score,
                    "message": c.message,
                }
                for c in self.posted
            ],
            "post_count": len(self.posted),
            "today_total": self.today_before + len(self.posted),
            "max_per_day": max_per_day,
            "dry_run": self.dry_run,
        }


async def post_calls(engine: Engine, log: SignalLog, *, dry_run: bool = False) -> dict[str, Any]:
    """Scan, select calls, render them and append them to the post log.

    With ``dry_run`` the calls are selected and rendered but not logged.
    """
    cfg = engine.settings.calls
    now = engine.now()
    result = await scan(engine, ScanOptions(limit=cfg.scan_limit))
    entries = result.to_dict()["scan"]

    posts = log.load_posts()
    selected = select_calls(
        entries,
        posts,
        now,
        max_posts_per_day=cfg.max_posts_per_day,
        min_call_score=cfg.min_call_score,
    )
    for candidate in selected:
        candidate.message = format_call_message(
            candidate.entry, candidate.call.score, list(candidate.call.reasons), candidate.call.days
        )

    if selected and not dry_run:
        await log.append_posts([c.to_record(now) for c in selected])
    logger.info(
        "Calls: %d selected from %d entries%s",
        len(selected),
        len(entries),
        " (dry run)" if dry_run else "",
    )
    run = CallRun(posted=selected, today_before=posts_today(posts, now), dry_run=dry_run)
    return run.to_dict(cfg.max_posts_per_day)
