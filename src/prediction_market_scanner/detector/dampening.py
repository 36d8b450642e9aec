"""False-positive dampening and topic-context adjustments.

Dampening looks only at the question, the prices and the time to expiry; it
reduces scores of markets whose trade flow is noisy by nature (sports,
memes, entertainment, recurring daily markets, imminent expiry). Context
scoring adds topic-specific multipliers and caps.
"""

from __future__ import annotations

import math
import re
from datetime import datetime

from prediction_market_scanner.detector.classifier import classify_market
from prediction_market_scanner.detector.models import (
    ContextResult,
    DampeningResult,
    FlowDirection,
    TopicCategory,
    round_half_up,
)
from prediction_market_scanner.ingestor.models import Market

SPORTS_KEYWORDS = (
    "win", "score", "goal", "touchdown", "home run", "nba", "nfl", "mlb", "nhl",
    "premier league", "champions league", "serie a", "la liga", "bundesliga",
    "super bowl", "playoff", "finals", "world cup", "match", "game",
    "lakers", "celtics", "warriors", "yankees", "dodgers", "chiefs", "eagles",
    "manchester", "liverpool", "arsenal", "chelsea", "barcelona", "real madrid",
    "wild", "rangers", "bruins", "maple leafs", "oilers", "avalanche",
    "points", "rebounds", "assists", "rushing yards", "passing yards",
    "mvp", "rookie of the year", "all-star", "draft pick",
    "over under", "spread", "moneyline",
)  # fmt: skip

MEME_KEYWORDS = (
    "tweet", "tiktok", "instagram", "follower", "subscriber", "viral",
    "meme", "doge", "pepe", "shib", "bonk", "wojak", "fartcoin",
    "streamer", "youtuber", "influencer", "celebrity", "kardashian",
    "jake paul", "logan paul", "mr beast", "elon musk tweet",
    "will say", "will post", "will wear", "will eat",
    "onlyfans", "reality tv", "bachelor", "love island",
)  # fmt: skip

ENTERTAINMENT_KEYWORDS = (
    "oscar", "grammy", "emmy", "golden globe", "box office",
    "album", "movie", "tv show", "netflix", "disney",
    "taylor swift", "beyonce", "drake", "kanye",
    "super bowl halftime", "concert", "tour",
)  # fmt: skip

DAILY_PATTERNS = ("today", "tonight", "this evening", "by midnight", "by end of day", "daily")

# "win" is not a sports word in an election question
_ELECTION_RE = re.compile(
    r"presidential|nomination|nominee|election|senate race|governor race|congress",
    re.IGNORECASE,
)

# Dampening factors
STRONG_SPORTS_FACTOR = 0.3
POSSIBLE_SPORTS_FACTOR = 0.15
MEME_FACTOR = 0.5
ENTERTAINMENT_FACTOR = 0.2
MICRO_PRICE_FACTOR = 0.5
EXPIRY_CONVERGENCE_FACTOR = 0.4
IMMINENT_EXPIRY_FACTOR = 0.6
DAILY_FACTOR = 0.25

MICRO_PRICE_THRESHOLD = 0.05
EXPIRY_CONVERGENCE_HOURS = 48
EXPIRY_CONVERGENCE_PRICE = 0.90
IMMINENT_EXPIRY_HOURS = 6

# Context thresholds
GEO_NEWS_CYCLE_DAMPENING = 0.6
GEO_EXCESS_THRESHOLD = 0.10
POLITICAL_CONSENSUS_DAMPENING = 0.7
POLITICAL_EXCESS_THRESHOLD = 0.08
SPORTS_LONGSHOT_PRICE = 0.05
SPORTS_LONGSHOT_DAYS = 90
SPORTS_LONGSHOT_MULTIPLIER = 0.5
EXTREME_LONGSHOT_PRICE = 0.02
EXTREME_LONGSHOT_MAX_EXCESS = 0.20
EXTREME_LONGSHOT_CAP = 3


def compute_dampening(market: Market, now: datetime) -> DampeningResult:
    """Compute the dampening factor for a market.

    Each rule that fires contributes a reason; the factor is the maximum of
    the fired rules' factors, not their sum.

    Args:
        market: Market to inspect.
        now: Reference time for expiry rules.

    Returns:
        DampeningResult with factor in [0, 1) and the fired reasons.
    """
    question = (market.question or "").lower()
    reasons: list[str] = []
    factor = 0.0

    is_election = bool(_ELECTION_RE.search(question))
    sports_hits = [
        kw for kw in SPORTS_KEYWORDS if kw in question and not (kw == "win" and is_election)
    ]
    if len(sports_hits) >= 2:
        factor = max(factor, STRONG_SPORTS_FACTOR)
        reasons.append(f"sports_market({','.join(sports_hits[:2])})")
    elif len(sports_hits) == 1:
        factor = max(factor, POSSIBLE_SPORTS_FACTOR)
        reasons.append(f"possible_sports({sports_hits[0]})")

    meme_hits = [kw for kw in MEME_KEYWORDS if kw in question]
    if meme_hits:
        factor = max(factor, MEME_FACTOR)
        reasons.append(f"meme_market({meme_hits[0]})")

    entertainment_hits = [kw for kw in ENTERTAINMENT_KEYWORDS if kw in question]
    if entertainment_hits:
        factor = max(factor, ENTERTAINMENT_FACTOR)
        reasons.append(f"entertainment({entertainment_hits[0]})")

    # Zero and unreadable prices count as 1 here
    min_price = min(
        (1.0 if math.isnan(p) or p == 0 else p for p in market.outcome_prices),
        default=math.inf,
    )
    if min_price < MICRO_PRICE_THRESHOLD:
        factor = max(factor, MICRO_PRICE_FACTOR)
        reasons.append("micro_price(<5¢)")

    hours = market.hours_to_end(now)
    if hours is not None:
        if 0 < hours <= EXPIRY_CONVERGENCE_HOURS and market.max_price >= EXPIRY_CONVERGENCE_PRICE:
            factor = max(factor, EXPIRY_CONVERGENCE_FACTOR)
            reasons.append(
                f"expiry_convergence({round_half_up(hours)}h,"
                f"{round_half_up(market.max_price * 100)}¢)"
            )
        if 0 < hours <= IMMINENT_EXPIRY_HOURS:
            factor = max(factor, IMMINENT_EXPIRY_FACTOR)
            reasons.append("imminent_expiry(<6h)")

    if any(p in question for p in DAILY_PATTERNS):
        factor = max(factor, DAILY_FACTOR)
        reasons.append("daily_recurring")

    return DampeningResult(factor=factor, reasons=tuple(reasons))


def apply_dampening(score: int, factor: float) -> int:
    return round_half_up(score * (1 - factor))


def compute_context(
    market: Market,
    now: datetime,
    *,
    fresh_wallet_excess: float,
    flow_direction: FlowDirection,
    consensus_dampened: bool = False,
) -> ContextResult:
    """Topic-aware adjustments.

    Args:
        market: Market to classify.
        now: Reference time.
        fresh_wallet_excess: Raw fresh-wallet excess (before flow damping).
        flow_direction: Flow direction v2 label.
        consensus_dampened: Whether consensus dampening applies; the extreme
            longshot cap is skipped in that case.

    Returns:
        ContextResult with the category, the fresh-excess multiplier, the
        score multiplier and an optional hard cap.
    """
    category = classify_market(market)
    fw_multiplier = 1.0
    dampening = 1.0
    cap: int | None = None
    notes: list[str] = []

    readable = [p for p in market.outcome_prices if not math.isnan(p)]
    min_price = min(readable, default=1.0)

    if category is TopicCategory.GEOPOLITICAL:
        if (
            flow_direction is FlowDirection.MAJORITY_ALIGNED
            and fresh_wallet_excess < GEO_EXCESS_THRESHOLD
        ):
            dampening = min(dampening, GEO_NEWS_CYCLE_DAMPENING)
            notes.append("geo_news_cycle(majority_aligned,fw_excess<0.10)")
        if (
            flow_direction is FlowDirection.MINORITY_HEAVY
            and fresh_wallet_excess >= GEO_EXCESS_THRESHOLD
        ):
            notes.append("geo_minority_signal(elevated_confidence)")

    if category is TopicCategory.POLITICAL and (
        flow_direction is FlowDirection.MAJORITY_ALIGNED
        and fresh_wallet_excess < POLITICAL_EXCESS_THRESHOLD
    ):
        dampening = min(dampening, POLITICAL_CONSENSUS_DAMPENING)
        notes.append("political_consensus(majority_aligned)")

    if category is TopicCategory.SPORTS:
        days_to_end = market.days_to_end(now) or 0.0
        if min_price < SPORTS_LONGSHOT_PRICE and days_to_end > SPORTS_LONGSHOT_DAYS:
            fw_multiplier = min(fw_multiplier, SPORTS_LONGSHOT_MULTIPLIER)
            notes.append(f"sports_longshot(<5¢,{round_half_up(days_to_end)}d_to_end)")

    if (
        min_price < EXTREME_LONGSHOT_PRICE
        and fresh_wallet_excess <= EXTREME_LONGSHOT_MAX_EXCESS
        and not consensus_dampened
    ):
        cap = EXTREME_LONGSHOT_CAP
        notes.append("extreme_longshot(<2¢,fw_excess≤0.20)")

    return ContextResult(
        category=category,
        fw_excess_multiplier=fw_multiplier,
        threat_score_cap=cap,
        context_dampening=dampening,
        notes=tuple(notes),
    )
