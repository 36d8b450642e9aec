"""Topic classification and live-event detection.

Topic rules are evaluated in a fixed priority order so that generic words in
a market description (e.g. "avalanche" as a blockchain name in a hockey
market) cannot override what the question itself is about.
"""

from __future__ import annotations

import re
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

from prediction_market_scanner.detector.models import TopicCategory
from prediction_market_scanner.ingestor.models import Market

# Keyword lists. Matching is substring matching on lowercased text, so
# short entries ("eth", "sol", "base") also hit inside longer words.
GEOPOLITICAL_KEYWORDS = (
    "war", "invasion", "attack", "strike", "military", "troops", "army",
    "sanction", "nuclear", "missile", "drone", "airstrike", "ceasefire",
    "peace deal", "treaty", "nato", "blockade", "siege", "annexe", "annex",
    "occupied", "regime", "coup", "revolution", "insurgent", "rebel",
    "russia", "ukraine", "china", "taiwan", "iran", "israel", "palestine",
    "gaza", "hezbollah", "hamas", "houthi", "north korea", "kim jong",
    "diplomat", "embassy", "consul", "foreign minister", "secretary of state",
    "un resolution", "security council", "g7", "g20",
)  # fmt: skip

POLITICAL_KEYWORDS = (
    "election", "president", "senator", "congress", "congressional", "vote",
    "ballot", "democrat", "republican", "trump", "biden", "harris", "desantis",
    "primary", "candidate", "campaign", "polling", "supreme court", "legislation",
    "governor", "mayor", "speaker of the house", "cabinet", "resign", "impeach",
    "indicted", "conviction", "acquitted", "pardoned", "filibuster",
    "midterm", "general election", "runoff", "recount", "swing state",
    "electoral college", "popular vote", "approval rating",
)  # fmt: skip

CRYPTO_KEYWORDS = (
    "bitcoin", "btc", "ethereum", "eth", "crypto", "blockchain", "defi",
    "nft", "token", "altcoin", "binance", "coinbase", "solana", "sol",
    "usdc", "usdt", "stablecoin", "mining", "staking", "dex", "dao",
    "metaverse", "web3", "layer 2", "l2", "polygon", "avalanche", "base",
    "ripple", "xrp", "cardano", "ada", "dogecoin", "doge", "shib",
    "memecoin", "on-chain", "halving", "etf approval",
)  # fmt: skip

# Checked against the question only
PRIMARY_CRYPTO_IDENTIFIERS = (
    "bitcoin", "btc", "ethereum", "eth", "crypto", "blockchain", "defi",
    "nft", "halving", "on-chain", "dogecoin", "doge", "solana", "shib",
)  # fmt: skip

# Checked against the question only. Ambiguous team names (avalanche, wild,
# rangers) are left out.
SPORTS_QUESTION_KEYWORDS = (
    "nba", "nfl", "nhl", "mlb", "ufc", "pga", "mma", "f1", "formula 1",
    "ligue 1", "la liga", "serie a", "bundesliga", "premier league",
    "champions league", "europa league", "world cup", "super bowl",
    "stanley cup", "championship", "playoff", "tournament",
    "lakers", "celtics", "warriors", "yankees", "dodgers", "chiefs",
    "eagles", "bruins", "maple leafs", "oilers",
)  # fmt: skip

SPORTS_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bnba\b", r"\bnfl\b", r"\bnhl\b", r"\bmlb\b", r"\bufc\b",
        r"\bpremier league\b", r"\bworld cup\b", r"\bsuper bowl\b",
        r"\bplayoff\b", r"\bfinals?\b", r"\bchampionship\b",
        r"\btournament\b", r"\bstandings\b",
        r"vs\.?\s+\w+",
        r"\bscore\b.*\bgame\b",
        r"\bover/under\b", r"\bmoneyline\b", r"\bspread\b",
    )
)  # fmt: skip

# Live-event detection
LIVE_EVENT_END_WINDOW_HOURS = 8
LIVE_EVENT_START_WINDOW_HOURS = 6
EASTERN = ZoneInfo("America/New_York")
START_TIME_RE = re.compile(
    r"\b(\d{1,2})(?::(\d{2}))?\s*(AM|PM)\s*(?:ET|EST|EDT)\b", re.IGNORECASE
)


def _market_text(market: Market) -> tuple[str, str]:
    question = (market.question or "").lower()
    description = (market.description or "").lower()
    return question, f"{question} {description}"


def matches_sports_pattern(text: str) -> bool:
    return any(p.search(text) for p in SPORTS_PATTERNS)


def classify_market(market: Market) -> TopicCategory:
    """Classify a market into a topic category.

    Priority (first match wins): sports keyword in the question, primary
    crypto identifier in the question, sports pattern anywhere, then keyword
    counts over question and description.

    Example:
        ```python
        classify_market(Market(market_id="0x1", question="Will BTC hit $100k?"))
        # TopicCategory.CRYPTO
        ```
    """
    question, text = _market_text(market)

    if any(kw in question for kw in SPORTS_QUESTION_KEYWORDS):
        return TopicCategory.SPORTS
    if any(kw in question for kw in PRIMARY_CRYPTO_IDENTIFIERS):
        return TopicCategory.CRYPTO
    if matches_sports_pattern(text):
        return TopicCategory.SPORTS

    counts = (
        (TopicCategory.GEOPOLITICAL, sum(1 for kw in GEOPOLITICAL_KEYWORDS if kw in text)),
        (TopicCategory.POLITICAL, sum(1 for kw in POLITICAL_KEYWORDS if kw in text)),
        (TopicCategory.CRYPTO, sum(1 for kw in CRYPTO_KEYWORDS if kw in text)),
    )
    for category, hits in counts:
        if hits >= 2:
            return category
    for category, hits in counts:
        if hits == 1:
            return category
    return TopicCategory.GENERAL


def parse_start_time(text: str, now: datetime) -> datetime | None:
    """Resolve an "8:00 PM ET" style token to the most recent such moment.

    The token is placed on today's US-Eastern date, or yesterday's if that
    moment is still in the future.
    """
    match = START_TIME_RE.search(text)
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    if not 1 <= hour <= 12 or minute > 59:
        return None
    hour = hour % 12 + (12 if match.group(3).upper() == "PM" else 0)

    local_now = now.astimezone(EASTERN)
    start = datetime.combine(local_now.date(), time(hour, minute), tzinfo=EASTERN)
    if start > local_now:
        start = datetime.combine(
            local_now.date() - timedelta(days=1), time(hour, minute), tzinfo=EASTERN
        )
    return start


def is_live_event(market: Market, now: datetime) -> bool:
    """True for a sports market close to its end or one whose start time just passed."""
    _, text = _market_text(market)

    hours_to_end = market.hours_to_end(now)
    if (
        hours_to_end is not None
        and hours_to_end < LIVE_EVENT_END_WINDOW_HOURS
        and matches_sports_pattern(text)
    ):
        return True

    start = parse_start_time(f"{market.question} {market.description}", now)
    if start is not None:
        elapsed_hours = (now - start).total_seconds() / 3600
        if 0 <= elapsed_hours <= LIVE_EVENT_START_WINDOW_HOURS:
            return True
    return False
