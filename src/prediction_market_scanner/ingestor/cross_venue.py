"""Cross-venue market matching by question keyword overlap."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from prediction_market_scanner.ingestor.models import Market

# Minimum Jaccard similarity for two questions to be the same market
MATCH_THRESHOLD = 0.6
MAX_KEYWORDS = 10
MIN_KEYWORD_LENGTH = 3

STOP_WORDS = frozenset(
    {
        "will", "the", "be", "in", "on", "at", "to", "for", "of",
        "a", "an", "and", "or", "but", "is", "are", "was", "were",
    }
)  # fmt: skip

_NON_WORD_RE = re.compile(r"[^\w\s]")


def extract_keywords(question: str | None) -> list[str]:
    """First ten significant lowercase words of a question."""
    if not question:
        return []
    words = _NON_WORD_RE.sub(" ", question.lower()).split()
    return [w for w in words if len(w) >= MIN_KEYWORD_LENGTH and w not in STOP_WORDS][
        :MAX_KEYWORDS
    ]


def jaccard_similarity(a: Sequence[str], b: Sequence[str]) -> float:
    """Set Jaccard similarity; 0 when either side is empty."""
    if not a or not b:
        return 0.0
    set_a, set_b = set(a), set(b)
    return len(set_a & set_b) / len(set_a | set_b)


@dataclass(frozen=True)
class CrossVenueMatch:
    """A Polymarket market and its Kalshi twin."""

    polymarket: Market
    kalshi: Market
    similarity: float
    poly_price: float
    kalshi_price: float

    @property
    def price_divergence(self) -> float:
        return abs(self.poly_price - self.kalshi_price)

    def to_cross_exchange(self) -> dict[str, object]:
        """Annotation attached to the Polymarket scan entry."""
        return {
            "kalshi_ticker": self.kalshi.market_id,
            "kalshi_price": self.kalshi_price,
            "poly_price": self.poly_price,
            "price_divergence": self.price_divergence,
            "similarity": self.similarity,
        }

    def to_arb_opportunity(self) -> dict[str, object]:
        return {
            "kalshi_price": self.kalshi_price,
            "polymarket_price": self.poly_price,
            "price_divergence": self.price_divergence,
            "similarity": self.similarity,
        }


def find_cross_venue_matches(
    polymarkets: Sequence[Market],
    kalshi_markets: Sequence[Market],
    *,
    threshold: float = MATCH_THRESHOLD,
) -> list[CrossVenueMatch]:
    """Pair markets across venues whose questions overlap enough.

    Every pair at or above ``threshold`` is reported; a market may appear in
    several pairs. Results are ordered by price divergence, widest first.

    Example:
        ```python
        matches = find_cross_venue_matches(poly_markets, kalshi_markets)
        for match in matches:
            print(match.polymarket.question, match.price_divergence)
        ```
    """
    kalshi_keywords = [(k, extract_keywords(k.question)) for k in kalshi_markets]
    matches: list[CrossVenueMatch] = []

    for poly in polymarkets:
        poly_keywords = extract_keywords(poly.question)
        if not poly_keywords:
            continue
        for kalshi, keywords in kalshi_keywords:
            similarity = jaccard_similarity(poly_keywords, keywords)
            if similarity >= threshold:
                matches.append(
                    CrossVenueMatch(
                        polymarket=poly,
                        kalshi=kalshi,
                        similarity=similarity,
                        poly_price=poly.max_price,
                        kalshi_price=kalshi.max_price,
                    )
                )

    matches.sort(key=lambda m: m.price_divergence, reverse=True)
    return matches
