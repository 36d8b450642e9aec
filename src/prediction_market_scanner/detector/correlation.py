"""Cross-market correlation by shared wallets.

Wallets that trade two or more markets inside the same window link those
markets. Market pairs sharing at least ``min_shared_wallets`` wallets are
joined with a union-find, and every resulting component of two or more
markets becomes a cluster: one thesis expressed across several markets.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from itertools import combinations
from typing import Any

from prediction_market_scanner.detector.models import round_half_up
from prediction_market_scanner.ingestor.models import Trade

logger = logging.getLogger(__name__)

DEFAULT_MIN_SHARED_WALLETS = 5
STRONG_SHARED_WALLETS = 20
MODERATE_SHARED_WALLETS = 10
TOP_SHARED_WALLETS = 5
NARRATIVE_QUESTION_CHARS = 60


class SignalStrength(str, Enum):
    WEAK = "WEAK"
    MODERATE = "MODERATE"
    STRONG = "STRONG"

    @classmethod
    def from_shared(cls, shared_wallets: int) -> SignalStrength:
        if shared_wallets >= STRONG_SHARED_WALLETS:
            return cls.STRONG
        if shared_wallets >= MODERATE_SHARED_WALLETS:
            return cls.MODERATE
        return cls.WEAK

    @property
    def rank(self) -> int:
        return list(SignalStrength).index(self)


@dataclass
class CorrelationInput:
    """A market with the wallets that traded it inside the window."""

    market_id: str
    question: str
    slug: str | None = None
    exchange: str = "polymarket"
    volume_24h: float = 0.0
    threat_score: int = 0
    threat_level: str = "LOW"
    wallet_volumes: dict[str, float] = field(default_factory=dict)
    trade_count: int = 0

    @property
    def wallets(self) -> set[str]:
        return set(self.wallet_volumes)

    @classmethod
    def from_trades(
        cls,
        market_id: str,
        question: str,
        trades: Iterable[Trade],
        **kwargs: Any,
    ) -> CorrelationInput:
        """Collect per-wallet USD volume from a market's trades in the window."""
        volumes: dict[str, float] = {}
        count = 0
        for trade in trades:
            count += 1
            wallet = trade.wallet.strip().lower()
            if not wallet:
                continue
            volumes[wallet] = volumes.get(wallet, 0.0) + trade.usd_size
        return cls(
            market_id=market_id,
            question=question,
            wallet_volumes=volumes,
            trade_count=count,
            **kwargs,
        )


@dataclass
class _Edge:
    market_a: str
    market_b: str
    shared_wallets: set[str] = field(default_factory=set)
    wallet_volumes: dict[str, float] = field(default_factory=dict)


class UnionFind:
    """Disjoint sets with path compression and union by rank."""

    def __init__(self) -> None:
        self._parent: dict[str, str] = {}
        self._rank: dict[str, int] = {}

    def find(self, x: str) -> str:
        parent = self._parent.setdefault(x, x)
        if parent != x:
            parent = self._parent[x] = self.find(parent)
        return parent

    def union(self, x: str, y: str) -> None:
        rx, ry = self.find(x), self.find(y)
        if rx == ry:
            return
        rank_x, rank_y = self._rank.get(rx, 0), self._rank.get(ry, 0)
        if rank_x < rank_y:
            self._parent[rx] = ry
        elif rank_x > rank_y:
            self._parent[ry] = rx
        else:
            self._parent[ry] = rx
            self._rank[rx] = rank_x + 1


@dataclass(frozen=True)
class Cluster:
    """A connected group of markets sharing wallets."""

    cluster_id: str
    markets: tuple[CorrelationInput, ...]
    shared_wallet_count: int
    max_pair_shared_wallets: int
    combined_volume_24h: float
    top_shared_wallets: tuple[tuple[str, float], ...]
    narrative: str
    signal_strength: SignalStrength
    detected_at: datetime

    @property
    def market_ids(self) -> frozenset[str]:
        return frozenset(m.market_id for m in self.markets)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cluster_id": self.cluster_id,
            "markets": [
                {
                    "question": m.question,
                    "slug": m.slug,
                    "exchange": m.exchange,
                    "condition_id": m.market_id,
                    "volume_24h": m.volume_24h,
                    "threat_score": m.threat_score,
                    "threat_level": m.threat_level,
                }
                for m in self.markets
            ],
            "shared_wallet_count": self.shared_wallet_count,
            "max_pair_shared_wallets": self.max_pair_shared_wallets,
            "combined_volume_24h_usd": round_half_up(self.combined_volume_24h),
            "top_shared_wallets": [
                {"addr": addr[:8] + "…", "volume_usd": round_half_up(vol)}
                for addr, vol in self.top_shared_wallets
            ],
            "narrative": self.narrative,
            "signal_strength": self.signal_strength.value,
            "detected_at": self.detected_at.isoformat(),
        }


def _format_volume(volume: float) -> str:
    if volume >= 1e6:
        return f"${volume / 1e6:.1f}M"
    return f"${round_half_up(volume / 1000)}K"


def _quote(question: str) -> str:
    suffix = "…" if len(question) > NARRATIVE_QUESTION_CHARS else ""
    return f'"{question[:NARRATIVE_QUESTION_CHARS]}{suffix}"'


def cluster_narrative(
    markets: list[CorrelationInput] | tuple[CorrelationInput, ...],
    shared_count: int,
    combined_volume: float,
) -> str:
    """One-line human summary of a cluster."""
    if not markets:
        return ""
    volume = _format_volume(combined_volume)
    questions = [_quote(m.question) for m in markets]
    if len(markets) == 2:
        return (
            f"{shared_count} wallets active in both {questions[0]} and {questions[1]} "
            f"({volume} combined 24h volume). Coordinated positioning suggests one "
            "thesis expressed across markets."
        )
    return (
        f"{shared_count} wallets active across {len(markets)} correlated markets "
        f"({', '.join(questions[:2])} +{len(markets) - 2} more, {volume} combined 24h "
        "volume). Cross-market positioning pattern detected."
    )


def build_clusters(
    markets: list[CorrelationInput],
    now: datetime,
    *,
    min_shared_wallets: int = DEFAULT_MIN_SHARED_WALLETS,
) -> list[Cluster]:
    """Group markets into clusters of shared-wallet activity.

    Args:
        markets: Markets with their in-window wallet volumes.
        now: Detection timestamp stamped on each cluster.
        min_shared_wallets: Shared wallets a market pair needs to be joined.

    Returns:
        Clusters of two or more markets, sorted by shared wallet count
        (descending). Which markets end up together does not depend on the
        input order; cluster ids and member order do.

    Example:
        ```python
        inputs = [CorrelationInput.from_trades(m.market_id, m.question, trades[m.market_id])
                  for m in markets]
        for cluster in build_clusters(inputs, now, min_shared_wallets=5):
            print(cluster.signal_strength, cluster.narrative)
        ```
    """
    if not markets:
        return []
    by_id = {m.market_id: m for m in markets}

    # wallet -> markets it traded, in input order
    wallet_markets: dict[str, list[str]] = {}
    for market in markets:
        for wallet in market.wallet_volumes:
            seen = wallet_markets.setdefault(wallet, [])
            if market.market_id not in seen:
                seen.append(market.market_id)

    edges: dict[tuple[str, str], _Edge] = {}
    for wallet, market_ids in wallet_markets.items():
        if len(market_ids) < 2:
            continue
        for a, b in combinations(market_ids, 2):
            key = (a, b) if a < b else (b, a)
            edge = edges.get(key)
            if edge is None:
                edge = edges[key] = _Edge(market_a=key[0], market_b=key[1])
            edge.shared_wallets.add(wallet)
            combined = by_id[a].wallet_volumes.get(wallet, 0.0) + by_id[b].wallet_volumes.get(
                wallet, 0.0
            )
            edge.wallet_volumes[wallet] = edge.wallet_volumes.get(wallet, 0.0) + combined

    uf = UnionFind()
    significant = [e for e in edges.values() if len(e.shared_wallets) >= min_shared_wallets]
    for edge in significant:
        uf.union(edge.market_a, edge.market_b)

    linked = {e.market_a for e in significant} | {e.market_b for e in significant}
    groups: dict[str, list[CorrelationInput]] = {}
    for market in markets:
        if market.market_id in linked:
            groups.setdefault(uf.find(market.market_id), []).append(market)

    clusters: list[Cluster] = []
    for members in groups.values():
        if len(members) < 2:
            continue
        member_ids = {m.market_id for m in members}
        cluster_edges = [
            e for e in significant if e.market_a in member_ids and e.market_b in member_ids
        ]
        shared: set[str] = set()
        wallet_totals: dict[str, float] = {}
        for edge in cluster_edges:
            shared |= edge.shared_wallets
            for wallet, volume in edge.wallet_volumes.items():
                wallet_totals[wallet] = wallet_totals.get(wallet, 0.0) + volume

        combined_volume = sum(m.volume_24h or 0.0 for m in members)
        top = sorted(wallet_totals.items(), key=lambda kv: kv[1], reverse=True)
        clusters.append(
            Cluster(
                cluster_id=f"cluster_{len(clusters) + 1}",
                markets=tuple(members),
                shared_wallet_count=len(shared),
                max_pair_shared_wallets=max(
                    (len(e.shared_wallets) for e in cluster_edges), default=0
                ),
                combined_volume_24h=combined_volume,
                top_shared_wallets=tuple(top[:TOP_SHARED_WALLETS]),
                narrative=cluster_narrative(members, len(shared), combined_volume),
                signal_strength=SignalStrength.from_shared(len(shared)),
                detected_at=now,
            )
        )

    clusters.sort(key=lambda c: c.shared_wallet_count, reverse=True)
    logger.debug(
        "Correlation: %d markets, %d edges, %d significant, %d clusters",
        len(markets),
        len(edges),
        len(significant),
        len(clusters),
    )
    return clusters
