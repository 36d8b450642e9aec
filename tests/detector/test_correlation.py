"""Tests for shared-wallet market clustering."""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import NOW, make_trade

from prediction_market_scanner.detector.correlation import (
    CorrelationInput,
    SignalStrength,
    UnionFind,
    build_clusters,
    cluster_narrative,
)

RECENT = NOW - timedelta(hours=3)


def _input(market_id: str, wallets: list[str], usd: float = 100.0, **kwargs: object):
    trades = [make_trade(w, "Yes", usd, RECENT, market_id=market_id) for w in wallets]
    return CorrelationInput.from_trades(market_id, f"Question for {market_id}?", trades, **kwargs)


class TestCorrelationInput:
    def test_wallets_are_normalized(self) -> None:
        trades = [
            make_trade(" 0xAbC ", "Yes", 10, RECENT),
            make_trade("0xabc", "No", 5, RECENT),
            make_trade("", "Yes", 100, RECENT),
        ]
        inp = CorrelationInput.from_trades("m1", "Q?", trades)
        assert inp.wallet_volumes == pytest.approx({"0xabc": 15})
        assert inp.trade_count == 3


class TestUnionFind:
    def test_union_and_find(self) -> None:
        uf = UnionFind()
        uf.union("a", "b")
        uf.union("c", "d")
        assert uf.find("a") == uf.find("b")
        assert uf.find("a") != uf.find("c")
        uf.union("b", "d")
        assert uf.find("a") == uf.find("c")


class TestBuildClusters:
    def test_three_markets_sharing_twelve_wallets(self) -> None:
        wallets = [f"0xw{i}" for i in range(12)]
        markets = [
            _input("m1", wallets, volume_24h=10_000),
            _input("m2", wallets, volume_24h=20_000),
            _input("m3", wallets, volume_24h=30_000),
        ]
        clusters = build_clusters(markets, NOW, min_shared_wallets=5)

        assert len(clusters) == 1
        cluster = clusters[0]
        assert cluster.market_ids == {"m1", "m2", "m3"}
        assert cluster.shared_wallet_count == 12
        assert cluster.max_pair_shared_wallets == 12
        assert cluster.signal_strength is SignalStrength.MODERATE
        assert cluster.combined_volume_24h == 60_000
        assert len(cluster.top_shared_wallets) == 5
        assert "12 wallets active across 3 correlated markets" in cluster.narrative

    def test_pairs_below_threshold_do_not_link(self) -> None:
        shared = [f"0xw{i}" for i in range(4)]
        markets = [_input("m1", shared + ["0xa"]), _input("m2", shared + ["0xb"])]
        assert build_clusters(markets, NOW, min_shared_wallets=5) == []

    def test_transitive_membership(self) -> None:
        ab = [f"0xab{i}" for i in range(6)]
        bc = [f"0xbc{i}" for i in range(6)]
        markets = [_input("a", ab), _input("b", ab + bc), _input("c", bc)]
        clusters = build_clusters(markets, NOW, min_shared_wallets=5)

        assert len(clusters) == 1
        assert clusters[0].market_ids == {"a", "b", "c"}
        assert clusters[0].shared_wallet_count == 12
        assert clusters[0].max_pair_shared_wallets == 6

    def test_membership_does_not_depend_on_input_order(self) -> None:
        ab = [f"0xab{i}" for i in range(6)]
        cd = [f"0xcd{i}" for i in range(25)]
        markets = [_input("a", ab), _input("b", ab), _input("c", cd), _input("d", cd)]

        forward = {c.market_ids for c in build_clusters(markets, NOW)}
        backward = {c.market_ids for c in build_clusters(list(reversed(markets)), NOW)}
        assert forward == backward == {frozenset({"a", "b"}), frozenset({"c", "d"})}

    def test_sorted_by_shared_wallets(self) -> None:
        ab = [f"0xab{i}" for i in range(6)]
        cd = [f"0xcd{i}" for i in range(25)]
        markets = [_input("a", ab), _input("b", ab), _input("c", cd), _input("d", cd)]
        clusters = build_clusters(markets, NOW)

        assert [c.shared_wallet_count for c in clusters] == [25, 6]
        assert clusters[0].signal_strength is SignalStrength.STRONG
        assert clusters[1].signal_strength is SignalStrength.WEAK
        assert {c.cluster_id for c in clusters} == {"cluster_1", "cluster_2"}

    def test_to_dict_masks_wallets(self) -> None:
        wallets = [f"0xwallet{i:04d}" for i in range(10)]
        clusters = build_clusters([_input("m1", wallets), _input("m2", wallets)], NOW)
        doc = clusters[0].to_dict()

        assert doc["signal_strength"] == "MODERATE"
        for wallet in doc["top_shared_wallets"]:
            assert wallet["addr"] == wallet["addr"][:8] + "…"
        assert doc["top_shared_wallets"][0]["volume_usd"] == 200
        assert doc["detected_at"] == NOW.isoformat()

    def test_empty_input(self) -> None:
        assert build_clusters([], NOW) == []


class TestNarrative:
    def test_two_market_narrative(self) -> None:
        markets = [_input("m1", ["0xa"]), _input("m2", ["0xa"])]
        text = cluster_narrative(markets, 7, 1_500_000)
        assert text.startswith("7 wallets active in both")
        assert "($1.5M combined 24h volume)" in text

    def test_long_questions_are_truncated(self) -> None:
        long_q = "x" * 80
        markets = [
            CorrelationInput(market_id="m1", question=long_q),
            CorrelationInput(market_id="m2", question="short"),
        ]
        text = cluster_narrative(markets, 5, 40_000)
        assert '"' + "x" * 60 + '…"' in text
        assert "($40K combined 24h volume)" in text

    def test_strength_thresholds(self) -> None:
        assert SignalStrength.from_shared(9) is SignalStrength.WEAK
        assert SignalStrength.from_shared(10) is SignalStrength.MODERATE
        assert SignalStrength.from_shared(20) is SignalStrength.STRONG
        assert SignalStrength.STRONG.rank > SignalStrength.MODERATE.rank > SignalStrength.WEAK.rank
