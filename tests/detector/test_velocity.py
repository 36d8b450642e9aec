"""Tests for the velocity tracker."""

from __future__ import annotations

from datetime import timedelta

from conftest import NOW

from prediction_market_scanner.detector.models import FlowDirection
from prediction_market_scanner.detector.velocity import (
    MAX_SNAPSHOTS,
    VelocitySnapshot,
    VelocityTracker,
    snapshot_at,
)


def _snap(hours_ago: float, **fields: object) -> VelocitySnapshot:
    return snapshot_at(NOW - timedelta(hours=hours_ago), **fields)


class TestRecord:
    def test_skips_snapshots_under_an_hour_apart(self) -> None:
        tracker = VelocityTracker()
        assert tracker.record("m1", _snap(2))
        assert not tracker.record("m1", _snap(1.5))
        assert tracker.record("m1", _snap(1))
        assert len(tracker.snapshots("m1")) == 2

    def test_ignores_empty_market_id(self) -> None:
        tracker = VelocityTracker()
        assert not tracker.record("", _snap(0))
        assert len(tracker) == 0

    def test_ring_evicts_oldest(self) -> None:
        tracker = VelocityTracker()
        for i in range(MAX_SNAPSHOTS + 1):
            tracker.record("m1", _snap(MAX_SNAPSHOTS + 1 - i, volume_24h=float(i)))
        snapshots = tracker.snapshots("m1")
        assert len(snapshots) == MAX_SNAPSHOTS
        assert snapshots[0].volume_24h == 1.0
        assert snapshots[-1].volume_24h == float(MAX_SNAPSHOTS)


class TestCompute:
    def test_volume_spike_against_baseline(self) -> None:
        tracker = VelocityTracker()
        tracker.compute("m1", _snap(7, volume_24h=10_000))
        result = tracker.compute("m1", _snap(0, volume_24h=120_000))

        assert result.snapshots_available == 2
        assert result.volume_spike_ratio == 12.0
        assert result.volume_spike == 40
        assert result.velocity_score >= 40

    def test_recent_history_is_not_a_baseline(self) -> None:
        tracker = VelocityTracker()
        tracker.compute("m1", _snap(3, volume_24h=10_000))
        result = tracker.compute("m1", _snap(0, volume_24h=120_000))
        assert result.volume_spike == 0
        assert result.volume_spike_ratio is None

    def test_first_sight_uses_liquidity_yardstick(self) -> None:
        tracker = VelocityTracker()
        result = tracker.compute(
            "m1", _snap(0, volume_24h=400_000, fresh_wallets=60), liquidity=100_000
        )
        assert result.snapshots_available == 0
        assert result.volume_spike == 15
        # 60 fresh wallets over a 24h sample is 2.5/hour
        assert result.wallet_velocity == 10
        assert result.fresh_wallet_rate_per_hour == 2.5

    def test_flow_shift_from_earliest_recent_snapshot(self) -> None:
        tracker = VelocityTracker()
        tracker.compute("m1", _snap(20, flow_direction_v2=FlowDirection.MAJORITY_ALIGNED))
        tracker.compute("m1", _snap(10, flow_direction_v2=FlowDirection.MIXED))
        result = tracker.compute("m1", _snap(0, flow_direction_v2=FlowDirection.MINORITY_HEAVY))

        assert result.previous_flow is FlowDirection.MAJORITY_ALIGNED
        assert result.flow_shift == 30
        assert result.flow_changed

    def test_new_fresh_activity_without_baseline_fresh(self) -> None:
        tracker = VelocityTracker()
        tracker.compute("m1", _snap(8, fresh_wallets=0))
        result = tracker.compute("m1", _snap(0, fresh_wallets=48))
        assert result.wallet_velocity == 15

    def test_score_capped_at_100(self) -> None:
        tracker = VelocityTracker()
        tracker.compute(
            "m1",
            _snap(
                8,
                volume_24h=1_000,
                fresh_wallets=1,
                flow_direction_v2=FlowDirection.MAJORITY_ALIGNED,
            ),
        )
        result = tracker.compute(
            "m1",
            _snap(
                0,
                volume_24h=100_000,
                fresh_wallets=10,
                flow_direction_v2=FlowDirection.MINORITY_HEAVY,
            ),
        )
        assert result.velocity_score == 100
        assert result.to_dict()["details"] == {
            "volume_spike_pts": 40,
            "wallet_velocity_pts": 30,
            "flow_shift_pts": 30,
        }
