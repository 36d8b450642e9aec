"""Rate-of-change scoring from hourly per-market snapshots.

The tracker keeps a bounded ring of snapshots per market (one per hour at
most, 7 days deep) and scores the current state against that history:
24h-volume spikes, fresh-wallet velocity and flow-direction shifts.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from prediction_market_scanner.detector.models import FlowDirection, round2

logger = logging.getLogger(__name__)

# Ring buffer
MAX_SNAPSHOTS = 168  # 7 days of hourly snapshots
SNAPSHOT_INTERVAL_SECONDS = 3600

# History windows
BASELINE_MIN_AGE_SECONDS = 6 * 3600
FLOW_SHIFT_WINDOW_SECONDS = 24 * 3600
MIN_HISTORY = 2
TRADE_SAMPLE_HOURS = 24  # a trade sample roughly covers a day

# (ratio floor, points), checked in order
VOLUME_SPIKE_BUCKETS = ((10, 40), (5, 30), (3, 20), (2, 10), (1.5, 5))
WALLET_SPIKE_BUCKETS = ((5, 30), (3, 20), (2, 10))
NEW_FRESH_ACTIVITY_POINTS = 15

# Without history: (vol24 / liquidity floor, points) and (fresh/hour floor, points)
NO_HISTORY_VOLUME_BUCKETS = ((3, 15), (2, 8))
NO_HISTORY_WALLET_BUCKETS = ((5, 20), (2, 10), (0.5, 5))

FLOW_SHIFT_POINTS = {
    (FlowDirection.MAJORITY_ALIGNED, FlowDirection.MINORITY_HEAVY): 30,
    (FlowDirection.MAJORITY_ALIGNED, FlowDirection.MIXED): 15,
    (FlowDirection.NEUTRAL, FlowDirection.MINORITY_HEAVY): 25,
    (FlowDirection.MIXED, FlowDirection.MINORITY_HEAVY): 15,
    (FlowDirection.MINORITY_HEAVY, FlowDirection.MAJORITY_ALIGNED): 10,
}


@dataclass(frozen=True)
class VelocitySnapshot:
    """Market state at one scan."""

    ts: float
    volume_24h: float = 0.0
    total_volume: float = 0.0
    total_wallets: int = 0
    fresh_wallets: int = 0
    flow_direction_v2: FlowDirection = FlowDirection.NEUTRAL
    minority_side_flow: float = 0.0
    majority_side_flow: float = 0.0
    threat_score: int = 0


@dataclass(frozen=True)
class VelocityResult:
    velocity_score: int
    volume_spike: int
    wallet_velocity: int
    flow_shift: int
    volume_spike_ratio: float | None
    fresh_wallet_rate_per_hour: float
    flow_changed: bool
    previous_flow: FlowDirection | None
    snapshots_available: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "velocity_score": self.velocity_score,
            "volume_spike": self.volume_spike,
            "wallet_velocity": self.wallet_velocity,
            "flow_shift": self.flow_shift,
            "volume_spike_ratio": self.volume_spike_ratio,
            "fresh_wallet_rate_per_hour": self.fresh_wallet_rate_per_hour,
            "flow_changed": self.flow_changed,
            "previous_flow": self.previous_flow.value if self.previous_flow else None,
            "snapshots_available": self.snapshots_available,
            "details": {
                "volume_spike_pts": self.volume_spike,
                "wallet_velocity_pts": self.wallet_velocity,
                "flow_shift_pts": self.flow_shift,
            },
        }


def _bucket(value: float, buckets: tuple[tuple[float, int], ...], *, strict: bool = False) -> int:
    for floor, points in buckets:
        if value > floor if strict else value >= floor:
            return points
    return 0


class VelocityTracker:
    """Process-wide snapshot store and velocity scorer.

    Example:
        ```python
        tracker = VelocityTracker()
        snapshot = VelocitySnapshot(ts=now.timestamp(), volume_24h=120_000, ...)
        result = tracker.compute(market.market_id, snapshot, liquidity=market.liquidity)
        print(result.velocity_score)
        ```
    """

    def __init__(
        self,
        *,
        max_snapshots: int = MAX_SNAPSHOTS,
        interval_seconds: float = SNAPSHOT_INTERVAL_SECONDS,
    ) -> None:
        self._max_snapshots = max_snapshots
        self._interval = interval_seconds
        self._store: dict[str, deque[VelocitySnapshot]] = {}

    def __len__(self) -> int:
        return len(self._store)

    def snapshots(self, market_id: str) -> list[VelocitySnapshot]:
        return list(self._store.get(market_id, ()))

    def record(self, market_id: str, snapshot: VelocitySnapshot) -> bool:
        """Append a snapshot unless the last one is under an hour old.

        Returns:
            True if the snapshot was stored.
        """
        if not market_id:
            return False
        ring = self._store.get(market_id)
        if ring is None:
            ring = self._store[market_id] = deque(maxlen=self._max_snapshots)
        if ring and snapshot.ts - ring[-1].ts < self._interval:
            return False
        ring.append(snapshot)
        return True

    def clear(self) -> None:
        self._store.clear()

    def compute(
        self,
        market_id: str,
        current: VelocitySnapshot,
        *,
        liquidity: float | None = None,
    ) -> VelocityResult:
        """Score ``current`` against the market's history, then record it.

        History is the ring as it stands after recording ``current``; a market
        seen for the first time has no history. The baseline uses snapshots
        older than 6 hours, so the current snapshot never compares with itself.

        Args:
            market_id: Market key.
            current: Snapshot of the market now (``ts`` is the reference time).
            liquidity: Market liquidity, used as the volume yardstick when
                there is no history.

        Returns:
            VelocityResult with the three components and their capped sum.
        """
        had_history = bool(self._store.get(market_id))
        self.record(market_id, current)
        history = self.snapshots(market_id) if had_history else []
        now = current.ts

        baseline = [s for s in history if now - s.ts > BASELINE_MIN_AGE_SECONDS]
        has_history = len(history) >= MIN_HISTORY

        # Volume spike
        volume_spike = 0
        spike_ratio: float | None = None
        if has_history:
            if baseline:
                avg_volume = sum(s.volume_24h for s in baseline) / len(baseline)
                if avg_volume > 0:
                    ratio = current.volume_24h / avg_volume
                    spike_ratio = round2(ratio)
                    volume_spike = _bucket(ratio, VOLUME_SPIKE_BUCKETS)
        else:
            liq = liquidity or 1.0
            volume_spike = _bucket(current.volume_24h / liq, NO_HISTORY_VOLUME_BUCKETS, strict=True)

        # Wallet velocity
        fresh_rate = current.fresh_wallets / TRADE_SAMPLE_HOURS
        wallet_velocity = 0
        if has_history:
            if baseline:
                avg_fresh = sum(s.fresh_wallets for s in baseline) / len(baseline)
                baseline_rate = avg_fresh / TRADE_SAMPLE_HOURS
                if baseline_rate > 0:
                    wallet_velocity = _bucket(fresh_rate / baseline_rate, WALLET_SPIKE_BUCKETS)
                elif fresh_rate > 1:
                    wallet_velocity = NEW_FRESH_ACTIVITY_POINTS
        else:
            wallet_velocity = _bucket(fresh_rate, NO_HISTORY_WALLET_BUCKETS, strict=True)

        # Flow shift against the earliest snapshot of the last 24h
        flow_shift = 0
        previous_flow: FlowDirection | None = None
        recent = [s for s in history if now - s.ts < FLOW_SHIFT_WINDOW_SECONDS]
        if recent:
            previous_flow = recent[0].flow_direction_v2
            flow_shift = FLOW_SHIFT_POINTS.get((previous_flow, current.flow_direction_v2), 0)

        result = VelocityResult(
            velocity_score=min(100, volume_spike + wallet_velocity + flow_shift),
            volume_spike=volume_spike,
            wallet_velocity=wallet_velocity,
            flow_shift=flow_shift,
            volume_spike_ratio=spike_ratio,
            fresh_wallet_rate_per_hour=round2(fresh_rate),
            flow_changed=flow_shift > 0,
            previous_flow=previous_flow,
            snapshots_available=len(history),
        )
        if result.velocity_score:
            logger.debug(
                "Velocity %d for %s (spike=%d wallets=%d flow=%d)",
                result.velocity_score,
                market_id[:10] + "...",
                volume_spike,
                wallet_velocity,
                flow_shift,
            )
        return result


def snapshot_at(now: datetime, **fields: Any) -> VelocitySnapshot:
    """Build a snapshot stamped with ``now``."""
    return replace(VelocitySnapshot(ts=now.timestamp()), **fields)
