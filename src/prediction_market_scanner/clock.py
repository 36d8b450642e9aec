"""Wall-clock helpers.

Every time-dependent computation takes a ``Clock`` so scoring stays a pure
function of (market, trades, now).
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

Clock = Callable[[], datetime]


def now_utc() -> datetime:
    return datetime.now(UTC)


class FrozenClock:
    """Deterministic clock for tests and replays.

    Example:
        ```python
        clock = FrozenClock(datetime(2026, 3, 1, 12, tzinfo=UTC))
        engine = Engine.create(settings, clock=clock)
        clock.advance(hours=2)
        ```
    """

    def __init__(self, now: datetime) -> None:
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        self._now = now

    def __call__(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> None:
        """Move the clock forward by ``timedelta(**kwargs)``."""
        self._now = self._now + timedelta(**kwargs)
