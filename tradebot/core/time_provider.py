"""
TimeProvider - injectable clock for strategies.

DCA daily counters and portfolio rebalance intervals compare against
"now"; injecting the clock lets tests and dry runs step through days
without waiting on the wall clock.

Usage (live)::

    provider = LiveTimeProvider()
    now = provider.now()

Usage (tests)::

    provider = SimulatedTimeProvider(start=datetime(2024, 1, 1, tzinfo=UTC))
    provider.advance(timedelta(hours=25))
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

UTC = timezone.utc


class TimeProvider(ABC):
    """Abstract clock - swap for testing."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current aware datetime."""
        ...

    def timestamp(self) -> float:
        """Return UNIX timestamp for the current time."""
        return self.now().timestamp()

    def seconds_until_midnight(self) -> float:
        """Seconds from now until the next midnight in the provider's timezone."""
        now = self.now()
        next_midnight = (now + timedelta(days=1)).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        return (next_midnight - now).total_seconds()

    def is_new_day(self, since: datetime | None) -> bool:
        """True when *since* falls on an earlier calendar day than now."""
        if since is None:
            return True
        return self.now().date() > since.date()


class LiveTimeProvider(TimeProvider):
    """
    Production clock.

    Uses the machine's local timezone so the DCA daily reset happens at
    local midnight.
    """

    def now(self) -> datetime:
        return datetime.now().astimezone()


class SimulatedTimeProvider(TimeProvider):
    """
    Manually advanced clock.

    Args:
        start: Starting datetime. Defaults to 2024-01-01 00:00 UTC.
    """

    def __init__(self, start: datetime | None = None) -> None:
        if start is None:
            start = datetime(2024, 1, 1, tzinfo=UTC)
        if start.tzinfo is None:
            start = start.replace(tzinfo=UTC)
        self._current_time: datetime = start

    def now(self) -> datetime:
        return self._current_time

    def advance(self, delta: timedelta) -> None:
        """
        Advance simulated time by *delta*.

        Raises:
            ValueError: If delta is not positive
        """
        if delta.total_seconds() <= 0:
            raise ValueError(f"advance() requires positive delta, got {delta}")
        self._current_time += delta

    def set_time(self, dt: datetime) -> None:
        """Jump to an absolute datetime."""
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        self._current_time = dt
