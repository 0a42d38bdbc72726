"""Clock abstraction for credential timestamps and item timing.

Production code uses SystemClock. Tests inject MockClock to get
deterministic issued_at values and elapsed times without sleeping.

Deadlines are NOT driven by this clock: DeadlineGuard waits on a real
queue timeout, because the abandoned operation runs on a real thread.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Source of wall-clock and monotonic time."""

    def monotonic(self) -> float:
        """Monotonic seconds, for elapsed-time measurement."""
        ...

    def now(self) -> datetime:
        """Current timezone-aware UTC time, for credential issue stamps."""
        ...


class SystemClock:
    """Clock backed by time.monotonic() and datetime.now(UTC)."""

    def monotonic(self) -> float:
        return time.monotonic()

    def now(self) -> datetime:
        return datetime.now(UTC)


class MockClock:
    """Controllable clock for deterministic tests.

    Example:
        clock = MockClock(start=datetime(2024, 1, 1, tzinfo=UTC))
        manager = CredentialManager(provider, clock=clock)

        manager.current()        # issued at 2024-01-01T00:00:00
        clock.advance(300)
        manager.refresh()        # issued at 2024-01-01T00:05:00
    """

    def __init__(self, start: datetime | None = None, monotonic_start: float = 0.0) -> None:
        self._wall = start or datetime(2024, 1, 1, tzinfo=UTC)
        self._mono = monotonic_start

    def monotonic(self) -> float:
        return self._mono

    def now(self) -> datetime:
        return self._wall

    def advance(self, seconds: float) -> None:
        """Move both clocks forward.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._mono += seconds
        self._wall += timedelta(seconds=seconds)


DEFAULT_CLOCK: Clock = SystemClock()
