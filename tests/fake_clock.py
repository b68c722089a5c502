"""
fake_clock.py - Test helper for time-dependent code

Every component takes a ``clock`` callable returning naive UTC datetimes.
FakeClock is such a callable whose time only moves when a test moves it.
"""

from __future__ import annotations
from datetime import datetime, timedelta
import threading


class FakeClock:
    """
    Manually driven clock.

    Example:
        clock = FakeClock(datetime(2025, 1, 1, 12, 0))
        store = LedgerStore(path, clock=clock)
        clock.advance(seconds=100)
    """

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0)):
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **kwargs) -> datetime:
        """Move forward by timedelta(**kwargs); negative values simulate clock skew."""
        with self._lock:
            self._now = self._now + timedelta(**kwargs)
            return self._now

    def set(self, when: datetime) -> None:
        with self._lock:
            self._now = when

    def __repr__(self) -> str:
        return f"FakeClock({self._now.isoformat()})"
