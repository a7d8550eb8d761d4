"""
Block clock: the serially ordered timestamp of the current ledger call.

The ledger never reads wall-clock time. Every entry point reads `now()` from
the clock it was wired with; tests and the simulator advance it explicitly.
"""

from __future__ import annotations


class BlockClock:
    """Monotonic integer-second clock."""

    def __init__(self, start: int = 0) -> None:
        if start < 0:
            raise ValueError(f"Clock start must be non-negative: {start}")
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        """Move the clock forward and return the new timestamp."""
        if seconds < 0:
            raise ValueError(f"Clock cannot move backwards: {seconds}")
        self._now += seconds
        return self._now

    def set(self, timestamp: int) -> None:
        if timestamp < self._now:
            raise ValueError(f"Clock cannot move backwards: {timestamp} < {self._now}")
        self._now = timestamp

    def __repr__(self) -> str:
        return f"BlockClock(now={self._now})"
