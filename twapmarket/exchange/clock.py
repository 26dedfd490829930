"""
Ledger clock

The time source every oracle update reads: a logical tick (slot) counter that
never decreases, plus the wall-clock unix timestamp of that tick. Many
operations may execute within one tick.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..exceptions import ClockError
from .numeric import I64, U64, check


@dataclass(frozen=True)
class Clock:
    """Immutable (tick, unix_timestamp) reading."""
    tick: int
    unix_timestamp: int

    def __post_init__(self):
        check(self.tick, U64, "tick")
        check(self.unix_timestamp, I64, "unix_timestamp")


class LedgerClock:
    """
    Monotonic clock owned by the host ledger.

    Ticks may repeat (several operations per tick) but never go backwards.
    Timestamps follow the same rule.
    """

    def __init__(self, tick: int = 0, unix_timestamp: int = 0) -> None:
        self._now = Clock(tick, unix_timestamp)

    def now(self) -> Clock:
        return self._now

    @property
    def tick(self) -> int:
        return self._now.tick

    @property
    def unix_timestamp(self) -> int:
        return self._now.unix_timestamp

    def set(self, tick: int, unix_timestamp: int) -> Clock:
        """Move the clock to an absolute reading."""
        nxt = Clock(tick, unix_timestamp)
        if nxt.tick < self._now.tick:
            raise ClockError(f"Tick moved backwards: {self._now.tick} -> {nxt.tick}")
        if nxt.unix_timestamp < self._now.unix_timestamp:
            raise ClockError(
                f"Timestamp moved backwards: {self._now.unix_timestamp} -> {nxt.unix_timestamp}"
            )
        self._now = nxt
        return nxt

    def advance(self, ticks: int = 1, seconds: int = 0) -> Clock:
        """Advance by a number of ticks and seconds."""
        if ticks < 0 or seconds < 0:
            raise ClockError("Clock can only move forward")
        return self.set(self._now.tick + ticks, self._now.unix_timestamp + seconds)

    def __repr__(self) -> str:
        return f"LedgerClock(tick={self.tick}, unix_timestamp={self.unix_timestamp})"
