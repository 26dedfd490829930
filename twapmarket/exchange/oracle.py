"""
TWAP Oracle

Manipulation-resistant time-weighted average price read from an order book:
  - Arithmetic mean TWAP:  Σ(observation_i × Δtick_i) / (last_updated_tick − initial_tick)
  - Updated as a side effect of every book-changing trading operation
  - Accumulator-based: O(1) state, O(1) reads

Security features:
  - Anchored start: the operator's expected value is the first observation
  - At most one observation per tick (same-tick attempts are no-ops)
  - Spread filter: quotes with best_ask > best_bid × 1.2 are ignored
  - Rate limit: an observation moves at most max_change_per_update per tick
  - Fixed-width accounting: aggregator overflow raises, never wraps
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Tuple

from ..constants import SPREAD_LIMIT_DENOMINATOR, SPREAD_LIMIT_NUMERATOR
from ..exceptions import DivisionByZeroError
from .clock import Clock
from .numeric import (
    I64,
    U64,
    U128,
    average_ceil,
    bounds,
    check,
    checked_add,
    saturating_add,
    saturating_div,
    saturating_mul,
    saturating_sub,
    widening_mul,
)

logger = logging.getLogger(__name__)

# Fixed at creation; re-assignment raises AttributeError
_IMMUTABLE_FIELDS = frozenset({"expected_value", "initial_tick", "max_change_per_update"})
_MUTABLE_FIELDS = ("last_updated_tick", "last_observed_tick", "last_observation", "observation_aggregator")


class UpdateOutcome(str, Enum):
    """Which branch of the update state machine an attempt took."""
    STALE_TICK = "stale_tick"            # already observed this tick
    ONE_SIDED_BOOK = "one_sided_book"    # missing bid or ask
    SPREAD_TOO_WIDE = "spread_too_wide"  # quote rejected by spread filter
    INVALID_QUOTE = "invalid_quote"      # mid price outside the u64 domain
    APPLIED = "applied"                  # clamped observation recorded

    @property
    def consumed_tick(self) -> bool:
        return self is not UpdateOutcome.STALE_TICK


class SnapshotProvider(Protocol):
    """Anything that can report top-of-book prices at a timestamp."""

    def best_bid_and_ask(self, as_of_timestamp: int) -> Tuple[Optional[int], Optional[int]]: ...


def spread_too_wide(best_bid: int, best_ask: int) -> bool:
    """True if best_ask exceeds best_bid by more than 20% (integer math)."""
    ceiling = saturating_div(
        saturating_mul(best_bid, SPREAD_LIMIT_NUMERATOR, I64),
        SPREAD_LIMIT_DENOMINATOR,
        I64,
    )
    return best_ask > ceiling


# ---------------------------------------------------------------------------
# Oracle
# ---------------------------------------------------------------------------

@dataclass
class TWAPOracle:
    """
    Rate-limited TWAP accumulator for a single market.

    Use TWAPOracle.new() to create one; the constructor is for
    deserialisation and takes every field verbatim.
    """
    expected_value: int
    initial_tick: int
    last_updated_tick: int
    last_observed_tick: int
    last_observation: int
    observation_aggregator: int
    max_change_per_update: int

    def __post_init__(self):
        for name in ("expected_value", "initial_tick", "last_updated_tick",
                     "last_observed_tick", "last_observation", "max_change_per_update"):
            check(getattr(self, name), U64, name)
        check(self.observation_aggregator, U128, "observation_aggregator")
        if not (self.last_observed_tick >= self.last_updated_tick >= self.initial_tick):
            raise ValueError(
                "Tick ordering violated: need last_observed_tick >= last_updated_tick >= initial_tick"
            )

    def __setattr__(self, name: str, value: Any) -> None:
        if name in _IMMUTABLE_FIELDS and name in self.__dict__:
            raise AttributeError(f"{name} is fixed at oracle creation")
        super().__setattr__(name, value)

    @classmethod
    def new(cls, expected_value: int, max_change_per_update: int, tick: int) -> TWAPOracle:
        """
        Create an oracle anchored at *expected_value* at *tick*.

        The aggregator starts empty; the expected value only seeds
        last_observation, from which the first update is clamped.
        """
        return cls(
            expected_value=expected_value,
            initial_tick=tick,
            last_updated_tick=tick,
            last_observed_tick=tick,
            last_observation=expected_value,
            observation_aggregator=0,
            max_change_per_update=max_change_per_update,
        )

    # -- Properties ---------------------------------------------------------

    @property
    def latest_observation(self) -> int:
        return self.last_observation

    @property
    def elapsed_ticks(self) -> int:
        return self.last_updated_tick - self.initial_tick

    # -- Update -------------------------------------------------------------

    def update(
        self,
        current_tick: int,
        current_timestamp: int,
        best_bid: Optional[int],
        best_ask: Optional[int],
    ) -> UpdateOutcome:
        """
        Attempt one observation for *current_tick*.

        Missing quotes, wide spreads and mid prices outside u64 are normal
        market conditions: the attempt consumes the tick but leaves the
        observation untouched.

        Raises:
            ArithmeticOverflowError: if the aggregator would exceed u128
        """
        check(current_tick, U64, "current_tick")
        if current_tick <= self.last_observed_tick:
            return UpdateOutcome.STALE_TICK

        self.last_observed_tick = current_tick

        if best_bid is None or best_ask is None:
            logger.debug("tick=%d ts=%d one-sided book, observation kept at %d",
                         current_tick, current_timestamp, self.last_observation)
            return UpdateOutcome.ONE_SIDED_BOOK

        if spread_too_wide(best_bid, best_ask):
            logger.debug("tick=%d ts=%d spread too wide (bid=%d ask=%d), REJECTED",
                         current_tick, current_timestamp, best_bid, best_ask)
            return UpdateOutcome.SPREAD_TOO_WIDE

        spot_price = average_ceil(best_bid, best_ask)
        low, high = bounds(U64)
        if not low <= spot_price <= high:
            logger.debug("tick=%d ts=%d mid price %d outside u64 (bid=%d ask=%d), REJECTED",
                         current_tick, current_timestamp, spot_price, best_bid, best_ask)
            return UpdateOutcome.INVALID_QUOTE

        observation = self._clamp(spot_price)
        logger.debug("Observation: %d", observation)

        weighted_observation = widening_mul(observation, current_tick - self.last_updated_tick)
        logger.debug("Weighted observation: %d", weighted_observation)

        aggregator = checked_add(self.observation_aggregator, weighted_observation, U128)

        self.last_updated_tick = current_tick
        self.last_observation = observation
        self.observation_aggregator = aggregator
        return UpdateOutcome.APPLIED

    def update_from_book(self, clock: Clock, book: SnapshotProvider) -> UpdateOutcome:
        """Read a fresh top-of-book snapshot at *clock* and apply it."""
        if clock.tick <= self.last_observed_tick:
            # No need to read the book for an attempt that cannot count
            return UpdateOutcome.STALE_TICK
        best_bid, best_ask = book.best_bid_and_ask(clock.unix_timestamp)
        return self.update(clock.tick, clock.unix_timestamp, best_bid, best_ask)

    def _clamp(self, spot_price: int) -> int:
        last_observation = self.last_observation
        if spot_price > last_observation:
            max_observation = saturating_add(last_observation, self.max_change_per_update)
            return min(spot_price, max_observation)
        min_observation = saturating_sub(last_observation, self.max_change_per_update)
        return max(spot_price, min_observation)

    # -- Query --------------------------------------------------------------

    def time_weighted_average(self) -> int:
        """
        Average observation over (initial_tick, last_updated_tick].

        Raises:
            DivisionByZeroError: if no update has advanced the tick yet
        """
        elapsed = self.elapsed_ticks
        if elapsed == 0:
            raise DivisionByZeroError(
                "TWAP undefined: no observation has been applied since creation"
            )
        return self.observation_aggregator // elapsed

    # -- Serialisation ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expected_value": self.expected_value,
            "initial_tick": self.initial_tick,
            "last_updated_tick": self.last_updated_tick,
            "last_observed_tick": self.last_observed_tick,
            "last_observation": self.last_observation,
            # u128 does not survive JSON number round-trips in every consumer
            "observation_aggregator": str(self.observation_aggregator),
            "max_change_per_update": self.max_change_per_update,
        }

    def restore(self, data: Dict[str, Any]) -> None:
        """Write the mutable fields of a to_dict() snapshot back onto this oracle."""
        for name in _MUTABLE_FIELDS:
            setattr(self, name, int(data[name]))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TWAPOracle:
        return cls(
            expected_value=int(data["expected_value"]),
            initial_tick=int(data["initial_tick"]),
            last_updated_tick=int(data["last_updated_tick"]),
            last_observed_tick=int(data["last_observed_tick"]),
            last_observation=int(data["last_observation"]),
            observation_aggregator=int(data["observation_aggregator"]),
            max_change_per_update=int(data["max_change_per_update"]),
        )
