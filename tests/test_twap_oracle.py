"""
Test suite for the TWAP oracle

Covers:
  - Creation and immutable parameters
  - Update state machine (stale tick, one-sided, spread filter, applied)
  - Clamping against max_change_per_update
  - Aggregator accounting and overflow
  - time_weighted_average before/after updates
  - Snapshot-driven updates and serialization
"""

import random

import pytest

from twapmarket.constants import U64_MAX, U128_MAX
from twapmarket.exceptions import ArithmeticOverflowError, DivisionByZeroError
from twapmarket.exchange.clock import Clock
from twapmarket.exchange.oracle import TWAPOracle, UpdateOutcome, spread_too_wide


# ============================================================================
# Helpers
# ============================================================================

class StaticBook:
    """Snapshot provider returning fixed quotes and counting reads."""

    def __init__(self, bid=None, ask=None):
        self.bid = bid
        self.ask = ask
        self.reads = 0

    def best_bid_and_ask(self, as_of_timestamp):
        self.reads += 1
        return self.bid, self.ask


def make_oracle(expected_value=100, max_change=5, tick=0) -> TWAPOracle:
    return TWAPOracle.new(expected_value, max_change, tick)


# ============================================================================
# Creation
# ============================================================================

class TestOracleCreation:

    def test_new_anchors_at_expected_value(self):
        oracle = make_oracle(550, 10, tick=7)
        assert oracle.expected_value == 550
        assert oracle.last_observation == 550
        assert oracle.latest_observation == 550
        assert oracle.initial_tick == 7
        assert oracle.last_updated_tick == 7
        assert oracle.last_observed_tick == 7
        assert oracle.observation_aggregator == 0
        assert oracle.elapsed_ticks == 0

    def test_parameters_are_immutable(self):
        oracle = make_oracle()
        with pytest.raises(AttributeError):
            oracle.expected_value = 1
        with pytest.raises(AttributeError):
            oracle.max_change_per_update = 1
        with pytest.raises(AttributeError):
            oracle.initial_tick = 1

    def test_mutable_fields_can_change(self):
        oracle = make_oracle()
        oracle.last_observation = 101
        assert oracle.last_observation == 101

    def test_rejects_out_of_range_fields(self):
        with pytest.raises(ArithmeticOverflowError):
            TWAPOracle.new(U64_MAX + 1, 5, 0)
        with pytest.raises(ArithmeticOverflowError):
            TWAPOracle.new(100, -1, 0)

    def test_rejects_bad_tick_ordering(self):
        with pytest.raises(ValueError):
            TWAPOracle(
                expected_value=100, initial_tick=5, last_updated_tick=4,
                last_observed_tick=5, last_observation=100,
                observation_aggregator=0, max_change_per_update=5,
            )


# ============================================================================
# Update algorithm
# ============================================================================

class TestOracleUpdate:

    def test_reference_scenario(self):
        oracle = make_oracle(100, 5)

        assert oracle.update(1, 1, 100, 102) == UpdateOutcome.APPLIED
        assert oracle.last_observation == 101
        assert oracle.observation_aggregator == 101

        assert oracle.update(2, 2, 50, 200) == UpdateOutcome.SPREAD_TOO_WIDE
        assert oracle.last_observation == 101
        assert oracle.observation_aggregator == 101
        assert oracle.last_observed_tick == 2
        assert oracle.last_updated_tick == 1

        assert oracle.update(3, 3, 120, 121) == UpdateOutcome.APPLIED
        assert oracle.last_observation == 106
        # 106 weighted over ticks 2 and 3
        assert oracle.observation_aggregator == 101 + 106 * 2
        assert oracle.time_weighted_average() == (101 + 212) // 3

    def test_one_sided_book_only_advances_observed_tick(self):
        oracle = make_oracle()
        assert oracle.update(1, 1, None, 101) == UpdateOutcome.ONE_SIDED_BOOK
        assert oracle.update(2, 2, 99, None) == UpdateOutcome.ONE_SIDED_BOOK
        assert oracle.last_observed_tick == 2
        assert oracle.last_updated_tick == 0
        assert oracle.last_observation == 100
        assert oracle.observation_aggregator == 0

    def test_same_tick_is_full_noop(self):
        oracle = make_oracle()
        assert oracle.update(4, 4, 100, 102) == UpdateOutcome.APPLIED
        before = oracle.to_dict()
        assert oracle.update(4, 5, 200, 210) == UpdateOutcome.STALE_TICK
        assert oracle.to_dict() == before

    def test_earlier_tick_is_noop(self):
        oracle = make_oracle()
        oracle.update(4, 4, 100, 102)
        before = oracle.to_dict()
        assert oracle.update(3, 3, 100, 102) == UpdateOutcome.STALE_TICK
        assert oracle.to_dict() == before

    def test_creation_tick_is_stale(self):
        oracle = make_oracle(tick=10)
        assert oracle.update(10, 0, 100, 101) == UpdateOutcome.STALE_TICK
        assert oracle.last_observed_tick == 10

    def test_spread_at_exactly_twenty_percent_is_accepted(self):
        oracle = make_oracle(110, 100)
        assert oracle.update(1, 1, 100, 120) == UpdateOutcome.APPLIED
        assert oracle.last_observation == 110

    def test_clamps_downward(self):
        oracle = make_oracle(100, 5)
        oracle.update(1, 1, 50, 50)
        assert oracle.last_observation == 95

    def test_clamp_saturates_at_zero(self):
        oracle = make_oracle(3, 10)
        oracle.update(1, 1, 0, 0)
        assert oracle.last_observation == 0

    def test_prices_beyond_signed_range_are_rejected(self):
        # the spread ceiling saturates in the i64 price domain
        oracle = make_oracle(U64_MAX - 1, 10)
        assert oracle.update(1, 1, U64_MAX, U64_MAX) == UpdateOutcome.SPREAD_TOO_WIDE
        assert oracle.last_observation == U64_MAX - 1

    def test_negative_crossed_quote_is_rejected(self):
        oracle = make_oracle(100, 5)
        assert oracle.update(1, 1, -10, -12) == UpdateOutcome.INVALID_QUOTE
        assert oracle.last_observed_tick == 1
        assert oracle.last_updated_tick == 0
        assert oracle.last_observation == 100
        assert oracle.observation_aggregator == 0
        # the tick is consumed
        assert oracle.update(1, 1, 100, 102) == UpdateOutcome.STALE_TICK

    def test_zero_max_change_pins_observation(self):
        oracle = make_oracle(100, 0)
        oracle.update(1, 1, 200, 210)
        oracle.update(2, 2, 1, 1)
        assert oracle.last_observation == 100
        assert oracle.time_weighted_average() == 100

    def test_gap_weights_observation_by_elapsed_ticks(self):
        oracle = make_oracle(100, 5, tick=0)
        oracle.update(10, 10, 100, 100)
        assert oracle.observation_aggregator == 100 * 10

    def test_rejected_ticks_count_toward_next_weight(self):
        oracle = make_oracle(100, 5)
        oracle.update(1, 1, 100, 100)
        oracle.update(2, 2, None, None)
        oracle.update(3, 3, 1, 1000)
        oracle.update(4, 4, 100, 100)
        assert oracle.observation_aggregator == 100 + 100 * 3

    def test_aggregator_overflow_raises(self):
        oracle = TWAPOracle(
            expected_value=10**17, initial_tick=0, last_updated_tick=0,
            last_observed_tick=0, last_observation=10**17,
            observation_aggregator=U128_MAX - 1, max_change_per_update=0,
        )
        with pytest.raises(ArithmeticOverflowError):
            oracle.update(1, 1, 10**17, 10**17)

    def test_current_tick_must_fit_u64(self):
        oracle = make_oracle()
        with pytest.raises(ArithmeticOverflowError):
            oracle.update(U64_MAX + 1, 0, 100, 100)

    def test_outcome_consumed_tick(self):
        assert not UpdateOutcome.STALE_TICK.consumed_tick
        assert UpdateOutcome.ONE_SIDED_BOOK.consumed_tick
        assert UpdateOutcome.SPREAD_TOO_WIDE.consumed_tick
        assert UpdateOutcome.INVALID_QUOTE.consumed_tick
        assert UpdateOutcome.APPLIED.consumed_tick


class TestSpreadFilter:

    def test_within_limit(self):
        assert not spread_too_wide(100, 120)
        assert not spread_too_wide(500, 550)

    def test_beyond_limit(self):
        assert spread_too_wide(100, 121)
        assert spread_too_wide(1, 100_000_000_000_000)

    def test_integer_rounding_of_limit(self):
        # 9 * 12 / 10 = 10.8 → 10
        assert not spread_too_wide(9, 10)
        assert spread_too_wide(9, 11)


# ============================================================================
# Properties over random sequences
# ============================================================================

class TestOracleProperties:

    def _random_updates(self, seed, steps=300):
        rng = random.Random(seed)
        oracle = make_oracle(rng.randint(1, 10_000), rng.randint(0, 50))
        tick = 0
        for _ in range(steps):
            tick += rng.choice([0, 1, 1, 2, 5])
            bid = rng.choice([None, rng.randint(0, 20_000)])
            ask = None if bid is None else rng.choice([bid, bid + rng.randint(0, bid // 4 + 1)])
            yield oracle, tick, bid, ask

    @pytest.mark.parametrize("seed", range(5))
    def test_observation_moves_at_most_max_change(self, seed):
        for oracle, tick, bid, ask in self._random_updates(seed):
            prev = oracle.last_observation
            oracle.update(tick, tick, bid, ask)
            assert abs(oracle.last_observation - prev) <= oracle.max_change_per_update

    @pytest.mark.parametrize("seed", range(5))
    def test_aggregator_non_decreasing_and_ticks_ordered(self, seed):
        for oracle, tick, bid, ask in self._random_updates(seed):
            prev_aggregator = oracle.observation_aggregator
            oracle.update(tick, tick, bid, ask)
            assert oracle.observation_aggregator >= prev_aggregator
            assert oracle.last_observed_tick >= oracle.last_updated_tick >= oracle.initial_tick

    @pytest.mark.parametrize("seed", range(5))
    def test_aggregator_equals_sum_of_weighted_observations(self, seed):
        expected = 0
        for oracle, tick, bid, ask in self._random_updates(seed):
            last_updated = oracle.last_updated_tick
            if oracle.update(tick, tick, bid, ask) == UpdateOutcome.APPLIED:
                expected += oracle.last_observation * (tick - last_updated)
            assert oracle.observation_aggregator == expected


# ============================================================================
# Query
# ============================================================================

class TestTimeWeightedAverage:

    def test_division_by_zero_before_first_update(self):
        oracle = make_oracle()
        with pytest.raises(DivisionByZeroError):
            oracle.time_weighted_average()
        with pytest.raises(ZeroDivisionError):
            oracle.time_weighted_average()

    def test_rejected_updates_keep_twap_undefined(self):
        oracle = make_oracle()
        oracle.update(1, 1, None, 100)
        oracle.update(2, 2, 1, 100)
        with pytest.raises(DivisionByZeroError):
            oracle.time_weighted_average()

    @pytest.mark.parametrize("d", [1, 3, 1000])
    def test_exact_after_one_update(self, d):
        oracle = make_oracle(100, 5, tick=42)
        oracle.update(42 + d, 0, 120, 121)
        assert oracle.time_weighted_average() == oracle.last_observation == 105

    def test_floor_division(self):
        oracle = make_oracle(100, 5)
        oracle.update(1, 1, 101, 101)
        oracle.update(2, 2, 100, 100)
        # (101 + 100) // 2
        assert oracle.time_weighted_average() == 100


# ============================================================================
# Snapshot provider and serialization
# ============================================================================

class TestUpdateFromBook:

    def test_reads_book_at_clock(self):
        oracle = make_oracle(100, 5)
        book = StaticBook(100, 102)
        assert oracle.update_from_book(Clock(1, 1000), book) == UpdateOutcome.APPLIED
        assert oracle.last_observation == 101
        assert book.reads == 1

    def test_stale_tick_skips_book_read(self):
        oracle = make_oracle(100, 5)
        book = StaticBook(100, 102)
        oracle.update_from_book(Clock(1, 1000), book)
        assert oracle.update_from_book(Clock(1, 1001), book) == UpdateOutcome.STALE_TICK
        assert book.reads == 1


class TestOracleSerialization:

    def test_to_dict_from_dict(self):
        oracle = make_oracle(100, 5)
        oracle.update(1, 1, 100, 102)
        data = oracle.to_dict()
        assert data["observation_aggregator"] == "101"
        assert TWAPOracle.from_dict(data) == oracle

    def test_large_aggregator_survives(self):
        oracle = TWAPOracle(
            expected_value=1, initial_tick=0, last_updated_tick=1,
            last_observed_tick=1, last_observation=1,
            observation_aggregator=U128_MAX, max_change_per_update=0,
        )
        assert TWAPOracle.from_dict(oracle.to_dict()).observation_aggregator == U128_MAX

    def test_restore_writes_back_in_place(self):
        oracle = make_oracle(100, 5)
        saved = oracle.to_dict()
        oracle.update(1, 1, 100, 102)
        oracle.restore(saved)
        assert oracle == make_oracle(100, 5)
