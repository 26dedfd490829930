"""
Test suite for the reference order book

Covers:
  - Resting limit orders and top-of-book snapshots
  - Price-time priority matching and partial fills
  - Order types (IOC, post-only, post-only-slide, market)
  - Expiry handling in snapshots and matching
  - Self-trade behaviour
  - Cancellation (by client id, all, edit, cancel-and-place, prune)
  - Validation and resource limits
"""

import pytest

from twapmarket.exceptions import OrderError
from twapmarket.exchange.orderbook import (
    OrderBook,
    PlaceOrderArgs,
    PlaceOrderType,
    PlaceTakeOrderArgs,
    SelfTradeBehavior,
    Side,
)

ALICE = "alice"
BOB = "bob"
NOW = 1_000


def bid(price, size=1, **kwargs) -> PlaceOrderArgs:
    return PlaceOrderArgs(Side.BID, price, size, price * size, **kwargs)


def ask(price, size=1, **kwargs) -> PlaceOrderArgs:
    return PlaceOrderArgs(Side.ASK, price, size, price * size, **kwargs)


@pytest.fixture
def book() -> OrderBook:
    return OrderBook(market_id="test")


# ============================================================================
# Resting orders and snapshots
# ============================================================================

class TestSnapshots:

    def test_empty_book(self, book):
        assert book.is_empty
        assert book.best_bid_and_ask(NOW) == (None, None)

    def test_best_prices(self, book):
        book.place_order(ALICE, bid(99), NOW)
        book.place_order(ALICE, bid(100), NOW)
        book.place_order(BOB, ask(105), NOW)
        book.place_order(BOB, ask(103), NOW)
        assert book.best_bid_and_ask(NOW) == (100, 103)
        assert book.best_price(Side.BID, NOW) == 100

    def test_expired_orders_are_invisible(self, book):
        book.place_order(ALICE, bid(100, expiry_timestamp=NOW + 10), NOW)
        book.place_order(ALICE, bid(90), NOW)
        assert book.best_price(Side.BID, NOW + 9) == 100
        # expiry is inclusive
        assert book.best_price(Side.BID, NOW + 10) == 90

    def test_levels_aggregate_same_price(self, book):
        book.place_order(ALICE, bid(100, 2), NOW)
        book.place_order(BOB, bid(100, 3), NOW)
        book.place_order(BOB, bid(98, 1), NOW)
        assert book.get_bids(NOW) == [(100, 5), (98, 1)]
        assert book.get_bids(NOW, depth=1) == [(100, 5)]

    def test_seq_num_increments_per_order(self, book):
        first = book.place_order(ALICE, bid(100), NOW)
        second = book.place_order(ALICE, bid(101), NOW)
        assert (first, second) == (1, 2)
        assert book.seq_num == 2


# ============================================================================
# Matching
# ============================================================================

class TestMatching:

    def test_crossing_limit_fills_at_maker_price(self, book):
        book.place_order(ALICE, ask(100, 2), NOW)
        order_id = book.place_order(BOB, bid(105, 2), NOW)
        assert order_id is None
        fill = book.fills[-1]
        assert (fill.maker, fill.taker, fill.price_lots, fill.base_lots) == (ALICE, BOB, 100, 2)
        assert book.is_empty

    def test_partial_fill_rests_remainder(self, book):
        book.place_order(ALICE, ask(100, 1), NOW)
        order_id = book.place_order(BOB, bid(100, 3), NOW)
        assert order_id is not None
        assert book.get_order(order_id).quantity == 2
        assert book.best_bid_and_ask(NOW) == (100, None)

    def test_price_time_priority(self, book):
        first = book.place_order(ALICE, ask(100), NOW)
        book.place_order(BOB, ask(100), NOW)
        book.place_order("carol", bid(100), NOW)
        assert book.fills[-1].maker_order_id == first

    def test_walks_multiple_levels(self, book):
        book.place_order(ALICE, ask(100), NOW)
        book.place_order(ALICE, ask(101), NOW)
        book.place_order(ALICE, ask(110), NOW)
        book.place_order(BOB, PlaceOrderArgs(Side.BID, 105, 5, 10_000), NOW)
        assert [f.price_lots for f in book.fills] == [100, 101]
        assert book.best_bid_and_ask(NOW) == (105, 110)

    def test_bid_bounded_by_quote_budget(self, book):
        book.place_order(ALICE, ask(100, 5), NOW)
        book.place_order(BOB, PlaceOrderArgs(Side.BID, 100, 5, 250,
                                             order_type=PlaceOrderType.IMMEDIATE_OR_CANCEL), NOW)
        assert book.fills[-1].base_lots == 2

    def test_ask_not_bounded_by_quote_budget(self, book):
        book.place_order(ALICE, bid(100, 5), NOW)
        book.place_order(BOB, PlaceOrderArgs(Side.ASK, 100, 5, 1), NOW)
        assert book.fills[-1].base_lots == 5

    def test_match_limit_caps_makers_visited(self, book):
        for _ in range(3):
            book.place_order(ALICE, ask(100), NOW)
        book.place_order(BOB, PlaceOrderArgs(Side.BID, 100, 3, 300, limit=2,
                                             order_type=PlaceOrderType.IMMEDIATE_OR_CANCEL), NOW)
        assert len(book.fills) == 2

    def test_expired_maker_dropped_while_matching(self, book):
        book.place_order(ALICE, ask(100, expiry_timestamp=NOW + 5), NOW)
        book.place_order(ALICE, ask(102), NOW)
        book.place_order(BOB, bid(102), NOW + 5)
        assert book.fills[-1].price_lots == 102
        assert len(book.asks) == 0


class TestOrderTypes:

    def test_ioc_never_rests(self, book):
        order_id = book.place_order(ALICE, bid(100, order_type=PlaceOrderType.IMMEDIATE_OR_CANCEL), NOW)
        assert order_id is None
        assert book.is_empty
        assert book.seq_num == 1

    def test_post_only_crossing_is_dropped(self, book):
        book.place_order(ALICE, ask(100), NOW)
        assert book.place_order(BOB, bid(100, order_type=PlaceOrderType.POST_ONLY), NOW) is None
        assert book.fills == []

    def test_post_only_rests_when_not_crossing(self, book):
        book.place_order(ALICE, ask(100), NOW)
        assert book.place_order(BOB, bid(99, order_type=PlaceOrderType.POST_ONLY), NOW) is not None

    def test_post_only_slide_moves_inside_spread(self, book):
        book.place_order(ALICE, ask(100), NOW)
        order_id = book.place_order(
            BOB, PlaceOrderArgs(Side.BID, 105, 1, 1_000, order_type=PlaceOrderType.POST_ONLY_SLIDE), NOW,
        )
        assert book.get_order(order_id).price_lots == 99
        assert book.fills == []

    def test_take_order_only_takes(self, book):
        book.place_order(ALICE, ask(100, 1), NOW)
        fills = book.place_take_order(BOB, PlaceTakeOrderArgs(Side.BID, 100, 3, 300), NOW)
        assert [f.base_lots for f in fills] == [1]
        assert book.is_empty

    def test_take_order_rejects_resting_types(self, book):
        with pytest.raises(OrderError):
            book.place_take_order(BOB, PlaceTakeOrderArgs(Side.BID, 100, 1, 100,
                                                           order_type=PlaceOrderType.LIMIT), NOW)


class TestSelfTrade:

    def test_decrement_take_shrinks_without_fill(self, book):
        maker = book.place_order(ALICE, ask(100, 3), NOW)
        book.place_order(ALICE, bid(100, 1, order_type=PlaceOrderType.IMMEDIATE_OR_CANCEL), NOW)
        assert book.fills == []
        assert book.get_order(maker).quantity == 2

    def test_cancel_provide_removes_maker(self, book):
        book.place_order(ALICE, ask(100, 3), NOW)
        order_id = book.place_order(
            ALICE, bid(100, 1, self_trade_behavior=SelfTradeBehavior.CANCEL_PROVIDE), NOW,
        )
        assert len(book.asks) == 0
        assert book.get_order(order_id).side == Side.BID

    def test_abort_transaction_raises(self, book):
        book.place_order(ALICE, ask(100), NOW)
        with pytest.raises(OrderError):
            book.place_order(ALICE, bid(100, self_trade_behavior=SelfTradeBehavior.ABORT_TRANSACTION), NOW)


# ============================================================================
# Cancellation
# ============================================================================

class TestCancellation:

    def test_cancel_by_client_id_returns_lots(self, book):
        book.place_order(ALICE, bid(100, 2, client_order_id=7), NOW)
        book.place_order(ALICE, bid(99, 3, client_order_id=7), NOW)
        assert book.cancel_order_by_client_id(ALICE, 7) == 5
        assert book.is_empty

    def test_cancel_by_client_id_missing(self, book):
        with pytest.raises(OrderError):
            book.cancel_order_by_client_id(ALICE, 1)

    def test_cancel_by_client_id_scoped_to_owner(self, book):
        book.place_order(ALICE, bid(100, client_order_id=7), NOW)
        with pytest.raises(OrderError):
            book.cancel_order_by_client_id(BOB, 7)

    def test_cancel_all_by_side_and_limit(self, book):
        for price in (97, 98, 99):
            book.place_order(ALICE, bid(price), NOW)
        book.place_order(ALICE, ask(110), NOW)
        assert book.cancel_all_orders(ALICE, Side.BID, limit=2) == 2
        assert book.cancel_all_orders(ALICE) == 2
        assert book.is_empty

    def test_cancel_order_requires_owner(self, book):
        order_id = book.place_order(ALICE, bid(100), NOW)
        with pytest.raises(OrderError):
            book.cancel_order(BOB, order_id)
        assert book.cancel_order(ALICE, order_id).id == order_id

    def test_edit_order_reduces_by_filled_amount(self, book):
        book.place_order(ALICE, ask(100, 5, client_order_id=1), NOW)
        book.place_order(BOB, bid(100, 2), NOW)  # fills 2 of ALICE's 5
        new_id = book.edit_order(ALICE, 1, 5, ask(101, 5, client_order_id=1), NOW)
        assert book.get_order(new_id).quantity == 3

    def test_edit_order_fully_filled_places_nothing(self, book):
        book.place_order(ALICE, ask(100, 2, client_order_id=1), NOW)
        book.place_order(BOB, bid(100, 2), NOW)
        assert book.edit_order(ALICE, 1, 2, ask(101, 2, client_order_id=1), NOW) is None

    def test_cancel_and_place(self, book):
        book.place_order(ALICE, bid(100, client_order_id=1), NOW)
        ids = book.cancel_and_place_orders(ALICE, [1, 99], [bid(98), ask(110)], NOW)
        assert len(ids) == 2 and all(ids)
        assert book.best_bid_and_ask(NOW) == (98, 110)

    def test_prune_orders(self, book):
        for price in (97, 98, 99):
            book.place_order(ALICE, bid(price), NOW)
        assert book.prune_orders(ALICE, limit=2) == 2
        assert len(book.open_orders(ALICE)) == 1


# ============================================================================
# Validation and limits
# ============================================================================

class TestValidation:

    @pytest.mark.parametrize("args", [
        PlaceOrderArgs(Side.BID, 0, 1, 1),
        PlaceOrderArgs(Side.BID, 1, 0, 1),
        PlaceOrderArgs(Side.BID, 1, 1, 0),
        PlaceOrderArgs(Side.BID, 1, 1, 1, client_order_id=-1),
        PlaceOrderArgs(Side.BID, 1, 1, 1, limit=256),
        PlaceOrderArgs(Side.BID, 1, 1, 1, expiry_timestamp=NOW),
    ])
    def test_invalid_args(self, book, args):
        with pytest.raises(OrderError):
            book.place_order(ALICE, args, NOW)

    def test_requires_owner(self, book):
        with pytest.raises(OrderError):
            book.place_order("", bid(100), NOW)

    def test_max_orders_per_owner(self):
        book = OrderBook(max_orders_per_owner=2)
        book.place_order(ALICE, bid(100), NOW)
        book.place_order(ALICE, bid(99), NOW)
        with pytest.raises(OrderError):
            book.place_order(ALICE, bid(98), NOW)

    def test_max_depth(self):
        book = OrderBook(max_depth=1)
        book.place_order(ALICE, bid(100), NOW)
        with pytest.raises(OrderError):
            book.place_order(BOB, bid(99), NOW)

    def test_order_args_from_dict_accepts_names(self):
        args = PlaceOrderArgs.from_dict({
            "side": "ask", "price_lots": 10, "max_base_lots": 1,
            "max_quote_lots_including_fees": 10, "order_type": "POST_ONLY",
        })
        assert args.side == Side.ASK
        assert args.order_type == PlaceOrderType.POST_ONLY
        assert PlaceOrderArgs.from_dict(args.to_dict()) == args

    def test_order_args_from_dict_rejects_unknown_enum(self):
        with pytest.raises(OrderError):
            PlaceOrderArgs.from_dict({
                "side": "sideways", "price_lots": 10, "max_base_lots": 1,
                "max_quote_lots_including_fees": 10,
            })
