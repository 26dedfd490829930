"""
Reference Order Book  (lot-denominated, in-memory)

Deterministic stand-in for the wrapped exchange's book, with:
  - Limit, immediate-or-cancel, post-only, post-only-slide and market orders
  - Price-time priority: priority follows the book's sequence number
  - Partial fills against multiple makers
  - Per-order expiry: orders expiring at or before a timestamp are invisible
    to best-price queries and are dropped when matching reaches them
  - Top-of-book snapshots for the TWAP oracle

Security features:
  - Self-trade behaviour: DECREMENT_TAKE / CANCEL_PROVIDE / ABORT_TRANSACTION
  - Per-owner order limits: bounded resource consumption
  - Max book depth per side
  - Owner-only cancel: orders are always addressed through their owner
  - Matching loop bounded by the order's `limit`

Prices and sizes are integer lots. Fees are not modelled: a TWAP market only
governs books with zero maker and taker fees.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..constants import (
    DEFAULT_CANCEL_LIMIT,
    I64_MAX,
    MAX_BOOK_DEPTH,
    MAX_ORDERS_PER_OWNER,
    U64_MAX,
)
from ..exceptions import OrderError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums, values match the exchange's wire encoding
# ---------------------------------------------------------------------------

class Side(IntEnum):
    BID = 0
    ASK = 1

    @property
    def opposite(self) -> Side:
        return Side.ASK if self is Side.BID else Side.BID


class PlaceOrderType(IntEnum):
    LIMIT = 0
    IMMEDIATE_OR_CANCEL = 1
    POST_ONLY = 2
    MARKET = 3
    POST_ONLY_SLIDE = 4

    @property
    def can_rest(self) -> bool:
        return self in (PlaceOrderType.LIMIT, PlaceOrderType.POST_ONLY, PlaceOrderType.POST_ONLY_SLIDE)

    @property
    def is_post_only(self) -> bool:
        return self in (PlaceOrderType.POST_ONLY, PlaceOrderType.POST_ONLY_SLIDE)


class SelfTradeBehavior(IntEnum):
    """What to do when maker and taker are the same owner."""
    DECREMENT_TAKE = 0     # shrink both sides, no fill
    CANCEL_PROVIDE = 1     # cancel the resting maker
    ABORT_TRANSACTION = 2  # reject the whole operation


def parse_enum(enum_cls, raw):
    """Accept enum members, int values or member names ("BID", "bid")."""
    if isinstance(raw, enum_cls):
        return raw
    if isinstance(raw, str) and not raw.isdigit():
        try:
            return enum_cls[raw.upper()]
        except KeyError:
            raise OrderError(f"Unknown {enum_cls.__name__}: {raw!r}") from None
    try:
        return enum_cls(int(raw))
    except ValueError:
        raise OrderError(f"Unknown {enum_cls.__name__}: {raw!r}") from None


# ---------------------------------------------------------------------------
# Order arguments
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PlaceOrderArgs:
    """Arguments of an order that may rest on the book."""
    side: Side
    price_lots: int
    max_base_lots: int
    max_quote_lots_including_fees: int
    client_order_id: int = 0
    order_type: PlaceOrderType = PlaceOrderType.LIMIT
    expiry_timestamp: int = 0   # 0 = good until cancelled
    self_trade_behavior: SelfTradeBehavior = SelfTradeBehavior.DECREMENT_TAKE
    limit: int = DEFAULT_CANCEL_LIMIT  # max makers visited while matching

    def to_dict(self) -> Dict[str, Any]:
        return {
            "side": int(self.side),
            "price_lots": self.price_lots,
            "max_base_lots": self.max_base_lots,
            "max_quote_lots_including_fees": self.max_quote_lots_including_fees,
            "client_order_id": self.client_order_id,
            "order_type": int(self.order_type),
            "expiry_timestamp": self.expiry_timestamp,
            "self_trade_behavior": int(self.self_trade_behavior),
            "limit": self.limit,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PlaceOrderArgs:
        return cls(
            side=parse_enum(Side, data["side"]),
            price_lots=int(data["price_lots"]),
            max_base_lots=int(data["max_base_lots"]),
            max_quote_lots_including_fees=int(data["max_quote_lots_including_fees"]),
            client_order_id=int(data.get("client_order_id", 0)),
            order_type=parse_enum(PlaceOrderType, data.get("order_type", PlaceOrderType.LIMIT)),
            expiry_timestamp=int(data.get("expiry_timestamp", 0)),
            self_trade_behavior=parse_enum(
                SelfTradeBehavior,
                data.get("self_trade_behavior", SelfTradeBehavior.DECREMENT_TAKE),
            ),
            limit=int(data.get("limit", DEFAULT_CANCEL_LIMIT)),
        )


@dataclass(frozen=True)
class PlaceTakeOrderArgs:
    """Arguments of an order that only takes liquidity."""
    side: Side
    price_lots: int
    max_base_lots: int
    max_quote_lots_including_fees: int
    order_type: PlaceOrderType = PlaceOrderType.MARKET
    limit: int = DEFAULT_CANCEL_LIMIT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "side": int(self.side),
            "price_lots": self.price_lots,
            "max_base_lots": self.max_base_lots,
            "max_quote_lots_including_fees": self.max_quote_lots_including_fees,
            "order_type": int(self.order_type),
            "limit": self.limit,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PlaceTakeOrderArgs:
        return cls(
            side=parse_enum(Side, data["side"]),
            price_lots=int(data["price_lots"]),
            max_base_lots=int(data["max_base_lots"]),
            max_quote_lots_including_fees=int(data["max_quote_lots_including_fees"]),
            order_type=parse_enum(PlaceOrderType, data.get("order_type", PlaceOrderType.MARKET)),
            limit=int(data.get("limit", DEFAULT_CANCEL_LIMIT)),
        )

    def as_place_order_args(self) -> PlaceOrderArgs:
        return PlaceOrderArgs(
            side=self.side,
            price_lots=self.price_lots,
            max_base_lots=self.max_base_lots,
            max_quote_lots_including_fees=self.max_quote_lots_including_fees,
            order_type=self.order_type,
            self_trade_behavior=SelfTradeBehavior.DECREMENT_TAKE,
            limit=self.limit,
        )


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

@dataclass
class Order:
    """A resting order."""
    id: int                     # book sequence number, also time priority
    owner: str
    side: Side
    price_lots: int
    quantity: int               # remaining base lots
    client_order_id: int = 0
    expiry_timestamp: int = 0   # 0 = good until cancelled

    def is_expired(self, as_of_timestamp: int) -> bool:
        return self.expiry_timestamp != 0 and self.expiry_timestamp <= as_of_timestamp


@dataclass(frozen=True)
class Fill:
    """A match between a taker and a resting maker."""
    seq: int
    maker_order_id: int
    maker: str
    taker: str
    taker_side: Side
    price_lots: int
    base_lots: int

    @property
    def quote_lots(self) -> int:
        return self.price_lots * self.base_lots


# ---------------------------------------------------------------------------
# Book side
# ---------------------------------------------------------------------------

class BookSide:
    """Resting orders of one side, iterated in price-time priority."""

    def __init__(self, side: Side) -> None:
        self.side = side
        self._orders: Dict[int, Order] = {}

    def __len__(self) -> int:
        return len(self._orders)

    def __contains__(self, order_id: int) -> bool:
        return order_id in self._orders

    def _priority(self, order: Order) -> Tuple[int, int]:
        price_key = -order.price_lots if self.side == Side.BID else order.price_lots
        return price_key, order.id

    def iter_all(self) -> Iterator[Order]:
        return iter(sorted(self._orders.values(), key=self._priority))

    def iter_valid(self, as_of_timestamp: int) -> Iterator[Order]:
        return (o for o in self.iter_all() if not o.is_expired(as_of_timestamp))

    def best_price(self, as_of_timestamp: int) -> Optional[int]:
        """Best non-expired price, or None if the side is empty."""
        for order in self.iter_valid(as_of_timestamp):
            return order.price_lots
        return None

    def crosses(self, order_price: int, limit_price: int) -> bool:
        """Whether a taker with *limit_price* can trade against *order_price* on this side."""
        if self.side == Side.ASK:
            return order_price <= limit_price
        return order_price >= limit_price

    def insert(self, order: Order) -> None:
        self._orders[order.id] = order

    def remove(self, order_id: int) -> Optional[Order]:
        return self._orders.pop(order_id, None)

    def get(self, order_id: int) -> Optional[Order]:
        return self._orders.get(order_id)


# ---------------------------------------------------------------------------
# Order Book
# ---------------------------------------------------------------------------

class OrderBook:
    """
    Price-time priority book with integer lots.

    Every new order (resting or not) takes the next sequence number;
    resting orders are identified by it.
    """

    def __init__(
        self,
        market_id: str = "",
        max_orders_per_owner: int = MAX_ORDERS_PER_OWNER,
        max_depth: int = MAX_BOOK_DEPTH,
    ):
        self.market_id = market_id
        self.max_orders_per_owner = max_orders_per_owner
        self.max_depth = max_depth

        self.bids = BookSide(Side.BID)
        self.asks = BookSide(Side.ASK)
        self.seq_num: int = 0
        self._fills: List[Fill] = []
        self._fill_seq: int = 0

        # --- Stats ---
        self.total_base_volume: int = 0

    # -- Properties ---------------------------------------------------------

    def side(self, side: Side) -> BookSide:
        return self.bids if side == Side.BID else self.asks

    @property
    def is_empty(self) -> bool:
        return len(self.bids) == 0 and len(self.asks) == 0

    @property
    def fills(self) -> List[Fill]:
        return list(self._fills)

    # -- Snapshots ----------------------------------------------------------

    def best_price(self, side: Side, as_of_timestamp: int) -> Optional[int]:
        return self.side(side).best_price(as_of_timestamp)

    def best_bid_and_ask(self, as_of_timestamp: int) -> Tuple[Optional[int], Optional[int]]:
        return (
            self.bids.best_price(as_of_timestamp),
            self.asks.best_price(as_of_timestamp),
        )

    # -- Order placement ----------------------------------------------------

    def place_order(self, owner: str, args: PlaceOrderArgs, now_timestamp: int) -> Optional[int]:
        """
        Match *args* against the book and rest the remainder if allowed.

        Returns:
            The resting order id, or None if nothing rests

        Raises:
            OrderError: on invalid arguments or limit violations
        """
        self._validate(owner, args, now_timestamp)
        self.seq_num += 1
        order_id = self.seq_num

        price = args.price_lots
        opposite = self.side(args.side.opposite)
        best_opposite = opposite.best_price(now_timestamp)
        would_cross = best_opposite is not None and opposite.crosses(best_opposite, price)

        if args.order_type.is_post_only and would_cross:
            if args.order_type == PlaceOrderType.POST_ONLY:
                logger.debug("Post-only order from %s would cross, dropped", owner)
                return None
            # Slide one lot inside the opposite best
            price = best_opposite + 1 if args.side == Side.ASK else best_opposite - 1
            if price <= 0:
                return None
            args = replace(args, price_lots=price)

        base_left, quote_left = args.max_base_lots, args.max_quote_lots_including_fees
        if not args.order_type.is_post_only:
            base_left, quote_left = self._match(owner, args, now_timestamp)

        if not args.order_type.can_rest:
            return None

        if args.side == Side.BID:
            base_left = min(base_left, quote_left // args.price_lots)
        if base_left <= 0:
            return None

        self._rest(Order(
            id=order_id,
            owner=owner,
            side=args.side,
            price_lots=args.price_lots,
            quantity=base_left,
            client_order_id=args.client_order_id,
            expiry_timestamp=args.expiry_timestamp,
        ))
        return order_id

    def place_take_order(self, owner: str, args: PlaceTakeOrderArgs, now_timestamp: int) -> List[Fill]:
        """Match immediately; nothing rests. Returns the fills produced."""
        if args.order_type not in (PlaceOrderType.MARKET, PlaceOrderType.IMMEDIATE_OR_CANCEL):
            raise OrderError("Take orders must be MARKET or IMMEDIATE_OR_CANCEL")
        place_args = args.as_place_order_args()
        self._validate(owner, place_args, now_timestamp)
        self.seq_num += 1
        before = len(self._fills)
        self._match(owner, place_args, now_timestamp)
        return self._fills[before:]

    # -- Cancellation -------------------------------------------------------

    def cancel_order(self, owner: str, order_id: int) -> Order:
        """Cancel a single resting order by id."""
        for book_side in (self.bids, self.asks):
            order = book_side.get(order_id)
            if order is not None:
                if order.owner != owner:
                    raise OrderError("Only order owner can cancel")
                book_side.remove(order_id)
                return order
        raise OrderError(f"Order {order_id} not found")

    def cancel_order_by_client_id(self, owner: str, client_order_id: int) -> int:
        """
        Cancel every resting order of *owner* carrying *client_order_id*.

        Returns:
            Base lots cancelled

        Raises:
            OrderError: if the owner has no such order
        """
        cancelled = self._cancel_by_client_id(owner, client_order_id)
        if cancelled is None:
            raise OrderError(f"No open order with client id {client_order_id}")
        return cancelled

    def cancel_all_orders(
        self,
        owner: str,
        side: Optional[Side] = None,
        limit: int = DEFAULT_CANCEL_LIMIT,
    ) -> int:
        """Cancel up to *limit* of the owner's orders, optionally on one side. Returns the count."""
        targets = [o for o in self.open_orders(owner) if side is None or o.side == side][:limit]
        for order in targets:
            self.side(order.side).remove(order.id)
        return len(targets)

    def edit_order(
        self,
        owner: str,
        client_order_id: int,
        expected_cancel_size: int,
        args: PlaceOrderArgs,
        now_timestamp: int,
    ) -> Optional[int]:
        """
        Replace an order, shrinking the new one by whatever filled since the
        caller last looked at it.

        *expected_cancel_size* is the remaining size the caller believes the
        old order has; any shortfall is treated as filled.
        """
        cancelled = self._cancel_by_client_id(owner, client_order_id) or 0
        filled_since = max(0, expected_cancel_size - cancelled)
        max_base_lots = args.max_base_lots - filled_since
        if max_base_lots <= 0:
            return None
        return self.place_order(owner, replace(args, max_base_lots=max_base_lots), now_timestamp)

    def cancel_and_place_orders(
        self,
        owner: str,
        cancel_client_order_ids: List[int],
        place_orders: List[PlaceOrderArgs],
        now_timestamp: int,
    ) -> List[Optional[int]]:
        """Cancel by client id (missing ids are ignored), then place each order."""
        for client_order_id in cancel_client_order_ids:
            self._cancel_by_client_id(owner, client_order_id)
        return [self.place_order(owner, args, now_timestamp) for args in place_orders]

    def prune_orders(self, owner: str, limit: int = DEFAULT_CANCEL_LIMIT) -> int:
        """Remove up to *limit* of an owner's orders. Authorisation is the caller's job."""
        return self.cancel_all_orders(owner, None, limit)

    # -- Matching engine ----------------------------------------------------

    def _match(self, taker: str, args: PlaceOrderArgs, now_timestamp: int) -> Tuple[int, int]:
        """Match against the opposite side. Returns (base_left, quote_left)."""
        opposite = self.side(args.side.opposite)
        base_left = args.max_base_lots
        quote_left = args.max_quote_lots_including_fees
        visited = 0

        for maker in list(opposite.iter_all()):
            if base_left <= 0 or visited >= args.limit:
                break
            visited += 1
            if maker.is_expired(now_timestamp):
                # Expired makers are dropped when reached
                opposite.remove(maker.id)
                continue
            if not opposite.crosses(maker.price_lots, args.price_lots):
                break

            match_base = min(base_left, maker.quantity)
            if args.side == Side.BID:
                # Bids are bounded by the quote they may spend
                match_base = min(match_base, quote_left // maker.price_lots)
            if match_base <= 0:
                break

            # --- Self-trade behaviour ---
            if maker.owner == taker:
                if args.self_trade_behavior == SelfTradeBehavior.ABORT_TRANSACTION:
                    raise OrderError("Order would self-trade")
                if args.self_trade_behavior == SelfTradeBehavior.CANCEL_PROVIDE:
                    opposite.remove(maker.id)
                    continue
                # DECREMENT_TAKE: both sides shrink, nothing changes hands
            else:
                self._fill_seq += 1
                self._fills.append(Fill(
                    seq=self._fill_seq,
                    maker_order_id=maker.id,
                    maker=maker.owner,
                    taker=taker,
                    taker_side=args.side,
                    price_lots=maker.price_lots,
                    base_lots=match_base,
                ))
                self.total_base_volume += match_base

            maker.quantity -= match_base
            base_left -= match_base
            quote_left -= match_base * maker.price_lots
            if maker.quantity == 0:
                opposite.remove(maker.id)

        return base_left, quote_left

    # -- Book management ----------------------------------------------------

    def _rest(self, order: Order) -> None:
        book_side = self.side(order.side)
        if len(book_side) >= self.max_depth:
            raise OrderError(f"Order book depth limit reached ({self.max_depth} orders)")
        if len(self.open_orders(order.owner)) >= self.max_orders_per_owner:
            raise OrderError(f"Max orders per owner reached ({self.max_orders_per_owner})")
        book_side.insert(order)

    def _cancel_by_client_id(self, owner: str, client_order_id: int) -> Optional[int]:
        matches = [o for o in self.open_orders(owner) if o.client_order_id == client_order_id]
        if not matches:
            return None
        for order in matches:
            self.side(order.side).remove(order.id)
        return sum(o.quantity for o in matches)

    def _validate(self, owner: str, args: PlaceOrderArgs, now_timestamp: int) -> None:
        """Validate order parameters."""
        if not owner:
            raise OrderError("Order must have an owner")
        if not 0 < args.price_lots <= I64_MAX:
            raise OrderError("Order price_lots must be positive")
        if not 0 < args.max_base_lots <= I64_MAX:
            raise OrderError("Order max_base_lots must be positive")
        if not 0 < args.max_quote_lots_including_fees <= I64_MAX:
            raise OrderError("Order max_quote_lots_including_fees must be positive")
        if not 0 <= args.client_order_id <= U64_MAX:
            raise OrderError("client_order_id out of range")
        if not 0 <= args.limit <= 255:
            raise OrderError("limit must fit in a byte")
        if args.expiry_timestamp < 0:
            raise OrderError("expiry_timestamp must be non-negative")
        if args.expiry_timestamp != 0 and args.expiry_timestamp <= now_timestamp:
            raise OrderError("Order has already expired")

    # -- Query --------------------------------------------------------------

    def get_order(self, order_id: int) -> Optional[Order]:
        return self.bids.get(order_id) or self.asks.get(order_id)

    def open_orders(self, owner: Optional[str] = None) -> List[Order]:
        """Resting orders in id order, optionally filtered by owner."""
        orders = list(self.bids.iter_all()) + list(self.asks.iter_all())
        if owner is not None:
            orders = [o for o in orders if o.owner == owner]
        return sorted(orders, key=lambda o: o.id)

    def get_bids(self, as_of_timestamp: int, depth: int = 10) -> List[Tuple[int, int]]:
        """Top N bid levels as (price_lots, base_lots)."""
        return _levels(self.bids.iter_valid(as_of_timestamp), depth)

    def get_asks(self, as_of_timestamp: int, depth: int = 10) -> List[Tuple[int, int]]:
        """Top N ask levels as (price_lots, base_lots)."""
        return _levels(self.asks.iter_valid(as_of_timestamp), depth)


def _levels(orders: Iterator[Order], depth: int) -> List[Tuple[int, int]]:
    levels: List[Tuple[int, int]] = []
    for order in orders:
        if levels and levels[-1][0] == order.price_lots:
            levels[-1] = (order.price_lots, levels[-1][1] + order.quantity)
        elif len(levels) < depth:
            levels.append((order.price_lots, order.quantity))
        else:
            break
    return levels
