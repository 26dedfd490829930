"""
Exchange market (forwarder)

An OrderBook together with the configuration of the exchange market it
belongs to. The TWAP market never trades itself: it signs as the market's
open-orders admin and close-market admin, and this class checks those
identities before delegating to the book.

Admin rules:
  - open_orders_admin set   → every order operation must be signed by it
  - close_market_admin set  → prune / close must be signed by it
  - no new orders once time_expiry has passed (cancels still allowed)
  - prune / close only after time_expiry has passed
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..constants import DEFAULT_CANCEL_LIMIT, MAX_BOOK_DEPTH, MAX_ORDERS_PER_OWNER
from ..exceptions import MarketStateError, UnauthorizedError
from .orderbook import Fill, OrderBook, PlaceOrderArgs, PlaceTakeOrderArgs, Side

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class MarketConfig:
    """Creation parameters of an exchange market."""
    market_id: str
    name: str = ""
    open_orders_admin: Optional[str] = None
    close_market_admin: Optional[str] = None
    consume_events_admin: Optional[str] = None
    oracle_a: Optional[str] = None
    oracle_b: Optional[str] = None
    maker_fee: int = 0
    taker_fee: int = 0
    time_expiry: int = 0   # unix seconds; 0 = never expires

    def __post_init__(self):
        if not self.market_id:
            raise ValueError("market_id must not be empty")
        if self.time_expiry < 0:
            raise ValueError("time_expiry must be non-negative")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "market_id": self.market_id,
            "name": self.name,
            "open_orders_admin": self.open_orders_admin,
            "close_market_admin": self.close_market_admin,
            "consume_events_admin": self.consume_events_admin,
            "oracle_a": self.oracle_a,
            "oracle_b": self.oracle_b,
            "maker_fee": self.maker_fee,
            "taker_fee": self.taker_fee,
            "time_expiry": self.time_expiry,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> MarketConfig:
        return cls(
            market_id=data["market_id"],
            name=data.get("name", ""),
            open_orders_admin=data.get("open_orders_admin"),
            close_market_admin=data.get("close_market_admin"),
            consume_events_admin=data.get("consume_events_admin"),
            oracle_a=data.get("oracle_a"),
            oracle_b=data.get("oracle_b"),
            maker_fee=int(data.get("maker_fee", 0)),
            taker_fee=int(data.get("taker_fee", 0)),
            time_expiry=int(data.get("time_expiry", 0)),
        )


# ---------------------------------------------------------------------------
# Market
# ---------------------------------------------------------------------------

class Market:
    """Admin-checked facade over one order book."""

    def __init__(
        self,
        config: MarketConfig,
        max_orders_per_owner: int = MAX_ORDERS_PER_OWNER,
        max_depth: int = MAX_BOOK_DEPTH,
    ) -> None:
        self.config = config
        self.book = OrderBook(
            market_id=config.market_id,
            max_orders_per_owner=max_orders_per_owner,
            max_depth=max_depth,
        )
        self.closed = False

    @property
    def market_id(self) -> str:
        return self.config.market_id

    @property
    def seq_num(self) -> int:
        return self.book.seq_num

    def is_expired(self, now_timestamp: int) -> bool:
        expiry = self.config.time_expiry
        return expiry != 0 and now_timestamp >= expiry

    # -- Guards -------------------------------------------------------------

    def _require_open(self) -> None:
        if self.closed:
            raise MarketStateError(f"Market {self.market_id} is closed")

    def _require_not_expired(self, now_timestamp: int) -> None:
        if self.is_expired(now_timestamp):
            raise MarketStateError(f"Market {self.market_id} has expired")

    def _require_open_orders_admin(self, signer: Optional[str]) -> None:
        admin = self.config.open_orders_admin
        if admin is not None and signer != admin:
            raise UnauthorizedError("Signer is not the market's open orders admin")

    def _require_close_market_admin(self, signer: Optional[str]) -> None:
        admin = self.config.close_market_admin
        if admin is None or signer != admin:
            raise UnauthorizedError("Signer is not the market's close market admin")

    def _require_expired(self, now_timestamp: int) -> None:
        if not self.is_expired(now_timestamp):
            raise MarketStateError(
                f"Market {self.market_id} has not expired "
                f"(time_expiry={self.config.time_expiry}, now={now_timestamp})"
            )

    # -- Trading ------------------------------------------------------------

    def place_order(
        self,
        owner: str,
        args: PlaceOrderArgs,
        now_timestamp: int,
        open_orders_admin: Optional[str] = None,
    ) -> Optional[int]:
        self._require_open()
        self._require_not_expired(now_timestamp)
        self._require_open_orders_admin(open_orders_admin)
        return self.book.place_order(owner, args, now_timestamp)

    def edit_order(
        self,
        owner: str,
        client_order_id: int,
        expected_cancel_size: int,
        args: PlaceOrderArgs,
        now_timestamp: int,
        open_orders_admin: Optional[str] = None,
    ) -> Optional[int]:
        self._require_open()
        self._require_not_expired(now_timestamp)
        self._require_open_orders_admin(open_orders_admin)
        return self.book.edit_order(owner, client_order_id, expected_cancel_size, args, now_timestamp)

    def cancel_order_by_client_id(
        self,
        owner: str,
        client_order_id: int,
        open_orders_admin: Optional[str] = None,
    ) -> int:
        self._require_open()
        self._require_open_orders_admin(open_orders_admin)
        return self.book.cancel_order_by_client_id(owner, client_order_id)

    def cancel_all_orders(
        self,
        owner: str,
        side: Optional[Side] = None,
        limit: int = DEFAULT_CANCEL_LIMIT,
        open_orders_admin: Optional[str] = None,
    ) -> int:
        self._require_open()
        self._require_open_orders_admin(open_orders_admin)
        return self.book.cancel_all_orders(owner, side, limit)

    def cancel_and_place_orders(
        self,
        owner: str,
        cancel_client_order_ids: List[int],
        place_orders: List[PlaceOrderArgs],
        now_timestamp: int,
        open_orders_admin: Optional[str] = None,
    ) -> List[Optional[int]]:
        self._require_open()
        self._require_not_expired(now_timestamp)
        self._require_open_orders_admin(open_orders_admin)
        return self.book.cancel_and_place_orders(
            owner, cancel_client_order_ids, place_orders, now_timestamp,
        )

    def place_take_order(
        self,
        owner: str,
        args: PlaceTakeOrderArgs,
        now_timestamp: int,
        open_orders_admin: Optional[str] = None,
    ) -> List[Fill]:
        self._require_open()
        self._require_not_expired(now_timestamp)
        self._require_open_orders_admin(open_orders_admin)
        return self.book.place_take_order(owner, args, now_timestamp)

    # -- Maintenance --------------------------------------------------------

    def prune_orders(
        self,
        owner: str,
        limit: int,
        now_timestamp: int,
        close_market_admin: Optional[str] = None,
    ) -> int:
        """Remove an owner's resting orders from an expired market."""
        self._require_open()
        self._require_close_market_admin(close_market_admin)
        self._require_expired(now_timestamp)
        pruned = self.book.prune_orders(owner, limit)
        logger.info("Market %s: pruned %d orders of %s", self.market_id, pruned, owner)
        return pruned

    def close(self, now_timestamp: int, close_market_admin: Optional[str] = None) -> None:
        self._require_open()
        self._require_close_market_admin(close_market_admin)
        self._require_expired(now_timestamp)
        self.closed = True
        logger.info("Market %s closed at ts=%d", self.market_id, now_timestamp)

    # -- Query --------------------------------------------------------------

    def get_best_bid_and_ask(self, now_timestamp: int) -> List[int]:
        """[best_bid, best_ask] with 0 standing in for an empty side."""
        best_bid, best_ask = self.book.best_bid_and_ask(now_timestamp)
        return [best_bid or 0, best_ask or 0]
