"""
TWAP Market State Manager

Central singleton standing in for the host ledger: it owns the clock, every
exchange market and every TWAP market record, and is the only place trading
operations reach the books from.

Responsibilities:
  - Keyed stores: market id → Market, market id → TWAPMarket
  - Tick lifecycle (begin_block / advance / finalize_block)
  - Oracle refresh before every book-changing operation (@updates_oracle)
  - Per-operation atomicity: oracle + book roll back together on failure
  - Transaction dispatch (process_transaction)
  - Deterministic state root, snapshot / revert

Security:
  - Orders reach a governed book only signed with the TWAP market's address
  - Read-only queries never consume an oracle tick
  - Arithmetic overflow is never converted into a failed result; it propagates
"""

from __future__ import annotations

import copy
import hashlib
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from ..constants import DEFAULT_CANCEL_LIMIT, MAX_BOOK_DEPTH, MAX_ORDERS_PER_OWNER
from ..exceptions import (
    ArithmeticOverflowError,
    MarketNotFoundError,
    MarketStateError,
    TWAPMarketException,
    TWAPMarketExistsError,
    UnauthorizedError,
)
from .clock import Clock, LedgerClock
from .market import Market, MarketConfig
from .oracle import TWAPOracle, UpdateOutcome
from .orderbook import Fill, PlaceOrderArgs, PlaceTakeOrderArgs, Side, parse_enum
from .transactions import TWAPOpType, TWAPTransaction
from .triggers import updates_oracle
from .twap_market import TWAPMarket, twap_market_address, validate_admission

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Transaction execution result
# ---------------------------------------------------------------------------

class TWAPExecResult:
    """Result of executing a single TWAP market transaction."""

    __slots__ = ("success", "data", "error", "logs")

    def __init__(
        self,
        success: bool = True,
        data: Optional[Dict[str, Any]] = None,
        error: str = "",
        logs: Optional[List[Dict[str, Any]]] = None,
    ):
        self.success = success
        self.data = data or {}
        self.error = error
        self.logs = logs or []

    def __repr__(self) -> str:
        if self.success:
            return f"TWAPExecResult(success=True, data={self.data})"
        return f"TWAPExecResult(success=False, error={self.error!r})"


# ---------------------------------------------------------------------------
# TWAP State Manager
# ---------------------------------------------------------------------------

class TWAPStateManager:
    """
    Singleton ledger for TWAP-governed markets.

    Usage:

        mgr = TWAPStateManager.get_instance()
        mgr.register_market(MarketConfig(...))
        mgr.create_twap_market(market_id, expected_value, max_change, payer)
        mgr.begin_block(tick, unix_timestamp)
        mgr.place_order(market_id, owner, args)
        twap = mgr.get_twap_market(market_id).twap_oracle.time_weighted_average()
    """

    instance: Optional[TWAPStateManager] = None

    def __init__(
        self,
        max_orders_per_owner: int = MAX_ORDERS_PER_OWNER,
        max_depth: int = MAX_BOOK_DEPTH,
    ) -> None:
        self.clock = LedgerClock()
        self.max_orders_per_owner = max_orders_per_owner
        self.max_depth = max_depth

        self._markets: Dict[str, Market] = {}
        self._twap_markets: Dict[str, TWAPMarket] = {}
        self._last_outcomes: Dict[str, UpdateOutcome] = {}
        self._last_attempts: Dict[str, UpdateOutcome] = {}

        # --- Block-level tracking ---
        self._block_txs: List[TWAPTransaction] = []
        self._block_results: List[TWAPExecResult] = []

        # --- State snapshot for revert ---
        self._snapshot: Optional[Dict[str, Any]] = None

        # --- Counters ---
        self._total_orders: int = 0
        self._total_observations: int = 0
        self._total_rejections: int = 0

    @classmethod
    def get_instance(cls) -> TWAPStateManager:
        """Get or create the singleton instance."""
        if cls.instance is None:
            cls.instance = cls()
            logger.info("TWAP state manager initialized")
        return cls.instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton (for testing)."""
        cls.instance = None

    # =====================================================================
    #  Block lifecycle
    # =====================================================================

    def begin_block(self, tick: int, unix_timestamp: int) -> Clock:
        """Move the ledger clock to (*tick*, *unix_timestamp*)."""
        now = self.clock.set(tick, unix_timestamp)
        self._block_txs = []
        self._block_results = []
        return now

    def advance(self, ticks: int = 1, seconds: int = 0) -> Clock:
        return self.clock.advance(ticks, seconds)

    def finalize_block(self) -> str:
        state_root = self.compute_state_root()
        logger.debug(
            "Tick %d finalized: %d txs, state_root=%s",
            self.clock.tick, len(self._block_txs), state_root[:16],
        )
        return state_root

    def revert_block(self) -> None:
        """Restore the state captured by the last take_snapshot()."""
        if self._snapshot is not None:
            self._restore_snapshot(self._snapshot)
            self._snapshot = None
            logger.warning("Ledger reverted to tick %d", self.clock.tick)

    # =====================================================================
    #  Market setup
    # =====================================================================

    def register_market(self, config: MarketConfig) -> Market:
        """Create an exchange market on the ledger."""
        if config.market_id in self._markets:
            raise MarketStateError(f"Market {config.market_id} already exists")
        market = Market(config, self.max_orders_per_owner, self.max_depth)
        self._markets[config.market_id] = market
        logger.info("Market %s registered", config.market_id)
        return market

    def create_twap_market(
        self,
        market_id: str,
        expected_value: int,
        max_change_per_update: int,
        payer: str,
    ) -> TWAPMarket:
        """
        Attach a TWAP market and its oracle to a registered market.

        Raises:
            MarketNotFoundError: market not registered
            TWAPMarketExistsError: market already governed
            ConfigurationError: admission check failed
        """
        market = self._get_market(market_id)
        if market_id in self._twap_markets:
            raise TWAPMarketExistsError(f"Market {market_id} already has a TWAP market")
        if not payer:
            raise UnauthorizedError("A payer is required to create a TWAP market")

        address = twap_market_address(market_id)
        validate_admission(market.config, market.seq_num, address)

        oracle = TWAPOracle.new(expected_value, max_change_per_update, self.clock.tick)
        twap_market = TWAPMarket(
            market_id=market_id,
            address=address,
            twap_oracle=oracle,
            close_market_rent_receiver=payer,
        )
        self._twap_markets[market_id] = twap_market
        logger.info(
            "TWAP market %s created for %s: expected_value=%d max_change=%d tick=%d",
            address[:16], market_id, expected_value, max_change_per_update, self.clock.tick,
        )
        return twap_market

    # =====================================================================
    #  Atomicity and oracle refresh
    # =====================================================================

    @contextmanager
    def atomic(self, market_id: str) -> Iterator[TWAPMarket]:
        """
        Run a block of work against one market all-or-nothing.

        The oracle and the order book are restored if the block raises.
        """
        twap_market = self._get_twap_market(market_id)
        market = self._get_market(market_id)
        oracle = twap_market.twap_oracle
        oracle_backup = oracle.to_dict()
        book_backup = copy.deepcopy(market.book)
        bookkeeping = (
            self._last_outcomes.get(market_id),
            self._last_attempts.get(market_id),
            self._total_orders,
            self._total_observations,
            self._total_rejections,
        )
        try:
            yield twap_market
        except BaseException:
            # Restore in place; callers may hold the oracle object
            oracle.restore(oracle_backup)
            market.book = book_backup
            (last_outcome, last_attempt, self._total_orders,
             self._total_observations, self._total_rejections) = bookkeeping
            _restore_key(self._last_outcomes, market_id, last_outcome)
            _restore_key(self._last_attempts, market_id, last_attempt)
            logger.debug("Market %s: operation failed, state rolled back", market_id)
            raise

    def refresh_oracle(self, market_id: str) -> UpdateOutcome:
        """Attempt one oracle observation from the market's current book."""
        twap_market = self._get_twap_market(market_id)
        market = self._get_market(market_id)
        outcome = twap_market.twap_oracle.update_from_book(self.clock.now(), market.book)
        self._last_attempts[market_id] = outcome
        if outcome.consumed_tick:
            self._last_outcomes[market_id] = outcome
            if outcome == UpdateOutcome.APPLIED:
                self._total_observations += 1
            else:
                self._total_rejections += 1
        return outcome

    # =====================================================================
    #  Trading operations (oracle-updating)
    # =====================================================================

    @updates_oracle
    def place_order(self, market_id: str, owner: str, args: PlaceOrderArgs) -> Optional[int]:
        order_id = self._markets[market_id].place_order(
            owner, args, self.clock.unix_timestamp, open_orders_admin=self._signer(market_id),
        )
        self._total_orders += 1
        return order_id

    @updates_oracle
    def edit_order(
        self,
        market_id: str,
        owner: str,
        client_order_id: int,
        expected_cancel_size: int,
        args: PlaceOrderArgs,
    ) -> Optional[int]:
        order_id = self._markets[market_id].edit_order(
            owner, client_order_id, expected_cancel_size, args, self.clock.unix_timestamp,
            open_orders_admin=self._signer(market_id),
        )
        self._total_orders += 1
        return order_id

    @updates_oracle
    def cancel_order_by_client_id(self, market_id: str, owner: str, client_order_id: int) -> int:
        return self._markets[market_id].cancel_order_by_client_id(
            owner, client_order_id, open_orders_admin=self._signer(market_id),
        )

    @updates_oracle
    def cancel_all_orders(
        self,
        market_id: str,
        owner: str,
        side: Optional[Side] = None,
        limit: int = DEFAULT_CANCEL_LIMIT,
    ) -> int:
        return self._markets[market_id].cancel_all_orders(
            owner, side, limit, open_orders_admin=self._signer(market_id),
        )

    @updates_oracle
    def place_take_order(self, market_id: str, owner: str, args: PlaceTakeOrderArgs) -> List[Fill]:
        fills = self._markets[market_id].place_take_order(
            owner, args, self.clock.unix_timestamp, open_orders_admin=self._signer(market_id),
        )
        self._total_orders += 1
        return fills

    @updates_oracle
    def cancel_and_place_orders(
        self,
        market_id: str,
        owner: str,
        cancel_client_order_ids: List[int],
        place_orders: List[PlaceOrderArgs],
    ) -> List[Optional[int]]:
        order_ids = self._markets[market_id].cancel_and_place_orders(
            owner, cancel_client_order_ids, place_orders, self.clock.unix_timestamp,
            open_orders_admin=self._signer(market_id),
        )
        self._total_orders += len(place_orders)
        return order_ids

    # =====================================================================
    #  Maintenance (no oracle update)
    # =====================================================================

    def prune_orders(self, market_id: str, owner: str, limit: int = DEFAULT_CANCEL_LIMIT) -> int:
        market = self._get_market(market_id)
        return market.prune_orders(
            owner, limit, self.clock.unix_timestamp, close_market_admin=self._signer(market_id),
        )

    def close_market(self, market_id: str, rent_receiver: str) -> TWAPMarket:
        """
        Close an expired market and destroy its TWAP record.

        Raises:
            UnauthorizedError: *rent_receiver* is not the record's payer
            MarketStateError: the market has not expired
        """
        twap_market = self._get_twap_market(market_id)
        if rent_receiver != twap_market.close_market_rent_receiver:
            raise UnauthorizedError(
                "rent_receiver does not match the TWAP market's close_market_rent_receiver"
            )
        market = self._get_market(market_id)
        market.close(self.clock.unix_timestamp, close_market_admin=twap_market.address)

        del self._twap_markets[market_id]
        del self._markets[market_id]
        self._last_outcomes.pop(market_id, None)
        self._last_attempts.pop(market_id, None)
        logger.info(
            "TWAP market %s closed, rent returned to %s", twap_market.address[:16], rent_receiver,
        )
        return twap_market

    # =====================================================================
    #  Read-only queries (never touch the oracle)
    # =====================================================================

    def get_best_bid_and_ask(self, market_id: str) -> List[int]:
        return self._get_market(market_id).get_best_bid_and_ask(self.clock.unix_timestamp)

    def get_twap(self, market_id: str) -> int:
        return self._get_twap_market(market_id).twap_oracle.time_weighted_average()

    def get_market(self, market_id: str) -> Optional[Market]:
        return self._markets.get(market_id)

    def get_twap_market(self, market_id: str) -> Optional[TWAPMarket]:
        return self._twap_markets.get(market_id)

    def get_oracle(self, market_id: str) -> Optional[TWAPOracle]:
        twap_market = self._twap_markets.get(market_id)
        return twap_market.twap_oracle if twap_market else None

    def last_outcome(self, market_id: str) -> Optional[UpdateOutcome]:
        return self._last_outcomes.get(market_id)

    @property
    def market_count(self) -> int:
        return len(self._markets)

    @property
    def twap_market_count(self) -> int:
        return len(self._twap_markets)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "markets": self.market_count,
            "twap_markets": self.twap_market_count,
            "total_orders": self._total_orders,
            "total_observations": self._total_observations,
            "total_rejections": self._total_rejections,
            "tick": self.clock.tick,
            "unix_timestamp": self.clock.unix_timestamp,
        }

    # -- Lookup helpers -----------------------------------------------------

    def _get_market(self, market_id: str) -> Market:
        market = self._markets.get(market_id)
        if market is None:
            raise MarketNotFoundError(f"Market {market_id} not found")
        return market

    def _get_twap_market(self, market_id: str) -> TWAPMarket:
        twap_market = self._twap_markets.get(market_id)
        if twap_market is None:
            raise MarketNotFoundError(f"No TWAP market for {market_id}")
        return twap_market

    def _signer(self, market_id: str) -> str:
        return self._get_twap_market(market_id).address

    # =====================================================================
    #  Transaction processing
    # =====================================================================

    def process_transaction(self, tx: TWAPTransaction) -> TWAPExecResult:
        """
        Execute a single transaction.

        Domain errors become failed results; ArithmeticOverflowError
        propagates to the caller.
        """
        try:
            tx.validate_basic()
        except ValueError as e:
            return TWAPExecResult(success=False, error=str(e))

        try:
            result = self._execute_op(tx)
        except ArithmeticOverflowError:
            raise
        except (TWAPMarketException, ValueError, KeyError, TypeError) as e:
            logger.error("TWAP op %s failed: %s", tx.op_type.name, e)
            result = TWAPExecResult(success=False, error=str(e))

        self._block_txs.append(tx)
        self._block_results.append(result)
        return result

    def _execute_op(self, tx: TWAPTransaction) -> TWAPExecResult:
        handlers = {
            TWAPOpType.CREATE_TWAP_MARKET: self._op_create_twap_market,
            TWAPOpType.PLACE_ORDER: self._op_place_order,
            TWAPOpType.EDIT_ORDER: self._op_edit_order,
            TWAPOpType.CANCEL_ORDER_BY_CLIENT_ID: self._op_cancel_order_by_client_id,
            TWAPOpType.CANCEL_ALL_ORDERS: self._op_cancel_all_orders,
            TWAPOpType.PRUNE_ORDERS: self._op_prune_orders,
            TWAPOpType.CLOSE_MARKET: self._op_close_market,
            TWAPOpType.PLACE_TAKE_ORDER: self._op_place_take_order,
            TWAPOpType.CANCEL_AND_PLACE_ORDERS: self._op_cancel_and_place_orders,
        }
        handler = handlers.get(tx.op_type)
        if handler is None:
            return TWAPExecResult(success=False, error=f"Unknown op type: {tx.op_type}")
        return handler(tx)

    def _oracle_logs(self, market_id: str) -> List[Dict[str, Any]]:
        oracle = self._twap_markets[market_id].twap_oracle
        outcome = self._last_attempts.get(market_id)
        return [{
            "event": "OracleUpdate",
            "market_id": market_id,
            "tick": self.clock.tick,
            "outcome": outcome.value if outcome else None,
            "last_observation": oracle.last_observation,
        }]

    # -- Operation handlers -------------------------------------------------

    def _op_create_twap_market(self, tx: TWAPTransaction) -> TWAPExecResult:
        p = tx.params
        twap_market = self.create_twap_market(
            p["market_id"], int(p["expected_value"]), int(p["max_change_per_update"]), tx.sender,
        )
        return TWAPExecResult(data={"address": twap_market.address})

    def _op_place_order(self, tx: TWAPTransaction) -> TWAPExecResult:
        p = tx.params
        order_id = self.place_order(p["market_id"], tx.sender, PlaceOrderArgs.from_dict(p["args"]))
        return TWAPExecResult(data={"order_id": order_id}, logs=self._oracle_logs(p["market_id"]))

    def _op_edit_order(self, tx: TWAPTransaction) -> TWAPExecResult:
        p = tx.params
        order_id = self.edit_order(
            p["market_id"], tx.sender, int(p["client_order_id"]),
            int(p["expected_cancel_size"]), PlaceOrderArgs.from_dict(p["args"]),
        )
        return TWAPExecResult(data={"order_id": order_id}, logs=self._oracle_logs(p["market_id"]))

    def _op_cancel_order_by_client_id(self, tx: TWAPTransaction) -> TWAPExecResult:
        p = tx.params
        cancelled = self.cancel_order_by_client_id(p["market_id"], tx.sender, int(p["client_order_id"]))
        return TWAPExecResult(data={"cancelled_base_lots": cancelled},
                              logs=self._oracle_logs(p["market_id"]))

    def _op_cancel_all_orders(self, tx: TWAPTransaction) -> TWAPExecResult:
        p = tx.params
        side = parse_enum(Side, p["side"]) if p.get("side") is not None else None
        count = self.cancel_all_orders(
            p["market_id"], tx.sender, side, int(p.get("limit", DEFAULT_CANCEL_LIMIT)),
        )
        return TWAPExecResult(data={"cancelled": count}, logs=self._oracle_logs(p["market_id"]))

    def _op_prune_orders(self, tx: TWAPTransaction) -> TWAPExecResult:
        p = tx.params
        pruned = self.prune_orders(p["market_id"], p["owner"], int(p.get("limit", DEFAULT_CANCEL_LIMIT)))
        return TWAPExecResult(data={"pruned": pruned})

    def _op_close_market(self, tx: TWAPTransaction) -> TWAPExecResult:
        p = tx.params
        closed = self.close_market(p["market_id"], p["rent_receiver"])
        return TWAPExecResult(data={"closed": closed.address})

    def _op_place_take_order(self, tx: TWAPTransaction) -> TWAPExecResult:
        p = tx.params
        fills = self.place_take_order(p["market_id"], tx.sender, PlaceTakeOrderArgs.from_dict(p["args"]))
        return TWAPExecResult(
            data={
                "fills": len(fills),
                "base_lots": sum(f.base_lots for f in fills),
                "quote_lots": sum(f.quote_lots for f in fills),
            },
            logs=self._oracle_logs(p["market_id"]),
        )

    def _op_cancel_and_place_orders(self, tx: TWAPTransaction) -> TWAPExecResult:
        p = tx.params
        order_ids = self.cancel_and_place_orders(
            p["market_id"], tx.sender,
            [int(c) for c in p["cancel_client_order_ids"]],
            [PlaceOrderArgs.from_dict(a) for a in p["place_orders"]],
        )
        return TWAPExecResult(data={"order_ids": order_ids}, logs=self._oracle_logs(p["market_id"]))

    # =====================================================================
    #  State root computation
    # =====================================================================

    def compute_state_root(self) -> str:
        """
        Deterministic hash of every TWAP record and market sequence number.

        Returns:
            64-char hex string (blake2b-256)
        """
        hasher = hashlib.blake2b(digest_size=32)

        # 1. TWAP records (sorted by market id)
        for market_id in sorted(self._twap_markets):
            twap_market = self._twap_markets[market_id]
            o = twap_market.twap_oracle
            record_hash = hashlib.blake2b(
                (f"{market_id}:{twap_market.address}:{o.expected_value}:{o.initial_tick}:"
                 f"{o.last_updated_tick}:{o.last_observed_tick}:{o.last_observation}:"
                 f"{o.observation_aggregator}:{o.max_change_per_update}:"
                 f"{twap_market.close_market_rent_receiver}").encode(),
                digest_size=16,
            ).digest()
            hasher.update(record_hash)

        # 2. Markets
        for market_id in sorted(self._markets):
            market = self._markets[market_id]
            market_hash = hashlib.blake2b(
                f"{market_id}:{market.seq_num}:{len(market.book.bids)}:{len(market.book.asks)}".encode(),
                digest_size=16,
            ).digest()
            hasher.update(market_hash)

        # 3. Clock
        hasher.update(self.clock.tick.to_bytes(8, "big"))

        return hasher.hexdigest()

    # =====================================================================
    #  Snapshot / restore
    # =====================================================================

    def take_snapshot(self) -> Dict[str, Any]:
        """Capture the full ledger for a later revert_block()."""
        snapshot = {
            "clock": self.clock.now(),
            "markets": copy.deepcopy(self._markets),
            "twap_markets": {k: TWAPMarket.from_dict(v.to_dict()) for k, v in self._twap_markets.items()},
            "last_outcomes": dict(self._last_outcomes),
            "last_attempts": dict(self._last_attempts),
            "total_orders": self._total_orders,
            "total_observations": self._total_observations,
            "total_rejections": self._total_rejections,
        }
        self._snapshot = snapshot
        return snapshot

    def _restore_snapshot(self, snapshot: Dict[str, Any]) -> None:
        clock = snapshot["clock"]
        self.clock = LedgerClock(clock.tick, clock.unix_timestamp)
        self._markets = snapshot["markets"]
        self._twap_markets = snapshot["twap_markets"]
        self._last_outcomes = snapshot["last_outcomes"]
        self._last_attempts = snapshot["last_attempts"]
        self._total_orders = snapshot["total_orders"]
        self._total_observations = snapshot["total_observations"]
        self._total_rejections = snapshot["total_rejections"]


def _restore_key(store: Dict[str, UpdateOutcome], key: str, value: Optional[UpdateOutcome]) -> None:
    if value is None:
        store.pop(key, None)
    else:
        store[key] = value
