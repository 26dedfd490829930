"""
TWAP Market Exchange Layer

Components:
  - Ledger clock (monotonic tick + unix timestamp)
  - Reference order book (price-time priority, integer lots, expiry)
  - TWAP oracle (rate-limited arithmetic-mean TWAP)
  - Oracle update trigger for book-changing operations
  - Market forwarder with admin identity checks
  - TWAP market record and admission checks
  - State manager (keyed stores, atomicity, tx dispatch, state root)
"""

from .clock import Clock, LedgerClock
from .orderbook import (
    BookSide,
    Fill,
    Order,
    OrderBook,
    PlaceOrderArgs,
    PlaceOrderType,
    PlaceTakeOrderArgs,
    SelfTradeBehavior,
    Side,
)
from .oracle import (
    SnapshotProvider,
    TWAPOracle,
    UpdateOutcome,
    spread_too_wide,
)
from .triggers import is_oracle_updating, updates_oracle
from .market import Market, MarketConfig
from .twap_market import TWAPMarket, twap_market_address, validate_admission
from .transactions import TWAPOpType, TWAPTransaction
from .state_manager import TWAPExecResult, TWAPStateManager

__all__ = [
    # Clock
    "Clock",
    "LedgerClock",
    # Order book
    "BookSide",
    "Fill",
    "Order",
    "OrderBook",
    "PlaceOrderArgs",
    "PlaceOrderType",
    "PlaceTakeOrderArgs",
    "SelfTradeBehavior",
    "Side",
    # Oracle
    "SnapshotProvider",
    "TWAPOracle",
    "UpdateOutcome",
    "spread_too_wide",
    # Triggers
    "is_oracle_updating",
    "updates_oracle",
    # Markets
    "Market",
    "MarketConfig",
    "TWAPMarket",
    "twap_market_address",
    "validate_admission",
    # Transactions
    "TWAPOpType",
    "TWAPTransaction",
    # State manager
    "TWAPExecResult",
    "TWAPStateManager",
]
