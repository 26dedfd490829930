"""
TWAP Market Transaction Types

Envelope for every operation the ledger applies to a TWAP market. Each
envelope is hashed canonically so two ledgers replaying the same sequence can
compare what they executed.

Transaction Types:
  - CREATE_TWAP_MARKET:         Attach a TWAP market + oracle to an exchange market
  - PLACE_ORDER:                Place an order (updates oracle)
  - EDIT_ORDER:                 Cancel by client id and re-place (updates oracle)
  - CANCEL_ORDER_BY_CLIENT_ID:  Cancel by client id (updates oracle)
  - CANCEL_ALL_ORDERS:          Cancel an owner's orders (updates oracle)
  - PRUNE_ORDERS:               Remove orders from an expired market
  - CLOSE_MARKET:               Destroy an expired market and its TWAP record
  - PLACE_TAKE_ORDER:           Immediate-only order (updates oracle)
  - CANCEL_AND_PLACE_ORDERS:    Batched cancel + place (updates oracle)
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Tuple


# ---------------------------------------------------------------------------
# Operation Types
# ---------------------------------------------------------------------------

class TWAPOpType(IntEnum):
    """All TWAP market operation types. Values are part of the tx hash."""
    CREATE_TWAP_MARKET = 1
    PLACE_ORDER = 2
    EDIT_ORDER = 3
    CANCEL_ORDER_BY_CLIENT_ID = 4
    CANCEL_ALL_ORDERS = 5
    PRUNE_ORDERS = 6
    CLOSE_MARKET = 7
    PLACE_TAKE_ORDER = 8
    CANCEL_AND_PLACE_ORDERS = 9


_REQUIRED_PARAMS: Dict[TWAPOpType, Tuple[str, ...]] = {
    TWAPOpType.CREATE_TWAP_MARKET: ("market_id", "expected_value", "max_change_per_update"),
    TWAPOpType.PLACE_ORDER: ("market_id", "args"),
    TWAPOpType.EDIT_ORDER: ("market_id", "client_order_id", "expected_cancel_size", "args"),
    TWAPOpType.CANCEL_ORDER_BY_CLIENT_ID: ("market_id", "client_order_id"),
    TWAPOpType.CANCEL_ALL_ORDERS: ("market_id",),
    TWAPOpType.PRUNE_ORDERS: ("market_id", "owner"),
    TWAPOpType.CLOSE_MARKET: ("market_id", "rent_receiver"),
    TWAPOpType.PLACE_TAKE_ORDER: ("market_id", "args"),
    TWAPOpType.CANCEL_AND_PLACE_ORDERS: ("market_id", "cancel_client_order_ids", "place_orders"),
}


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------

@dataclass
class TWAPTransaction:
    """
    Ledger-level envelope for a single TWAP market operation.

    ``sender`` is the order owner for trading ops, the payer for
    CREATE_TWAP_MARKET and the signer for maintenance ops.
    """
    op_type: TWAPOpType
    sender: str
    params: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0

    # -- Hashing ------------------------------------------------------------

    def tx_hash(self) -> str:
        return hashlib.blake2b(self._canonical_bytes(), digest_size=32).hexdigest()

    def _canonical_bytes(self) -> bytes:
        params_json = json.dumps(self.params, sort_keys=True, default=str).encode("utf-8")
        parts = [
            int(self.op_type).to_bytes(1, "big"),
            self.sender.encode("utf-8"),
            params_json,
            self.timestamp.to_bytes(8, "big", signed=True),
        ]
        return b"".join(parts)

    # -- Serialization ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "op_type": int(self.op_type),
            "sender": self.sender,
            "params": self.params,
            "timestamp": self.timestamp,
            "tx_hash": self.tx_hash(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TWAPTransaction:
        op_type = data["op_type"]
        return cls(
            op_type=TWAPOpType[op_type] if isinstance(op_type, str) else TWAPOpType(int(op_type)),
            sender=data["sender"],
            params=dict(data.get("params", {})),
            timestamp=int(data.get("timestamp", 0)),
        )

    # -- Validation ---------------------------------------------------------

    def validate_basic(self) -> bool:
        """
        Structural validation (no ledger access needed).

        Raises:
            ValueError: with specific reason
        """
        if not self.sender:
            raise ValueError("Missing sender address")
        if self.op_type not in _REQUIRED_PARAMS:
            raise ValueError(f"Unknown operation type: {self.op_type}")
        for key in _REQUIRED_PARAMS[self.op_type]:
            if key not in self.params:
                raise ValueError(f"{self.op_type.name} missing param: {key}")
        if self.op_type == TWAPOpType.CANCEL_AND_PLACE_ORDERS:
            if not isinstance(self.params["cancel_client_order_ids"], list):
                raise ValueError("cancel_client_order_ids must be a list")
            if not isinstance(self.params["place_orders"], list):
                raise ValueError("place_orders must be a list")
        return True

    def __repr__(self) -> str:
        return (f"TWAPTransaction(op={self.op_type.name}, sender={self.sender[:16]}, "
                f"hash={self.tx_hash()[:12]}...)")
