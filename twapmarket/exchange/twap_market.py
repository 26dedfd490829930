"""
TWAP market record

A TWAPMarket governs exactly one exchange market and owns exactly one oracle.
Its address is derived deterministically from the market id, and the exchange
market must have been created with that address as both open-orders admin and
close-market admin so every order flows through the oracle-updating wrapper.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Dict

from ..constants import TWAP_MARKET_SEED
from ..exceptions import (
    InvalidCloseMarketAdminError,
    InvalidConsumeEventsAdminError,
    InvalidMakerFeeError,
    InvalidOpenOrdersAdminError,
    InvalidSeqNumError,
    InvalidTakerFeeError,
    NoOraclesError,
)
from .market import MarketConfig
from .oracle import TWAPOracle


def twap_market_address(market_id: str) -> str:
    """Deterministic address of the TWAP market governing *market_id*."""
    h = hashlib.blake2b(TWAP_MARKET_SEED, digest_size=32)
    h.update(market_id.encode("utf-8"))
    return "twap" + h.hexdigest()[:40]


def validate_admission(config: MarketConfig, seq_num: int, twap_address: str) -> None:
    """
    One-time checks that *config* can be governed by *twap_address*.

    Checks run in a fixed order and the first failure is raised.

    Raises:
        ConfigurationError: the specific subclass for the failed check
    """
    if config.open_orders_admin != twap_address:
        raise InvalidOpenOrdersAdminError()
    if config.close_market_admin != twap_address:
        raise InvalidCloseMarketAdminError()
    if config.consume_events_admin is not None:
        raise InvalidConsumeEventsAdminError()
    if config.oracle_a is not None or config.oracle_b is not None:
        raise NoOraclesError()
    if seq_num != 0:
        raise InvalidSeqNumError()
    if config.maker_fee != 0:
        raise InvalidMakerFeeError()
    if config.taker_fee != 0:
        raise InvalidTakerFeeError()


@dataclass
class TWAPMarket:
    market_id: str
    address: str
    twap_oracle: TWAPOracle
    close_market_rent_receiver: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "market_id": self.market_id,
            "address": self.address,
            "twap_oracle": self.twap_oracle.to_dict(),
            "close_market_rent_receiver": self.close_market_rent_receiver,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TWAPMarket:
        return cls(
            market_id=data["market_id"],
            address=data["address"],
            twap_oracle=TWAPOracle.from_dict(data["twap_oracle"]),
            close_market_rent_receiver=data["close_market_rent_receiver"],
        )
