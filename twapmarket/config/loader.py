"""
TWAP Market TOML Configuration Loader

Loads every section of config.toml with environment variable overrides
(dataclass + from_dict + apply_env per section).

Environment variable mapping:
    [logging] level                   → TWAP_LOG_LEVEL
    [ledger] start_tick               → TWAP_START_TICK
    [oracle] expected_value           → TWAP_EXPECTED_VALUE
    [oracle] max_change_per_update    → TWAP_MAX_CHANGE_PER_UPDATE
    [orderbook] max_orders_per_owner  → TWAP_MAX_ORDERS_PER_OWNER
    ...
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    import tomli  # type: ignore[no-redef]

from ..constants import (
    DEFAULT_CANCEL_LIMIT,
    MAX_BOOK_DEPTH,
    MAX_ORDERS_PER_OWNER,
    U64_MAX,
    parse_bool,
)

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes")


# ---------------------------------------------------------------------------
# Section dataclasses, one per [section] of config.example.toml
# ---------------------------------------------------------------------------

@dataclass
class LoggingConfig:
    """[logging] section."""
    level: str = "INFO"
    highlighting: bool = True
    file_output: bool = False
    log_file: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingConfig":
        return cls(
            level=str(data.get("level", "INFO")).upper(),
            highlighting=bool(parse_bool(data.get("highlighting", True))),
            file_output=bool(parse_bool(data.get("file_output", False))),
            log_file=data.get("log_file", ""),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("TWAP_LOG_LEVEL"):
            self.level = v.upper()
        if v := os.environ.get("TWAP_LOG_HIGHLIGHTING"):
            self.highlighting = _env_bool(v)
        if v := os.environ.get("TWAP_LOG_FILE_OUTPUT"):
            self.file_output = _env_bool(v)
        if v := os.environ.get("TWAP_LOG_FILE"):
            self.log_file = v


@dataclass
class LedgerConfig:
    """[ledger] section. Starting clock of a fresh ledger."""
    start_tick: int = 0
    start_timestamp: int = 0
    seconds_per_tick: int = 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerConfig":
        return cls(
            start_tick=int(data.get("start_tick", 0)),
            start_timestamp=int(data.get("start_timestamp", 0)),
            seconds_per_tick=int(data.get("seconds_per_tick", 1)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("TWAP_START_TICK"):
            self.start_tick = int(v)
        if v := os.environ.get("TWAP_START_TIMESTAMP"):
            self.start_timestamp = int(v)
        if v := os.environ.get("TWAP_SECONDS_PER_TICK"):
            self.seconds_per_tick = int(v)


@dataclass
class OracleConfig:
    """[oracle] section. Creation parameters for new TWAP markets."""
    expected_value: int = 550
    max_change_per_update: int = 10

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OracleConfig":
        return cls(
            expected_value=int(data.get("expected_value", 550)),
            max_change_per_update=int(data.get("max_change_per_update", 10)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("TWAP_EXPECTED_VALUE"):
            self.expected_value = int(v)
        if v := os.environ.get("TWAP_MAX_CHANGE_PER_UPDATE"):
            self.max_change_per_update = int(v)


@dataclass
class OrderBookConfig:
    """[orderbook] section. Reference exchange limits."""
    max_orders_per_owner: int = MAX_ORDERS_PER_OWNER
    max_depth: int = MAX_BOOK_DEPTH
    cancel_limit: int = DEFAULT_CANCEL_LIMIT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderBookConfig":
        return cls(
            max_orders_per_owner=int(data.get("max_orders_per_owner", MAX_ORDERS_PER_OWNER)),
            max_depth=int(data.get("max_depth", MAX_BOOK_DEPTH)),
            cancel_limit=int(data.get("cancel_limit", DEFAULT_CANCEL_LIMIT)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("TWAP_MAX_ORDERS_PER_OWNER"):
            self.max_orders_per_owner = int(v)
        if v := os.environ.get("TWAP_MAX_BOOK_DEPTH"):
            self.max_depth = int(v)
        if v := os.environ.get("TWAP_CANCEL_LIMIT"):
            self.cancel_limit = int(v)


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class AppConfig:
    """
    Unified configuration.

    Loads every section of config.toml and applies environment variable
    overrides. This is the single source of truth at runtime.
    """
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)
    orderbook: OrderBookConfig = field(default_factory=OrderBookConfig)

    # --- factories --------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        return cls(
            logging=LoggingConfig.from_dict(data.get("logging", {})),
            ledger=LedgerConfig.from_dict(data.get("ledger", {})),
            oracle=OracleConfig.from_dict(data.get("oracle", {})),
            orderbook=OrderBookConfig.from_dict(data.get("orderbook", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "AppConfig":
        """
        Load configuration from a TOML file, falling back to defaults
        (plus env overrides) when the file does not exist.
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning("Config file not found: %s, using defaults", config_path)
            cfg = cls()
            cfg.apply_env()
            return cfg

        with open(path, "rb") as f:
            raw = tomli.load(f)

        cfg = cls.from_dict(raw)
        cfg.apply_env()
        return cfg

    # --- env overrides ----------------------------------------------------

    def apply_env(self) -> None:
        self.logging.apply_env()
        self.ledger.apply_env()
        self.oracle.apply_env()
        self.orderbook.apply_env()

    # --- validation -------------------------------------------------------

    def validate(self) -> bool:
        """
        Raises:
            ValueError: on invalid config
        """
        if self.logging.level not in _LOG_LEVELS:
            raise ValueError(f"Invalid log level: {self.logging.level}")
        if not 0 <= self.ledger.start_tick <= U64_MAX:
            raise ValueError("start_tick must fit in u64")
        if self.ledger.seconds_per_tick < 0:
            raise ValueError("seconds_per_tick must be non-negative")
        if not 0 <= self.oracle.expected_value <= U64_MAX:
            raise ValueError("expected_value must fit in u64")
        if not 0 <= self.oracle.max_change_per_update <= U64_MAX:
            raise ValueError("max_change_per_update must fit in u64")
        if self.orderbook.max_orders_per_owner < 1:
            raise ValueError("max_orders_per_owner must be >= 1")
        if self.orderbook.max_depth < 1:
            raise ValueError("max_depth must be >= 1")
        if not 0 <= self.orderbook.cancel_limit <= 255:
            raise ValueError("cancel_limit must fit in a byte")
        return True

    # --- serialisation ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "logging": {
                "level": self.logging.level,
                "highlighting": self.logging.highlighting,
                "file_output": self.logging.file_output,
                "log_file": self.logging.log_file,
            },
            "ledger": {
                "start_tick": self.ledger.start_tick,
                "start_timestamp": self.ledger.start_timestamp,
                "seconds_per_tick": self.ledger.seconds_per_tick,
            },
            "oracle": {
                "expected_value": self.oracle.expected_value,
                "max_change_per_update": self.oracle.max_change_per_update,
            },
            "orderbook": {
                "max_orders_per_owner": self.orderbook.max_orders_per_owner,
                "max_depth": self.orderbook.max_depth,
                "cancel_limit": self.orderbook.cancel_limit,
            },
        }


# ---------------------------------------------------------------------------
# Convenience function
# ---------------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> AppConfig:
    """
    Load configuration.

    Resolution order:
        1. Explicit *path* argument
        2. TWAP_CONFIG env var
        3. ./config.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("TWAP_CONFIG", "config.toml")

    return AppConfig.from_file(path)
