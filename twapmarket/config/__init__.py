"""
TWAP Market Configuration

Loads config.toml at startup.
Environment variables override TOML values.
"""

from .loader import (
    AppConfig,
    LedgerConfig,
    LoggingConfig,
    OracleConfig,
    OrderBookConfig,
    load_config,
)

__all__ = [
    "AppConfig",
    "LedgerConfig",
    "LoggingConfig",
    "OracleConfig",
    "OrderBookConfig",
    "load_config",
]
