"""
TWAP Market Exceptions

Custom exception classes for the TWAP market ledger.
"""


class TWAPMarketException(Exception):
    """Base exception for twapmarket."""
    pass


# ---------------------------------------------------------------------------
# Configuration errors: raised when a TWAP market is attached to an
# exchange market it cannot safely govern. Fatal to the create operation.
# ---------------------------------------------------------------------------

class ConfigurationError(TWAPMarketException):
    """Configuration error."""
    pass


class InvalidOpenOrdersAdminError(ConfigurationError):
    """The market's open_orders_admin is not the TWAP market."""

    def __init__(self, message: str = (
        "The `open_orders_admin` of the underlying market must be equal "
        "to the `TWAPMarket` address"
    )):
        super().__init__(message)


class InvalidCloseMarketAdminError(ConfigurationError):
    """The market's close_market_admin is not the TWAP market."""

    def __init__(self, message: str = (
        "The `close_market_admin` of the underlying market must be equal "
        "to the `TWAPMarket` address"
    )):
        super().__init__(message)


class InvalidConsumeEventsAdminError(ConfigurationError):
    def __init__(self, message: str = "Consume events admin must be None"):
        super().__init__(message)


class NoOraclesError(ConfigurationError):
    """Oracle-pegged trading is not allowed on a TWAP market."""

    def __init__(self, message: str = (
        "Oracle-pegged trades mess up the TWAP so oracles and "
        "oracle-pegged trades aren't allowed"
    )):
        super().__init__(message)


class InvalidSeqNumError(ConfigurationError):
    def __init__(self, message: str = "Seq num must be zero"):
        super().__init__(message)


class InvalidMakerFeeError(ConfigurationError):
    def __init__(self, message: str = "Maker fee must be zero"):
        super().__init__(message)


class InvalidTakerFeeError(ConfigurationError):
    def __init__(self, message: str = "Taker fee must be zero"):
        super().__init__(message)


# ---------------------------------------------------------------------------
# Arithmetic / query errors
# ---------------------------------------------------------------------------

class ArithmeticOverflowError(TWAPMarketException, OverflowError):
    """A fixed-width value left its range. Never wrapped silently."""
    pass


class DivisionByZeroError(TWAPMarketException, ZeroDivisionError):
    """TWAP queried before any observation advanced the tick."""
    pass


# ---------------------------------------------------------------------------
# Ledger errors
# ---------------------------------------------------------------------------

class MarketNotFoundError(TWAPMarketException):
    """No market (or TWAP market) registered under the given id."""
    pass


class TWAPMarketExistsError(TWAPMarketException):
    """A TWAP market already governs this exchange market."""
    pass


class UnauthorizedError(TWAPMarketException):
    """Signer or admin identity does not match."""
    pass


class MarketStateError(TWAPMarketException):
    """Operation not allowed in the market's current state."""
    pass


class ClockError(TWAPMarketException):
    """Ledger clock moved backwards."""
    pass


class OrderError(TWAPMarketException, ValueError):
    """Order rejected by the reference exchange."""
    pass
