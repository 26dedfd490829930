"""
TWAP Market Package

Manipulation-resistant time-weighted average price oracle over an order book.

Core imports are lazily loaded. For direct module access, import from
submodules:

    from twapmarket.exchange import TWAPOracle, TWAPStateManager
    from twapmarket.exceptions import ConfigurationError
"""

__version__ = "0.1.0"


def __getattr__(name):
    """Lazy module loading."""
    if name == 'TWAPOracle':
        from .exchange.oracle import TWAPOracle
        return TWAPOracle
    elif name == 'TWAPStateManager':
        from .exchange.state_manager import TWAPStateManager
        return TWAPStateManager
    elif name == 'load_config':
        from .config import load_config
        return load_config
    raise AttributeError(f"module 'twapmarket' has no attribute {name!r}")

__all__ = ['TWAPOracle', 'TWAPStateManager', 'load_config']
