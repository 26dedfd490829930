"""
Oracle update trigger

Every ledger operation that can move top-of-book is wrapped with
@updates_oracle. The wrapper opens the market's atomic section, attempts one
oracle observation from the current book at the ledger clock, and only then
runs the operation itself. If the operation raises, the atomic section rolls
the observation back together with the trade.

Read-only queries are never wrapped, so they cannot consume a tick.
"""

from __future__ import annotations

import functools
from typing import Any, Callable, ContextManager, Protocol, TypeVar

from .oracle import UpdateOutcome

F = TypeVar("F", bound=Callable[..., Any])

_MARKER = "__updates_oracle__"


class OracleHost(Protocol):
    """What a decorated method's owner must provide."""

    def atomic(self, market_id: str) -> ContextManager[Any]: ...

    def refresh_oracle(self, market_id: str) -> UpdateOutcome: ...


def updates_oracle(method: F) -> F:
    """Refresh the market's oracle before running *method* atomically.

    The decorated method must take ``market_id`` as its first argument.
    """

    @functools.wraps(method)
    def wrapper(self: OracleHost, market_id: str, *args: Any, **kwargs: Any) -> Any:
        with self.atomic(market_id):
            self.refresh_oracle(market_id)
            return method(self, market_id, *args, **kwargs)

    setattr(wrapper, _MARKER, True)
    return wrapper  # type: ignore[return-value]


def is_oracle_updating(func: Callable[..., Any]) -> bool:
    return bool(getattr(func, _MARKER, False))
