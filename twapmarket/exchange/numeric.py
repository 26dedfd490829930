"""
Fixed-width integer arithmetic

Python integers never overflow, so the oracle emulates the unsigned 64/128-bit
and signed 64-bit domains its persisted fields live in:

  - saturating_*: clamp to the domain bounds instead of wrapping
  - checked_*: raise ArithmeticOverflowError when leaving the domain
  - widening_mul: u64 × u64 product, always representable in u128
  - average_ceil: ⌈(a + b) / 2⌉ without an intermediate sum overflow

Every helper rejects non-int inputs (bool included) with TypeError.
"""

from __future__ import annotations

from typing import Tuple

from ..constants import I64_MAX, I64_MIN, U64_MAX, U128_MAX
from ..exceptions import ArithmeticOverflowError

U64 = "u64"
U128 = "u128"
I64 = "i64"

_BOUNDS = {
    U64: (0, U64_MAX),
    U128: (0, U128_MAX),
    I64: (I64_MIN, I64_MAX),
}


def bounds(domain: str) -> Tuple[int, int]:
    try:
        return _BOUNDS[domain]
    except KeyError:
        raise ValueError(f"Unknown integer domain: {domain!r}") from None


def _require_int(value: int, name: str = "value") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    return value


def check(value: int, domain: str = U64, name: str = "value") -> int:
    """Return *value* if it fits *domain*, else raise ArithmeticOverflowError."""
    _require_int(value, name)
    lo, hi = bounds(domain)
    if value < lo or value > hi:
        raise ArithmeticOverflowError(f"{name}={value} outside {domain} range [{lo}, {hi}]")
    return value


def _saturate(value: int, domain: str) -> int:
    lo, hi = bounds(domain)
    return max(lo, min(hi, value))


# -- Saturating -------------------------------------------------------------

def saturating_add(a: int, b: int, domain: str = U64) -> int:
    return _saturate(_require_int(a, "a") + _require_int(b, "b"), domain)


def saturating_sub(a: int, b: int, domain: str = U64) -> int:
    return _saturate(_require_int(a, "a") - _require_int(b, "b"), domain)


def saturating_mul(a: int, b: int, domain: str = U64) -> int:
    return _saturate(_require_int(a, "a") * _require_int(b, "b"), domain)


def saturating_div(a: int, b: int, domain: str = U64) -> int:
    """
    Integer division truncating toward zero.

    Division by zero raises ZeroDivisionError; only I64_MIN / -1 actually
    saturates.
    """
    _require_int(a, "a")
    _require_int(b, "b")
    if b == 0:
        raise ZeroDivisionError("saturating_div by zero")
    q = abs(a) // abs(b)
    if (a < 0) != (b < 0):
        q = -q
    return _saturate(q, domain)


# -- Checked ----------------------------------------------------------------

def checked_add(a: int, b: int, domain: str = U128) -> int:
    return check(_require_int(a, "a") + _require_int(b, "b"), domain, "sum")


def checked_sub(a: int, b: int, domain: str = U64) -> int:
    return check(_require_int(a, "a") - _require_int(b, "b"), domain, "difference")


def widening_mul(a: int, b: int) -> int:
    """u64 × u64 → u128."""
    check(a, U64, "a")
    check(b, U64, "b")
    return check(a * b, U128, "product")


# -- Averages ---------------------------------------------------------------

def average_ceil(a: int, b: int) -> int:
    """⌈(a + b) / 2⌉, rounding toward +∞ on ties."""
    _require_int(a, "a")
    _require_int(b, "b")
    # (a | b) - ((a ^ b) >> 1) never forms a + b
    return (a | b) - ((a ^ b) >> 1)
