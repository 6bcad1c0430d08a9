"""
Fixed-precision numeric helpers.

Every price, indicator and percentage in the engine is a ``Decimal``.
Floats only exist inside the indicator library; they are converted once,
here, at the boundary.

Usage:
    from eodsignals.core.numeric import to_decimal, quantize, pct_diff

    close = to_decimal(101.456)        # Decimal('101.456')
    quantize(close)                     # Decimal('101.46')
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

TWO_PLACES = Decimal("0.01")
STATE_PLACES = Decimal("0.00000001")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

Numeric = Decimal | float | int | str | None


def to_decimal(value: Any) -> Decimal | None:
    """
    Convert a value to Decimal.

    Floats go through ``repr`` so 0.1 becomes Decimal('0.1') and not the
    binary expansion. NaN, infinities and unparseable input return None.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        # float() first: numpy scalars subclass float but repr differently
        return Decimal(repr(float(value)))
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    return result if result.is_finite() else None


def quantize(value: Numeric, places: Decimal = TWO_PLACES) -> Decimal | None:
    """Round half-up to ``places`` (two decimals by default)."""
    dec = to_decimal(value)
    if dec is None:
        return None
    return dec.quantize(places, rounding=ROUND_HALF_UP)


def round_int(value: Numeric) -> int | None:
    """Round half-up to the nearest integer."""
    dec = to_decimal(value)
    if dec is None:
        return None
    return int(dec.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_float(value: Numeric) -> float | None:
    """Convert for the float-based indicator library."""
    dec = to_decimal(value)
    return float(dec) if dec is not None else None


def pct_diff(a: Numeric, b: Numeric) -> Decimal | None:
    """(a - b) / b * 100, or None when either side is missing or b is zero."""
    aa = to_decimal(a)
    bb = to_decimal(b)
    if aa is None or bb is None or bb == 0:
        return None
    return (aa - bb) / bb * HUNDRED


def mean(values: list[Decimal]) -> Decimal | None:
    """Arithmetic mean of non-empty Decimal list, else None."""
    if not values:
        return None
    return sum(values, ZERO) / Decimal(len(values))


__all__ = [
    "HUNDRED",
    "STATE_PLACES",
    "TWO_PLACES",
    "ZERO",
    "mean",
    "pct_diff",
    "quantize",
    "round_int",
    "to_decimal",
    "to_float",
]
