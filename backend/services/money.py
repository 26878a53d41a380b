"""
Numeric helpers for loosely-typed receipt records.

Extracted JSON can hold anything where a number is expected, so every read
goes through as_number(). Rounding works on the shortest decimal string of
the float and rounds half away from zero, which gives the same digits a
JavaScript client sees from Number.prototype.toFixed(2).
"""
import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional


def as_number(value: Any) -> Optional[float]:
    """Return value as a float if it is a real number, else None.

    Booleans are rejected even though bool subclasses int.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    if not math.isfinite(value):
        return None
    return value


def amount(value: Any) -> float:
    """as_number() with missing or non-numeric values counted as 0."""
    number = as_number(value)
    return number if number is not None else 0.0


def to_fixed(value: float, digits: int = 2) -> str:
    """Format value with a fixed number of decimals, rounding half away from zero."""
    if value == 0:
        value = 0.0   # drop the sign of -0.0
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if abs(value) >= 1e21:
        return repr(float(value))   # exponent notation, no fixed digits
    exponent = Decimal(1).scaleb(-digits)
    return str(Decimal(repr(float(value))).quantize(exponent, rounding=ROUND_HALF_UP))


def round2(value: float) -> float:
    """Round a monetary value to 2 decimals."""
    return float(to_fixed(value, 2)) + 0.0


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up, like JavaScript Math.round."""
    return math.floor(value + 0.5)
