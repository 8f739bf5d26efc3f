"""
Utility functions for safe numeric work in analysis calculations.

Every division in the analyzers goes through these helpers so that a zero
denominator yields a defined value instead of raising.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Optional, Union

Number = Union[int, float, Decimal]

CENTS = Decimal("0.01")


def to_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """
    Safely convert value to Decimal.

    Floats are converted through str() to avoid binary artefacts.

    Args:
        value: Value to convert
        default: Default if value is None or not numeric

    Returns:
        Decimal value, or default
    """
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default


def sum_decimals(values: Iterable[Any]) -> Decimal:
    """Sum values as Decimal."""
    return sum((to_decimal(v) for v in values), Decimal("0"))


def safe_divide(numerator: Number, denominator: Number, default: float = 0.0) -> float:
    """
    Divide, returning default when the denominator is zero.

    Args:
        numerator: Dividend
        denominator: Divisor
        default: Value for a zero divisor

    Returns:
        Quotient as float
    """
    if denominator == 0:
        return default
    return float(numerator) / float(denominator)


def safe_percent(numerator: Number, denominator: Number) -> float:
    """numerator / denominator * 100, or 0 when the denominator is zero."""
    return safe_divide(numerator, denominator) * 100


def round_currency(value: Number) -> float:
    """Round a money amount to cents (half up) for output."""
    return float(to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP))


def round_to(value: Number, places: int = 2) -> float:
    """Round to a number of decimal places (half up)."""
    quantum = Decimal(1).scaleb(-places)
    return float(to_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def clamp_score(score: float, lower: float = 0.0, upper: float = 100.0) -> float:
    """Clamp a score into [lower, upper]."""
    return max(lower, min(upper, score))


def normalize_category(category: Optional[str]) -> str:
    """Case- and whitespace-insensitive category key."""
    return (category or "").strip().lower()
