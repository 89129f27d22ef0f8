"""Shared conversions between Decimal money amounts and pandas floats."""

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def decimal_to_float(value: Decimal | float | int) -> float:
    """Convert a money amount to float for pandas columns."""
    return float(value)


def float_to_decimal(value: float | int) -> Decimal:
    """Convert a pandas float back to a Decimal rounded to cents.

    Going through ``str`` avoids binary float artefacts
    (``Decimal(0.1)`` vs ``Decimal("0.1")``).

    Raises:
        TypeError: If value is not numeric

    Example:
        >>> float_to_decimal(123.456)
        Decimal('123.46')
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"Expected numeric type, got {type(value)}")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
