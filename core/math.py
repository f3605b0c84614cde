# PATH: core/math.py
"""
Math utilities for HEAVENBOT.

No float money: amounts are Decimal end to end and only converted to
integer lamports at the ledger boundary.
"""

from decimal import Decimal, InvalidOperation
from typing import Union

from core.constants import LAMPORTS_PER_SOL

Numeric = Union[str, int, float, Decimal]

ZERO = Decimal("0")
ONE = Decimal("1")


def safe_decimal(value: Union[Numeric, None], default: Decimal = ZERO) -> Decimal:
    """
    Safely convert value to Decimal.

    Floats go through str() so 0.1 stays 0.1.

    Args:
        value: Value to convert
        default: Default if conversion fails

    Returns:
        Decimal value
    """
    if value is None:
        return default

    try:
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default


def safe_div(numerator: Numeric, denominator: Numeric) -> Decimal:
    """Divide, returning zero when the denominator is zero."""
    den = safe_decimal(denominator)
    if den == 0:
        return ZERO
    return safe_decimal(numerator) / den


def lamports_to_sol(lamports: int) -> Decimal:
    return Decimal(lamports) / Decimal(LAMPORTS_PER_SOL)


def relative_change(entry: Numeric, current: Numeric) -> Decimal:
    """
    Fractional change from entry to current price.

    Example:
        >>> relative_change("1.0", "1.21")
        Decimal('0.21')
    """
    return safe_div(safe_decimal(current) - safe_decimal(entry), entry)


def non_negative(value: Decimal) -> Decimal:
    return value if value > 0 else ZERO
