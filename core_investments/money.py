"""
Money Arithmetic Module

Decimal helpers for every monetary figure the engine produces. Amounts are
plain Decimal values with 2-digit precision; they are rounded at the point of
computation so stored figures are exactly reproducible. NEVER uses float.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Any, Union
import re

from .errors import ValidationError

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal('0.01')
ZERO = Decimal('0')
HUNDRED = Decimal('100')

Number = Union[Decimal, int, float, str]

_DECORATION = re.compile(r'^[\s$€£₹¥]+|[\s%]+$')


def to_decimal(value: Any, field: str = "value") -> Decimal:
    """
    Coerce a number to Decimal without going through binary floating point

    Args:
        value: Decimal, int, float or numeric string
        field: Field name used in error messages

    Returns:
        Decimal value

    Raises:
        ValidationError: If the value is missing, not numeric, NaN or infinite
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number, got {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        return decimal_from_string(value)
    else:
        raise ValidationError(f"{field} must be a number, got {type(value).__name__}")

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number, got {value!r}")
    return result


def round_money(value: Number) -> Decimal:
    """Round to cents using ROUND_HALF_UP"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percentage_of(amount: Decimal, percentage: Decimal) -> Decimal:
    """Unrounded `percentage`% of `amount`"""
    return amount * percentage / HUNDRED


def within_tolerance(left: Decimal, right: Decimal, tolerance: Decimal = CENT) -> bool:
    """Check that two amounts differ by no more than `tolerance`"""
    return abs(to_decimal(left) - to_decimal(right)) <= tolerance


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number, e.g. "1,25,000.50" or "2.5%"

    Returns:
        Decimal value

    Raises:
        ValidationError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValidationError("Value must be a non-empty string")

    # Leading currency symbol and trailing percent sign only
    clean_value = _DECORATION.sub('', value)

    # Both comma and dot: comma is a thousands separator
    if ',' in clean_value and '.' in clean_value:
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value:
        parts = clean_value.split(',')
        if len(parts) == 2 and len(parts[1]) <= 2:
            clean_value = clean_value.replace(',', '.')
        else:
            clean_value = clean_value.replace(',', '')

    try:
        result = Decimal(clean_value)
    except InvalidOperation:
        raise ValidationError(f"Cannot convert '{value}' to Decimal") from None

    if not result.is_finite():
        raise ValidationError(f"Cannot convert '{value}' to Decimal")
    return result


def format_money(amount: Decimal) -> str:
    """Format for display"""
    return f"{round_money(amount):,.2f}"
