"""
Money Handling Module

Decimal helpers for monetary amounts. Loans in this system are single-currency,
so amounts travel as raw Decimal quantized to cents. NEVER uses float for
monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Union
import re

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal('0.01')
ZERO = Decimal('0')
HUNDRED = Decimal('100')

Numeric = Union[Decimal, int, float, str]


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert a numeric value to Decimal without float artifacts

    Floats are routed through str() so 0.1 becomes Decimal('0.1') rather than
    its binary expansion. Strings go through decimal_from_string.

    Raises:
        ValueError: If value cannot be converted
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Cannot convert boolean {value!r} to Decimal")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        return decimal_from_string(value)
    raise ValueError(f"Cannot convert {type(value).__name__} to Decimal")


def round_money(value: Numeric) -> Decimal:
    """Round an amount to cents using ROUND_HALF_UP"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_rate(value: Decimal) -> Decimal:
    """Round a percentage to two decimal places"""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def percentage(part: Numeric, whole: Numeric) -> Decimal:
    """Share of part in whole as a percentage, 0 when whole is zero"""
    whole = to_decimal(whole)
    if whole == ZERO:
        return round_rate(ZERO)
    return round_rate(to_decimal(part) / whole * HUNDRED)


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Imported spreadsheets carry values such as "$1,250.50", "2" or "12,5".

    Args:
        value: String representation of number

    Returns:
        Decimal value

    Raises:
        ValueError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    # Remove currency symbols, percent signs and whitespace
    clean_value = re.sub(r'[^\d.,\-+]', '', value.strip())

    # Handle comma as decimal separator (European format)
    if ',' in clean_value and '.' in clean_value:
        # Both comma and dot - assume comma is thousands separator
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        parts = clean_value.split(',')
        if len(parts[1]) <= 2:  # Likely decimal separator
            clean_value = clean_value.replace(',', '.')
        else:  # Likely thousands separator
            clean_value = clean_value.replace(',', '')
    elif ',' in clean_value:
        clean_value = clean_value.replace(',', '')

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")
