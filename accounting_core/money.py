"""
Monetary Amount Helpers

Ledger amounts are plain Decimals rounded to cents. NEVER uses float for
monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Iterable, Union
import re

getcontext().prec = 28

CENT = Decimal('0.01')
ZERO = Decimal('0.00')

# Largest report cross-check difference still treated as balanced
BALANCE_TOLERANCE = Decimal('0.01')

CURRENCY_SYMBOLS = "$€£¥"

# Optional sign, digits with thousands separators, optional fraction
_AMOUNT_PATTERN = re.compile(r'[+-]?[0-9,]*\.?[0-9]*')
_DIGIT = re.compile(r'[0-9]')

AmountLike = Union[Decimal, int, str]


def to_amount(value: AmountLike) -> Decimal:
    """
    Convert a value to a Decimal rounded to cents

    Floats are rejected: binary floating point cannot represent most
    currency amounts exactly.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Monetary amounts must be Decimal, int or str, not {type(value).__name__}")
    if isinstance(value, str):
        value = decimal_from_string(value)
    elif not isinstance(value, Decimal):
        value = Decimal(value)
    if not value.is_finite():
        raise ValueError(f"Monetary amounts must be finite, not {value}")
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def sum_amounts(values: Iterable[AmountLike]) -> Decimal:
    """Sum amounts, rounding each to cents"""
    total = ZERO
    for value in values:
        total += to_amount(value)
    return total


def amounts_equal(left: Decimal, right: Decimal, tolerance: Decimal = BALANCE_TOLERANCE) -> bool:
    """Check two amounts agree within the tolerance (inclusive)"""
    return abs(left - right) <= tolerance


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Accepts an optional sign, one leading currency symbol, thousands
    separators and a decimal comma. Anything else (exponents, NaN,
    letters, stray symbols) is rejected rather than stripped.

    Args:
        value: String representation of number, e.g. "$1,250.00"

    Returns:
        Decimal value

    Raises:
        ValueError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    clean_value = value.strip()
    sign = ''
    if clean_value[:1] in ('-', '+'):
        sign, clean_value = clean_value[0], clean_value[1:].lstrip()
    if clean_value[:1] and clean_value[0] in CURRENCY_SYMBOLS:
        clean_value = clean_value[1:].lstrip()
    clean_value = sign + clean_value

    if not _AMOUNT_PATTERN.fullmatch(clean_value) or not _DIGIT.search(clean_value):
        raise ValueError(f"Cannot convert '{value}' to Decimal")

    if ',' in clean_value and '.' in clean_value:
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        parts = clean_value.split(',')
        if len(parts[1]) <= 2:
            clean_value = clean_value.replace(',', '.')
        else:
            clean_value = clean_value.replace(',', '')
    else:
        clean_value = clean_value.replace(',', '')

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")
