"""
Amount Normalization Module

Single place where heterogeneous monetary representations are turned into
Decimal values. Imported rows carry native numbers, locale-formatted strings
("₱12,345.60"), high-precision decimal strings or driver decimal objects;
every component that compares or persists amounts goes through here.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from typing import Any, Optional
import re

# Set global decimal context for financial precision
getcontext().prec = 28

TWO_PLACES = Decimal('0.01')
ZERO = Decimal('0.00')

# Currency symbols, thousands separators and whitespace stripped before parsing
_NOISE = re.compile(r"[₱$,\s]|PHP", re.IGNORECASE)


def normalize_amount(value: Any) -> Optional[Decimal]:
    """
    Convert an untrusted monetary value to Decimal.

    Args:
        value: int, float, Decimal, str or an object exposing to_decimal()

    Returns:
        Decimal value, or None when the value is missing or unparseable
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        return value if value.is_finite() else None

    if isinstance(value, int):
        return Decimal(value)

    if isinstance(value, float):
        # Go through str() so 0.1 becomes Decimal('0.1'), not its binary expansion
        result = Decimal(str(value))
        return result if result.is_finite() else None

    # BSON Decimal128 and similar driver types
    to_decimal = getattr(value, 'to_decimal', None)
    if callable(to_decimal):
        return normalize_amount(to_decimal())

    if isinstance(value, str):
        cleaned = _NOISE.sub('', value)
        if not cleaned:
            return None
        # Accounting negatives: (1,234.00)
        if cleaned.startswith('(') and cleaned.endswith(')'):
            cleaned = '-' + cleaned[1:-1]
        try:
            result = Decimal(cleaned)
        except InvalidOperation:
            return None
        return result if result.is_finite() else None

    return None


def quantize_amount(value: Any) -> Optional[Decimal]:
    """Normalize and round to two decimal places (ROUND_HALF_UP)"""
    amount = normalize_amount(value)
    if amount is None:
        return None
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_amount(value: Any) -> str:
    """
    Fixed two-decimal string used for identity comparisons.

    Missing or unparseable values format as "0.00".
    """
    amount = quantize_amount(value)
    if amount is None:
        amount = ZERO
    # Avoid "-0.00" so a negative zero and zero compare equal
    if amount == 0:
        amount = ZERO
    return f"{amount:.2f}"
