"""
storefront/utils/money.py
-------------------------
Fixed-point helpers for rupee amounts.

All money is carried as Decimal and quantized to paise at the points
where a value is stored or shown. Floats never enter the arithmetic.
"""
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP


Q = Decimal('0.01')     # paise
ZERO = Decimal('0')


def to_decimal(value, default=ZERO) -> Decimal:
    """
    Coerce form/JSON input to Decimal.
    None, blanks, NaN/Infinity and unparsable strings become `default`.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return default
    if not result.is_finite():
        return default
    return result


def non_negative(value) -> Decimal:
    """to_decimal() clamped at zero."""
    return max(ZERO, to_decimal(value))


def quantize(value) -> Decimal:
    """Round half-up to 2 decimal places."""
    return to_decimal(value).quantize(Q, rounding=ROUND_HALF_UP)


def round_down_rupees(value) -> Decimal:
    """Drop the paise entirely (payments are collected in whole rupees)."""
    return to_decimal(value).quantize(Decimal('1'), rounding=ROUND_DOWN)


def money_str(value) -> str:
    """Serialise for JSON. Strings survive round trips without float drift."""
    return str(quantize(value))
