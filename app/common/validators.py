"""
Numeric validators shared by the tax calculator and the schemas
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

CENT = Decimal('0.01')
ZERO = Decimal('0.00')


def to_decimal(value, field: str = "value") -> Decimal:
    """
    Convert ``value`` to a finite Decimal.

    Floats go through ``str`` so 0.1 stays 0.1. Booleans, NaN, infinities and
    anything non-numeric raise ValueError naming ``field``.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValueError(f"{field} must be a number, got {value!r}")
    if not result.is_finite():
        raise ValueError(f"{field} must be a finite number, got {value!r}")
    return result


def money(value) -> Decimal:
    """Round to 2 decimals, half up (commercial rounding)"""
    return to_decimal(value, "amount").quantize(CENT, rounding=ROUND_HALF_UP)


def validate_percentage(value: Optional[Decimal], field: str = "percentage") -> Optional[Decimal]:
    if value is None:
        return value
    value = to_decimal(value, field)
    if value < 0 or value > 100:
        raise ValueError(f"{field} must be between 0 and 100")
    return value
