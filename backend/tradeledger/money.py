from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from .errors import ValidationError


MONEY_PLACES = Decimal("0.01")
QUANTITY_PLACES = Decimal("0.001")
COST_PLACES = Decimal("0.000001")

ZERO = Decimal("0")


def to_decimal(value: Any, field: str) -> Decimal:
    """
    Coerce caller input (int, str, float, Decimal) to Decimal.

    Floats go through str() so 0.1 stays 0.1. Booleans, NaN and infinities
    are rejected.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field} must be a number", field=field)
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return result


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def quantize_quantity(value: Decimal) -> Decimal:
    return Decimal(value).quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def quantize_cost(value: Decimal) -> Decimal:
    return Decimal(value).quantize(COST_PLACES, rounding=ROUND_HALF_UP)


def positive_quantity(value: Any, field: str = "quantity") -> Decimal:
    qty = quantize_quantity(to_decimal(value, field))
    if qty <= 0:
        raise ValidationError(f"{field} must be greater than 0", field=field)
    return qty


def non_negative(value: Any, field: str) -> Decimal:
    amount = to_decimal(value, field)
    if amount < 0:
        raise ValidationError(f"{field} must be 0 or greater", field=field)
    return amount


def decimal_str(value: Optional[Decimal]) -> Optional[str]:
    """JSON-safe rendering; trailing zeros kept so money reads as 12.50."""
    if value is None:
        return None
    return str(value)
