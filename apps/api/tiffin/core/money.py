from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from tiffin.core.config import get_settings
from tiffin.core.errors import ValidationError


ZERO = Decimal("0")


def minor_unit() -> Decimal:
    return Decimal(1).scaleb(-get_settings().currency_decimal_places)


def to_money(value: Decimal | int | str) -> Decimal:
    """Round half-up to the currency's minor unit."""
    return Decimal(value).quantize(minor_unit(), rounding=ROUND_HALF_UP)


def require_money(value: Decimal, field: str) -> Decimal:
    """Reject caller amounts finer than the minor unit instead of rounding them."""
    amount = Decimal(value)
    if amount != to_money(amount):
        raise ValidationError(f"{field} has more precision than the currency allows")
    return to_money(amount)
