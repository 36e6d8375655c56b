from __future__ import annotations

from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP


MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() first so floats keep their printed value instead of their binary expansion.
    return Decimal(str(value))


def quantize_money(value: Decimal | int | float | str) -> Decimal:
    return to_decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def whole_cents(value: Decimal | int | float | str) -> Decimal:
    """Largest cent amount not above `value`; bounds a rounded discount by a sub-cent subtotal."""
    return to_decimal(value).quantize(MONEY_QUANT, rounding=ROUND_DOWN)


def total_after_discount(subtotal: Decimal, discount: Decimal) -> Decimal:
    total = to_decimal(subtotal) - to_decimal(discount)
    if total < 0:
        total = ZERO
    return quantize_money(total)
