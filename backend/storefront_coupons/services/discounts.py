from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import assert_never

from storefront_coupons.models.coupon import Coupon, DiscountType
from storefront_coupons.services import pricing
from storefront_coupons.services.eligibility import check_coupon_state, utc_now


@dataclass(frozen=True)
class FixedDiscount:
    amount: Decimal


@dataclass(frozen=True)
class PercentDiscount:
    percent: Decimal
    cap: Decimal | None = None


DiscountRule = FixedDiscount | PercentDiscount


def discount_rule_for(coupon: Coupon) -> DiscountRule:
    value = pricing.to_decimal(coupon.value)
    if coupon.discount_type == DiscountType.fixed:
        # A cap can never bind on a fixed amount, so it is not carried.
        return FixedDiscount(amount=value)
    if coupon.discount_type == DiscountType.percent:
        cap = pricing.to_decimal(coupon.max_discount_amount) if coupon.max_discount_amount is not None else None
        return PercentDiscount(percent=value, cap=cap)
    raise ValueError(f"Unknown discount type: {coupon.discount_type!r}")


def apply_discount_rule(rule: DiscountRule, subtotal: Decimal) -> Decimal:
    """Unrounded discount for `rule`, clamped to [0, subtotal]."""
    base = pricing.to_decimal(subtotal)
    if base <= 0:
        return pricing.ZERO
    if isinstance(rule, FixedDiscount):
        amount = min(rule.amount, base)
    elif isinstance(rule, PercentDiscount):
        amount = base * rule.percent / Decimal("100")
        if rule.cap is not None:
            amount = min(amount, rule.cap)
        amount = min(amount, base)
    else:
        assert_never(rule)
    return max(amount, pricing.ZERO)


def discount_amount(rule: DiscountRule, subtotal: Decimal) -> Decimal:
    """Discount rounded half-up to cents, never above the subtotal's whole cents."""
    rounded = pricing.quantize_money(apply_discount_rule(rule, subtotal))
    return min(rounded, pricing.whole_cents(max(pricing.to_decimal(subtotal), pricing.ZERO)))


def compute_discount(coupon: Coupon, subtotal: Decimal, *, now: datetime | None = None) -> Decimal:
    """Discount `coupon` grants on `subtotal`, rounded half-up to cents.

    Returns 0.00 rather than raising when the coupon cannot apply (inactive,
    expired, used up, or below its minimum purchase), so previews need no
    separate eligibility branch. Service scope is not checked here because the
    subtotal carries no line detail; `evaluate` covers it.
    """
    if check_coupon_state(coupon, subtotal=subtotal, now=now or utc_now()) is not None:
        return pricing.ZERO
    return discount_amount(discount_rule_for(coupon), subtotal)
