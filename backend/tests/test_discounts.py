from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import make_coupon
from storefront_coupons.models.coupon import DiscountType
from storefront_coupons.services.discounts import (
    FixedDiscount,
    PercentDiscount,
    apply_discount_rule,
    compute_discount,
    discount_rule_for,
)


def test_percent_discount_is_capped_by_max_discount_amount() -> None:
    coupon = make_coupon(discount_type=DiscountType.percent, value=Decimal("10"), max_discount_amount=Decimal("5"))
    assert compute_discount(coupon, Decimal("100")) == Decimal("5.00")


def test_fixed_discount_cannot_exceed_subtotal() -> None:
    coupon = make_coupon(discount_type=DiscountType.fixed, value=Decimal("25"))
    assert compute_discount(coupon, Decimal("10")) == Decimal("10.00")


@pytest.mark.parametrize("subtotal", ["0", "0.01", "9.99", "25", "25.01", "1000"])
def test_fixed_discount_bounded_by_subtotal_and_value(subtotal: str) -> None:
    coupon = make_coupon(value=Decimal("25"))
    discount = compute_discount(coupon, Decimal(subtotal))
    assert discount <= Decimal(subtotal)
    assert discount <= Decimal("25")


def test_rounded_discount_never_exceeds_sub_cent_subtotal() -> None:
    fixed = make_coupon(value=Decimal("25"))
    assert compute_discount(fixed, Decimal("10.005")) == Decimal("10.00")

    full = make_coupon(discount_type=DiscountType.percent, value=Decimal("100"))
    assert compute_discount(full, Decimal("0.005")) == Decimal("0.00")


def test_percent_discount_rounds_half_up_to_cents() -> None:
    coupon = make_coupon(discount_type=DiscountType.percent, value=Decimal("15"))
    # 15% of 33.30 is 4.995
    assert compute_discount(coupon, Decimal("33.30")) == Decimal("5.00")
    assert compute_discount(coupon, Decimal("10")) == Decimal("1.50")


def test_percent_cap_below_product_is_ignored() -> None:
    coupon = make_coupon(discount_type=DiscountType.percent, value=Decimal("10"), max_discount_amount=Decimal("50"))
    assert compute_discount(coupon, Decimal("100")) == Decimal("10.00")


def test_hundred_percent_discount_equals_subtotal() -> None:
    coupon = make_coupon(discount_type=DiscountType.percent, value=Decimal("100"))
    assert compute_discount(coupon, Decimal("42.42")) == Decimal("42.42")


def test_discount_is_zero_when_coupon_cannot_apply() -> None:
    now = datetime(2026, 6, 1, tzinfo=timezone.utc)
    inactive = make_coupon(active=False)
    expired = make_coupon(expires_at=now - timedelta(days=1))
    used_up = make_coupon(usage_limit=1, usage_count=1)
    below_min = make_coupon(min_purchase_amount=Decimal("50"))

    for coupon in (inactive, expired, used_up):
        assert compute_discount(coupon, Decimal("100"), now=now) == Decimal("0.00")
    assert compute_discount(below_min, Decimal("40"), now=now) == Decimal("0.00")


def test_zero_subtotal_yields_zero_discount() -> None:
    assert apply_discount_rule(FixedDiscount(Decimal("5")), Decimal("0")) == Decimal("0.00")
    assert apply_discount_rule(PercentDiscount(Decimal("50")), Decimal("0")) == Decimal("0.00")


def test_discount_rule_follows_coupon_type() -> None:
    fixed = discount_rule_for(make_coupon(value=Decimal("7.50"), max_discount_amount=Decimal("1")))
    percent = discount_rule_for(
        make_coupon(discount_type=DiscountType.percent, value=Decimal("20"), max_discount_amount=Decimal("3"))
    )
    assert fixed == FixedDiscount(amount=Decimal("7.50"))
    assert percent == PercentDiscount(percent=Decimal("20"), cap=Decimal("3"))
