from datetime import datetime, timedelta, timezone
from decimal import Decimal

from conftest import make_coupon
from storefront_coupons.services.eligibility import (
    Eligible,
    Ineligible,
    IneligibleReason,
    OrderContext,
    OrderLine,
    evaluate,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def _context(subtotal: str = "100", services: tuple[str, ...] = ()) -> OrderContext:
    return OrderContext(subtotal=Decimal(subtotal), service_ids=frozenset(services))


def test_inactive_wins_over_every_other_reason() -> None:
    coupon = make_coupon(
        active=False,
        expires_at=NOW - timedelta(days=1),
        usage_limit=1,
        usage_count=1,
        min_purchase_amount=Decimal("500"),
        applicable_services=["svc-9"],
    )
    assert evaluate(coupon, _context(), NOW) == Ineligible(IneligibleReason.inactive)


def test_expired_reported_before_usage_limit() -> None:
    coupon = make_coupon(expires_at=NOW - timedelta(seconds=1), usage_limit=1, usage_count=1)
    assert evaluate(coupon, _context(), NOW) == Ineligible(IneligibleReason.expired)


def test_expiry_boundary_is_exclusive() -> None:
    coupon = make_coupon(expires_at=NOW)
    assert evaluate(coupon, _context(), NOW) == Ineligible(IneligibleReason.expired)
    assert evaluate(coupon, _context(), NOW - timedelta(microseconds=1)) == Eligible()


def test_naive_expiry_is_treated_as_utc() -> None:
    coupon = make_coupon(expires_at=NOW.replace(tzinfo=None))
    assert evaluate(coupon, _context(), NOW).reason == IneligibleReason.expired


def test_usage_limit_boundary() -> None:
    assert evaluate(make_coupon(usage_limit=3, usage_count=3), _context(), NOW) == Ineligible(
        IneligibleReason.usage_limit_reached
    )
    assert evaluate(make_coupon(usage_limit=3, usage_count=2), _context(), NOW) == Eligible()


def test_below_min_purchase() -> None:
    coupon = make_coupon(min_purchase_amount=Decimal("50"))
    assert evaluate(coupon, _context("40"), NOW) == Ineligible(IneligibleReason.below_min_purchase)
    assert evaluate(coupon, _context("50"), NOW) == Eligible()


def test_service_scope_requires_overlap() -> None:
    coupon = make_coupon(applicable_services=["svc-1"])
    assert evaluate(coupon, _context(services=("svc-2",)), NOW) == Ineligible(IneligibleReason.service_not_applicable)
    assert evaluate(coupon, _context(services=("svc-1", "svc-2")), NOW) == Eligible()


def test_empty_service_scope_applies_to_any_order() -> None:
    assert evaluate(make_coupon(applicable_services=[]), _context(services=()), NOW).eligible is True


def test_evaluate_is_pure() -> None:
    coupon = make_coupon(usage_limit=2, usage_count=1)
    context = _context()
    first = evaluate(coupon, context, NOW)
    second = evaluate(coupon, context, NOW)
    assert first == second == Eligible()
    assert coupon.usage_count == 1


def test_order_timestamp_used_when_now_missing() -> None:
    coupon = make_coupon(expires_at=NOW)
    context = OrderContext(subtotal=Decimal("10"), occurs_at=NOW + timedelta(hours=1))
    assert evaluate(coupon, context) == Ineligible(IneligibleReason.expired)
    early = OrderContext(subtotal=Decimal("10"), occurs_at=NOW - timedelta(hours=1))
    assert evaluate(coupon, early) == Eligible()


def test_context_from_lines_sums_and_collects_services() -> None:
    context = OrderContext.from_lines(
        [
            OrderLine(price=Decimal("10.00"), quantity=2, service_id="svc-1"),
            OrderLine(price=Decimal("5.50"), service_id="svc-2"),
            OrderLine(price=Decimal("1.25"), quantity=4),
        ],
        extra_service_ids=["svc-3", ""],
    )
    assert context.subtotal == Decimal("30.50")
    assert context.service_ids == frozenset({"svc-1", "svc-2", "svc-3"})
