"""Coupon eligibility rules.

Everything here is a pure function of its arguments: no session, no clock
reads unless the caller omits `now`, no mutation of the coupon. Storefront
previews call `evaluate` on every keystroke, so it must never consume usage.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from storefront_coupons.models.coupon import Coupon
from storefront_coupons.services import pricing


class IneligibleReason(str, enum.Enum):
    inactive = "INACTIVE"
    expired = "EXPIRED"
    usage_limit_reached = "USAGE_LIMIT_REACHED"
    below_min_purchase = "BELOW_MIN_PURCHASE"
    service_not_applicable = "SERVICE_NOT_APPLICABLE"


@dataclass(frozen=True)
class OrderLine:
    price: Decimal
    quantity: int = 1
    service_id: str | None = None


@dataclass(frozen=True)
class OrderContext:
    subtotal: Decimal
    service_ids: frozenset[str] = field(default_factory=frozenset)
    occurs_at: datetime | None = None

    @classmethod
    def from_lines(
        cls,
        lines: Iterable[OrderLine],
        *,
        extra_service_ids: Iterable[str] = (),
        occurs_at: datetime | None = None,
    ) -> "OrderContext":
        subtotal = pricing.ZERO
        service_ids = {sid for sid in extra_service_ids if sid}
        for line in lines:
            subtotal += pricing.to_decimal(line.price) * int(line.quantity or 0)
            if line.service_id:
                service_ids.add(line.service_id)
        return cls(subtotal=subtotal, service_ids=frozenset(service_ids), occurs_at=occurs_at)


@dataclass(frozen=True)
class Eligible:
    eligible: bool = field(default=True, init=False)
    reason: None = field(default=None, init=False)


@dataclass(frozen=True)
class Ineligible:
    reason: IneligibleReason
    eligible: bool = field(default=False, init=False)


Eligibility = Eligible | Ineligible


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_expired(coupon: Coupon, now: datetime) -> bool:
    if coupon.expires_at is None:
        return False
    return as_utc(now) >= as_utc(coupon.expires_at)


def usage_exhausted(coupon: Coupon) -> bool:
    if coupon.usage_limit is None:
        return False
    return int(coupon.usage_count or 0) >= int(coupon.usage_limit)


def check_coupon_state(coupon: Coupon, *, subtotal: Decimal, now: datetime) -> IneligibleReason | None:
    """Checks that depend only on the coupon and the order amount, in evaluation order."""
    if not coupon.active:
        return IneligibleReason.inactive
    if is_expired(coupon, now):
        return IneligibleReason.expired
    if usage_exhausted(coupon):
        return IneligibleReason.usage_limit_reached
    if coupon.min_purchase_amount is not None:
        if pricing.to_decimal(subtotal) < pricing.to_decimal(coupon.min_purchase_amount):
            return IneligibleReason.below_min_purchase
    return None


def _covers_services(coupon: Coupon, service_ids: Iterable[str]) -> bool:
    scope = set(coupon.applicable_services or [])
    if not scope:
        return True
    return not scope.isdisjoint(service_ids)


def evaluate(coupon: Coupon, context: OrderContext, now: datetime | None = None) -> Eligibility:
    """Decide whether `coupon` applies to the order described by `context`.

    `now` falls back to the order timestamp, then to the current time. The first
    failing check wins, so an inactive coupon that is also expired reports
    INACTIVE.
    """
    moment = now or context.occurs_at or utc_now()
    reason = check_coupon_state(coupon, subtotal=context.subtotal, now=moment)
    if reason is not None:
        return Ineligible(reason)
    if not _covers_services(coupon, context.service_ids):
        return Ineligible(IneligibleReason.service_not_applicable)
    return Eligible()
