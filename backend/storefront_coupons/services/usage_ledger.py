"""Coupon usage accounting.

`reserve` is the only code path that changes `Coupon.usage_count`. The
increment is a single conditional UPDATE, so two orders racing for the last
remaining use are serialized by the database and at most one of them wins.
There is no release: cancelled orders keep their consumed use.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_coupons.core import metrics
from storefront_coupons.models.coupon import Coupon, CouponRedemption
from storefront_coupons.services import pricing
from storefront_coupons.services.errors import CouponNotFoundError

logger = logging.getLogger(__name__)


class RejectionReason(str, enum.Enum):
    usage_limit_reached = "USAGE_LIMIT_REACHED"
    order_already_redeemed = "ORDER_ALREADY_REDEEMED"


@dataclass(frozen=True)
class Reserved:
    coupon_id: UUID
    redemption_id: UUID
    order_ref: str | None
    replayed: bool = False
    reserved: bool = True


@dataclass(frozen=True)
class Rejected:
    coupon_id: UUID
    reason: RejectionReason = RejectionReason.usage_limit_reached
    reserved: bool = False


Reservation = Reserved | Rejected


async def find_redemption(session: AsyncSession, *, tenant_id: str, order_ref: str) -> CouponRedemption | None:
    return (
        await session.execute(
            select(CouponRedemption).where(CouponRedemption.tenant_id == tenant_id, CouponRedemption.order_ref == order_ref)
        )
    ).scalar_one_or_none()


async def _coupon_exists(session: AsyncSession, *, tenant_id: str, coupon_id: UUID) -> bool:
    found = (
        await session.execute(select(Coupon.id).where(Coupon.id == coupon_id, Coupon.tenant_id == tenant_id))
    ).scalar_one_or_none()
    return found is not None


def _replay(existing: CouponRedemption, *, coupon_id: UUID) -> Reservation:
    if existing.coupon_id != coupon_id:
        # One order, one coupon: a different coupon on the same order never gets a second use.
        return Rejected(coupon_id=coupon_id, reason=RejectionReason.order_already_redeemed)
    return Reserved(coupon_id=coupon_id, redemption_id=existing.id, order_ref=existing.order_ref, replayed=True)


async def reserve(
    session: AsyncSession,
    *,
    tenant_id: str,
    coupon_id: UUID,
    order_ref: str | None = None,
    discount_amount: Decimal = pricing.ZERO,
) -> Reservation:
    """Consume one use of `coupon_id` for a finalized order.

    The check against `usage_limit` and the increment happen in one UPDATE
    statement. `order_ref` makes a retried finalization of the same order
    idempotent: the second call returns the first redemption without
    consuming another use.

    Only a concurrent insert of the same `order_ref` rolls the session back;
    every other outcome leaves the caller's loaded objects usable.
    """
    ref = (order_ref or "").strip() or None
    if ref is not None:
        existing = await find_redemption(session, tenant_id=tenant_id, order_ref=ref)
        if existing is not None:
            return _replay(existing, coupon_id=coupon_id)

    result = await session.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon_id,
            Coupon.tenant_id == tenant_id,
            or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
        )
        .values(usage_count=Coupon.usage_count + 1)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        # Nothing was written; ending the transaction keeps loaded objects intact.
        await session.commit()
        if not await _coupon_exists(session, tenant_id=tenant_id, coupon_id=coupon_id):
            raise CouponNotFoundError(coupon_id=coupon_id)
        if ref is not None:
            existing = await find_redemption(session, tenant_id=tenant_id, order_ref=ref)
            if existing is not None:
                return _replay(existing, coupon_id=coupon_id)
        metrics.record_usage_rejected()
        logger.warning(
            "coupon_usage_rejected",
            extra={"coupon_id": str(coupon_id), "order_ref": ref, "tenant": tenant_id},
        )
        return Rejected(coupon_id=coupon_id)

    redemption = CouponRedemption(
        tenant_id=tenant_id,
        coupon_id=coupon_id,
        order_ref=ref,
        discount_amount=pricing.quantize_money(discount_amount),
    )
    session.add(redemption)
    try:
        await session.commit()
    except IntegrityError:
        # Same order finalized concurrently; the other transaction owns the use.
        await session.rollback()
        existing = await find_redemption(session, tenant_id=tenant_id, order_ref=ref) if ref else None
        if existing is None:
            raise
        return _replay(existing, coupon_id=coupon_id)

    metrics.record_usage_reserved()
    logger.info(
        "coupon_usage_reserved",
        extra={"coupon_id": str(coupon_id), "order_ref": ref, "redemption_id": str(redemption.id), "tenant": tenant_id},
    )
    return Reserved(coupon_id=coupon_id, redemption_id=redemption.id, order_ref=ref)


async def redemptions_for_coupon(session: AsyncSession, *, tenant_id: str, coupon_id: UUID) -> list[CouponRedemption]:
    if not await _coupon_exists(session, tenant_id=tenant_id, coupon_id=coupon_id):
        raise CouponNotFoundError(coupon_id=coupon_id)
    rows = await session.execute(
        select(CouponRedemption)
        .where(CouponRedemption.tenant_id == tenant_id, CouponRedemption.coupon_id == coupon_id)
        .order_by(CouponRedemption.redeemed_at.asc())
    )
    return list(rows.scalars().all())
