from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from storefront_coupons.core import metrics
from storefront_coupons.models.coupon import Coupon
from storefront_coupons.services import pricing
from storefront_coupons.services.coupons import find_by_code
from storefront_coupons.services.discounts import discount_amount, discount_rule_for
from storefront_coupons.services.eligibility import Ineligible, IneligibleReason, OrderContext, evaluate, utc_now
from storefront_coupons.services.errors import OrderAlreadyRedeemedError, UsageLimitRaceRejected
from storefront_coupons.services.usage_ledger import Rejected, RejectionReason, find_redemption, reserve

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CouponQuote:
    code: str
    eligible: bool
    reason: IneligibleReason | None
    discount: Decimal | None
    total: Decimal
    coupon: Coupon | None = None


def _price(coupon: Coupon, context: OrderContext, now: datetime | None) -> CouponQuote:
    subtotal = pricing.quantize_money(context.subtotal)
    result = evaluate(coupon, context, now)
    if isinstance(result, Ineligible):
        return CouponQuote(
            code=coupon.code,
            eligible=False,
            reason=result.reason,
            discount=None,
            total=subtotal,
            coupon=coupon,
        )
    discount = discount_amount(discount_rule_for(coupon), context.subtotal)
    return CouponQuote(
        code=coupon.code,
        eligible=True,
        reason=None,
        discount=discount,
        total=pricing.total_after_discount(subtotal, discount),
        coupon=coupon,
    )


async def quote_coupon(
    session: AsyncSession,
    *,
    tenant_id: str,
    code: str,
    context: OrderContext,
    now: datetime | None = None,
) -> CouponQuote:
    """Preview what `code` does to the order; never consumes usage."""
    coupon = await find_by_code(session, tenant_id=tenant_id, code=code)
    quote = _price(coupon, context, now)
    metrics.record_coupon_quoted(quote.eligible)
    return quote


async def redeem_coupon_for_order(
    session: AsyncSession,
    *,
    tenant_id: str,
    code: str,
    context: OrderContext,
    order_ref: str,
    now: datetime | None = None,
) -> CouponQuote:
    """Apply `code` to a finalized order and consume one use.

    Eligibility is decided again against the stored coupon, since the preview
    the customer saw may be stale. Expiry is judged at `now` (the server clock
    by default), never at the order's own `occurs_at`. Losing the race for the
    last use raises `UsageLimitRaceRejected` instead of quietly dropping the
    discount.
    """
    moment = now or utc_now()
    ref = order_ref.strip()
    coupon = await find_by_code(session, tenant_id=tenant_id, code=code)
    previous = await find_redemption(session, tenant_id=tenant_id, order_ref=ref)
    if previous is not None:
        if previous.coupon_id != coupon.id:
            raise OrderAlreadyRedeemedError(order_ref=ref)
        # Retried finalization of an order that already holds this coupon.
        subtotal = pricing.quantize_money(context.subtotal)
        discount = pricing.quantize_money(previous.discount_amount)
        return CouponQuote(
            code=coupon.code,
            eligible=True,
            reason=None,
            discount=discount,
            total=pricing.total_after_discount(subtotal, discount),
            coupon=coupon,
        )

    quote = _price(coupon, context, moment)
    if not quote.eligible:
        logger.info(
            "coupon_redeem_ineligible",
            extra={"code": quote.code, "order_ref": ref, "reason": quote.reason.value, "tenant": tenant_id},
        )
        return quote

    outcome = await reserve(
        session,
        tenant_id=tenant_id,
        coupon_id=coupon.id,
        order_ref=ref,
        discount_amount=quote.discount or pricing.ZERO,
    )
    if isinstance(outcome, Rejected):
        if outcome.reason == RejectionReason.order_already_redeemed:
            raise OrderAlreadyRedeemedError(order_ref=ref)
        logger.warning(
            "coupon_redeem_race_lost",
            extra={"code": quote.code, "order_ref": ref, "tenant": tenant_id},
        )
        raise UsageLimitRaceRejected(code=quote.code, total_without_discount=pricing.quantize_money(context.subtotal))

    await session.refresh(coupon)
    return quote
