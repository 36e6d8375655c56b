from __future__ import annotations

import math
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_coupons.core.dependencies import get_tenant_id
from storefront_coupons.db.session import get_session
from storefront_coupons.models.coupon import DiscountType
from storefront_coupons.schemas.admin_common import PaginationMeta
from storefront_coupons.schemas.coupon import (
    CouponCreate,
    CouponListResponse,
    CouponOrderRequest,
    CouponQuoteResponse,
    CouponRead,
    CouponRedeemRequest,
    CouponRedemptionRead,
    CouponStats,
    CouponUpdate,
    CouponValidateRequest,
)
from storefront_coupons.schemas.error import ErrorResponse, UsageRaceErrorResponse
from storefront_coupons.services import checkout as checkout_service
from storefront_coupons.services import coupons as coupons_service
from storefront_coupons.services import usage_ledger
from storefront_coupons.services.checkout import CouponQuote
from storefront_coupons.services.coupons import CouponStatsSnapshot, CouponStatusFilter
from storefront_coupons.services.eligibility import OrderContext, OrderLine

router = APIRouter(prefix="/coupons", tags=["coupons"])

_NOT_FOUND = {status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}}


def _stats_read(snapshot: CouponStatsSnapshot) -> CouponStats:
    return CouponStats(
        total_coupons=snapshot.total,
        active_coupons=snapshot.active,
        used_coupons=snapshot.used,
        unused_coupons=snapshot.unused,
        expired_coupons=snapshot.expired,
    )


def _order_context(payload: CouponOrderRequest, *, occurs_at: datetime | None = None) -> OrderContext:
    context = OrderContext.from_lines(
        [OrderLine(price=item.price, quantity=item.quantity, service_id=item.service_id) for item in payload.items],
        extra_service_ids=[sid.strip() for sid in payload.service_ids],
        occurs_at=occurs_at,
    )
    if payload.subtotal is not None:
        # An explicit subtotal wins; items then only contribute their services.
        return OrderContext(subtotal=payload.subtotal, service_ids=context.service_ids, occurs_at=context.occurs_at)
    return context


def _quote_read(quote: CouponQuote) -> CouponQuoteResponse:
    return CouponQuoteResponse(
        code=quote.code,
        eligible=quote.eligible,
        reason=quote.reason.value if quote.reason is not None else None,
        discount=quote.discount,
        total=quote.total,
    )


@router.get("", response_model=CouponListResponse)
async def list_coupons(
    session: AsyncSession = Depends(get_session),
    tenant_id: str = Depends(get_tenant_id),
    search: str | None = Query(default=None, max_length=100),
    discount_type: DiscountType | None = Query(default=None, alias="type"),
    status_filter: CouponStatusFilter | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> CouponListResponse:
    coupons, total = await coupons_service.list_coupons(
        session,
        tenant_id=tenant_id,
        search=search,
        discount_type=discount_type,
        status_filter=status_filter,
        page=page,
        limit=limit,
    )
    snapshot = await coupons_service.coupon_stats(session, tenant_id=tenant_id)
    return CouponListResponse(
        data=[CouponRead.model_validate(c) for c in coupons],
        stats=_stats_read(snapshot),
        pagination=PaginationMeta(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit) if total else 0),
    )


@router.get("/stats", response_model=CouponStats)
async def coupon_stats(
    session: AsyncSession = Depends(get_session),
    tenant_id: str = Depends(get_tenant_id),
) -> CouponStats:
    return _stats_read(await coupons_service.coupon_stats(session, tenant_id=tenant_id))


@router.get("/code/{code}", response_model=CouponRead, responses=_NOT_FOUND)
async def get_coupon_by_code(
    code: str,
    session: AsyncSession = Depends(get_session),
    tenant_id: str = Depends(get_tenant_id),
) -> CouponRead:
    coupon = await coupons_service.find_by_code(session, tenant_id=tenant_id, code=code)
    return CouponRead.model_validate(coupon)


@router.post("/validate", response_model=CouponQuoteResponse, responses=_NOT_FOUND)
async def validate_coupon(
    payload: CouponValidateRequest,
    session: AsyncSession = Depends(get_session),
    tenant_id: str = Depends(get_tenant_id),
) -> CouponQuoteResponse:
    quote = await checkout_service.quote_coupon(
        session, tenant_id=tenant_id, code=payload.code, context=_order_context(payload, occurs_at=payload.occurs_at)
    )
    return _quote_read(quote)


@router.post(
    "/redeem",
    response_model=CouponQuoteResponse,
    responses={**_NOT_FOUND, status.HTTP_409_CONFLICT: {"model": UsageRaceErrorResponse}},
)
async def redeem_coupon(
    payload: CouponRedeemRequest,
    session: AsyncSession = Depends(get_session),
    tenant_id: str = Depends(get_tenant_id),
) -> CouponQuoteResponse:
    quote = await checkout_service.redeem_coupon_for_order(
        session,
        tenant_id=tenant_id,
        code=payload.code,
        context=_order_context(payload),
        order_ref=payload.order_ref,
    )
    return _quote_read(quote)


@router.post("", response_model=CouponRead, status_code=status.HTTP_201_CREATED)
async def create_coupon(
    payload: CouponCreate,
    session: AsyncSession = Depends(get_session),
    tenant_id: str = Depends(get_tenant_id),
) -> CouponRead:
    coupon = await coupons_service.create_coupon(session, tenant_id=tenant_id, payload=payload)
    return CouponRead.model_validate(coupon)


@router.get("/{coupon_id}", response_model=CouponRead, responses=_NOT_FOUND)
async def get_coupon(
    coupon_id: UUID,
    session: AsyncSession = Depends(get_session),
    tenant_id: str = Depends(get_tenant_id),
) -> CouponRead:
    coupon = await coupons_service.get_coupon(session, tenant_id=tenant_id, coupon_id=coupon_id)
    return CouponRead.model_validate(coupon)


@router.put("/{coupon_id}", response_model=CouponRead, responses=_NOT_FOUND)
async def update_coupon(
    coupon_id: UUID,
    payload: CouponUpdate,
    session: AsyncSession = Depends(get_session),
    tenant_id: str = Depends(get_tenant_id),
) -> CouponRead:
    coupon = await coupons_service.update_coupon(session, tenant_id=tenant_id, coupon_id=coupon_id, patch=payload)
    return CouponRead.model_validate(coupon)


@router.delete("/{coupon_id}", status_code=status.HTTP_204_NO_CONTENT, responses=_NOT_FOUND)
async def delete_coupon(
    coupon_id: UUID,
    session: AsyncSession = Depends(get_session),
    tenant_id: str = Depends(get_tenant_id),
) -> Response:
    await coupons_service.delete_coupon(session, tenant_id=tenant_id, coupon_id=coupon_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{coupon_id}/redemptions", response_model=list[CouponRedemptionRead], responses=_NOT_FOUND)
async def list_redemptions(
    coupon_id: UUID,
    session: AsyncSession = Depends(get_session),
    tenant_id: str = Depends(get_tenant_id),
) -> list[CouponRedemptionRead]:
    rows = await usage_ledger.redemptions_for_coupon(session, tenant_id=tenant_id, coupon_id=coupon_id)
    return [CouponRedemptionRead.model_validate(r) for r in rows]
