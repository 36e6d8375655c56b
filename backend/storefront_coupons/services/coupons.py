from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from sqlalchemy import Select, and_, case, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_coupons.core import metrics
from storefront_coupons.core.config import settings
from storefront_coupons.models.coupon import Coupon, DiscountType
from storefront_coupons.schemas.coupon import CouponCreate, CouponUpdate
from storefront_coupons.services import pricing
from storefront_coupons.services.eligibility import as_utc, utc_now
from storefront_coupons.services.errors import CouponConflictError, CouponNotFoundError, CouponValidationError

logger = logging.getLogger(__name__)

CouponStatusFilter = Literal["active", "inactive", "expired", "used", "unused"]

_MAX_PERCENT = Decimal("100")


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def normalize_services(services: list[str] | None) -> list[str]:
    cleaned: list[str] = []
    for raw in services or []:
        sid = str(raw or "").strip()
        if sid and sid not in cleaned:
            cleaned.append(sid)
    return cleaned


def _validate_fields(
    *,
    code: str,
    discount_type: DiscountType,
    value: Decimal | None,
    min_purchase_amount: Decimal | None,
    max_discount_amount: Decimal | None,
    usage_limit: int | None,
    usage_count: int = 0,
) -> None:
    if not code:
        raise CouponValidationError("Coupon code is required")
    if len(code) > 40:
        raise CouponValidationError("Coupon code must be at most 40 characters")
    if value is None:
        raise CouponValidationError("Coupon value is required")
    if value < 0:
        raise CouponValidationError("Coupon value must not be negative")
    if discount_type == DiscountType.percent and value > _MAX_PERCENT:
        raise CouponValidationError("Percent coupons cannot exceed 100")
    if min_purchase_amount is not None and min_purchase_amount < 0:
        raise CouponValidationError("Minimum purchase amount must not be negative")
    if max_discount_amount is not None and max_discount_amount < 0:
        raise CouponValidationError("Maximum discount amount must not be negative")
    if usage_limit is not None:
        if usage_limit < 1:
            raise CouponValidationError("Usage limit must be a positive integer")
        if usage_limit < usage_count:
            raise CouponValidationError("Usage limit cannot be lower than the current usage count")


def _money_or_none(value: Any) -> Decimal | None:
    if value is None:
        return None
    return pricing.quantize_money(value)


async def _code_taken(session: AsyncSession, *, tenant_id: str, code: str, exclude_id: UUID | None = None) -> bool:
    query = select(func.count()).select_from(Coupon).where(Coupon.tenant_id == tenant_id, Coupon.code == code)
    if exclude_id is not None:
        query = query.where(Coupon.id != exclude_id)
    return int((await session.execute(query)).scalar_one()) > 0


async def find_by_code(session: AsyncSession, *, tenant_id: str, code: str) -> Coupon:
    cleaned = normalize_code(code)
    if not cleaned:
        raise CouponNotFoundError(code=code or "")
    coupon = (
        await session.execute(
            select(Coupon)
            .where(Coupon.tenant_id == tenant_id, Coupon.code == cleaned)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if coupon is None:
        raise CouponNotFoundError(code=cleaned)
    return coupon


async def get_coupon(session: AsyncSession, *, tenant_id: str, coupon_id: UUID) -> Coupon:
    coupon = (
        await session.execute(
            select(Coupon)
            .where(Coupon.tenant_id == tenant_id, Coupon.id == coupon_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if coupon is None:
        raise CouponNotFoundError(coupon_id=coupon_id)
    return coupon


async def create_coupon(
    session: AsyncSession,
    *,
    tenant_id: str,
    payload: CouponCreate,
    now: datetime | None = None,
) -> Coupon:
    code = normalize_code(payload.code)
    value = _money_or_none(payload.value)
    min_purchase = _money_or_none(payload.min_purchase_amount)
    max_discount = _money_or_none(payload.max_discount_amount)
    _validate_fields(
        code=code,
        discount_type=payload.discount_type,
        value=value,
        min_purchase_amount=min_purchase,
        max_discount_amount=max_discount,
        usage_limit=payload.usage_limit,
    )
    if await _code_taken(session, tenant_id=tenant_id, code=code):
        raise CouponConflictError(code)

    expires_at = payload.expires_at or (now or utc_now()) + timedelta(days=settings.coupon_default_validity_days)
    coupon = Coupon(
        tenant_id=tenant_id,
        code=code,
        discount_type=payload.discount_type,
        value=value,
        description=(payload.description or "").strip() or None,
        min_purchase_amount=min_purchase,
        max_discount_amount=max_discount,
        usage_limit=payload.usage_limit,
        usage_count=0,
        active=payload.active,
        expires_at=as_utc(expires_at),
        applicable_services=normalize_services(payload.applicable_services),
    )
    session.add(coupon)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise CouponConflictError(code) from exc
    await session.refresh(coupon)
    metrics.record_coupon_created()
    logger.info("coupon_created", extra={"coupon_id": str(coupon.id), "code": code, "tenant": tenant_id})
    return coupon


async def _set_usage_limit(session: AsyncSession, *, coupon: Coupon, usage_limit: int | None) -> None:
    # Guarded against reservations that land between our read and this write.
    stmt = update(Coupon).where(Coupon.id == coupon.id)
    if usage_limit is not None:
        stmt = stmt.where(Coupon.usage_count <= usage_limit)
    result = await session.execute(
        stmt.values(usage_limit=usage_limit).execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise CouponValidationError("Usage limit cannot be lower than the current usage count")


async def update_coupon(
    session: AsyncSession,
    *,
    tenant_id: str,
    coupon_id: UUID,
    patch: CouponUpdate,
) -> Coupon:
    coupon = await get_coupon(session, tenant_id=tenant_id, coupon_id=coupon_id)
    data = patch.model_dump(exclude_unset=True)

    code = normalize_code(data["code"]) if "code" in data else coupon.code
    discount_type = data.get("discount_type") or coupon.discount_type
    value = _money_or_none(data["value"]) if "value" in data else pricing.to_decimal(coupon.value)
    min_purchase = _money_or_none(data["min_purchase_amount"]) if "min_purchase_amount" in data else coupon.min_purchase_amount
    max_discount = _money_or_none(data["max_discount_amount"]) if "max_discount_amount" in data else coupon.max_discount_amount
    usage_limit = data["usage_limit"] if "usage_limit" in data else coupon.usage_limit

    _validate_fields(
        code=code,
        discount_type=discount_type,
        value=value,
        min_purchase_amount=min_purchase,
        max_discount_amount=max_discount,
        usage_limit=usage_limit,
        usage_count=int(coupon.usage_count or 0),
    )
    if code != coupon.code and await _code_taken(session, tenant_id=tenant_id, code=code, exclude_id=coupon.id):
        raise CouponConflictError(code)

    coupon.code = code
    coupon.discount_type = discount_type
    coupon.value = value
    coupon.min_purchase_amount = min_purchase
    coupon.max_discount_amount = max_discount
    if "description" in data:
        coupon.description = (data["description"] or "").strip() or None
    if data.get("active") is not None:
        coupon.active = bool(data["active"])
    if data.get("expires_at") is not None:
        coupon.expires_at = as_utc(data["expires_at"])
    if data.get("applicable_services") is not None:
        coupon.applicable_services = normalize_services(data["applicable_services"])

    session.add(coupon)
    try:
        if "usage_limit" in data and usage_limit != coupon.usage_limit:
            await _set_usage_limit(session, coupon=coupon, usage_limit=usage_limit)
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise CouponConflictError(code) from exc
    await session.refresh(coupon)
    logger.info("coupon_updated", extra={"coupon_id": str(coupon.id), "fields": sorted(data), "tenant": tenant_id})
    return coupon


async def delete_coupon(session: AsyncSession, *, tenant_id: str, coupon_id: UUID) -> None:
    coupon = await get_coupon(session, tenant_id=tenant_id, coupon_id=coupon_id)
    await session.delete(coupon)
    await session.commit()
    metrics.record_coupon_deleted()
    logger.info("coupon_deleted", extra={"coupon_id": str(coupon_id), "code": coupon.code, "tenant": tenant_id})


def _is_active_clause(now: datetime):
    return and_(
        Coupon.active.is_(True),
        Coupon.expires_at > now,
        or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
    )


def _apply_filters(
    query: Select,
    *,
    search: str | None,
    discount_type: DiscountType | None,
    status_filter: CouponStatusFilter | None,
    now: datetime,
) -> Select:
    needle = (search or "").strip()
    if needle:
        pattern = f"%{needle.lower()}%"
        query = query.where(or_(func.lower(Coupon.code).like(pattern), func.lower(Coupon.description).like(pattern)))
    if discount_type is not None:
        query = query.where(Coupon.discount_type == discount_type)
    if status_filter == "active":
        query = query.where(_is_active_clause(now))
    elif status_filter == "inactive":
        query = query.where(Coupon.active.is_(False))
    elif status_filter == "expired":
        query = query.where(Coupon.expires_at <= now)
    elif status_filter == "used":
        query = query.where(Coupon.usage_count > 0)
    elif status_filter == "unused":
        query = query.where(Coupon.usage_count == 0)
    return query


async def list_coupons(
    session: AsyncSession,
    *,
    tenant_id: str,
    search: str | None = None,
    discount_type: DiscountType | None = None,
    status_filter: CouponStatusFilter | None = None,
    page: int = 1,
    limit: int = 10,
    now: datetime | None = None,
) -> tuple[list[Coupon], int]:
    moment = now or utc_now()
    page = max(1, int(page))
    limit = max(1, min(int(limit), settings.coupon_list_max_limit))

    base = _apply_filters(
        select(Coupon).where(Coupon.tenant_id == tenant_id),
        search=search,
        discount_type=discount_type,
        status_filter=status_filter,
        now=moment,
    )
    total = int((await session.execute(select(func.count()).select_from(base.subquery()))).scalar_one())
    rows = await session.execute(
        base.order_by(Coupon.created_at.desc(), Coupon.code.asc()).offset((page - 1) * limit).limit(limit)
    )
    return list(rows.scalars().all()), total


@dataclass(frozen=True)
class CouponStatsSnapshot:
    total: int
    active: int
    used: int
    unused: int
    expired: int


async def coupon_stats(session: AsyncSession, *, tenant_id: str, now: datetime | None = None) -> CouponStatsSnapshot:
    moment = now or utc_now()
    row = (
        await session.execute(
            select(
                func.count(Coupon.id),
                func.coalesce(func.sum(case((_is_active_clause(moment), 1), else_=0)), 0),
                func.coalesce(func.sum(case((Coupon.usage_count > 0, 1), else_=0)), 0),
                func.coalesce(func.sum(case((Coupon.expires_at <= moment, 1), else_=0)), 0),
            ).where(Coupon.tenant_id == tenant_id)
        )
    ).one()
    total, active, used, expired = (int(v or 0) for v in row)
    return CouponStatsSnapshot(total=total, active=active, used=used, unused=total - used, expired=expired)
