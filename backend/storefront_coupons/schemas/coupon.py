from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from storefront_coupons.models.coupon import DiscountType
from storefront_coupons.schemas.admin_common import PaginationMeta

# Money leaves the API as a JSON number, matching what the storefront expects.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


_TYPE_FIELD = {
    "validation_alias": AliasChoices("type", "discount_type"),
    "serialization_alias": "type",
}


class CouponCreate(CamelModel):
    code: str = Field(min_length=1, max_length=40)
    discount_type: DiscountType = Field(default=DiscountType.fixed, **_TYPE_FIELD)
    value: Decimal = Field(ge=0)
    description: str | None = None
    min_purchase_amount: Decimal | None = Field(default=None, ge=0)
    max_discount_amount: Decimal | None = Field(default=None, ge=0)
    usage_limit: int | None = Field(default=None, ge=1)
    active: bool = True
    expires_at: datetime | None = None
    applicable_services: list[str] = Field(default_factory=list)


class CouponUpdate(CamelModel):
    code: str | None = Field(default=None, min_length=1, max_length=40)
    discount_type: DiscountType | None = Field(default=None, **_TYPE_FIELD)
    value: Decimal | None = Field(default=None, ge=0)
    description: str | None = None
    min_purchase_amount: Decimal | None = Field(default=None, ge=0)
    max_discount_amount: Decimal | None = Field(default=None, ge=0)
    usage_limit: int | None = Field(default=None, ge=1)
    active: bool | None = None
    expires_at: datetime | None = None
    applicable_services: list[str] | None = None


class CouponRead(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: UUID
    tenant_id: str
    code: str
    discount_type: DiscountType = Field(**_TYPE_FIELD)
    value: Money
    description: str | None = None
    min_purchase_amount: Money | None = None
    max_discount_amount: Money | None = None
    usage_limit: int | None = None
    usage_count: int
    active: bool
    expires_at: datetime
    applicable_services: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CouponStats(CamelModel):
    total_coupons: int = 0
    active_coupons: int = 0
    used_coupons: int = 0
    unused_coupons: int = 0
    expired_coupons: int = 0


class CouponListResponse(CamelModel):
    data: list[CouponRead]
    stats: CouponStats
    pagination: PaginationMeta


class OrderLineIn(CamelModel):
    price: Decimal = Field(ge=0, decimal_places=2)
    quantity: int = Field(default=1, ge=1)
    service_id: str | None = Field(default=None, max_length=80)


class CouponOrderRequest(CamelModel):
    code: str = Field(min_length=1, max_length=40)
    subtotal: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    items: list[OrderLineIn] = Field(default_factory=list)
    service_ids: list[str] = Field(default_factory=list)


class CouponValidateRequest(CouponOrderRequest):
    # Previews may be priced for a future or past moment; redemption always uses the server clock.
    occurs_at: datetime | None = None


class CouponRedeemRequest(CouponOrderRequest):
    order_ref: str = Field(min_length=1, max_length=80)


class CouponQuoteResponse(CamelModel):
    code: str
    eligible: bool
    reason: str | None = None
    discount: Money | None = None
    total: Money


class CouponRedemptionRead(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: UUID
    coupon_id: UUID
    order_ref: str | None = None
    discount_amount: Money
    redeemed_at: datetime
