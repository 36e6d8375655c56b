from decimal import Decimal
from typing import Any

from pydantic import BaseModel

from storefront_coupons.schemas.coupon import Money


class ErrorResponse(BaseModel):
    detail: Any
    code: str | None = None


class UsageRaceErrorResponse(ErrorResponse):
    total: Money = Decimal("0.00")
