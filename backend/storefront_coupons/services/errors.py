from __future__ import annotations

from decimal import Decimal


class CouponValidationError(ValueError):
    """A coupon definition was rejected at create/update time."""


class CouponConflictError(CouponValidationError):
    def __init__(self, code: str) -> None:
        super().__init__(f"Coupon code {code} already exists")
        self.code = code


class CouponNotFoundError(LookupError):
    def __init__(self, *, code: str | None = None, coupon_id: object | None = None) -> None:
        self.code = code
        self.coupon_id = coupon_id
        if code is not None:
            message = "Invalid coupon code"
        else:
            message = "Coupon not found"
        super().__init__(message)


class UsageLimitRaceRejected(RuntimeError):
    """The last remaining use was taken by another order after evaluation succeeded.

    `total_without_discount` is what the order costs without the coupon;
    callers must show the failure to the customer instead of silently
    charging that total.
    """

    def __init__(self, *, code: str, total_without_discount: Decimal) -> None:
        super().__init__(f"Coupon {code} reached its usage limit")
        self.code = code
        self.total_without_discount = total_without_discount


class OrderAlreadyRedeemedError(RuntimeError):
    def __init__(self, *, order_ref: str) -> None:
        super().__init__(f"Order {order_ref} already has a coupon applied")
        self.order_ref = order_ref
