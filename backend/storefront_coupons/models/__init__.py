from storefront_coupons.db.base import Base  # noqa: F401
from storefront_coupons.models.coupon import Coupon, CouponRedemption, DiscountType  # noqa: F401
