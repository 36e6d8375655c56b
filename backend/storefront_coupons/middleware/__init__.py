from storefront_coupons.middleware.request_log import RequestLoggingMiddleware

__all__ = ["RequestLoggingMiddleware"]
