import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront_coupons.api.v1 import api_router
from storefront_coupons.core.config import settings
from storefront_coupons.core.logging_config import configure_logging
from storefront_coupons.core.sentry import init_sentry
from storefront_coupons.middleware import RequestLoggingMiddleware
from storefront_coupons.schemas.error import ErrorResponse, UsageRaceErrorResponse
from storefront_coupons.services.errors import (
    CouponConflictError,
    CouponNotFoundError,
    CouponValidationError,
    OrderAlreadyRedeemedError,
    UsageLimitRaceRejected,
)

logger = logging.getLogger(__name__)


def _error(status_code: int, detail, code: str | None) -> JSONResponse:
    payload = ErrorResponse(detail=detail, code=code)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload.model_dump()))


def get_application() -> FastAPI:
    configure_logging(settings.log_json)
    init_sentry()
    tags_metadata = [
        {"name": "coupons", "description": "Coupon administration, validation and redemption"},
        {"name": "health", "description": "Liveness and readiness probes"},
    ]
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=tags_metadata,
        swagger_ui_parameters={"displayRequestDuration": True},
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api_router, prefix="/api/v1")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, exc.detail, None)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error(422, jsonable_encoder(exc.errors()), "validation_error")

    @app.exception_handler(CouponConflictError)
    async def coupon_conflict_handler(request: Request, exc: CouponConflictError):
        return _error(409, str(exc), "coupon_code_conflict")

    @app.exception_handler(CouponValidationError)
    async def coupon_validation_handler(request: Request, exc: CouponValidationError):
        return _error(422, str(exc), "validation_error")

    @app.exception_handler(CouponNotFoundError)
    async def coupon_not_found_handler(request: Request, exc: CouponNotFoundError):
        return _error(404, str(exc), "coupon_not_found")

    @app.exception_handler(OrderAlreadyRedeemedError)
    async def order_already_redeemed_handler(request: Request, exc: OrderAlreadyRedeemedError):
        return _error(409, str(exc), "order_already_redeemed")

    @app.exception_handler(UsageLimitRaceRejected)
    async def usage_race_handler(request: Request, exc: UsageLimitRaceRejected):
        logger.warning("coupon_usage_race_rejected", extra={"code": exc.code})
        payload = UsageRaceErrorResponse(detail=str(exc), code="usage_limit_race", total=exc.total_without_discount)
        return JSONResponse(status_code=409, content=payload.model_dump(mode="json"))

    return app


app = get_application()
