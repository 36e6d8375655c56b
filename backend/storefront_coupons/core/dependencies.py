from fastapi import HTTPException, Request, status

from storefront_coupons.core.config import settings
from storefront_coupons.core.logging_config import tenant_id_ctx_var

_MAX_TENANT_LEN = 64


async def get_tenant_id(request: Request) -> str:
    """Tenant the caller acts for, taken from the tenant header.

    Hostname based resolution happens upstream in the storefront; this service
    only trusts the header and falls back to the configured default tenant.
    """
    raw = (request.headers.get(settings.tenant_header) or "").strip()
    tenant_id = raw or settings.default_tenant
    if len(tenant_id) > _MAX_TENANT_LEN:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid tenant id")
    tenant_id_ctx_var.set(tenant_id)
    return tenant_id
