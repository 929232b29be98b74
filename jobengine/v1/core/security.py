from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status

from jobengine.config.settings import settings


@dataclass
class TenantContext:
    """Tenant scope of the current request; every job query is filtered by it."""

    tenant_id: str


async def get_tenant_context(
    x_tenant_id: str | None = Header(None, alias="X-Tenant-ID"),
) -> TenantContext:
    """
    Dependency injection function to resolve the request's tenant.

    The X-Tenant-ID header wins; without it the configured development tenant
    is used, and a request with neither is rejected.
    """
    tenant_id = (x_tenant_id or "").strip()
    if tenant_id:
        return TenantContext(tenant_id=tenant_id)

    if settings.default_tenant_id:
        return TenantContext(tenant_id=settings.default_tenant_id)

    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="X-Tenant-ID header is required",
    )


# Convenience type alias for dependency injection
TenantDep = Depends(get_tenant_context)
