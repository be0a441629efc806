"""
SaaS Admin Router

Tenant lifecycle (provision, recover, deprovision), schema validation and
plan quotas. Every endpoint requires the admin key.
"""
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conductor.api.dependencies import limiter, require_api_key
from conductor.cache.redis_cache import (
    cache_schema_report,
    get_cached_schema_report,
    invalidate_schema_report,
    invalidate_tenant_cache,
)
from conductor.core.database import get_db, get_tenant_session
from conductor.middleware.error_handling import NotFoundError
from conductor.middleware.logging_config import get_logger, log_business_event
from conductor.models.tenant import PLANS, Tenant
from conductor.tenancy.provisioning import provisioning_service
from conductor.tenancy.resources import PLAN_QUOTAS, check_limits, collect_usage, get_quota
from conductor.tenancy.schema_validator import validate_all_tenants, validate_tenant_schema

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/saas-admin",
    tags=["saas-admin"],
    dependencies=[Depends(require_api_key)],
    responses={401: {"description": "Missing API key"}, 403: {"description": "Invalid API key"}},
)


class TenantCreateRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=255, description="Organisation name")
    slug: Optional[str] = Field(None, pattern=r"^[a-z0-9][a-z0-9-]{1,48}[a-z0-9]$", description="Subdomain")
    plan: str = Field("free", description=f"One of {', '.join(PLANS)}")
    settings: Dict[str, Any] = Field(default_factory=dict)
    environment: str = Field("production", pattern=r"^(production|staging|development)$")

    @field_validator("plan")
    @classmethod
    def validate_plan(cls, value: str) -> str:
        if value not in PLANS:
            raise ValueError(f"plan must be one of {', '.join(PLANS)}")
        return value


async def _get_tenant_or_404(db: AsyncSession, tenant_id: UUID) -> Tenant:
    tenant = await Tenant.get_by_id(db, tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant", str(tenant_id))
    return tenant


@router.post("/tenants", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/hour")
async def create_tenant(request: Request, payload: TenantCreateRequest, db: AsyncSession = Depends(get_db)):
    """
    Provision a tenant: registry row, schema, tables and default data.

    The plain API key is returned once and never stored.
    """
    result = await provisioning_service.provision(
        db,
        name=payload.name,
        slug=payload.slug,
        plan=payload.plan,
        settings=payload.settings,
        environment=payload.environment,
    )
    log_business_event("tenant_provisioned", tenant_id=str(result.tenant.id), slug=result.tenant.slug)
    return result.to_dict()


@router.get("/tenants")
async def list_tenants(
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    query = select(Tenant).order_by(Tenant.slug)
    if not include_inactive:
        query = query.where(Tenant.is_active.is_(True))
    tenants = (await db.execute(query)).scalars().all()
    return {"tenants": [t.to_dict() for t in tenants], "total": len(tenants)}


@router.get("/tenants/{tenant_id}")
async def get_tenant(tenant_id: UUID, db: AsyncSession = Depends(get_db)):
    tenant = await _get_tenant_or_404(db, tenant_id)
    return tenant.to_dict()


@router.post("/tenants/{tenant_id}/recover")
async def recover_tenant(tenant_id: UUID, db: AsyncSession = Depends(get_db)):
    """Recreate missing schema objects and return the fresh validation report."""
    tenant = await _get_tenant_or_404(db, tenant_id)
    report = await provisioning_service.recover(db, tenant)
    await invalidate_schema_report(tenant.id)
    log_business_event("tenant_recovered", tenant_id=str(tenant.id), grade=report.grade)
    return report.to_dict()


@router.delete("/tenants/{tenant_id}")
async def delete_tenant(tenant_id: UUID, db: AsyncSession = Depends(get_db)):
    """Drop the tenant schema and deactivate the tenant."""
    tenant = await _get_tenant_or_404(db, tenant_id)
    await provisioning_service.deprovision(db, tenant)
    removed = await invalidate_tenant_cache(tenant.id)
    log_business_event("tenant_deprovisioned", tenant_id=str(tenant.id), cache_keys_removed=removed)
    return {"status": "deprovisioned", "tenant_id": str(tenant.id)}


@router.get("/tenants/{tenant_id}/schema-validation")
async def validate_tenant(
    tenant_id: UUID,
    refresh: bool = Query(False, description="Bypass the cached report"),
    db: AsyncSession = Depends(get_db),
):
    tenant = await _get_tenant_or_404(db, tenant_id)

    if not refresh:
        cached = await get_cached_schema_report(tenant.id)
        if cached:
            return cached

    report = (await validate_tenant_schema(db, tenant)).to_dict()
    await cache_schema_report(tenant.id, report)
    return report


@router.get("/schema-validation")
async def validate_all(db: AsyncSession = Depends(get_db)):
    return await validate_all_tenants(db)


@router.get("/tenants/{tenant_id}/quota")
async def tenant_quota(tenant_id: UUID, db: AsyncSession = Depends(get_db)):
    tenant = await _get_tenant_or_404(db, tenant_id)
    quota = get_quota(tenant.plan)

    async with get_tenant_session(tenant.id) as tenant_db:
        usage = await collect_usage(db, tenant, tenant_db)

    return {
        "tenant_id": str(tenant.id),
        "plan": tenant.plan,
        "quota": quota.to_dict(),
        "usage": usage.to_dict(),
        "limits": check_limits(quota, usage),
    }


@router.get("/plans")
async def list_plans():
    return {"plans": {plan: quota.to_dict() for plan, quota in PLAN_QUOTAS.items()}}
