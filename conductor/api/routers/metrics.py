"""Per-tenant usage metrics summary."""
from fastapi import APIRouter, Depends

from conductor.api.dependencies import require_tenant
from conductor.models.tenant import Tenant
from conductor.services.metrics_service import metrics_service

router = APIRouter(prefix="/api/metrics", tags=["metrics"])


@router.get("/summary")
async def metrics_summary(tenant: Tenant = Depends(require_tenant)):
    return metrics_service.snapshot(tenant.id)
