"""
SLA Router

Definitions, per-ticket instances (start/pause/resume/complete), breach
sweeps and compliance statistics for the current tenant.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from conductor.api.dependencies import get_tenant_db, require_tenant
from conductor.middleware.error_handling import NotFoundError
from conductor.middleware.logging_config import get_logger
from conductor.models.tenant import Tenant
from conductor.models.ticket import Ticket
from conductor.services.metrics_service import metrics_service
from conductor.sla.rules import validate_definition, validate_workflow
from conductor.sla.service import SlaService

logger = get_logger(__name__)

router = APIRouter(prefix="/api/sla", tags=["sla"])


class TimeTarget(BaseModel):
    metric: str
    target: float
    unit: str = "minutes"


class SlaDefinitionRequest(BaseModel):
    name: str
    description: Optional[str] = None
    type: str = "SLA"
    priority: int = 5
    application_rules: List[Dict[str, Any]] = Field(default_factory=list)
    time_targets: List[TimeTarget] = Field(default_factory=list)
    response_time_minutes: Optional[int] = None
    resolution_time_minutes: Optional[int] = None
    update_time_minutes: Optional[int] = None
    idle_time_minutes: Optional[int] = None
    business_hours_only: bool = True
    working_days: List[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    working_hours: Dict[str, str] = Field(default_factory=lambda: {"start": "08:00", "end": "18:00"})
    timezone: str = "America/Sao_Paulo"
    escalation_threshold_percent: int = 80
    pause_conditions: List[Dict[str, Any]] = Field(default_factory=list)
    resume_conditions: List[Dict[str, Any]] = Field(default_factory=list)
    stop_conditions: List[Dict[str, Any]] = Field(default_factory=list)
    workflow_actions: List[Dict[str, Any]] = Field(default_factory=list)
    is_active: bool = True


class InstanceTransitionRequest(BaseModel):
    reason: Optional[str] = None
    triggered_by: str = "system"


class BreachCheckRequest(BaseModel):
    now: Optional[datetime] = None


def _service(db: AsyncSession, tenant: Tenant) -> SlaService:
    return SlaService(db, tenant.id)


# ==================== Definitions ====================

@router.post("/definitions", status_code=status.HTTP_201_CREATED)
async def create_definition(
    payload: SlaDefinitionRequest,
    tenant: Tenant = Depends(require_tenant),
    db: AsyncSession = Depends(get_tenant_db),
):
    definition = await _service(db, tenant).create_definition(payload.model_dump())
    return definition.to_dict()


@router.get("/definitions")
async def list_definitions(
    active_only: bool = Query(False),
    tenant: Tenant = Depends(require_tenant),
    db: AsyncSession = Depends(get_tenant_db),
):
    definitions = await _service(db, tenant).list_definitions(active_only=active_only)
    return {"definitions": [d.to_dict() for d in definitions], "total": len(definitions)}


@router.post("/definitions/validate")
async def validate_definition_endpoint(payload: Dict[str, Any], tenant: Tenant = Depends(require_tenant)):
    errors = validate_definition(payload)
    return {"is_valid": not errors, "errors": errors}


@router.get("/definitions/{definition_id}")
async def get_definition(
    definition_id: UUID,
    tenant: Tenant = Depends(require_tenant),
    db: AsyncSession = Depends(get_tenant_db),
):
    definition = await _service(db, tenant).get_definition(definition_id)
    return definition.to_dict()


@router.delete("/definitions/{definition_id}")
async def delete_definition(
    definition_id: UUID,
    tenant: Tenant = Depends(require_tenant),
    db: AsyncSession = Depends(get_tenant_db),
):
    outcome = await _service(db, tenant).delete_definition(definition_id)
    return {"status": outcome, "sla_definition_id": str(definition_id)}


@router.post("/workflows/validate")
async def validate_workflow_endpoint(payload: Dict[str, Any], tenant: Tenant = Depends(require_tenant)):
    errors = validate_workflow(payload)
    return {"is_valid": not errors, "errors": errors}


# ==================== Instances ====================

@router.post("/tickets/{ticket_id}/start", status_code=status.HTTP_201_CREATED)
async def start_ticket_sla(
    ticket_id: UUID,
    tenant: Tenant = Depends(require_tenant),
    db: AsyncSession = Depends(get_tenant_db),
):
    ticket = await db.get(Ticket, ticket_id)
    if ticket is None:
        raise NotFoundError("Ticket", str(ticket_id))

    instances = await _service(db, tenant).start_for_ticket(ticket)
    metrics_service.increment(tenant.id, "sla_instances_started", len(instances))
    return {"ticket_id": str(ticket_id), "instances": [i.to_dict() for i in instances]}


@router.get("/tickets/{ticket_id}/instances")
async def ticket_instances(
    ticket_id: UUID,
    tenant: Tenant = Depends(require_tenant),
    db: AsyncSession = Depends(get_tenant_db),
):
    instances = await _service(db, tenant).get_ticket_instances(ticket_id)
    return {"ticket_id": str(ticket_id), "instances": [i.to_dict() for i in instances]}


@router.post("/instances/{instance_id}/pause")
async def pause_instance(
    instance_id: UUID,
    payload: InstanceTransitionRequest = InstanceTransitionRequest(),
    tenant: Tenant = Depends(require_tenant),
    db: AsyncSession = Depends(get_tenant_db),
):
    instance = await _service(db, tenant).pause(instance_id, payload.reason, payload.triggered_by)
    return instance.to_dict()


@router.post("/instances/{instance_id}/resume")
async def resume_instance(
    instance_id: UUID,
    payload: InstanceTransitionRequest = InstanceTransitionRequest(),
    tenant: Tenant = Depends(require_tenant),
    db: AsyncSession = Depends(get_tenant_db),
):
    instance = await _service(db, tenant).resume(instance_id, payload.reason, payload.triggered_by)
    return instance.to_dict()


@router.post("/instances/{instance_id}/complete")
async def complete_instance(
    instance_id: UUID,
    payload: InstanceTransitionRequest = InstanceTransitionRequest(),
    tenant: Tenant = Depends(require_tenant),
    db: AsyncSession = Depends(get_tenant_db),
):
    instance = await _service(db, tenant).complete(instance_id, payload.triggered_by)
    metrics_service.increment(tenant.id, "sla_instances_breached" if instance.is_breached else "sla_instances_met")
    return instance.to_dict()


@router.get("/instances/{instance_id}/events")
async def instance_events(
    instance_id: UUID,
    tenant: Tenant = Depends(require_tenant),
    db: AsyncSession = Depends(get_tenant_db),
):
    events = await _service(db, tenant).get_events(instance_id)
    return {"sla_instance_id": str(instance_id), "events": [e.to_dict() for e in events]}


@router.post("/check-breaches")
async def check_breaches(
    payload: BreachCheckRequest = BreachCheckRequest(),
    tenant: Tenant = Depends(require_tenant),
    db: AsyncSession = Depends(get_tenant_db),
):
    """Sweep running instances; normally called by a scheduler."""
    counts = await _service(db, tenant).check_breaches(payload.now)
    metrics_service.increment(tenant.id, "sla_breach_checks")
    return counts


@router.get("/compliance")
async def compliance(
    definition_id: Optional[UUID] = Query(None),
    tenant: Tenant = Depends(require_tenant),
    db: AsyncSession = Depends(get_tenant_db),
):
    return await _service(db, tenant).compliance_stats(definition_id)
