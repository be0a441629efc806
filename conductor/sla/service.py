"""
SLA Service

Manages SLA definitions and the per-ticket clocks (instances) built from them.

Lifecycle of an instance:
    running -> paused -> running -> completed
    running -> violated (check_breaches)

Elapsed minutes are measured from started_at (working minutes only when the
definition is business-hours-only). Time spent paused is tracked separately
in paused_minutes and subtracted to obtain the effective time that is
compared with the target.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from conductor.core.exceptions import SlaDefinitionError, SlaInstanceNotFoundError, SlaInstanceStateError
from conductor.middleware.metrics import track_sla_event
from conductor.middleware.tenant_context import require_tenant_context
from conductor.models.base import as_utc, utcnow
from conductor.models.sla import SLA_METRICS, SlaDefinition, SlaEvent, SlaInstance, SlaViolation
from conductor.sla.calendar import BusinessCalendar
from conductor.sla.rules import (
    breach_percentage,
    calculate_elapsed_minutes,
    is_rule_match,
    time_targets_to_minutes,
    validate_definition,
    violation_severity,
)

logger = logging.getLogger(__name__)

DEFINITION_FIELDS = (
    "name", "description", "type", "priority", "application_rules",
    *SLA_METRICS.values(),
    "business_hours_only", "working_days", "working_hours", "timezone",
    "escalation_threshold_percent",
    "pause_conditions", "resume_conditions", "stop_conditions", "workflow_actions",
    "is_active",
)

OPEN_STATUSES = ("running", "paused")
CLOSED_STATUSES = ("completed", "violated")


class SlaService:
    """SLA definitions and instance lifecycle for one tenant schema."""

    def __init__(self, db: AsyncSession, tenant_id: Optional[uuid.UUID] = None):
        self.db = db
        self.tenant_id = tenant_id or require_tenant_context()

    # ==================== Definitions ====================

    async def create_definition(self, data: Dict[str, Any]) -> SlaDefinition:
        errors = validate_definition(data)
        if errors:
            raise SlaDefinitionError("Invalid SLA definition", details={"errors": errors})

        values = {key: data[key] for key in DEFINITION_FIELDS if data.get(key) is not None}
        values.update(time_targets_to_minutes(data.get("time_targets")))

        definition = SlaDefinition(tenant_id=self.tenant_id, **values)
        self.db.add(definition)
        await self.db.flush()

        logger.info(f"SLA definition created: {definition.name} ({definition.id})")
        return definition

    async def list_definitions(self, active_only: bool = False) -> List[SlaDefinition]:
        query = select(SlaDefinition).order_by(SlaDefinition.priority.desc(), SlaDefinition.name)
        if active_only:
            query = query.where(SlaDefinition.is_active.is_(True))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_definition(self, definition_id: uuid.UUID) -> SlaDefinition:
        definition = await self.db.get(SlaDefinition, definition_id)
        if definition is None:
            raise SlaInstanceNotFoundError(
                "SLA definition not found", details={"sla_definition_id": str(definition_id)}
            )
        return definition

    async def delete_definition(self, definition_id: uuid.UUID) -> str:
        """
        Delete a definition.

        Definitions that only have closed instances are deactivated so
        violation history keeps its reference.

        Returns:
            "deleted" or "deactivated"

        Raises:
            SlaDefinitionError: Running or paused instances still use it (conflict)
        """
        definition = await self.get_definition(definition_id)

        result = await self.db.execute(
            select(SlaInstance.status, func.count(SlaInstance.id))
            .where(SlaInstance.sla_definition_id == definition_id)
            .group_by(SlaInstance.status)
        )
        by_status = dict(result.all())
        active = sum(by_status.get(status, 0) for status in OPEN_STATUSES)
        if active:
            raise SlaDefinitionError(
                "Cannot delete SLA definition with active instances",
                details={"sla_definition_id": str(definition_id), "active_instances": active},
                conflict=True,
            )

        if by_status:
            definition.is_active = False
            await self.db.flush()
            logger.info(f"SLA definition deactivated (has history): {definition_id}")
            return "deactivated"

        await self.db.delete(definition)
        await self.db.flush()
        logger.info(f"SLA definition deleted: {definition_id}")
        return "deleted"

    # ==================== Instances ====================

    async def start_for_ticket(self, ticket, now: Optional[datetime] = None) -> List[SlaInstance]:
        """
        Start clocks for a ticket.

        One instance per configured metric of every active definition whose
        application rules match the ticket. Metrics that already have an
        instance for this ticket are skipped.
        """
        now = now or utcnow()
        ticket_data = ticket.to_dict() if hasattr(ticket, "to_dict") else dict(ticket)
        ticket_id = uuid.UUID(str(ticket_data["id"]))

        result = await self.db.execute(
            select(SlaInstance.current_metric).where(SlaInstance.ticket_id == ticket_id)
        )
        existing_metrics = set(result.scalars().all())

        created = []
        for definition in await self.list_definitions(active_only=True):
            if not is_rule_match(definition.application_rules, ticket_data):
                continue

            for metric, target in definition.metric_targets():
                if metric in existing_metrics:
                    continue

                instance = SlaInstance(
                    tenant_id=self.tenant_id,
                    sla_definition_id=definition.id,
                    ticket_id=ticket_id,
                    status="running",
                    current_metric=metric,
                    started_at=now,
                    elapsed_minutes=0,
                    paused_minutes=0,
                    target_minutes=target,
                    remaining_minutes=target,
                )
                self.db.add(instance)
                await self.db.flush()
                self._record_event(instance, "started", None, "running",
                                   data={"sla_definition_id": str(definition.id), "target_minutes": target})
                existing_metrics.add(metric)
                created.append(instance)

        if created:
            await self.db.flush()
            logger.info(f"Started {len(created)} SLA instance(s) for ticket {ticket_id}")
        return created

    async def get_instance(self, instance_id: uuid.UUID) -> SlaInstance:
        result = await self.db.execute(
            select(SlaInstance)
            .options(selectinload(SlaInstance.definition))
            .where(SlaInstance.id == instance_id)
        )
        instance = result.scalar_one_or_none()
        if instance is None:
            raise SlaInstanceNotFoundError(
                "SLA instance not found", details={"sla_instance_id": str(instance_id)}
            )
        return instance

    async def pause(
        self,
        instance_id: uuid.UUID,
        reason: Optional[str] = None,
        triggered_by: str = "system",
        now: Optional[datetime] = None,
    ) -> SlaInstance:
        now = now or utcnow()
        instance = await self.get_instance(instance_id)
        self._require_status(instance, ("running",), "pause")

        elapsed = self._elapsed(instance, now)
        instance.elapsed_minutes = elapsed
        instance.remaining_minutes = max(0, instance.target_minutes - (elapsed - instance.paused_minutes))
        instance.status = "paused"
        instance.paused_at = now

        self._record_event(instance, "paused", "running", "paused", reason=reason,
                           triggered_by=triggered_by, data={"reason": reason})
        await self.db.flush()
        return instance

    async def resume(
        self,
        instance_id: uuid.UUID,
        reason: Optional[str] = None,
        triggered_by: str = "system",
        now: Optional[datetime] = None,
    ) -> SlaInstance:
        now = now or utcnow()
        instance = await self.get_instance(instance_id)
        self._require_status(instance, ("paused",), "resume")

        paused_for = self._paused_for(instance, now)
        instance.paused_minutes += paused_for
        instance.paused_at = None
        instance.resumed_at = now
        instance.status = "running"

        self._record_event(instance, "resumed", "paused", "running", reason=reason,
                           triggered_by=triggered_by, data={"paused_duration_minutes": paused_for})
        await self.db.flush()
        return instance

    async def complete(
        self,
        instance_id: uuid.UUID,
        triggered_by: str = "system",
        now: Optional[datetime] = None,
    ) -> SlaInstance:
        now = now or utcnow()
        instance = await self.get_instance(instance_id)
        self._require_status(instance, OPEN_STATUSES, "complete")
        previous_status = instance.status

        if previous_status == "paused":
            instance.paused_minutes += self._paused_for(instance, now)
            instance.paused_at = None

        instance.elapsed_minutes = self._elapsed(instance, now)
        effective = self._effective(instance)
        breached = effective > instance.target_minutes

        instance.status = "completed"
        instance.completed_at = now
        instance.remaining_minutes = max(0, instance.target_minutes - effective)
        instance.is_breached = breached
        if breached:
            instance.breach_duration_minutes = effective - instance.target_minutes
            instance.breach_percentage = breach_percentage(effective, instance.target_minutes)

        self._record_event(instance, "completed", previous_status, "completed", triggered_by=triggered_by, data={
            "effective_minutes": effective,
            "target_minutes": instance.target_minutes,
            "is_breached": breached,
        })
        if breached:
            self._record_violation(instance, effective)

        await self.db.flush()
        return instance

    async def check_breaches(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Sweep running instances.

        Past target -> violated (event + violation record).
        Threshold reached for the first time -> escalation level 1.
        Otherwise elapsed/remaining are refreshed.
        """
        now = now or utcnow()
        result = await self.db.execute(
            select(SlaInstance)
            .options(selectinload(SlaInstance.definition))
            .where(SlaInstance.status == "running", SlaInstance.is_breached.is_(False))
        )
        instances = result.scalars().all()

        counts = {"checked": len(instances), "violated": 0, "escalated": 0, "updated": 0}
        for instance in instances:
            instance.elapsed_minutes = self._elapsed(instance, now)
            effective = self._effective(instance)
            instance.remaining_minutes = max(0, instance.target_minutes - effective)

            if effective > instance.target_minutes:
                instance.status = "violated"
                instance.violated_at = now
                instance.is_breached = True
                instance.breach_duration_minutes = effective - instance.target_minutes
                instance.breach_percentage = breach_percentage(effective, instance.target_minutes)
                self._record_event(instance, "violated", "running", "violated", data={
                    "effective_minutes": effective,
                    "target_minutes": instance.target_minutes,
                })
                self._record_violation(instance, effective)
                counts["violated"] += 1
                continue

            threshold = instance.definition.escalation_threshold_percent if instance.definition else 80
            used_percent = effective / instance.target_minutes * 100 if instance.target_minutes else 0
            if instance.escalation_level == 0 and used_percent >= threshold:
                instance.escalation_level = 1
                self._record_event(instance, "escalated", "running", "running", data={
                    "used_percent": round(used_percent, 2),
                    "threshold_percent": threshold,
                    "escalation_level": 1,
                })
                counts["escalated"] += 1
            else:
                counts["updated"] += 1

        await self.db.flush()
        if counts["violated"] or counts["escalated"]:
            logger.warning(
                f"SLA breach check: {counts['violated']} violated, {counts['escalated']} escalated "
                f"of {counts['checked']} running"
            )
        return counts

    async def get_ticket_instances(self, ticket_id: uuid.UUID) -> List[SlaInstance]:
        result = await self.db.execute(
            select(SlaInstance).where(SlaInstance.ticket_id == ticket_id).order_by(SlaInstance.started_at)
        )
        return list(result.scalars().all())

    async def get_events(self, instance_id: uuid.UUID) -> List[SlaEvent]:
        await self.get_instance(instance_id)
        result = await self.db.execute(
            select(SlaEvent).where(SlaEvent.sla_instance_id == instance_id).order_by(SlaEvent.created_at)
        )
        return list(result.scalars().all())

    async def compliance_stats(self, definition_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
        """Compliance over closed (completed or violated) instances."""
        query = select(SlaInstance)
        if definition_id:
            query = query.where(SlaInstance.sla_definition_id == definition_id)
        instances = (await self.db.execute(query)).scalars().all()

        closed = [i for i in instances if i.status in CLOSED_STATUSES]
        breached = sum(1 for i in closed if i.is_breached)
        met = len(closed) - breached
        effective = [i.elapsed_minutes - i.paused_minutes for i in closed]

        return {
            "total_instances": len(instances),
            "active_instances": sum(1 for i in instances if i.status in OPEN_STATUSES),
            "closed_instances": len(closed),
            "met": met,
            "breached": breached,
            "compliance_rate": round(met / len(closed) * 100, 2) if closed else 100.0,
            "average_effective_minutes": round(sum(effective) / len(effective), 2) if effective else 0.0,
        }

    # ==================== Internals ====================

    def _calendar(self, instance: SlaInstance) -> Optional[BusinessCalendar]:
        definition = instance.definition
        if definition is not None and definition.business_hours_only:
            return BusinessCalendar.from_definition(definition)
        return None

    def _elapsed(self, instance: SlaInstance, now: datetime) -> int:
        return calculate_elapsed_minutes(as_utc(instance.started_at), now, self._calendar(instance))

    def _paused_for(self, instance: SlaInstance, now: datetime) -> int:
        if instance.paused_at is None:
            return 0
        return calculate_elapsed_minutes(as_utc(instance.paused_at), now, self._calendar(instance))

    @staticmethod
    def _effective(instance: SlaInstance) -> int:
        return max(0, instance.elapsed_minutes - instance.paused_minutes)

    @staticmethod
    def _require_status(instance: SlaInstance, allowed, action: str) -> None:
        if instance.status not in allowed:
            raise SlaInstanceStateError(
                f"Cannot {action} SLA instance in status '{instance.status}'",
                details={"sla_instance_id": str(instance.id), "status": instance.status},
            )

    def _record_event(
        self,
        instance: SlaInstance,
        event_type: str,
        previous_status: Optional[str],
        new_status: Optional[str],
        reason: Optional[str] = None,
        triggered_by: str = "system",
        data: Optional[Dict[str, Any]] = None,
    ) -> SlaEvent:
        event = SlaEvent(
            tenant_id=self.tenant_id,
            sla_instance_id=instance.id,
            event_type=event_type,
            event_reason=reason,
            previous_status=previous_status,
            new_status=new_status,
            triggered_by=triggered_by,
            event_data=data or {},
        )
        self.db.add(event)
        track_sla_event(event_type)
        return event

    def _record_violation(self, instance: SlaInstance, effective: int) -> SlaViolation:
        percentage = breach_percentage(effective, instance.target_minutes)
        violation = SlaViolation(
            tenant_id=self.tenant_id,
            sla_instance_id=instance.id,
            sla_definition_id=instance.sla_definition_id,
            ticket_id=instance.ticket_id,
            violation_type=instance.current_metric,
            target_minutes=instance.target_minutes,
            actual_minutes=effective,
            violation_minutes=effective - instance.target_minutes,
            violation_percentage=percentage,
            severity=violation_severity(percentage),
        )
        self.db.add(violation)
        logger.warning(
            f"SLA violated: instance {instance.id} ({instance.current_metric}) "
            f"{effective}/{instance.target_minutes} min, severity {violation.severity}"
        )
        return violation
