"""
SLA Database Models (tenant schema)

- SlaDefinition: agreement targets and the tickets they apply to
- SlaInstance: one running clock per (ticket, metric)
- SlaEvent: lifecycle history of an instance
- SlaViolation: breach records used for compliance reporting
"""

from sqlalchemy import (
    Column, String, Text, Boolean, DateTime, ForeignKey, Integer, Float, Index, UniqueConstraint, Uuid,
)
from sqlalchemy.orm import relationship

from conductor.core.database import TenantBase
from conductor.models.base import JSONType, TenantScopedMixin, isoformat

SLA_TYPES = ("SLA", "OLA", "UC")
SLA_STATUSES = ("running", "paused", "completed", "violated")
SLA_EVENT_TYPES = ("started", "paused", "resumed", "completed", "violated", "escalated")

# metric name -> SlaDefinition column holding its target
SLA_METRICS = {
    "response_time": "response_time_minutes",
    "resolution_time": "resolution_time_minutes",
    "update_time": "update_time_minutes",
    "idle_time": "idle_time_minutes",
}


def _default_working_hours():
    return {"start": "08:00", "end": "18:00"}


def _default_working_days():
    return [1, 2, 3, 4, 5]


class SlaDefinition(TenantScopedMixin, TenantBase):
    __tablename__ = "sla_definitions"
    __table_args__ = (Index("idx_sla_definitions_tenant_id", "tenant_id"),)

    name = Column(String(255), nullable=False)
    description = Column(Text)
    type = Column(String(10), nullable=False, default="SLA")
    priority = Column(Integer, nullable=False, default=5)

    # [{"field": "priority", "operator": "in", "value": ["high", "critical"]}]
    application_rules = Column(JSONType, default=list)

    response_time_minutes = Column(Integer)
    resolution_time_minutes = Column(Integer)
    update_time_minutes = Column(Integer)
    idle_time_minutes = Column(Integer)

    business_hours_only = Column(Boolean, nullable=False, default=True)
    working_days = Column(JSONType, default=_default_working_days)
    working_hours = Column(JSONType, default=_default_working_hours)
    timezone = Column(String(64), nullable=False, default="America/Sao_Paulo")

    escalation_threshold_percent = Column(Integer, nullable=False, default=80)

    pause_conditions = Column(JSONType, default=list)
    resume_conditions = Column(JSONType, default=list)
    stop_conditions = Column(JSONType, default=list)
    workflow_actions = Column(JSONType, default=list)

    is_active = Column(Boolean, nullable=False, default=True)

    instances = relationship("SlaInstance", back_populates="definition", passive_deletes="all")

    def metric_targets(self):
        """(metric, target_minutes) pairs for every configured target."""
        targets = []
        for metric, column in SLA_METRICS.items():
            value = getattr(self, column)
            if value:
                targets.append((metric, value))
        return targets

    def to_dict(self):
        return {
            "id": str(self.id),
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "priority": self.priority,
            "application_rules": self.application_rules or [],
            "response_time_minutes": self.response_time_minutes,
            "resolution_time_minutes": self.resolution_time_minutes,
            "update_time_minutes": self.update_time_minutes,
            "idle_time_minutes": self.idle_time_minutes,
            "business_hours_only": self.business_hours_only,
            "working_days": self.working_days,
            "working_hours": self.working_hours,
            "timezone": self.timezone,
            "escalation_threshold_percent": self.escalation_threshold_percent,
            "pause_conditions": self.pause_conditions or [],
            "resume_conditions": self.resume_conditions or [],
            "stop_conditions": self.stop_conditions or [],
            "workflow_actions": self.workflow_actions or [],
            "is_active": self.is_active,
            "created_at": isoformat(self.created_at),
        }


class SlaInstance(TenantScopedMixin, TenantBase):
    __tablename__ = "sla_instances"
    __table_args__ = (
        UniqueConstraint("ticket_id", "current_metric", name="uq_sla_instances_ticket_metric"),
        Index("idx_sla_instances_tenant_id", "tenant_id"),
        Index("idx_sla_instances_status", "status"),
        Index("idx_sla_instances_ticket_id", "ticket_id"),
    )

    sla_definition_id = Column(Uuid, ForeignKey("sla_definitions.id", ondelete="RESTRICT"), nullable=False)
    ticket_id = Column(Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False)

    status = Column(String(20), nullable=False, default="running")
    current_metric = Column(String(30), nullable=False)

    started_at = Column(DateTime(timezone=True), nullable=False)
    paused_at = Column(DateTime(timezone=True))
    resumed_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    violated_at = Column(DateTime(timezone=True))

    elapsed_minutes = Column(Integer, nullable=False, default=0)
    paused_minutes = Column(Integer, nullable=False, default=0)
    target_minutes = Column(Integer, nullable=False)
    remaining_minutes = Column(Integer, nullable=False, default=0)

    is_breached = Column(Boolean, nullable=False, default=False)
    breach_duration_minutes = Column(Integer, nullable=False, default=0)
    breach_percentage = Column(Float, nullable=False, default=0.0)
    escalation_level = Column(Integer, nullable=False, default=0)

    definition = relationship("SlaDefinition", back_populates="instances")
    events = relationship("SlaEvent", back_populates="instance", cascade="all, delete-orphan",
                          order_by="SlaEvent.created_at")

    def to_dict(self):
        return {
            "id": str(self.id),
            "sla_definition_id": str(self.sla_definition_id),
            "ticket_id": str(self.ticket_id),
            "status": self.status,
            "current_metric": self.current_metric,
            "started_at": isoformat(self.started_at),
            "paused_at": isoformat(self.paused_at),
            "resumed_at": isoformat(self.resumed_at),
            "completed_at": isoformat(self.completed_at),
            "violated_at": isoformat(self.violated_at),
            "elapsed_minutes": self.elapsed_minutes,
            "paused_minutes": self.paused_minutes,
            "target_minutes": self.target_minutes,
            "remaining_minutes": self.remaining_minutes,
            "is_breached": self.is_breached,
            "breach_duration_minutes": self.breach_duration_minutes,
            "breach_percentage": self.breach_percentage,
            "escalation_level": self.escalation_level,
        }


class SlaEvent(TenantScopedMixin, TenantBase):
    __tablename__ = "sla_events"
    __table_args__ = (
        Index("idx_sla_events_tenant_id", "tenant_id"),
        Index("idx_sla_events_sla_instance_id", "sla_instance_id"),
    )

    sla_instance_id = Column(Uuid, ForeignKey("sla_instances.id", ondelete="CASCADE"), nullable=False)
    event_type = Column(String(20), nullable=False)
    event_reason = Column(Text)
    previous_status = Column(String(20))
    new_status = Column(String(20))
    triggered_by = Column(String(255), nullable=False, default="system")
    event_data = Column(JSONType, default=dict)

    instance = relationship("SlaInstance", back_populates="events")

    def to_dict(self):
        return {
            "id": str(self.id),
            "sla_instance_id": str(self.sla_instance_id),
            "event_type": self.event_type,
            "event_reason": self.event_reason,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "triggered_by": self.triggered_by,
            "event_data": self.event_data or {},
            "created_at": isoformat(self.created_at),
        }


class SlaViolation(TenantScopedMixin, TenantBase):
    __tablename__ = "sla_violations"
    __table_args__ = (
        Index("idx_sla_violations_tenant_id", "tenant_id"),
        Index("idx_sla_violations_sla_definition_id", "sla_definition_id"),
    )

    sla_instance_id = Column(Uuid, ForeignKey("sla_instances.id", ondelete="CASCADE"), nullable=False)
    sla_definition_id = Column(Uuid, ForeignKey("sla_definitions.id", ondelete="RESTRICT"), nullable=False)
    ticket_id = Column(Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False)

    violation_type = Column(String(30), nullable=False)  # the metric that was breached
    target_minutes = Column(Integer, nullable=False)
    actual_minutes = Column(Integer, nullable=False)
    violation_minutes = Column(Integer, nullable=False)
    violation_percentage = Column(Float, nullable=False)
    severity = Column(String(10), nullable=False)

    def to_dict(self):
        return {
            "id": str(self.id),
            "sla_instance_id": str(self.sla_instance_id),
            "ticket_id": str(self.ticket_id),
            "violation_type": self.violation_type,
            "target_minutes": self.target_minutes,
            "actual_minutes": self.actual_minutes,
            "violation_minutes": self.violation_minutes,
            "violation_percentage": self.violation_percentage,
            "severity": self.severity,
            "created_at": isoformat(self.created_at),
        }
