"""
Ticket System Database Models (tenant schema)

Provides SQLAlchemy models for the ticketing system including:
- TicketCategory / TicketSubcategory / TicketAction: the ticket taxonomy
  seeded for every new tenant
- Ticket: main support tickets
- ActivityLog: audit trail of changes to tenant records
"""

from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Integer, Index, Uuid
from sqlalchemy.orm import relationship

from conductor.core.database import TenantBase
from conductor.models.base import JSONType, TenantScopedMixin, isoformat

TICKET_STATUSES = ("novo", "aberto", "em_andamento", "resolvido", "fechado")
TICKET_PRIORITIES = ("low", "medium", "high", "critical")


class TicketCategory(TenantScopedMixin, TenantBase):
    __tablename__ = "ticket_categories"
    __table_args__ = (Index("idx_ticket_categories_tenant_id", "tenant_id"),)

    name = Column(String(100), nullable=False)
    description = Column(Text)
    color = Column(String(7))
    icon = Column(String(50))
    sort_order = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)

    subcategories = relationship("TicketSubcategory", back_populates="category", cascade="all, delete-orphan")


class TicketSubcategory(TenantScopedMixin, TenantBase):
    __tablename__ = "ticket_subcategories"
    __table_args__ = (
        Index("idx_ticket_subcategories_tenant_id", "tenant_id"),
        Index("idx_ticket_subcategories_category_id", "category_id"),
    )

    category_id = Column(Uuid, ForeignKey("ticket_categories.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    color = Column(String(7))
    icon = Column(String(50))
    sort_order = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)

    category = relationship("TicketCategory", back_populates="subcategories")
    actions = relationship("TicketAction", back_populates="subcategory", cascade="all, delete-orphan")


class TicketAction(TenantScopedMixin, TenantBase):
    __tablename__ = "ticket_actions"
    __table_args__ = (
        Index("idx_ticket_actions_tenant_id", "tenant_id"),
        Index("idx_ticket_actions_subcategory_id", "subcategory_id"),
    )

    subcategory_id = Column(Uuid, ForeignKey("ticket_subcategories.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    estimated_time_minutes = Column(Integer)
    action_type = Column(String(50))
    color = Column(String(7))
    icon = Column(String(50))
    sort_order = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)

    subcategory = relationship("TicketSubcategory", back_populates="actions")


class Ticket(TenantScopedMixin, TenantBase):
    """
    Main ticket model representing a customer support interaction.
    """
    __tablename__ = "tickets"
    __table_args__ = (
        Index("idx_tickets_tenant_id", "tenant_id"),
        Index("idx_tickets_status", "status"),
        Index("idx_tickets_assigned_to_id", "assigned_to_id"),
        Index("idx_tickets_created_at", "created_at"),
        Index("idx_tickets_customer_id", "customer_id"),
    )

    number = Column(String(20), nullable=False, unique=True)
    subject = Column(String(500), nullable=False)
    description = Column(Text)

    status = Column(String(20), nullable=False, default="novo")
    priority = Column(String(20), nullable=False, default="medium")
    impact = Column(String(20))
    urgency = Column(String(20))

    category_id = Column(Uuid, ForeignKey("ticket_categories.id", ondelete="SET NULL"))
    customer_id = Column(Uuid, ForeignKey("customers.id", ondelete="SET NULL"))
    company_id = Column(Uuid, ForeignKey("companies.id", ondelete="SET NULL"))
    assigned_to_id = Column(Uuid)

    tags = Column(JSONType, default=list)  # ["billing", "urgent"]
    resolved_at = Column(DateTime(timezone=True))

    def __repr__(self):
        return f"<Ticket {self.number} - {self.status}>"

    def to_dict(self):
        """Convert ticket to dictionary for API responses and SLA rule matching."""
        return {
            "id": str(self.id),
            "number": self.number,
            "subject": self.subject,
            "status": self.status,
            "priority": self.priority,
            "impact": self.impact,
            "urgency": self.urgency,
            "category_id": str(self.category_id) if self.category_id else None,
            "customer_id": str(self.customer_id) if self.customer_id else None,
            "company_id": str(self.company_id) if self.company_id else None,
            "assigned_to_id": str(self.assigned_to_id) if self.assigned_to_id else None,
            "tags": self.tags or [],
            "created_at": isoformat(self.created_at),
            "resolved_at": isoformat(self.resolved_at),
        }


class ActivityLog(TenantScopedMixin, TenantBase):
    __tablename__ = "activity_logs"
    __table_args__ = (
        Index("idx_activity_logs_tenant_id", "tenant_id"),
        Index("idx_activity_logs_entity", "entity_type", "entity_id"),
    )

    entity_type = Column(String(50), nullable=False)  # ticket, sla_instance, expense_document, ...
    entity_id = Column(Uuid, nullable=False)
    action = Column(String(50), nullable=False)
    details = Column(JSONType, default=dict)
    performed_by = Column(String(255))
