"""Conductor - Database Models"""

from .tenant import Tenant, PLANS
from .customer import Company, Customer, Beneficiary
from .ticket import TicketCategory, TicketSubcategory, TicketAction, Ticket, ActivityLog
from .sla import SlaDefinition, SlaInstance, SlaEvent, SlaViolation
from .expense import ExpenseDocument

__all__ = [
    "Tenant",
    "PLANS",
    "Company",
    "Customer",
    "Beneficiary",
    "TicketCategory",
    "TicketSubcategory",
    "TicketAction",
    "Ticket",
    "ActivityLog",
    "SlaDefinition",
    "SlaInstance",
    "SlaEvent",
    "SlaViolation",
    "ExpenseDocument",
]
