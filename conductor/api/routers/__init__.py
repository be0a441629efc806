"""
API Routers

Exports all routers for the FastAPI application.
"""
from .health import router as health_router
from .tenants import router as tenants_router
from .validation import router as validation_router
from .expenses import router as expenses_router
from .sla import router as sla_router
from .tags import router as tags_router
from .metrics import router as metrics_router

__all__ = [
    "health_router",
    "tenants_router",
    "validation_router",
    "expenses_router",
    "sla_router",
    "tags_router",
    "metrics_router",
]
