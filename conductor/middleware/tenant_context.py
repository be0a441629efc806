"""
Tenant Context Management

Provides async-safe context storage for the current tenant ID using
Python's contextvars, so each request (or background task) sees only
its own tenant.

Usage:
    from conductor.middleware.tenant_context import set_current_tenant_id, get_current_tenant_id

    # In middleware
    set_current_tenant_id(tenant.id)

    # In business logic
    tenant_id = require_tenant_context()
    async with get_tenant_session(tenant_id) as db:
        ...
"""
from contextvars import ContextVar
from typing import Optional
from uuid import UUID
import logging

from conductor.core.exceptions import TenantNotFoundError

logger = logging.getLogger(__name__)

_tenant_context: ContextVar[Optional[UUID]] = ContextVar('tenant_id', default=None)


def get_current_tenant_id() -> Optional[UUID]:
    """Get the current tenant ID from context, or None."""
    return _tenant_context.get()


def set_current_tenant_id(tenant_id: UUID) -> None:
    """
    Set the current tenant ID in context.

    Called by the tenant routing middleware after identifying the
    tenant from the request.
    """
    _tenant_context.set(tenant_id)
    logger.debug("tenant_context_set", extra={"tenant_id": str(tenant_id)})


def clear_tenant_context() -> None:
    """Clear the tenant context so no tenant leaks between requests."""
    _tenant_context.set(None)
    logger.debug("tenant_context_cleared")


def require_tenant_context() -> UUID:
    """
    Get current tenant ID, raising error if not set.

    Raises:
        RuntimeError: If no tenant context is set
    """
    tenant_id = get_current_tenant_id()
    if not tenant_id:
        raise RuntimeError(
            "No tenant context set. Ensure tenant routing middleware is enabled "
            "and the request includes tenant identification (subdomain or API key)."
        )
    return tenant_id


class TenantContext:
    """
    Context manager for temporarily setting tenant context.

    Useful for background tasks, scripts and tests.

    Example:
        tenant = await Tenant.get_by_slug(db, "acme")

        with TenantContext(tenant.id):
            report = await metrics_for_current_tenant()
    """

    def __init__(self, tenant_id: UUID):
        self.tenant_id = tenant_id
        self.previous_tenant_id: Optional[UUID] = None

    def __enter__(self):
        self.previous_tenant_id = get_current_tenant_id()
        set_current_tenant_id(self.tenant_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.previous_tenant_id:
            set_current_tenant_id(self.previous_tenant_id)
        else:
            clear_tenant_context()


async def get_current_tenant(db) -> "Tenant":
    """
    Get current tenant model from context.

    Raises:
        RuntimeError: If no tenant context is set
        TenantNotFoundError: If tenant ID is set but tenant not found
    """
    tenant_id = require_tenant_context()

    from conductor.models.tenant import Tenant
    tenant = await Tenant.get_by_id(db, tenant_id)

    if not tenant:
        raise TenantNotFoundError(f"Tenant {tenant_id} not found", {"tenant_id": str(tenant_id)})

    return tenant
