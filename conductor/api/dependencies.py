"""
API Dependencies

Shared dependencies for FastAPI endpoints: admin authentication, the
request rate limiter, and tenant resolution for tenant-scoped routes.
"""
import hmac
from typing import Optional

from fastapi import Depends
from fastapi.security import APIKeyHeader
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from conductor.core.config import settings
from conductor.core.database import get_db, get_tenant_session
from conductor.core.exceptions import TenantNotFoundError
from conductor.middleware.error_handling import AuthenticationError, AuthorizationError, ServiceUnavailableError
from conductor.middleware.logging_config import get_logger, log_security_event
from conductor.middleware.tenant_context import get_current_tenant_id
from conductor.middleware.tenant_routing import hash_api_key
from conductor.models.tenant import Tenant

logger = get_logger(__name__)

# API Key header scheme
api_key_header_scheme = APIKeyHeader(name="X-API-Key", auto_error=False)

# Rate limiter shared by app.state and endpoint decorators
limiter = Limiter(key_func=get_remote_address)


async def require_api_key(api_key: Optional[str] = Depends(api_key_header_scheme)):
    """
    Dependency that requires the SaaS admin key.

    Usage:
        @router.get("/protected", dependencies=[Depends(require_api_key)])
        async def protected_endpoint():
            ...

    Raises:
        ServiceUnavailableError: 503 if ADMIN_KEY is not configured
        AuthenticationError: 401 if the header is missing
        AuthorizationError: 403 if the key does not match
    """
    expected_key = settings.admin_key

    if not expected_key:
        logger.error("no_admin_key_configured", message="ADMIN_KEY not set - admin endpoints disabled")
        raise ServiceUnavailableError("Admin API not configured")

    if not api_key:
        raise AuthenticationError("Missing API key. Provide X-API-Key header.")

    if not hmac.compare_digest(api_key, expected_key):
        log_security_event("invalid_admin_key", severity="warning", key_prefix=api_key[:4])
        raise AuthorizationError("Invalid API key")

    logger.debug("api_key_validated")
    return {"authenticated": True}


async def require_tenant(
    api_key: Optional[str] = Depends(api_key_header_scheme),
    db: AsyncSession = Depends(get_db),
) -> Tenant:
    """
    Resolve the tenant identified by TenantRoutingMiddleware and check its key.

    A subdomain only selects the tenant; access needs the tenant's own
    X-API-Key.

    Raises:
        AuthenticationError: 401 if the tenant is not identified or the key is missing
        AuthorizationError: 403 if the key does not belong to the identified tenant
        TenantNotFoundError: 404 if the tenant vanished or was deactivated
    """
    tenant_id = get_current_tenant_id()
    if tenant_id is None:
        raise AuthenticationError(
            "Tenant not identified. Use the tenant subdomain or a tenant X-API-Key."
        )

    if not api_key:
        raise AuthenticationError("Missing tenant API key. Provide X-API-Key header.")

    tenant = await Tenant.get_by_id(db, tenant_id)
    if tenant is None or not tenant.is_active:
        raise TenantNotFoundError(f"Tenant {tenant_id} not found", {"tenant_id": str(tenant_id)})

    if not tenant.api_key_hash or not hmac.compare_digest(hash_api_key(api_key), tenant.api_key_hash):
        log_security_event("invalid_tenant_key", severity="warning", tenant_id=str(tenant_id), key_prefix=api_key[:4])
        raise AuthorizationError("API key does not belong to this tenant")

    return tenant


async def get_tenant_db(tenant: Tenant = Depends(require_tenant)):
    """Session routed to the current tenant's schema; commits on success."""
    async with get_tenant_session(tenant.id) as session:
        yield session
