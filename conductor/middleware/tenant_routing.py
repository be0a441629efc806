"""
Tenant Routing Middleware

Identifies and sets the current tenant for each request based on:
1. Subdomain (e.g., acme.conductor.app)
2. API key header (X-API-Key, matched by SHA256 hash)

The SaaS admin key never identifies a tenant. The tenant context is
always cleared after each request.

Security features:
- Rate limiting: 100/minute, 1000/hour per IP on identification attempts
"""
from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response, JSONResponse
from typing import Dict, List, Optional, Tuple
from uuid import UUID
import hashlib
import hmac
import logging
import time
from collections import defaultdict

from conductor.core.config import settings
from conductor.core.database import get_db_session
from conductor.middleware.error_handling import RateLimitError, ServiceUnavailableError, create_error_response
from conductor.middleware.tenant_context import set_current_tenant_id, clear_tenant_context
from conductor.models.tenant import Tenant

logger = logging.getLogger(__name__)

RESERVED_SUBDOMAINS = {"api", "www", "staging", "production", "admin"}


def hash_api_key(api_key: str) -> str:
    """SHA256 hex digest used to store and look up tenant API keys."""
    return hashlib.sha256(api_key.encode()).hexdigest()


def is_admin_key(api_key: Optional[str]) -> bool:
    expected = settings.admin_key
    if not api_key or not expected:
        return False
    return hmac.compare_digest(api_key, expected)


def extract_subdomain(host: str) -> Optional[str]:
    """
    Extract tenant slug from a Host header.

    Examples:
        acme.conductor.app      -> acme
        acme.conductor.app:8000 -> acme
        localhost:8000          -> None
        www.conductor.app       -> None (reserved)
    """
    if not host:
        return None
    host = host.split(":")[0]
    if "localhost" in host or host.replace(".", "").isdigit():
        return None

    parts = host.split(".")
    if len(parts) < 3:  # Need at least subdomain.domain.tld
        return None

    subdomain = parts[0].lower()
    if subdomain in RESERVED_SUBDOMAINS:
        return None
    return subdomain


class TenantIdentificationRateLimiter:
    """
    Rate limiter for tenant identification to prevent enumeration and DoS.

    Limits:
    - 100 requests per minute per IP address
    - 1000 requests per hour per IP address
    """

    def __init__(self, per_minute: int = 100, per_hour: int = 1000):
        self.per_minute = per_minute
        self.per_hour = per_hour
        self.minute_buckets: Dict[str, List[float]] = defaultdict(list)
        self.hour_buckets: Dict[str, List[float]] = defaultdict(list)
        self.cleanup_interval = 60
        self.last_cleanup = time.time()

    def is_allowed(self, ip_address: str, now: Optional[float] = None) -> Tuple[bool, Optional[str]]:
        """
        Check if request from IP is allowed.

        Returns:
            (is_allowed, retry_after_message)
        """
        now = time.time() if now is None else now

        if now - self.last_cleanup > self.cleanup_interval:
            self._cleanup_old_entries(now)

        one_minute_ago = now - 60
        one_hour_ago = now - 3600

        self.minute_buckets[ip_address] = [ts for ts in self.minute_buckets[ip_address] if ts > one_minute_ago]
        self.hour_buckets[ip_address] = [ts for ts in self.hour_buckets[ip_address] if ts > one_hour_ago]

        if len(self.minute_buckets[ip_address]) >= self.per_minute:
            return False, f"Rate limit exceeded: {self.per_minute} requests per minute. Try again in 60 seconds."

        if len(self.hour_buckets[ip_address]) >= self.per_hour:
            return False, f"Rate limit exceeded: {self.per_hour} requests per hour. Try again later."

        self.minute_buckets[ip_address].append(now)
        self.hour_buckets[ip_address].append(now)

        return True, None

    def _cleanup_old_entries(self, now: float):
        """Remove IPs with no recent requests."""
        one_hour_ago = now - 3600

        ips_to_remove = [
            ip for ip, timestamps in self.hour_buckets.items()
            if not timestamps or all(ts < one_hour_ago for ts in timestamps)
        ]
        for ip in ips_to_remove:
            self.hour_buckets.pop(ip, None)
            self.minute_buckets.pop(ip, None)

        self.last_cleanup = now
        logger.debug(f"Rate limiter cleanup: removed {len(ips_to_remove)} IPs")


rate_limiter = TenantIdentificationRateLimiter()


class TenantRoutingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to identify and set current tenant from request.

    Tenant identification strategies (in order):
    1. Subdomain routing (acme.conductor.app)
    2. API key header (X-API-Key)

    Requests without tenant identification are passed through without
    context; tenant-scoped routes reject them through their dependencies.
    """

    PUBLIC_PATHS = {
        "/",
        "/health",
        "/health/ready",
        "/health/live",
        "/metrics",
        "/docs",
        "/redoc",
        "/openapi.json",
    }

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        if self._is_public_path(request.url.path):
            return await call_next(request)

        subdomain = extract_subdomain(request.headers.get("host", ""))
        api_key = request.headers.get("X-API-Key")
        if is_admin_key(api_key):
            api_key = None

        # Nothing to identify: no DB round trip, no rate limit bucket
        if not subdomain and not api_key:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        is_allowed, error_message = rate_limiter.is_allowed(client_ip)

        if not is_allowed:
            logger.warning(
                "tenant_routing_rate_limit_exceeded",
                extra={
                    "ip": client_ip,
                    "path": request.url.path,
                    "user_agent": request.headers.get("user-agent", "")
                }
            )
            content, status_code = create_error_response(
                RateLimitError(error_message, retry_after=60),
                correlation_id=getattr(request.state, "correlation_id", None)
            )
            return JSONResponse(status_code=status_code, content=content, headers={"Retry-After": "60"})

        try:
            tenant_id = await self._identify(subdomain, api_key)
        except Exception as e:
            logger.error(
                "tenant_routing_error",
                extra={"error": str(e), "path": request.url.path},
                exc_info=True
            )
            content, status_code = create_error_response(
                ServiceUnavailableError("Tenant lookup unavailable", retry_after=5),
                correlation_id=getattr(request.state, "correlation_id", None)
            )
            return JSONResponse(status_code=status_code, content=content)

        if not tenant_id:
            logger.info(
                "tenant_not_identified",
                extra={
                    "path": request.url.path,
                    "host": request.headers.get("host"),
                    "has_api_key": api_key is not None,
                }
            )
            return await call_next(request)

        set_current_tenant_id(tenant_id)
        logger.info("tenant_identified", extra={"tenant_id": str(tenant_id), "path": request.url.path})

        try:
            return await call_next(request)
        finally:
            clear_tenant_context()

    def _is_public_path(self, path: str) -> bool:
        """Check if path is public and doesn't require tenant."""
        return path in self.PUBLIC_PATHS or path.startswith("/docs") or path.startswith("/redoc")

    async def _identify(self, subdomain: Optional[str], api_key: Optional[str]) -> Optional[UUID]:
        async with get_db_session() as db:
            if subdomain:
                tenant = await Tenant.get_by_slug(db, subdomain)
                if tenant and tenant.is_active:
                    logger.debug(f"Tenant identified by subdomain: {subdomain}")
                    return tenant.id

            if api_key:
                tenant = await Tenant.get_by_api_key_hash(db, hash_api_key(api_key))
                if tenant and tenant.is_active:
                    logger.debug(f"Tenant identified by API key: {tenant.slug}")
                    return tenant.id

        return None
