"""
Tenant Resource Management

Per-plan quotas and usage collection for tenant schemas. Usage is read
from the tenant's own tables plus PostgreSQL relation sizes.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from conductor.core.exceptions import QuotaExceededError
from conductor.models.base import utcnow
from conductor.models.customer import Customer
from conductor.models.expense import ExpenseDocument
from conductor.models.ticket import Ticket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceQuota:
    max_connections: int
    max_query_time_ms: int
    max_data_transfer_mb_per_hour: int
    max_storage_mb: int
    max_tickets_per_month: int
    max_users: int
    max_customers: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


PLAN_QUOTAS: Dict[str, ResourceQuota] = {
    "free": ResourceQuota(5, 10000, 100, 100, 50, 3, 100),
    "basic": ResourceQuota(10, 5000, 500, 1024, 500, 10, 1000),
    "premium": ResourceQuota(20, 3000, 2048, 10240, 5000, 50, 10000),
    "enterprise": ResourceQuota(50, 2000, 10240, 102400, 50000, 1000, 100000),
}

# resource name -> (usage field, quota field)
RESOURCE_LIMITS = {
    "tickets": ("tickets_this_month", "max_tickets_per_month"),
    "customers": ("customers", "max_customers"),
    "storage": ("storage_mb", "max_storage_mb"),
}


@dataclass
class ResourceUsage:
    tickets_this_month: int = 0
    customers: int = 0
    storage_mb: float = 0.0
    documents: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def get_quota(plan: Optional[str]) -> ResourceQuota:
    """Quota for a plan; unknown plans get the free tier."""
    quota = PLAN_QUOTAS.get(plan or "free")
    if quota is None:
        logger.warning(f"Unknown plan '{plan}', falling back to free quotas")
        return PLAN_QUOTAS["free"]
    return quota


def check_limits(quota: ResourceQuota, usage: ResourceUsage) -> Dict[str, Any]:
    flags: Dict[str, Any] = {}
    exceeded = []
    for resource, (usage_field, quota_field) in RESOURCE_LIMITS.items():
        reached = getattr(usage, usage_field) >= getattr(quota, quota_field)
        flags[f"{resource}_limit_reached"] = reached
        if reached:
            exceeded.append(resource)
    flags["exceeded"] = exceeded
    return flags


def enforce(quota: ResourceQuota, usage: ResourceUsage, resource: str, increment: float = 0) -> None:
    """
    Raise QuotaExceededError if adding ``increment`` of ``resource`` would pass the quota.

    Raises:
        QuotaExceededError: Usage already at/over the limit, or the increment pushes it over
        KeyError: Unknown resource name
    """
    usage_field, quota_field = RESOURCE_LIMITS[resource]
    current = getattr(usage, usage_field)
    limit = getattr(quota, quota_field)

    over = current + increment > limit if increment else current >= limit
    if over:
        raise QuotaExceededError(
            f"Plan limit reached for {resource}",
            details={"resource": resource, "current": current, "limit": limit, "requested": increment},
        )


def month_start(now: datetime = None) -> datetime:
    now = now or utcnow()
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


async def fetch_storage_mb(db: AsyncSession, schema_name: str) -> float:
    result = await db.execute(
        text(
            "SELECT COALESCE(SUM(pg_total_relation_size(quote_ident(schemaname) || '.' || quote_ident(tablename))), 0) "
            "FROM pg_tables WHERE schemaname = :schema"
        ),
        {"schema": schema_name},
    )
    size_bytes = result.scalar() or 0
    return round(int(size_bytes) / (1024 * 1024), 2)


async def collect_usage(db: AsyncSession, tenant, tenant_db: AsyncSession = None, now: datetime = None) -> ResourceUsage:
    """
    Gather current usage for a tenant.

    Args:
        db: Session for the shared schema (relation sizes)
        tenant: Tenant model
        tenant_db: Session routed to the tenant schema; defaults to ``db``
        now: Reference time for the monthly ticket window
    """
    tenant_db = tenant_db or db

    tickets = await tenant_db.scalar(
        select(func.count(Ticket.id)).where(Ticket.created_at >= month_start(now))
    )
    customers = await tenant_db.scalar(select(func.count(Customer.id)))
    documents = await tenant_db.scalar(select(func.count(ExpenseDocument.id)))
    storage_mb = await fetch_storage_mb(db, tenant.schema_name)

    usage = ResourceUsage(
        tickets_this_month=tickets or 0,
        customers=customers or 0,
        storage_mb=storage_mb,
        documents=documents or 0,
    )
    logger.debug(f"Usage for tenant {tenant.slug}: {usage}")
    return usage
