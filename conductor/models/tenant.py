"""
Tenant Model for Multi-Tenancy

Represents a customer organisation using Conductor. The registry lives in
the ``shared`` schema; each tenant's business data lives in its own
``tenant_<uuid>`` schema (see conductor.tenancy).
"""
from sqlalchemy import Column, String, Boolean, DateTime, JSON, Uuid, select
from sqlalchemy.sql import func
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, Any, List, Optional
import uuid
import logging

from conductor.core.database import Base
from conductor.tenancy.naming import tenant_schema_name

logger = logging.getLogger(__name__)

PLANS = ("free", "basic", "premium", "enterprise")


class Tenant(Base):
    """
    Tenant registry entry.

    Attributes:
        id: Unique tenant identifier (UUID)
        slug: URL-safe identifier, also the subdomain (e.g., "acme")
        name: Human-readable name
        plan: Subscription plan (free, basic, premium, enterprise)
        api_key_hash: SHA256 hash of tenant API key
        schema_name: PostgreSQL schema holding the tenant tables
        features: Enabled feature flags (JSON)
        settings: Tenant-specific settings (JSON)
        is_active: Whether tenant is active
        environment: production, staging, or development
        provisioned_at: When the tenant schema was created
    """

    __tablename__ = "tenants"
    __table_args__ = {"schema": "shared"}

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    slug = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    plan = Column(String(20), nullable=False, default="free")

    # API access
    api_key_hash = Column(String(255), unique=True, index=True)

    schema_name = Column(String(63), nullable=False)

    # Configuration
    features = Column(JSON, default=dict)
    settings = Column(JSON, default=dict)

    # Status
    is_active = Column(Boolean, default=True, nullable=False)
    environment = Column(String(20), default="production")
    provisioned_at = Column(DateTime(timezone=True))

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __init__(self, **kwargs):
        kwargs.setdefault("id", uuid.uuid4())
        kwargs.setdefault("schema_name", tenant_schema_name(kwargs["id"]))
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<Tenant(slug='{self.slug}', plan='{self.plan}', active={self.is_active})>"

    # ==================== Query Helpers ====================

    @classmethod
    async def get_by_id(cls, db: AsyncSession, tenant_id: uuid.UUID) -> Optional["Tenant"]:
        result = await db.execute(select(cls).where(cls.id == tenant_id))
        return result.scalar_one_or_none()

    @classmethod
    async def get_by_slug(cls, db: AsyncSession, slug: str) -> Optional["Tenant"]:
        result = await db.execute(select(cls).where(cls.slug == slug))
        return result.scalar_one_or_none()

    @classmethod
    async def get_by_api_key_hash(cls, db: AsyncSession, api_key_hash: str) -> Optional["Tenant"]:
        """
        Get tenant by API key hash.

        Args:
            db: Database session
            api_key_hash: SHA256 hash of API key

        Returns:
            Tenant if found, None otherwise
        """
        result = await db.execute(select(cls).where(cls.api_key_hash == api_key_hash))
        return result.scalar_one_or_none()

    @classmethod
    async def list_active(cls, db: AsyncSession, environment: Optional[str] = None) -> List["Tenant"]:
        """
        List all active tenants.

        Args:
            db: Database session
            environment: Optional filter by environment (production, staging, etc.)
        """
        query = select(cls).where(cls.is_active == True).order_by(cls.slug)  # noqa: E712

        if environment:
            query = query.where(cls.environment == environment)

        result = await db.execute(query)
        return list(result.scalars().all())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "slug": self.slug,
            "name": self.name,
            "plan": self.plan,
            "schema_name": self.schema_name,
            "features": self.features or {},
            "settings": self.settings or {},
            "is_active": self.is_active,
            "environment": self.environment,
            "provisioned_at": self.provisioned_at.isoformat() if self.provisioned_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
