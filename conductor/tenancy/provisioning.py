"""
Tenant Auto-Provisioning

Creates a tenant end to end inside the caller's transaction:
1. Register the tenant in shared.tenants (slug must be free)
2. CREATE SCHEMA tenant_<uuid>
3. Create every TenantBase table and index inside that schema
4. Seed the default ticket taxonomy and SLA definition
5. Validate the table count; an invalid schema is dropped

Also recovers schemas with missing tables and tears tenants down.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
import hashlib
import logging
import re
import secrets
import unicodedata
import uuid

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from conductor.core.database import TenantBase
from conductor.core.exceptions import TenantAlreadyExistsError, TenantSchemaError
from conductor.models.base import utcnow
from conductor.models.tenant import Tenant
from conductor.tenancy.naming import quote_schema
from conductor.tenancy.schema_validator import SchemaReport, TableCountValidator, validate_tenant_schema
from conductor.tenancy.seed import seed_tenant_defaults

logger = logging.getLogger(__name__)


def slugify(name: str) -> str:
    """
    URL-safe slug: lowercase, accents stripped, anything else becomes '-'.

    >>> slugify("Ação & Companhia Ltda.")
    'acao-companhia-ltda'
    """
    normalized = unicodedata.normalize("NFKD", (name or "").lower())
    ascii_only = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    slug = re.sub(r"[^a-z0-9-]", "-", ascii_only)
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-")


def generate_api_key() -> Tuple[str, str]:
    """Return (plain key, sha256 hex). Only the hash is stored."""
    plain = secrets.token_urlsafe(32)
    return plain, hashlib.sha256(plain.encode()).hexdigest()


def create_tenant_tables(conn: Connection, schema_name: Optional[str], checkfirst: bool = True) -> None:
    """Create all tenant tables; ``schema_name=None`` creates them unqualified."""
    if schema_name:
        conn = conn.execution_options(schema_translate_map={None: schema_name})
    TenantBase.metadata.create_all(conn, checkfirst=checkfirst)


def _create_and_seed(conn: Connection, schema_name: str, tenant_id: uuid.UUID) -> Dict[str, int]:
    create_tenant_tables(conn, schema_name, checkfirst=False)
    translated = conn.execution_options(schema_translate_map={None: schema_name})
    return seed_tenant_defaults(translated, tenant_id)


@dataclass
class ProvisioningResult:
    tenant: Tenant
    api_key: str
    report: SchemaReport
    seeded: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant": self.tenant.to_dict(),
            "api_key": self.api_key,
            "schema": self.report.to_dict(),
            "seeded": self.seeded,
        }


class TenantProvisioningService:
    """Provision, recover and deprovision tenant schemas."""

    def __init__(self, validator: TableCountValidator = None):
        self.validator = validator or TableCountValidator()

    async def provision(
        self,
        db: AsyncSession,
        name: str,
        slug: Optional[str] = None,
        plan: str = "free",
        settings: Optional[Dict[str, Any]] = None,
        environment: str = "production",
    ) -> ProvisioningResult:
        """
        Create a tenant with its schema, tables and default data.

        The caller owns the transaction; on error it is rolled back with
        everything created here.

        Raises:
            TenantAlreadyExistsError: Slug already taken
            TenantSchemaError: Schema creation failed or the result is incomplete
        """
        slug = slug or slugify(name)
        if not slug:
            raise TenantSchemaError("Cannot derive a slug from the tenant name", details={"name": name})

        if await Tenant.get_by_slug(db, slug):
            raise TenantAlreadyExistsError(f"Tenant '{slug}' already exists", details={"slug": slug})

        plain_key, key_hash = generate_api_key()
        tenant = Tenant(
            name=name,
            slug=slug,
            plan=plan,
            api_key_hash=key_hash,
            settings=settings or {},
            features={},
            environment=environment,
            is_active=True,
        )
        db.add(tenant)
        await db.flush()

        schema_name = tenant.schema_name
        logger.info(f"Provisioning tenant {slug} into schema {schema_name}")

        try:
            async with db.begin_nested():
                conn = await db.connection()
                await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {quote_schema(schema_name)}"))
                seeded = await conn.run_sync(_create_and_seed, schema_name, tenant.id)
        except SQLAlchemyError as e:
            logger.error(f"Schema creation failed for tenant {slug}: {e}")
            raise TenantSchemaError(
                f"Could not create schema for tenant '{slug}'",
                details={"schema_name": schema_name, "error": str(e)},
            ) from e

        report = await self.validator.validate(db, schema_name)
        report.tenant_id = str(tenant.id)
        if not report.is_valid:
            await self._drop_schema(db, schema_name)
            raise TenantSchemaError(
                f"Schema for tenant '{slug}' failed validation",
                details=report.to_dict(),
            )

        tenant.provisioned_at = utcnow()
        await db.flush()

        logger.info(f"Tenant {slug} provisioned: {report.table_count} tables, seeded {seeded}")
        return ProvisioningResult(tenant=tenant, api_key=plain_key, report=report, seeded=seeded)

    async def recover(self, db: AsyncSession, tenant: Tenant) -> SchemaReport:
        """Recreate the schema and any missing tables/indexes, then revalidate."""
        schema_name = tenant.schema_name
        logger.info(f"Recovering schema {schema_name} for tenant {tenant.slug}")

        conn = await db.connection()
        await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {quote_schema(schema_name)}"))
        await conn.run_sync(create_tenant_tables, schema_name, True)

        if tenant.provisioned_at is None:
            tenant.provisioned_at = utcnow()
        await db.flush()

        return await validate_tenant_schema(db, tenant)

    async def deprovision(self, db: AsyncSession, tenant: Tenant) -> None:
        """Drop the tenant schema (CASCADE) and deactivate the tenant."""
        await self._drop_schema(db, tenant.schema_name)
        tenant.is_active = False
        await db.flush()
        logger.warning(f"Tenant {tenant.slug} deprovisioned, schema {tenant.schema_name} dropped")

    async def _drop_schema(self, db: AsyncSession, schema_name: str) -> None:
        conn = await db.connection()
        await conn.execute(text(f"DROP SCHEMA IF EXISTS {quote_schema(schema_name)} CASCADE"))


provisioning_service = TenantProvisioningService()
