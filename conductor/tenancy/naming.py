"""
Tenant schema naming.

Every tenant owns one PostgreSQL schema named ``tenant_<uuid>`` where the
dashes of the UUID are replaced by underscores, e.g.::

    3f2b6c1e-8d4a-4f5e-9c1b-2a7d9e0f1b2c -> tenant_3f2b6c1e_8d4a_4f5e_9c1b_2a7d9e0f1b2c
"""
import re
from typing import Optional, Union
from uuid import UUID

TENANT_SCHEMA_PREFIX = "tenant_"

_SCHEMA_RE = re.compile(
    r"^tenant_([0-9a-f]{8})_([0-9a-f]{4})_([0-9a-f]{4})_([0-9a-f]{4})_([0-9a-f]{12})$"
)


def tenant_schema_name(tenant_id: Union[UUID, str]) -> str:
    """Return the schema name for a tenant id (UUID or its string form)."""
    normalized = UUID(str(tenant_id))
    return f"{TENANT_SCHEMA_PREFIX}{str(normalized).replace('-', '_')}"


def parse_tenant_schema_name(schema_name: str) -> Optional[UUID]:
    """Return the tenant UUID encoded in a schema name, or None if it is not a tenant schema."""
    match = _SCHEMA_RE.match(schema_name or "")
    if not match:
        return None
    return UUID("-".join(match.groups()))


def is_tenant_schema(schema_name: str) -> bool:
    return parse_tenant_schema_name(schema_name) is not None


def quote_schema(schema_name: str) -> str:
    """
    Quote a tenant schema name for DDL.

    Only well-formed tenant schema names are accepted, so the result is
    safe to interpolate into CREATE/DROP SCHEMA statements.

    Raises:
        ValueError: If the name is not a tenant schema name
    """
    if not is_tenant_schema(schema_name):
        raise ValueError(f"Not a tenant schema name: {schema_name!r}")
    return f'"{schema_name}"'
