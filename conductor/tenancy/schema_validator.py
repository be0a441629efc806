"""
Tenant Schema Validation

Compares the tables declared on TenantBase with what actually exists in a
``tenant_<uuid>`` schema and produces a graded report.

Three validators run against each schema:
- TableCountValidator: every declared table exists (core tables flagged)
- ForeignKeyTypeValidator: FK columns share the type of the column they reference
- SchemaValidationResolver: column presence/types plus tenant_id conventions

The comparison functions are pure and take plain dicts/sets, so they can be
exercised without PostgreSQL. The validator classes only add the
``information_schema`` / ``pg_indexes`` queries.

Grades:
- excellent: no critical issues, no warnings
- good: no critical issues, at most 2 warnings
- needs_attention: at most 1 critical issue
- critical: anything worse
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set
import logging
import re

from sqlalchemy import MetaData, text
from sqlalchemy.dialects import postgresql
from sqlalchemy.ext.asyncio import AsyncSession

from conductor.core.database import TenantBase
from conductor.models.base import utcnow
from conductor.models.tenant import Tenant
from conductor.middleware.metrics import track_schema_validation

logger = logging.getLogger(__name__)

SEVERITY_CRITICAL = "critical"
SEVERITY_WARNING = "warning"
SEVERITY_INFO = "info"

CORE_TABLES = (
    "companies",
    "customers",
    "beneficiaries",
    "tickets",
    "ticket_categories",
    "activity_logs",
)

# information_schema spelling for the names SQLAlchemy compiles to
_TYPE_ALIASES = {
    "varchar": "character varying",
    "char": "character",
    "float": "double precision",
    "float8": "double precision",
    "real": "real",
    "int": "integer",
    "int4": "integer",
    "int8": "bigint",
    "bool": "boolean",
    "timestamp": "timestamp without time zone",
    "timestamptz": "timestamp with time zone",
}


@dataclass
class SchemaIssue:
    severity: str
    code: str
    message: str
    table: Optional[str] = None
    column: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity,
            "code": self.code,
            "message": self.message,
            "table": self.table,
            "column": self.column,
            "details": self.details,
        }


@dataclass
class SchemaReport:
    schema_name: str
    tenant_id: Optional[str] = None
    issues: List[SchemaIssue] = field(default_factory=list)
    table_count: int = 0
    expected_table_count: int = 0
    checked_at: datetime = field(default_factory=utcnow)

    @property
    def critical_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == SEVERITY_CRITICAL)

    @property
    def warning_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == SEVERITY_WARNING)

    @property
    def is_valid(self) -> bool:
        return self.critical_count == 0

    @property
    def grade(self) -> str:
        return grade_for(self.critical_count, self.warning_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_name": self.schema_name,
            "tenant_id": self.tenant_id,
            "is_valid": self.is_valid,
            "grade": self.grade,
            "table_count": self.table_count,
            "expected_table_count": self.expected_table_count,
            "critical_count": self.critical_count,
            "warning_count": self.warning_count,
            "issues": [issue.to_dict() for issue in self.issues],
            "checked_at": self.checked_at.isoformat(),
        }


def grade_for(critical_count: int, warning_count: int) -> str:
    if critical_count == 0 and warning_count == 0:
        return "excellent"
    if critical_count == 0 and warning_count <= 2:
        return "good"
    if critical_count <= 1:
        return "needs_attention"
    return "critical"


# ==================== Declared schema ====================

def expected_tables(metadata: MetaData = None) -> Set[str]:
    metadata = metadata if metadata is not None else TenantBase.metadata
    return set(metadata.tables.keys())


def normalize_type(type_name: str) -> str:
    """
    Normalise a type name to information_schema spelling.

    ``VARCHAR(255)`` -> ``character varying``, ``FLOAT`` -> ``double precision``,
    ``TIMESTAMP WITH TIME ZONE`` -> ``timestamp with time zone``.
    """
    base = re.sub(r"\(.*?\)", "", type_name or "").strip().lower()
    base = re.sub(r"\s+", " ", base)
    return _TYPE_ALIASES.get(base, base)


def declared_column_types(metadata: MetaData = None) -> Dict[str, Dict[str, str]]:
    """Column types per table, compiled for PostgreSQL and normalised."""
    metadata = metadata if metadata is not None else TenantBase.metadata
    dialect = postgresql.dialect()

    declared = {}
    for table_name, table in metadata.tables.items():
        declared[table_name] = {
            column.name: normalize_type(column.type.compile(dialect=dialect))
            for column in table.columns
        }
    return declared


def declared_indexes(metadata: MetaData = None) -> Dict[str, Set[str]]:
    metadata = metadata if metadata is not None else TenantBase.metadata
    return {
        table_name: {index.name for index in table.indexes if index.name}
        for table_name, table in metadata.tables.items()
    }


# ==================== Pure comparisons ====================

def compare_tables(expected: Iterable[str], actual: Iterable[str]) -> List[SchemaIssue]:
    """Missing tables are critical (core ones get their own code); extras are info."""
    expected_set = set(expected)
    actual_set = set(actual)
    issues = []

    for table in sorted(expected_set - actual_set):
        if table in CORE_TABLES:
            issues.append(SchemaIssue(
                SEVERITY_CRITICAL, "missing_core_table",
                f"Core table '{table}' is missing", table=table,
            ))
        else:
            issues.append(SchemaIssue(
                SEVERITY_CRITICAL, "missing_table",
                f"Table '{table}' is missing", table=table,
            ))

    for table in sorted(actual_set - expected_set):
        issues.append(SchemaIssue(
            SEVERITY_INFO, "unexpected_table",
            f"Table '{table}' is not part of the tenant model", table=table,
        ))

    present = len(expected_set & actual_set)
    if present < len(expected_set):
        issues.append(SchemaIssue(
            SEVERITY_CRITICAL, "table_count_below_expected",
            f"Schema has {present} of {len(expected_set)} expected tables",
            details={"table_count": present, "expected": len(expected_set)},
        ))

    return issues


def compare_columns(
    declared: Dict[str, Dict[str, str]],
    actual: Dict[str, Dict[str, str]],
) -> List[SchemaIssue]:
    """
    Compare declared column types with information_schema.columns.

    Tables absent from ``actual`` are skipped; the table check reports them.
    """
    issues = []

    for table, columns in sorted(declared.items()):
        if table not in actual:
            continue
        live = actual[table]

        for column, declared_type in sorted(columns.items()):
            if column not in live:
                issues.append(SchemaIssue(
                    SEVERITY_CRITICAL, "missing_column",
                    f"Column '{table}.{column}' is missing", table=table, column=column,
                ))
                continue

            live_type = normalize_type(live[column])
            if live_type != declared_type:
                issues.append(SchemaIssue(
                    SEVERITY_WARNING, "column_type_mismatch",
                    f"Column '{table}.{column}' is {live_type}, expected {declared_type}",
                    table=table, column=column,
                    details={"expected": declared_type, "actual": live_type},
                ))

        for column in sorted(set(live) - set(columns)):
            issues.append(SchemaIssue(
                SEVERITY_INFO, "unexpected_column",
                f"Column '{table}.{column}' is not part of the tenant model", table=table, column=column,
            ))

    return issues


def check_tenant_conventions(
    actual_columns: Dict[str, Dict[str, str]],
    actual_indexes: Dict[str, Set[str]],
    tables: Iterable[str] = None,
) -> List[SchemaIssue]:
    """Every tenant table needs a tenant_id column and an idx_<table>_tenant_id index."""
    issues = []
    tables = sorted(tables if tables is not None else expected_tables())

    for table in tables:
        if table not in actual_columns:
            continue

        if "tenant_id" not in actual_columns[table]:
            issues.append(SchemaIssue(
                SEVERITY_CRITICAL, "missing_tenant_id",
                f"Table '{table}' has no tenant_id column", table=table, column="tenant_id",
            ))
            continue

        index_name = f"idx_{table}_tenant_id"
        if index_name not in actual_indexes.get(table, set()):
            issues.append(SchemaIssue(
                SEVERITY_WARNING, "missing_tenant_index",
                f"Index '{index_name}' is missing", table=table, column="tenant_id",
            ))

    return issues


def check_declared_foreign_keys(metadata: MetaData = None) -> List[SchemaIssue]:
    """Model-level check: each FK column type must equal the referenced column type."""
    metadata = metadata if metadata is not None else TenantBase.metadata
    dialect = postgresql.dialect()
    issues = []

    for table_name, table in sorted(metadata.tables.items()):
        for fk in table.foreign_keys:
            local_type = normalize_type(fk.parent.type.compile(dialect=dialect))
            remote_type = normalize_type(fk.column.type.compile(dialect=dialect))
            if local_type != remote_type:
                issues.append(SchemaIssue(
                    SEVERITY_CRITICAL, "foreign_key_type_mismatch",
                    f"FK {table_name}.{fk.parent.name} ({local_type}) references "
                    f"{fk.column.table.name}.{fk.column.name} ({remote_type})",
                    table=table_name, column=fk.parent.name,
                    details={"expected": remote_type, "actual": local_type},
                ))

    return issues


def compare_foreign_key_types(rows: Iterable[Dict[str, Any]]) -> List[SchemaIssue]:
    """
    Live check over FK rows from information_schema.

    Each row has table, column, data_type, ref_table, ref_column, ref_data_type.
    """
    issues = []
    for row in rows:
        local_type = normalize_type(row["data_type"])
        remote_type = normalize_type(row["ref_data_type"])
        if local_type != remote_type:
            issues.append(SchemaIssue(
                SEVERITY_CRITICAL, "foreign_key_type_mismatch",
                f"FK {row['table']}.{row['column']} ({local_type}) references "
                f"{row['ref_table']}.{row['ref_column']} ({remote_type})",
                table=row["table"], column=row["column"],
                details={"expected": remote_type, "actual": local_type},
            ))
    return issues


# ==================== Live validators ====================

async def fetch_tables(db: AsyncSession, schema_name: str) -> List[str]:
    result = await db.execute(
        text(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = :schema AND table_type = 'BASE TABLE'"
        ),
        {"schema": schema_name},
    )
    return [row[0] for row in result.all()]


async def fetch_columns(db: AsyncSession, schema_name: str) -> Dict[str, Dict[str, str]]:
    result = await db.execute(
        text(
            "SELECT table_name, column_name, data_type FROM information_schema.columns "
            "WHERE table_schema = :schema"
        ),
        {"schema": schema_name},
    )
    columns: Dict[str, Dict[str, str]] = {}
    for table, column, data_type in result.all():
        columns.setdefault(table, {})[column] = data_type
    return columns


async def fetch_indexes(db: AsyncSession, schema_name: str) -> Dict[str, Set[str]]:
    result = await db.execute(
        text("SELECT tablename, indexname FROM pg_indexes WHERE schemaname = :schema"),
        {"schema": schema_name},
    )
    indexes: Dict[str, Set[str]] = {}
    for table, index in result.all():
        indexes.setdefault(table, set()).add(index)
    return indexes


_FOREIGN_KEYS_SQL = text("""
    SELECT tc.table_name AS table, kcu.column_name AS column,
           c1.data_type AS data_type,
           ccu.table_name AS ref_table, ccu.column_name AS ref_column,
           c2.data_type AS ref_data_type
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema
    JOIN information_schema.constraint_column_usage ccu
      ON tc.constraint_name = ccu.constraint_name AND tc.table_schema = ccu.table_schema
    JOIN information_schema.columns c1
      ON c1.table_schema = tc.table_schema AND c1.table_name = tc.table_name AND c1.column_name = kcu.column_name
    JOIN information_schema.columns c2
      ON c2.table_schema = ccu.table_schema AND c2.table_name = ccu.table_name AND c2.column_name = ccu.column_name
    WHERE tc.constraint_type = 'FOREIGN KEY' AND tc.table_schema = :schema
""")


class TableCountValidator:
    """Checks that every TenantBase table exists in the schema."""

    def __init__(self, metadata: MetaData = None):
        self.expected = expected_tables(metadata)

    async def validate(self, db: AsyncSession, schema_name: str) -> SchemaReport:
        actual = await fetch_tables(db, schema_name)
        report = SchemaReport(
            schema_name=schema_name,
            issues=compare_tables(self.expected, actual),
            table_count=len(self.expected & set(actual)),
            expected_table_count=len(self.expected),
        )
        logger.info(
            f"Table count for {schema_name}: {report.table_count}/{report.expected_table_count}"
        )
        return report


class ForeignKeyTypeValidator:
    def __init__(self, metadata: MetaData = None):
        self.metadata = metadata

    def validate_declared(self) -> List[SchemaIssue]:
        return check_declared_foreign_keys(self.metadata)

    async def validate(self, db: AsyncSession, schema_name: str) -> List[SchemaIssue]:
        result = await db.execute(_FOREIGN_KEYS_SQL, {"schema": schema_name})
        rows = [dict(row._mapping) for row in result.all()]
        return self.validate_declared() + compare_foreign_key_types(rows)


class SchemaValidationResolver:
    """Column-level comparison plus tenant_id conventions."""

    def __init__(self, metadata: MetaData = None):
        self.metadata = metadata
        self.declared = declared_column_types(metadata)

    async def validate(self, db: AsyncSession, schema_name: str) -> List[SchemaIssue]:
        actual_columns = await fetch_columns(db, schema_name)
        actual_indexes = await fetch_indexes(db, schema_name)

        issues = compare_columns(self.declared, actual_columns)
        issues.extend(check_tenant_conventions(actual_columns, actual_indexes, self.declared.keys()))
        return issues


# ==================== Entry points ====================

async def validate_tenant_schema(db: AsyncSession, tenant) -> SchemaReport:
    """Run all validators against one tenant's schema."""
    report = await TableCountValidator().validate(db, tenant.schema_name)
    report.tenant_id = str(tenant.id)
    report.issues.extend(await ForeignKeyTypeValidator().validate(db, tenant.schema_name))
    report.issues.extend(await SchemaValidationResolver().validate(db, tenant.schema_name))

    track_schema_validation(report.grade)
    logger.info(
        f"Schema validation for tenant {tenant.slug}: grade={report.grade}, "
        f"critical={report.critical_count}, warnings={report.warning_count}"
    )
    return report


def summarize_reports(reports: List[SchemaReport]) -> Dict[str, Any]:
    grades = {"excellent": 0, "good": 0, "needs_attention": 0, "critical": 0}
    for report in reports:
        grades[report.grade] += 1

    total_critical = sum(report.critical_count for report in reports)
    return {
        "total_tenants": len(reports),
        "valid_tenants": sum(1 for report in reports if report.is_valid),
        "grades": grades,
        "total_critical_issues": total_critical,
        "total_warnings": sum(report.warning_count for report in reports),
        "exit_code": 0 if total_critical == 0 else 1,
    }


async def validate_all_tenants(db: AsyncSession) -> Dict[str, Any]:
    """Validate every active tenant. Returns the summary plus per-tenant reports."""
    tenants = await Tenant.list_active(db)
    reports = [await validate_tenant_schema(db, tenant) for tenant in tenants]

    return {
        "summary": summarize_reports(reports),
        "reports": [report.to_dict() for report in reports],
    }
