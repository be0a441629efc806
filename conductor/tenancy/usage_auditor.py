"""
Tenant Schema Usage Auditor

Scans the Python sources for code that bypasses tenant schemas: raw SQL
against unqualified tables, hard-coded ``public.`` references and files
that hit the database without any tenant reference.

Optionally inspects ``pg_stat_statements`` for queries that touched
``public.`` tables at runtime.

Usage:
    auditor = TenantSchemaUsageAuditor(root=Path("."))
    result = auditor.audit()
    print(result.summary)
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
import logging
import re

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

PROBLEMATIC_PATTERNS = [
    # raw SELECT through text() without a tenant reference in the statement
    re.compile(r"""text\(\s*[fr]?["'](?![^"']*tenant)[^"']*SELECT[^"']*FROM\s+(?!information_schema|pg_)[a-zA-Z_]+[^"']*["']""", re.IGNORECASE),
    # hard-coded public schema
    re.compile(r"public\."),
    re.compile(r"FROM\s+public\.", re.IGNORECASE),
    re.compile(r"JOIN\s+public\.", re.IGNORECASE),
    # raw DML
    re.compile(r"INSERT\s+INTO\s+[a-zA-Z_]+\s+", re.IGNORECASE),
    re.compile(r"UPDATE\s+[a-zA-Z_]+\s+SET", re.IGNORECASE),
    re.compile(r"DELETE\s+FROM\s+[a-zA-Z_]+\s+", re.IGNORECASE),
]

TENANT_REQUIRED_PATHS = [
    "conductor/api/**/*.py",
    "conductor/services/**/*.py",
    "conductor/sla/**/*.py",
    "conductor/expenses/**/*.py",
    "conductor/models/**/*.py",
]

LEGITIMATE_PUBLIC_USAGE = [
    "conductor/core/database.py",
    "conductor/tenancy/**/*.py",
    "conductor/api/routers/health.py",
    "scripts/**/*.py",
    "alembic/**/*.py",
    "tests/**/*.py",
]

_DB_OPERATIONS = re.compile(r"db\.execute|session\.execute|select\(")
_TENANT_REFERENCE = re.compile(r"tenant_id|tenant_schema|get_tenant_session")

SEVERITIES = ("low", "medium", "high", "critical")


@dataclass
class UsageViolation:
    type: str
    severity: str
    file: str
    line: int = 0
    pattern: Optional[str] = None
    match: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity,
            "file": self.file,
            "line": self.line,
            "pattern": self.pattern,
            "match": self.match,
            "description": self.description,
        }


@dataclass
class AuditResult:
    violations: List[UsageViolation] = field(default_factory=list)
    fixes: List[str] = field(default_factory=list)
    files_audited: int = 0

    @property
    def critical_count(self) -> int:
        return sum(1 for v in self.violations if v.severity == "critical")

    @property
    def summary(self) -> Dict[str, Any]:
        by_severity = {severity: 0 for severity in SEVERITIES}
        by_type: Dict[str, int] = {}
        for violation in self.violations:
            by_severity[violation.severity] = by_severity.get(violation.severity, 0) + 1
            by_type[violation.type] = by_type.get(violation.type, 0) + 1

        return {
            "total_violations": len(self.violations),
            "files_audited": self.files_audited,
            "by_severity": by_severity,
            "by_type": by_type,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "violations": [v.to_dict() for v in self.violations],
            "fixes": self.fixes,
        }


def glob_to_regex(pattern: str) -> re.Pattern:
    """``**`` spans directories, ``*`` stays inside one path segment."""
    parts = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(parts) + "$")


def matches_pattern(path: str, pattern: str) -> bool:
    return bool(glob_to_regex(pattern).match(path))


def violation_severity(match: str) -> str:
    upper = match.upper()
    if "DELETE" in upper or "UPDATE" in upper:
        return "critical"
    if "INSERT" in upper:
        return "high"
    if "SELECT" in upper or "FROM PUBLIC." in upper or "JOIN PUBLIC." in upper:
        return "medium"
    return "low"


def line_number(content: str, position: int) -> int:
    return content.count("\n", 0, position) + 1


def analyze_content(file_path: str, content: str) -> List[UsageViolation]:
    """Apply every problematic pattern to one file's content."""
    violations = []

    for pattern in PROBLEMATIC_PATTERNS:
        for match in pattern.finditer(content):
            violations.append(UsageViolation(
                type="schema_violation",
                severity=violation_severity(match.group(0)),
                file=file_path,
                line=line_number(content, match.start()),
                pattern=pattern.pattern,
                match=match.group(0).strip(),
            ))

    if is_missing_tenant_validation(content):
        violations.append(UsageViolation(
            type="missing_tenant_validation",
            severity="high",
            file=file_path,
            description="File performs database operations without tenant validation",
        ))

    return violations


def is_missing_tenant_validation(content: str) -> bool:
    return bool(_DB_OPERATIONS.search(content)) and not _TENANT_REFERENCE.search(content)


def fix_suggestions(violations: Sequence[UsageViolation]) -> List[str]:
    fixes = []
    for violation in violations:
        if violation.type == "schema_violation":
            fixes.append(f"{violation.file}:{violation.line} - Replace {violation.match} with tenant-aware query")
        elif violation.type == "missing_tenant_validation":
            fixes.append(f"{violation.file} - Use get_tenant_session() or filter by tenant_id")
    return fixes


class TenantSchemaUsageAuditor:
    def __init__(
        self,
        root: Path,
        required_paths: Sequence[str] = None,
        excluded_paths: Sequence[str] = None,
    ):
        self.root = Path(root)
        self.required_paths = list(required_paths or TENANT_REQUIRED_PATHS)
        self.excluded_paths = list(excluded_paths or LEGITIMATE_PUBLIC_USAGE)

    def should_audit(self, relative_path: str) -> bool:
        """Exclusions win over required paths."""
        if any(matches_pattern(relative_path, pattern) for pattern in self.excluded_paths):
            return False
        return any(matches_pattern(relative_path, pattern) for pattern in self.required_paths)

    def files_to_audit(self) -> List[Path]:
        files = []
        for path in sorted(self.root.rglob("*.py")):
            relative = path.relative_to(self.root).as_posix()
            if self.should_audit(relative):
                files.append(path)
        return files

    def audit(self) -> AuditResult:
        logger.info(f"Auditing tenant schema usage under {self.root}")
        result = AuditResult()

        for path in self.files_to_audit():
            relative = path.relative_to(self.root).as_posix()
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Could not audit file {relative}: {e}")
                continue

            result.files_audited += 1
            violations = analyze_content(relative, content)
            result.violations.extend(violations)
            result.fixes.extend(fix_suggestions(violations))

        logger.info(f"Audit complete: {len(result.violations)} violations in {result.files_audited} files")
        return result

    async def audit_runtime(self, db: AsyncSession, result: AuditResult = None) -> AuditResult:
        """Add queries from pg_stat_statements that touched public tables."""
        result = result or AuditResult()
        try:
            rows = (await db.execute(text("""
                SELECT query, calls
                FROM pg_stat_statements
                WHERE query NOT LIKE '%information_schema%'
                  AND query NOT LIKE '%pg_%'
                  AND (query LIKE '%FROM public.%' OR query LIKE '%UPDATE public.%'
                       OR query LIKE '%INSERT INTO public.%')
                ORDER BY calls DESC
                LIMIT 50
            """))).all()
        except SQLAlchemyError as e:
            logger.warning(f"Skipping runtime audit (pg_stat_statements not available): {e}")
            return result

        for query, calls in rows:
            result.violations.append(UsageViolation(
                type="runtime_public_schema_usage",
                severity="high",
                file="<runtime>",
                match=query[:200],
                description=f"{calls} calls",
            ))
            result.fixes.append(f"Runtime query using public schema: {query[:100]}...")
        return result
