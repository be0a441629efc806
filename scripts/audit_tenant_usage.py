#!/usr/bin/env python3
"""
Audit source code (and optionally live queries) for data access that
bypasses tenant schemas.

Exit code 1 when critical violations exist.

Usage:
    python scripts/audit_tenant_usage.py
    python scripts/audit_tenant_usage.py --root /path/to/repo --json
    python scripts/audit_tenant_usage.py --runtime
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from conductor.core.database import get_db_session
from conductor.tenancy.usage_auditor import AuditResult, TenantSchemaUsageAuditor

SEVERITY_ICONS = {"critical": "❌", "high": "🔴", "medium": "⚠️ ", "low": "•"}


async def add_runtime_findings(auditor: TenantSchemaUsageAuditor, result: AuditResult) -> AuditResult:
    async with get_db_session() as db:
        return await auditor.audit_runtime(db, result)


def print_result(result: AuditResult) -> None:
    summary = result.summary
    print(f"\n🔍 Files audited: {summary['files_audited']}")
    print(f"   Violations:    {summary['total_violations']}")
    for severity, count in summary["by_severity"].items():
        if count:
            print(f"   {SEVERITY_ICONS[severity]} {severity}: {count}")

    for violation in result.violations:
        location = f"{violation.file}:{violation.line}" if violation.line else violation.file
        print(f"\n{SEVERITY_ICONS.get(violation.severity, '•')} [{violation.severity}] {location}")
        if violation.description:
            print(f"   {violation.description}")
        if violation.match:
            print(f"   > {violation.match}")

    if result.fixes:
        print("\n🛠️  Suggested fixes:")
        for fix in result.fixes:
            print(f"   - {fix}")


def main():
    parser = argparse.ArgumentParser(description="Audit tenant schema usage")
    parser.add_argument("--root", default=str(Path(__file__).parent.parent), help="Repository root to scan")
    parser.add_argument("--runtime", action="store_true", help="Also inspect pg_stat_statements")
    parser.add_argument("--json", action="store_true", help="Print the JSON report")
    args = parser.parse_args()

    auditor = TenantSchemaUsageAuditor(Path(args.root))
    result = auditor.audit()
    if args.runtime:
        result = asyncio.run(add_runtime_findings(auditor, result))

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print_result(result)

    sys.exit(1 if result.critical_count else 0)


if __name__ == "__main__":
    main()
