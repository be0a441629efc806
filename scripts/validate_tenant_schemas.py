#!/usr/bin/env python3
"""
Validate tenant schemas against the declared tenant tables.

Exit code 0 when no critical issue was found, 1 otherwise (usable in CI
and deploy hooks).

Usage:
    python scripts/validate_tenant_schemas.py
    python scripts/validate_tenant_schemas.py --tenant-slug acme
    python scripts/validate_tenant_schemas.py --tenant-slug acme --recover
    python scripts/validate_tenant_schemas.py --json
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from conductor.core.database import get_db_session
from conductor.models.tenant import Tenant
from conductor.tenancy.provisioning import provisioning_service
from conductor.tenancy.schema_validator import summarize_reports, validate_tenant_schema

GRADE_ICONS = {"excellent": "✅", "good": "🟢", "needs_attention": "⚠️ ", "critical": "❌"}


async def run(tenant_slug: str = None, recover: bool = False) -> dict:
    async with get_db_session() as db:
        if tenant_slug:
            tenant = await Tenant.get_by_slug(db, tenant_slug)
            if tenant is None:
                print(f"❌ Error: Tenant '{tenant_slug}' not found")
                sys.exit(1)
            tenants = [tenant]
        else:
            tenants = await Tenant.list_active(db)

        reports = []
        for tenant in tenants:
            if recover:
                report = await provisioning_service.recover(db, tenant)
            else:
                report = await validate_tenant_schema(db, tenant)
            reports.append(report)

    return {
        "summary": summarize_reports(reports),
        "reports": [report.to_dict() for report in reports],
    }


def print_report(result: dict) -> None:
    for report in result["reports"]:
        icon = GRADE_ICONS.get(report["grade"], "•")
        print(f"\n{icon} {report['schema_name']} ({report['grade']})")
        print(f"   Tables: {report['table_count']}/{report['expected_table_count']}")
        for issue in report["issues"]:
            if issue["severity"] == "info":
                continue
            location = ".".join(p for p in (issue.get("table"), issue.get("column")) if p)
            print(f"   [{issue['severity']}] {issue['code']} {location} - {issue['message']}")

    summary = result["summary"]
    print("\n" + "=" * 70)
    print(f"📊 Tenants: {summary['total_tenants']}  valid: {summary['valid_tenants']}")
    print(f"   Critical issues: {summary['total_critical_issues']}  warnings: {summary['total_warnings']}")
    print(f"   Grades: {summary['grades']}")
    print("=" * 70)


def main():
    parser = argparse.ArgumentParser(description="Validate tenant schemas")
    parser.add_argument("--tenant-slug", help="Validate a single tenant")
    parser.add_argument("--recover", action="store_true", help="Recreate missing tables before validating")
    parser.add_argument("--json", action="store_true", help="Print the JSON report")
    args = parser.parse_args()

    result = asyncio.run(run(args.tenant_slug, args.recover))

    if args.json:
        print(json.dumps(result, indent=2, default=str))
    else:
        print_report(result)

    sys.exit(result["summary"]["exit_code"])


if __name__ == "__main__":
    main()
