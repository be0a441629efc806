#!/usr/bin/env python3
"""
Create a new tenant: registry entry, schema, tables and default data.

Prints the tenant API key once; only its SHA256 hash is stored.

Usage:
    python scripts/create_tenant.py --name "Acme Suporte"
    python scripts/create_tenant.py --name "Acme Suporte" --slug acme --plan premium
    python scripts/create_tenant.py --name "Acme" --settings-file acme_settings.json
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from conductor.core.database import get_db_session
from conductor.core.exceptions import TenantAlreadyExistsError, TenantSchemaError
from conductor.models.tenant import PLANS
from conductor.tenancy.provisioning import provisioning_service


async def create_tenant(name: str, slug: str = None, plan: str = "free", settings: dict = None,
                        environment: str = "production"):
    """
    Provision a tenant and print its details.

    Returns:
        Tuple of (tenant_id, api_key)
    """
    try:
        async with get_db_session() as db:
            result = await provisioning_service.provision(
                db, name=name, slug=slug, plan=plan, settings=settings, environment=environment
            )
    except TenantAlreadyExistsError as e:
        print(f"❌ Error: {e.message}")
        sys.exit(1)
    except TenantSchemaError as e:
        print(f"❌ Error: {e.message}")
        for key, value in e.details.items():
            print(f"   {key}: {value}")
        sys.exit(1)

    tenant = result.tenant

    print("\n" + "=" * 70)
    print("✅ Tenant created successfully!")
    print("=" * 70)
    print("\n📋 Tenant Details:")
    print(f"   ID:           {tenant.id}")
    print(f"   Slug:         {tenant.slug}")
    print(f"   Name:         {tenant.name}")
    print(f"   Plan:         {tenant.plan}")
    print(f"   Schema:       {tenant.schema_name}")
    print(f"   Environment:  {tenant.environment}")

    print("\n🗂️  Schema:")
    print(f"   Tables:       {result.report.table_count}/{result.report.expected_table_count}")
    print(f"   Grade:        {result.report.grade}")
    for table, count in result.seeded.items():
        print(f"   Seeded {table}: {count}")

    print("\n🔑 API Key (save this - it won't be shown again!):")
    print(f"   {result.api_key}")

    print("\n🔗 Access:")
    print(f"   Subdomain:    https://{tenant.slug}.<your-domain>")
    print("   API:          X-API-Key header with the key above")
    print("\n" + "=" * 70)

    return tenant.id, result.api_key


def main():
    parser = argparse.ArgumentParser(
        description="Create a new tenant with its own schema",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--name", required=True, help="Organisation name")
    parser.add_argument("--slug", help="URL-safe identifier / subdomain (derived from --name if omitted)")
    parser.add_argument("--plan", default="free", choices=PLANS, help="Subscription plan (default: free)")
    parser.add_argument("--environment", default="production",
                        choices=["production", "staging", "development"],
                        help="Environment (default: production)")
    parser.add_argument("--settings-file", help="JSON file with tenant settings")

    args = parser.parse_args()

    settings = {}
    if args.settings_file:
        try:
            settings = json.loads(Path(args.settings_file).read_text())
        except (OSError, json.JSONDecodeError) as e:
            print(f"❌ Error reading settings file: {e}")
            sys.exit(1)

    asyncio.run(create_tenant(
        name=args.name,
        slug=args.slug,
        plan=args.plan,
        settings=settings,
        environment=args.environment,
    ))


if __name__ == "__main__":
    main()
