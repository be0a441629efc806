"""Create shared schema and tenant registry

Revision ID: shared_tenants_001
Revises:
Create Date: 2026-10-01 09:00:00.000000

Each tenant's business tables live in their own ``tenant_<uuid>`` schema,
created at provisioning time; only the registry is migrated here.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'shared_tenants_001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS shared")

    op.create_table(
        'tenants',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('gen_random_uuid()')),
        sa.Column('slug', sa.String(50), nullable=False,
                  comment='URL-safe tenant identifier, also the subdomain'),
        sa.Column('name', sa.String(255), nullable=False,
                  comment='Human-readable tenant name'),
        sa.Column('plan', sa.String(20), nullable=False, server_default='free',
                  comment='Plan: free, basic, premium, enterprise'),

        # API access (for tenant API authentication)
        sa.Column('api_key_hash', sa.String(255),
                  comment='SHA256 hash of tenant API key'),

        sa.Column('schema_name', sa.String(63), nullable=False,
                  comment='PostgreSQL schema holding the tenant tables'),

        # Configuration
        sa.Column('features', postgresql.JSON(), nullable=True, server_default='{}'),
        sa.Column('settings', postgresql.JSON(), nullable=True, server_default='{}'),

        # Status
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('environment', sa.String(20), nullable=True, server_default='production',
                  comment='Environment: production, staging, development'),
        sa.Column('provisioned_at', sa.DateTime(timezone=True), nullable=True),

        # Timestamps
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        schema='shared',
    )

    op.create_index('ix_tenants_slug', 'tenants', ['slug'], unique=True, schema='shared')
    op.create_index('ix_tenants_api_key_hash', 'tenants', ['api_key_hash'], unique=True, schema='shared')
    op.create_index('idx_tenants_active', 'tenants', ['is_active'], schema='shared',
                    postgresql_where=sa.text('is_active = true'))


def downgrade() -> None:
    op.drop_index('idx_tenants_active', table_name='tenants', schema='shared')
    op.drop_index('ix_tenants_api_key_hash', table_name='tenants', schema='shared')
    op.drop_index('ix_tenants_slug', table_name='tenants', schema='shared')
    op.drop_table('tenants', schema='shared')
