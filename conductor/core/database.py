"""
Database connection management for Conductor

Provides async database session management with optimized connection pooling.

Two declarative bases live here:
- Base: models stored in the ``shared`` schema (the tenant registry)
- TenantBase: models stored once per tenant, inside ``tenant_<uuid>``.
  Their tables carry no schema; sessions opened with get_tenant_session()
  route them to the tenant schema through ``schema_translate_map``.

Pool Configuration:
- Defaults: 5 connections + 5 overflow = 10 max concurrent
- Pool pre-ping enabled for connection health checks
- Automatic connection recycling every 30 minutes
"""

from contextlib import asynccontextmanager
from typing import Union
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
import logging

from conductor.core.config import settings
from conductor.tenancy.naming import tenant_schema_name

logger = logging.getLogger(__name__)

DATABASE_URL = settings.async_database_url

logger.info(
    f"Database pool configuration: size={settings.db_pool_size}, max_overflow={settings.db_max_overflow}, "
    f"timeout={settings.db_pool_timeout}s, recycle={settings.db_pool_recycle}s, "
    f"pre_ping={settings.db_pool_pre_ping}, environment={settings.environment}"
)

engine = create_async_engine(
    DATABASE_URL,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_timeout=settings.db_pool_timeout,
    pool_recycle=settings.db_pool_recycle,
    pool_pre_ping=settings.db_pool_pre_ping,
    echo=settings.db_echo,
    connect_args={
        "server_settings": {
            "application_name": "conductor_api",
        }
    }
)

# Session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# Base for shared-schema models
Base = declarative_base()

# Base for per-tenant models (schema resolved at runtime)
TenantBase = declarative_base()


async def init_db():
    """Initialize database connection."""
    logger.info("Initializing database connection")
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("Database connection initialized successfully")


async def close_db():
    """Close database connection."""
    logger.info("Closing database connection")
    await engine.dispose()
    logger.info("Database connection closed")


@asynccontextmanager
async def get_db_session():
    """Get async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_db():
    """
    FastAPI dependency for database session.

    Usage:
        @router.get("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def tenant_engine(tenant_id: Union[UUID, str]):
    """Engine proxy whose unqualified tables resolve to the tenant schema."""
    return engine.execution_options(
        schema_translate_map={None: tenant_schema_name(tenant_id)}
    )


@asynccontextmanager
async def get_tenant_session(tenant_id: Union[UUID, str]):
    """
    Get async session bound to a tenant schema.

    Usage:
        async with get_tenant_session(tenant.id) as db:
            result = await db.execute(select(Ticket))
    """
    async with AsyncSession(tenant_engine(tenant_id), expire_on_commit=False) as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_pool_status():
    """
    Get current database connection pool status.

    Returns:
        dict: Pool statistics including size, checked out connections, overflow, etc.
    """
    pool = engine.pool

    return {
        "pool_size": pool.size(),
        "checked_out": pool.checkedout(),
        "overflow": pool.overflow(),
        "total_connections": pool.size() + pool.overflow(),
        "configuration": {
            "pool_size": settings.db_pool_size,
            "max_overflow": settings.db_max_overflow,
            "max_total": settings.db_pool_size + settings.db_max_overflow,
            "timeout": settings.db_pool_timeout,
            "recycle": settings.db_pool_recycle,
            "pre_ping": settings.db_pool_pre_ping
        }
    }
