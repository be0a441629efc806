"""
Pytest Configuration and Fixtures

Shared fixtures for all tests:
- Tenant-schema database (in-memory SQLite with every TenantBase table)
- A tenant and an API client whose tenant dependencies are overridden
- Admin key configuration
- Test utilities
"""

import io
from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from conductor.api import dependencies
from conductor.api.dependencies import get_tenant_db, require_tenant
from conductor.core.database import TenantBase, get_db
from conductor.main import app
from conductor.models.tenant import Tenant
from conductor.services.metrics_service import metrics_service

TEST_ADMIN_KEY = "test-admin-key-0123456789abcdef"


# Database fixtures

@pytest_asyncio.fixture
async def db_engine():
    """Tenant tables on in-memory SQLite; one shared connection so data survives across sessions"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(TenantBase.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncSession:
    """Database session for a test, rolled back afterwards"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        yield session
        await session.rollback()


# Tenant fixtures

@pytest.fixture
def tenant() -> Tenant:
    """Active tenant; never persisted (the shared schema is not part of SQLite tests)"""
    return Tenant(name="Acme Serviços Ltda", slug="acme", plan="free", is_active=True, environment="development")


@pytest.fixture(autouse=True)
def reset_metrics():
    """Per-tenant counters are process-global"""
    metrics_service.reset()
    yield
    metrics_service.reset()


@pytest.fixture
def admin_key(monkeypatch) -> str:
    """Configure ADMIN_KEY for the duration of a test"""
    monkeypatch.setattr(dependencies.settings, "admin_key", TEST_ADMIN_KEY)
    return TEST_ADMIN_KEY


# API client fixtures

@pytest_asyncio.fixture
async def tenant_client(db_engine, tenant):
    """
    Async API client for tenant-scoped routes.

    require_tenant returns the tenant fixture and both session dependencies
    yield sessions on the SQLite engine, committing on success.
    """
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_require_tenant():
        return tenant

    async def override_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[require_tenant] = override_require_tenant
    app.dependency_overrides[get_tenant_db] = override_session
    app.dependency_overrides[get_db] = override_session

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

    app.dependency_overrides.clear()


# Test utilities

def make_png(size=(40, 20), color=(255, 255, 255)) -> bytes:
    """Small real PNG for upload and OCR tests"""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def assert_error_format(body: dict, code: str):
    """Assert the standard error envelope"""
    assert "error" in body, "Response should carry an error object"
    assert body["error"]["code"] == code, f"Expected {code}, got {body['error']['code']}"
    assert "message" in body["error"]
    assert "timestamp" in body
