"""
Conductor API

Multi-tenant helpdesk and expense platform:
1. Tenant provisioning with schema-per-tenant isolation
2. Expense receipts (OCR), policy evaluation and fraud analysis
3. SLA definitions and per-ticket clocks
4. Brazilian document validation and tag suggestions
"""

import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from conductor.api.dependencies import limiter
from conductor.api.routers import (
    expenses_router,
    health_router,
    metrics_router,
    sla_router,
    tags_router,
    tenants_router,
    validation_router,
)
from conductor.cache.redis_cache import cache
from conductor.core.config import settings
from conductor.core.database import close_db, init_db
from conductor.middleware.error_handling import register_exception_handlers
from conductor.middleware.logging_config import configure_logging, correlation_id_middleware, get_logger
from conductor.middleware.metrics import METRICS_ENABLED, metrics_middleware
from conductor.middleware.tenant_routing import TenantRoutingMiddleware

VERSION = "1.0.0"

# JSON logs in production, console locally
configure_logging(log_level=settings.log_level, json_logs=settings.json_logs or settings.is_production)

logger = get_logger(__name__)

COMMON_ADMIN_KEYS = {"changeme123", "admin", "password", "test", "secret", "changeme"}


def validate_admin_key(admin_key):
    """Refuse to start with a missing, short or well-known ADMIN_KEY."""
    if not admin_key:
        logger.error("security_validation_failed", missing_secrets=["ADMIN_KEY"])
        raise RuntimeError("Missing required secrets: ADMIN_KEY")
    if len(admin_key) < 16:
        logger.error("security_validation_failed", reason="ADMIN_KEY too short", min_length=16)
        raise RuntimeError("ADMIN_KEY must be at least 16 characters")
    if admin_key.lower() in COMMON_ADMIN_KEYS:
        logger.error("security_validation_failed", reason="ADMIN_KEY is common password")
        raise RuntimeError("ADMIN_KEY must not be a common password")


# ==================== Application Lifespan ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("application_starting", version=VERSION, environment=settings.environment)

    validate_admin_key(settings.admin_key)
    logger.info("security_validation_passed")

    await init_db()

    await cache.connect()

    yield

    logger.info("application_stopping")
    await cache.disconnect()
    await close_db()


app = FastAPI(
    title="Conductor API",
    description="Multi-tenant helpdesk platform: tenants, SLAs, expenses and document validation.",
    version=VERSION,
    redirect_slashes=False,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "health", "description": "Health check and system status endpoints"},
        {"name": "saas-admin", "description": "Tenant provisioning, schema validation and quotas (admin key)"},
        {"name": "validation", "description": "CPF, CNPJ, RG, CEP and phone validation"},
        {"name": "expenses", "description": "Receipt OCR, expense policies and fraud analysis"},
        {"name": "sla", "description": "SLA definitions, ticket clocks and compliance"},
        {"name": "tags", "description": "Tag suggestions for tickets"},
        {"name": "metrics", "description": "Per-tenant usage counters"},
    ],
)

# ==================== Exception Handlers ====================
register_exception_handlers(app)

# ==================== Rate Limiting ====================
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ==================== Middleware ====================
# Starlette runs the last registered middleware first: the correlation ID
# wraps CORS, which wraps tenant routing, which wraps metrics.
if METRICS_ENABLED:
    app.middleware("http")(metrics_middleware)
    logger.info("prometheus_middleware_enabled")

app.add_middleware(TenantRoutingMiddleware)

ALLOWED_ORIGINS = settings.cors_origins_list
if settings.is_production and "*" in ALLOWED_ORIGINS:
    raise ValueError("Wildcard CORS origins not allowed in production")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "X-API-Key",
        "X-Correlation-ID",
        "Accept",
        "Origin",
    ],
    expose_headers=["Content-Type", "X-Correlation-ID"],
)

app.middleware("http")(correlation_id_middleware)

# ==================== Routers ====================
app.include_router(health_router)
app.include_router(tenants_router)
app.include_router(validation_router)
app.include_router(expenses_router)
app.include_router(sla_router)
app.include_router(tags_router)
app.include_router(metrics_router)


@app.get("/")
@limiter.limit("100/hour")
async def root(request: Request):
    """Root endpoint with service information."""
    return {
        "service": "Conductor API",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    uvicorn.run(
        "conductor.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("AUTO_RELOAD", "false").lower() == "true",
        log_level=settings.log_level.lower(),
    )
