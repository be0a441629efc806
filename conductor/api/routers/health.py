"""
Health Check Endpoints Router

Provides health check endpoints for monitoring and load balancers.
"""
from datetime import datetime, timezone

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from conductor.core.database import engine, get_pool_status
from conductor.middleware.error_handling import NotFoundError, ServiceUnavailableError
from conductor.middleware.logging_config import get_logger
from conductor.middleware.metrics import METRICS_ENABLED, metrics_endpoint

logger = get_logger(__name__)

# Router
router = APIRouter(
    tags=["health"],
    responses={404: {"description": "Not found"}},
)


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if service is running.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/health/ready")
async def readiness_probe():
    """
    Kubernetes readiness probe.

    Returns 200 if the database answers, 503 otherwise.
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error("database_health_check_failed", error=str(e))
        raise ServiceUnavailableError("Database not ready", retry_after=5, database="unhealthy")

    return {
        "status": "ready",
        "database": "healthy",
        "pool": get_pool_status(),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/health/live")
async def liveness_probe():
    """Kubernetes liveness probe."""
    return {"status": "alive"}


@router.get("/metrics")
async def prometheus_metrics():
    """
    Prometheus metrics endpoint (only if ENABLE_PROMETHEUS_METRICS=true).

    Returns application metrics in Prometheus exposition format.
    """
    if not METRICS_ENABLED:
        raise NotFoundError("Metrics", hint="Set ENABLE_PROMETHEUS_METRICS=true to enable")
    return await metrics_endpoint()
