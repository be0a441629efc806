"""
Structured Logging Configuration

Uses structlog for JSON-formatted logs with correlation IDs.

Features:
- Request correlation IDs (track requests across services)
- JSON output (easily parseable by log aggregators)
- Automatic context injection (tenant_id, endpoint, method)
- Performance tracking (request duration)
"""

import logging
import structlog
import uuid
from fastapi import Request
import time

# ==================== Configuration ====================

def configure_logging(log_level: str = "INFO", json_logs: bool = True):
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: If True, output JSON format. If False, use console format.
    """

    if json_logs:
        processors = [
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer()
        ]
    else:
        processors = [
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
            structlog.dev.ConsoleRenderer()
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Standard library logging for lower layers and third-party libs
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        force=True,
    )


# ==================== Correlation ID Middleware ====================

async def correlation_id_middleware(request: Request, call_next):
    """
    Middleware to add correlation IDs to all requests.

    Reuses X-Correlation-ID / X-Request-ID when the caller sends one,
    otherwise generates a UUID4. Also tracks request duration.
    """
    correlation_id = request.headers.get("X-Correlation-ID") or request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.correlation_id = correlation_id

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        correlation_id=correlation_id,
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else "unknown"
    )

    logger = structlog.get_logger()

    start_time = time.time()
    logger.info(
        "request_started",
        query_params=dict(request.query_params) if request.query_params else None,
        user_agent=request.headers.get("user-agent", "unknown")
    )

    try:
        response = await call_next(request)

        duration = time.time() - start_time
        response.headers["X-Correlation-ID"] = correlation_id

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_seconds=round(duration, 3)
        )

        return response

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            "request_failed",
            error=str(e),
            error_type=type(e).__name__,
            duration_seconds=round(duration, 3),
            exc_info=True
        )

        raise

    finally:
        structlog.contextvars.clear_contextvars()


# ==================== Helper Functions ====================

def get_logger(name: str = None):
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("tenant_provisioned", tenant_id="...", plan="basic")
    """
    return structlog.get_logger(name)


def log_with_context(**context):
    """
    Add context to current logger that persists for the request.

    Usage:
        log_with_context(tenant_id="3f2b...", ticket_id="...")
    """
    structlog.contextvars.bind_contextvars(**context)


def log_database_query(query_type: str, duration: float, row_count: int = None, error: str = None):
    """
    Log a database query with performance metrics.

    Usage:
        log_database_query("information_schema_columns", duration=0.043, row_count=120)
    """
    logger = structlog.get_logger()

    if error:
        logger.error(
            "database_query_failed",
            query_type=query_type,
            duration_seconds=round(duration, 3),
            error=error
        )
    else:
        logger.info(
            "database_query_completed",
            query_type=query_type,
            duration_seconds=round(duration, 3),
            row_count=row_count
        )


def log_business_event(event_type: str, **details):
    """
    Log a business-relevant event.

    Usage:
        log_business_event("sla_violated", ticket_id="...", metric="resolution_time")
    """
    logger = structlog.get_logger()
    logger.info("business_event", event_type=event_type, **details)


def log_security_event(event_type: str, severity: str = "info", **details):
    """
    Log a security-relevant event.

    Usage:
        log_security_event("api_key_invalid", severity="warning", ip="1.2.3.4")
    """
    logger = structlog.get_logger()

    log_func = getattr(logger, severity.lower(), logger.info)
    log_func("security_event", event_type=event_type, **details)
