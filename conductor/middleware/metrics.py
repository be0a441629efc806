"""
Prometheus Metrics for Conductor

OPTIONAL: Enable with environment variable ENABLE_PROMETHEUS_METRICS=true

Tracks:
- Request duration by endpoint
- Request count by status code
- Cache hit/miss rates
- Domain events (OCR documents, fraud analyses, policy evaluations,
  SLA lifecycle events, tenant schema validations)
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Request, Response
import time
from typing import Callable
import logging

from conductor.core.config import settings

logger = logging.getLogger(__name__)

METRICS_ENABLED = settings.enable_prometheus_metrics

if METRICS_ENABLED:
    logger.info("Prometheus metrics enabled - /metrics endpoint will be available")
else:
    logger.info("Prometheus metrics disabled")

# ==================== Metrics Definitions ====================

# HTTP Request Metrics
http_requests_total = Counter(
    'conductor_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'conductor_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

http_requests_in_progress = Gauge(
    'conductor_http_requests_in_progress',
    'Number of HTTP requests currently being processed',
    ['method']
)

# Cache Metrics
cache_hits_total = Counter(
    'conductor_cache_hits_total',
    'Total cache hits',
    ['cache_type']
)

cache_misses_total = Counter(
    'conductor_cache_misses_total',
    'Total cache misses',
    ['cache_type']
)

# Domain Metrics
ocr_documents_total = Counter(
    'conductor_ocr_documents_total',
    'Documents processed by the OCR pipeline',
    ['status']  # processed, duplicate, rejected, failed
)

ocr_processing_seconds = Histogram(
    'conductor_ocr_processing_seconds',
    'OCR processing duration in seconds',
    ['mime_type'],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0)
)

fraud_analyses_total = Counter(
    'conductor_fraud_analyses_total',
    'Expense fraud analyses by risk band',
    ['risk_band']  # low, medium, high
)

policy_evaluations_total = Counter(
    'conductor_policy_evaluations_total',
    'Policy engine evaluations',
    ['compliant']
)

sla_events_total = Counter(
    'conductor_sla_events_total',
    'SLA lifecycle events',
    ['event_type']
)

schema_validations_total = Counter(
    'conductor_schema_validations_total',
    'Tenant schema validations by grade',
    ['grade']
)


# ==================== Middleware ====================

async def metrics_middleware(request: Request, call_next: Callable) -> Response:
    """
    Middleware to track HTTP request metrics.

    Endpoints are labelled by route template (e.g. /api/sla/instances/{instance_id}/pause)
    to keep label cardinality bounded.

    Note: Only active if ENABLE_PROMETHEUS_METRICS=true
    """
    if not METRICS_ENABLED:
        return await call_next(request)

    if request.url.path == "/metrics":
        return await call_next(request)

    method = request.method
    http_requests_in_progress.labels(method=method).inc()
    start_time = time.time()
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
        return response

    except Exception as e:
        logger.error(f"Request error: {e}", exc_info=True)
        raise

    finally:
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        duration = time.time() - start_time
        http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)
        http_requests_total.labels(method=method, endpoint=endpoint, status_code=status_code).inc()
        http_requests_in_progress.labels(method=method).dec()


# ==================== Helper Functions ====================

def track_cache_access(cache_type: str, hit: bool):
    """Track cache hit/miss. No-op if metrics disabled."""
    if not METRICS_ENABLED:
        return

    if hit:
        cache_hits_total.labels(cache_type=cache_type).inc()
    else:
        cache_misses_total.labels(cache_type=cache_type).inc()


def track_ocr_document(status: str, mime_type: str = None, duration: float = None):
    """Track an OCR pipeline outcome. No-op if metrics disabled."""
    if not METRICS_ENABLED:
        return

    ocr_documents_total.labels(status=status).inc()
    if duration is not None and mime_type:
        ocr_processing_seconds.labels(mime_type=mime_type).observe(duration)


def track_fraud_analysis(risk_score: float):
    """Track a fraud analysis by risk band. No-op if metrics disabled."""
    if not METRICS_ENABLED:
        return

    if risk_score >= 70:
        band = "high"
    elif risk_score >= 40:
        band = "medium"
    else:
        band = "low"
    fraud_analyses_total.labels(risk_band=band).inc()


def track_policy_evaluation(is_compliant: bool):
    if not METRICS_ENABLED:
        return
    policy_evaluations_total.labels(compliant=str(is_compliant).lower()).inc()


def track_sla_event(event_type: str, count: int = 1):
    if not METRICS_ENABLED or count <= 0:
        return
    sla_events_total.labels(event_type=event_type).inc(count)


def track_schema_validation(grade: str):
    if not METRICS_ENABLED:
        return
    schema_validations_total.labels(grade=grade).inc()


# ==================== Metrics Endpoint ====================

async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus exposition format.
    """
    metrics_data = generate_latest()
    return Response(content=metrics_data, media_type=CONTENT_TYPE_LATEST)
