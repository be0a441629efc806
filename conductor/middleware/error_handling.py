"""
Standardized Error Handling

Provides:
- Custom exception classes for different error types
- Consistent error response format
- Correlation ID tracking in errors
- Mapping of domain errors (ConductorError) to HTTP status codes
"""

from datetime import datetime, timezone
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog
from structlog.contextvars import get_contextvars
from typing import Any, Dict, Optional, Tuple
import traceback

from conductor.core.exceptions import (
    ConductorError,
    TenantNotFoundError,
    TenantAlreadyExistsError,
    TenantSchemaError,
    DocumentValidationError,
    OCRProcessingError,
    DuplicateDocumentError,
    SlaDefinitionError,
    SlaInstanceNotFoundError,
    SlaInstanceStateError,
    QuotaExceededError,
)

logger = structlog.get_logger(__name__)

# ==================== Custom Exceptions ====================

class APIError(Exception):
    """Base class for API errors."""
    def __init__(
        self,
        message: str,
        error_code: str = None,
        status_code: int = 500,
        details: Dict[str, Any] = None
    ):
        self.message = message
        self.error_code = error_code or "INTERNAL_ERROR"
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(APIError):
    """Authentication failed (401)."""
    def __init__(self, message: str = "Authentication required", **kwargs):
        super().__init__(
            message=message,
            error_code="AUTHENTICATION_ERROR",
            status_code=401,
            details=kwargs
        )


class AuthorizationError(APIError):
    """Authorization failed (403)."""
    def __init__(self, message: str = "Access denied", **kwargs):
        super().__init__(
            message=message,
            error_code="AUTHORIZATION_ERROR",
            status_code=403,
            details=kwargs
        )


class ValidationError(APIError):
    """Request validation failed (400)."""
    def __init__(self, message: str, field: str = None, **kwargs):
        details = {"field": field} if field else {}
        details.update(kwargs)

        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            status_code=400,
            details=details
        )


class ConflictError(APIError):
    """Resource conflict (409)."""
    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_code="CONFLICT",
            status_code=409,
            details=kwargs
        )


class ExternalServiceError(APIError):
    """External service call failed (502)."""
    def __init__(self, service: str, operation: str = None, **kwargs):
        message = f"External service error: {service}"
        if operation:
            message += f" ({operation})"

        details = {"service": service}
        if operation:
            details["operation"] = operation
        details.update(kwargs)

        super().__init__(
            message=message,
            error_code="EXTERNAL_SERVICE_ERROR",
            status_code=502,
            details=details
        )


class NotFoundError(APIError):
    """Resource not found (404)."""
    def __init__(self, resource: str, identifier: str = None, **kwargs):
        message = f"{resource} not found"
        if identifier:
            message += f": {identifier}"

        details = {"resource": resource}
        if identifier:
            details["identifier"] = identifier
        details.update(kwargs)

        super().__init__(
            message=message,
            error_code="NOT_FOUND",
            status_code=404,
            details=details
        )


class RateLimitError(APIError):
    """Rate limit exceeded (429)."""
    def __init__(self, limit: str, retry_after: int = None, **kwargs):
        message = f"Rate limit exceeded: {limit}"
        details = {"limit": limit}
        if retry_after:
            details["retry_after_seconds"] = retry_after
        details.update(kwargs)

        super().__init__(
            message=message,
            error_code="RATE_LIMIT_EXCEEDED",
            status_code=429,
            details=details
        )


class ServiceUnavailableError(APIError):
    """Service temporarily unavailable (503)."""
    def __init__(self, message: str = "Service temporarily unavailable", retry_after: int = None, **kwargs):
        details = kwargs.copy()
        if retry_after:
            details["retry_after_seconds"] = retry_after

        super().__init__(
            message=message,
            error_code="SERVICE_UNAVAILABLE",
            status_code=503,
            details=details
        )


# ==================== Domain Error Mapping ====================

# (status_code, error_code) per domain exception, most specific first
DOMAIN_ERROR_MAP = [
    (TenantNotFoundError, 404, "TENANT_NOT_FOUND"),
    (TenantAlreadyExistsError, 409, "TENANT_ALREADY_EXISTS"),
    (TenantSchemaError, 500, "TENANT_SCHEMA_ERROR"),
    (DocumentValidationError, 400, "DOCUMENT_INVALID"),
    (OCRProcessingError, 502, "OCR_FAILED"),
    (DuplicateDocumentError, 409, "DUPLICATE_DOCUMENT"),
    (SlaInstanceNotFoundError, 404, "SLA_NOT_FOUND"),
    (SlaInstanceStateError, 409, "SLA_INVALID_STATE"),
    (SlaDefinitionError, 400, "SLA_DEFINITION_INVALID"),
    (QuotaExceededError, 429, "QUOTA_EXCEEDED"),
]


def domain_error_status(error: ConductorError) -> Tuple[int, str]:
    """Resolve HTTP status and error code for a domain exception."""
    if isinstance(error, SlaDefinitionError) and error.conflict:
        return 409, "SLA_DEFINITION_IN_USE"
    for exc_type, status_code, error_code in DOMAIN_ERROR_MAP:
        if isinstance(error, exc_type):
            return status_code, error_code
    return 500, "INTERNAL_ERROR"


# ==================== Error Response Format ====================

def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _correlation_id(request: Request) -> Optional[str]:
    correlation_id = getattr(request.state, "correlation_id", None)
    if not correlation_id:
        correlation_id = get_contextvars().get("correlation_id")
    return correlation_id


def create_error_response(
    error: Exception,
    correlation_id: str = None,
    include_traceback: bool = False
) -> Tuple[Dict[str, Any], int]:
    """
    Create standardized error response.

    Format:
    {
        "error": {
            "code": "ERROR_CODE",
            "message": "Human-readable message",
            "details": {...},
            "correlation_id": "uuid"
        },
        "timestamp": "2026-10-18T10:30:45+00:00"
    }
    """
    if isinstance(error, APIError):
        error_code = error.error_code
        message = error.message
        details = error.details
        status_code = error.status_code
    elif isinstance(error, ConductorError):
        status_code, error_code = domain_error_status(error)
        message = error.message
        details = error.details
    elif isinstance(error, StarletteHTTPException):
        error_code = "HTTP_ERROR"
        message = error.detail
        details = {}
        status_code = error.status_code
    else:
        error_code = "INTERNAL_ERROR"
        message = str(error) if str(error) else "An unexpected error occurred"
        details = {"error_type": type(error).__name__}
        status_code = 500

    response = {
        "error": {
            "code": error_code,
            "message": message,
            "details": details
        },
        "timestamp": _utc_timestamp()
    }

    if correlation_id:
        response["error"]["correlation_id"] = correlation_id

    if include_traceback and status_code >= 500:
        response["error"]["traceback"] = traceback.format_exc()

    return response, status_code


# ==================== Exception Handlers ====================

async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle custom API errors."""
    correlation_id = _correlation_id(request)

    logger.error(
        "api_error",
        error_code=exc.error_code,
        error_message=exc.message,
        status_code=exc.status_code,
        details=exc.details
    )

    response_data, status_code = create_error_response(exc, correlation_id=correlation_id)
    headers = None
    if "retry_after_seconds" in exc.details:
        headers = {"Retry-After": str(exc.details["retry_after_seconds"])}

    return JSONResponse(status_code=status_code, content=response_data, headers=headers)


async def conductor_error_handler(request: Request, exc: ConductorError) -> JSONResponse:
    """Handle domain errors raised by services."""
    correlation_id = _correlation_id(request)
    response_data, status_code = create_error_response(exc, correlation_id=correlation_id)

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "domain_error",
        error_type=type(exc).__name__,
        error_message=exc.message,
        status_code=status_code,
        details=exc.details
    )

    return JSONResponse(status_code=status_code, content=response_data)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle standard HTTP exceptions."""
    correlation_id = _correlation_id(request)

    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path
    )

    response_data, status_code = create_error_response(exc, correlation_id=correlation_id)

    return JSONResponse(
        status_code=status_code,
        content=response_data,
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors (422)."""
    correlation_id = _correlation_id(request)

    validation_errors = []
    for error in exc.errors():
        validation_errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    logger.warning(
        "validation_error",
        path=request.url.path,
        errors=validation_errors
    )

    response_data = {
        "error": {
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": {
                "validation_errors": validation_errors
            }
        },
        "timestamp": _utc_timestamp()
    }

    if correlation_id:
        response_data["error"]["correlation_id"] = correlation_id

    return JSONResponse(status_code=422, content=response_data)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions (500)."""
    correlation_id = _correlation_id(request)

    logger.error(
        "unexpected_error",
        error_type=type(exc).__name__,
        error_message=str(exc),
        path=request.url.path,
        exc_info=True
    )

    # Don't expose internal details to client
    response_data = {
        "error": {
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
            "details": {}
        },
        "timestamp": _utc_timestamp()
    }

    if correlation_id:
        response_data["error"]["correlation_id"] = correlation_id
        response_data["error"]["message"] += f" Reference: {correlation_id}"

    return JSONResponse(status_code=500, content=response_data)


def register_exception_handlers(app) -> None:
    """Install all handlers on a FastAPI application."""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(ConductorError, conductor_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
