"""
Exception hierarchy for Conductor

Structured error handling with specific error types. Domain code raises
these; conductor.middleware.error_handling maps them to HTTP responses.
"""

from typing import Dict, Any, Optional


class ConductorError(Exception):
    """Base exception for all Conductor errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class TenantNotFoundError(ConductorError):
    """Raised when a tenant does not exist or is inactive."""


class TenantAlreadyExistsError(ConductorError):
    """Raised when provisioning a tenant whose slug is taken."""


class TenantSchemaError(ConductorError):
    """Raised when a tenant schema cannot be created or fails validation."""


class DocumentValidationError(ConductorError):
    """Raised when an uploaded document is empty, too large or of an unsupported type."""


class OCRProcessingError(ConductorError):
    """Raised when the OCR engine fails to read a document."""


class DuplicateDocumentError(ConductorError):
    """Raised when a document with the same content hash was already processed."""


class SlaDefinitionError(ConductorError):
    """Raised when an SLA definition is invalid or cannot be changed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, conflict: bool = False):
        super().__init__(message, details)
        self.conflict = conflict


class SlaInstanceNotFoundError(ConductorError):
    """Raised when an SLA instance or definition does not exist."""


class SlaInstanceStateError(ConductorError):
    """Raised when an SLA instance transition is not allowed from its current status."""


class QuotaExceededError(ConductorError):
    """Raised when a tenant exceeds a plan quota."""
