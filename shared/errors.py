"""
Shared error handling for the SQLite response cache service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class CacheServiceException(Exception):
    """Base exception for cache service errors."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class NotInitializedError(CacheServiceException):
    """Operation attempted on an engine that is not open."""

    status_code = 503

    def __init__(self, message: str = "Cache not initialized", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_INITIALIZED", message, details)


class StorageError(CacheServiceException):
    """Underlying persistence failure."""

    status_code = 500

    def __init__(self, message: str = "Cache storage error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_ERROR", message, details)


class SerializationError(CacheServiceException):
    """Value could not be encoded for storage."""

    status_code = 400

    def __init__(self, message: str = "Value is not serializable", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERIALIZATION_ERROR", message, details)


class DeserializationError(CacheServiceException):
    """Stored value could not be decoded."""

    status_code = 500

    def __init__(self, message: str = "Stored value is corrupt", details: Optional[Dict[str, Any]] = None):
        super().__init__("DESERIALIZATION_ERROR", message, details)


class NotFoundError(CacheServiceException):
    """Key is absent or expired."""

    status_code = 404

    def __init__(self, message: str = "Cache key not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ValidationError(CacheServiceException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)
