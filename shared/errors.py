"""
Shared error handling for the Automation Layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AutomationException(Exception):
    """Base exception for Automation Layer services."""

    status_code = 400

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


class ValidationError(AutomationException):
    """Validation-related errors."""

    status_code = 422

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class DefinitionNotFoundError(AutomationException):
    """Raised when a definition id does not resolve in the store."""

    status_code = 404

    def __init__(self, definition_id: str, details: Optional[Dict[str, Any]] = None):
        self.definition_id = definition_id
        super().__init__(
            "DEFINITION_NOT_FOUND",
            f"Definition not found: {definition_id}",
            {"definition_id": definition_id, **(details or {})}
        )


class StoreError(AutomationException):
    """Definition store read or write failure."""

    status_code = 503

    def __init__(self, message: str = "Definition store error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_ERROR", message, details)


class AuditWriteError(AutomationException):
    """Audit sink append failure."""

    status_code = 503

    def __init__(self, message: str = "Audit write failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUDIT_WRITE_ERROR", message, details)

