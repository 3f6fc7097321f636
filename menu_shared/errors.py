"""
Shared error handling for the e-menu platform.
"""

from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class MenuPlatformException(Exception):
    """Base exception for e-menu platform services."""

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


class ValidationError(MenuPlatformException):
    """Invalid input, rejected before any store access."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(MenuPlatformException):
    """Referenced entity does not exist."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class StoreAccessError(MenuPlatformException):
    """
    Backing store unreachable or returned something unusable.

    The message is safe to show to end callers; the underlying cause is kept
    on ``operation``/``__cause__`` for operator logs only.
    """

    status_code = 503

    def __init__(self, operation: str, message: str = "Service temporarily unavailable",
                 details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        super().__init__("STORE_ACCESS_ERROR", message, details)


class RateLimitError(MenuPlatformException):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, retry_after_seconds: int, message: str = "Rate limit exceeded",
                 details: Optional[Dict[str, Any]] = None):
        self.retry_after_seconds = retry_after_seconds
        details = dict(details or {})
        details.setdefault("retry_after_seconds", retry_after_seconds)
        super().__init__("RATE_LIMIT_ERROR", message, details)
