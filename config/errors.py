"""AV BOQ error handling.

Custom exceptions and error codes for the BOQ pipeline.
"""

from typing import Optional, Dict, Any


# Error Codes
class ErrorCode:
    """Error code constants."""

    # Validation Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_FIELD = "INVALID_FIELD"

    # AI Response Errors
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"

    # LLM Errors
    LLM_ERROR = "LLM_ERROR"
    LLM_RATE_LIMIT = "LLM_RATE_LIMIT"
    LLM_CONTEXT_TOO_LONG = "LLM_CONTEXT_TOO_LONG"

    # External Service Errors
    EXTERNAL_API_ERROR = "EXTERNAL_API_ERROR"
    EXCHANGE_RATE_ERROR = "EXCHANGE_RATE_ERROR"
    PRODUCT_SEARCH_ERROR = "PRODUCT_SEARCH_ERROR"

    # Export Errors
    EXPORT_FAILED = "EXPORT_FAILED"
    EXPORT_NO_DATA = "EXPORT_NO_DATA"

    # Session Errors
    ROOM_NOT_FOUND = "ROOM_NOT_FOUND"
    ITEM_NOT_FOUND = "ITEM_NOT_FOUND"


class BoqError(Exception):
    """Base exception for BOQ errors.

    Provides structured error information for callers that surface
    failures to a user.

    Attributes:
        code: Error code from ErrorCode constants
        message: Human-readable error message
        details: Additional error context
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Initialize BoqError.

        Args:
            code: Error code from ErrorCode constants
            message: Human-readable error message
            details: Additional error context
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for display.

        Returns:
            Dictionary with code, message, and details.
        """
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(BoqError):
    """A line item or room failed structural or numeric constraints."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        code: str = ErrorCode.VALIDATION_ERROR,
        details: Optional[Dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            details={**(details or {}), "field": field} if field else details
        )
        self.field = field


class MalformedResponseError(BoqError):
    """The AI collaborator's output could not be parsed or validated.

    The raw text is kept for diagnostics.
    """

    def __init__(self, message: str, raw_text: Optional[str] = None, details: Optional[Dict] = None):
        super().__init__(
            code=ErrorCode.MALFORMED_RESPONSE,
            message=message,
            details={**(details or {}), "raw_content": (raw_text or "")[:500]}
        )
        self.raw_text = raw_text


class ExternalServiceError(BoqError):
    """An external collaborator (LLM, exchange rates, search) failed outright."""

    def __init__(
        self,
        message: str,
        service: str,
        code: str = ErrorCode.EXTERNAL_API_ERROR,
        details: Optional[Dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            details={**(details or {}), "service": service}
        )
        self.service = service


class ExportError(BoqError):
    """The spreadsheet export could not be produced."""

    def __init__(self, message: str, code: str = ErrorCode.EXPORT_FAILED, details: Optional[Dict] = None):
        super().__init__(code=code, message=message, details=details)
