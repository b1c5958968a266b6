"""AV BOQ configuration.

This package contains:
- settings: Environment variables and configuration
- errors: Custom exceptions and error codes
"""

from config.settings import Settings, load_settings
from config.errors import (
    BoqError,
    ErrorCode,
    ExportError,
    ExternalServiceError,
    MalformedResponseError,
    ValidationError,
)

__all__ = [
    "Settings",
    "load_settings",
    "BoqError",
    "ErrorCode",
    "ExportError",
    "ExternalServiceError",
    "MalformedResponseError",
    "ValidationError",
]
