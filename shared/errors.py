"""
Shared error handling for the Datasets Access Layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    code: int
    details: Optional[Dict[str, Any]] = None


class AccessLayerException(Exception):
    """Base exception for Access Layer services."""

    status_code: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=self.message,
            code=self.status_code,
            details=self.details or None,
        )


class ConfigurationError(AccessLayerException):
    """Required configuration is missing or invalid."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class MalformedUpstreamDataError(AccessLayerException):
    """Upstream bytes are not valid JSON or do not match the expected shape."""

    status_code = 502

    def __init__(self, path: str, reason: str):
        super().__init__(
            "MALFORMED_UPSTREAM_DATA",
            f"Failed to parse JSON from {path}: {reason}",
            {"path": path},
        )
        self.path = path
