"""
Shared error handling for the provisioning service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class ProvisioningError(Exception):
    """Base exception for provisioning failures.

    Engine steps never let these escape for expected failure paths: they are
    carried as the error side of a ``Result``. Adapters raise them.
    """

    status_code: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class NotFoundError(ProvisioningError):
    """No matching account, subscription, product or service."""

    status_code = 404

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ForbiddenError(ProvisioningError):
    """Ownership or role check failed."""

    status_code = 403

    def __init__(self, message: str = "You do not have enough permission to complete the operation you requested",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("FORBIDDEN", message, details)


class ValidationError(ProvisioningError):
    """Payload failed schema decoding."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class InternalError(ProvisioningError):
    """Unexpected remote-call failure or malformed response."""

    status_code = 500

    def __init__(self, message: str = "Internal error", details: Optional[Dict[str, Any]] = None):
        super().__init__("INTERNAL_ERROR", message, details)


class ExternalServiceError(InternalError):
    """A downstream service call failed."""

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{service}: {message}", details)
        self.code = "EXTERNAL_SERVICE_ERROR"
        self.service = service


class ConflictError(ProvisioningError):
    """The resource already exists."""

    status_code = 409

    def __init__(self, message: str = "Conflict", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFLICT", message, details)
