"""
Shared error handling for the expenses service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessLayerException(Exception):
    """Base exception for the service."""

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


class AuthorizationError(AccessLayerException):
    """Authorization-related errors."""

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class ServiceError(AccessLayerException):
    """Service-related errors."""

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)


class RegistrationError(AccessLayerException):
    """Duplicate or conflicting type registration. Fatal at startup."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("REGISTRATION_ERROR", message, details)


class PolicyLoadError(AccessLayerException):
    """Malformed policy text or a reference to an unregistered kind/attribute.

    Carries the 1-based ``line`` and ``column`` of the offending rule.
    """

    def __init__(self, message: str, line: int = 0, column: int = 0):
        self.line = line
        self.column = column
        super().__init__(
            "POLICY_LOAD_ERROR",
            f"policy error at line {line}, column {column}: {message}",
            {"line": line, "column": column}
        )


class EvaluationError(AccessLayerException):
    """Internal fault while evaluating a rule. Never leaves the decision service."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("EVALUATION_ERROR", message, details)


class EntityLookupError(AccessLayerException):
    """Entity store lookup failed.

    ``not_found`` separates a missing row from a transient store failure.
    """

    def __init__(self, message: str, not_found: bool = True, details: Optional[Dict[str, Any]] = None):
        self.not_found = not_found
        super().__init__("ENTITY_NOT_FOUND" if not_found else "ENTITY_STORE_ERROR", message, details)
