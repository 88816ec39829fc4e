"""
Shared error handling for the rights service.
"""

from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from .logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessControlException(Exception):
    """Base exception for rights operations."""

    status_code = 400

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


class NotFoundKind(str, Enum):
    """What could not be resolved."""
    ACCOUNT = "account"
    GROUP = "group"
    DOMAIN = "domain"
    COS = "cos"
    SERVER = "server"
    ENTRY = "entry"
    RIGHT = "right"


class NotFoundError(AccessControlException):
    """A target, grantee or right cannot be resolved."""

    status_code = 404

    def __init__(self, kind: NotFoundKind, identifier: str, details: Optional[Dict[str, Any]] = None):
        self.kind = kind
        self.identifier = identifier
        super().__init__(
            f"NO_SUCH_{kind.name}",
            f"no such {kind.value}: {identifier}",
            details
        )


class NoSuchAccountError(NotFoundError):
    def __init__(self, identifier: str):
        super().__init__(NotFoundKind.ACCOUNT, identifier)


class NoSuchGroupError(NotFoundError):
    def __init__(self, identifier: str):
        super().__init__(NotFoundKind.GROUP, identifier)


class NoSuchDomainError(NotFoundError):
    def __init__(self, identifier: str):
        super().__init__(NotFoundKind.DOMAIN, identifier)


class NoSuchRightError(NotFoundError):
    def __init__(self, identifier: str):
        super().__init__(NotFoundKind.RIGHT, identifier)


class InvalidRequestError(AccessControlException):
    """Request is well formed but not acceptable."""

    def __init__(self, message: str = "Invalid request", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_REQUEST", message, details)


class PermissionDeniedError(AccessControlException):
    """Actor lacks the right to grant or revoke."""

    status_code = 403

    def __init__(self, message: str = "Permission denied", details: Optional[Dict[str, Any]] = None):
        super().__init__("PERM_DENIED", message, details)


class NoSuchGrantError(AccessControlException):
    """Revoke matched no access control entry."""

    status_code = 404

    def __init__(self, message: str = "No such grant", details: Optional[Dict[str, Any]] = None):
        super().__init__("NO_SUCH_GRANT", message, details)


class ConfigurationError(AccessControlException):
    """The installed collaborators cannot serve this protocol."""

    status_code = 500

    def __init__(self, message: str = "Configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class AuthenticationError(AccessControlException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)
