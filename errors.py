"""
Application errors.

Every failure the core raises is an AppError subclass carrying a stable code
and an HTTP status; the API layer renders them with ``to_dict``.
"""

from http import HTTPStatus
from typing import Any, Dict, List, Optional


class AppError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message: Human readable message
        status_code: HTTP status code
        code: Stable error code
        details: Additional error details
    """

    def __init__(
        self,
        message: str,
        status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = int(status_code)
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class NotFoundError(AppError):
    """Raised when a badge, user, challenge or invitation is missing."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[Any] = None,
    ):
        if resource_type:
            details = details or {}
            details["resource_type"] = resource_type
        if resource_id:
            details = details or {}
            details["resource_id"] = str(resource_id)
        super().__init__(
            message=message,
            status_code=HTTPStatus.NOT_FOUND,
            code="NOT_FOUND",
            details=details,
        )


class ConflictError(AppError):
    """Raised when the request collides with existing state (duplicates, ownership)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=HTTPStatus.CONFLICT,
            code="CONFLICT",
            details=details,
        )


class InvalidStateError(AppError):
    """Raised when a transition is not allowed in the current state."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=HTTPStatus.BAD_REQUEST,
            code="INVALID_STATE",
            details=details,
        )


class UnauthorizedError(AppError):
    """Raised when the caller may not perform the action (not creator/admin, not a friend)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=HTTPStatus.FORBIDDEN,
            code="UNAUTHORIZED",
            details=details,
        )


class ValidationError(AppError):
    """Raised when a definition or identifier is malformed."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        field_errors: Optional[Dict[str, List[str]]] = None,
    ):
        if field_errors:
            details = details or {}
            details["field_errors"] = field_errors
        super().__init__(
            message=message,
            status_code=HTTPStatus.BAD_REQUEST,
            code="VALIDATION_ERROR",
            details=details,
        )


class AuthenticationError(AppError):
    """Raised when no valid caller identity accompanies the request."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=HTTPStatus.UNAUTHORIZED,
            code="AUTHENTICATION_REQUIRED",
            details=details,
        )


class DatabaseUnavailableError(AppError):
    def __init__(self, message: str = "Database not available"):
        super().__init__(
            message=message,
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            code="DATABASE_UNAVAILABLE",
        )


def from_pydantic(exc, message: str = "Invalid data") -> ValidationError:
    """Translate a pydantic ValidationError into ours, grouping messages by field."""
    field_errors: Dict[str, List[str]] = {}
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "__root__"
        field_errors.setdefault(loc, []).append(err.get("msg", "invalid"))
    return ValidationError(message, field_errors=field_errors)
