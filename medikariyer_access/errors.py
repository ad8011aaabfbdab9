"""
Error types surfaced by the MediKariyer request pipeline.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from medikariyer_access.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error payload handed to the UI layer."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class PipelineException(Exception):
    """Base exception for request pipeline failures."""

    is_retryable = False

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=self.details.get("request_id") or request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class NetworkError(PipelineException):
    """No response reached the client (timeout, refused, offline)."""

    is_retryable = True

    def __init__(self, message: str = "Could not reach the server", kind: str = "unknown",
                 details: Optional[Dict[str, Any]] = None):
        self.kind = kind
        super().__init__("NETWORK_ERROR", message, {"kind": kind, **(details or {})})


class AuthError(PipelineException):
    """Session is missing or expired; the UI should return to login."""

    def __init__(self, message: str = "Your session has expired. Please sign in again.",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTH_ERROR", message, details)


class ForbiddenError(PipelineException):
    """Valid session without permission for the operation."""

    def __init__(self, message: str = "You are not allowed to perform this action.",
                 details: Optional[Dict[str, Any]] = None, code: str = "FORBIDDEN"):
        self.status_code = 403
        super().__init__(code, message, details)


class AccountDisabledError(ForbiddenError):
    """Backend reported the account as disabled with a structured code."""

    def __init__(self, message: str = "Your account has been disabled.",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="ACCOUNT_DISABLED")


class ApiError(PipelineException):
    """Any other HTTP failure."""

    def __init__(self, status_code: int, message: str, details: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        super().__init__("API_ERROR", message, {"status_code": status_code, **(details or {})})


class CredentialsError(PipelineException):
    """Login or registration rejected the supplied credentials."""

    def __init__(self, message: str = "Invalid email or password.", details: Optional[Dict[str, Any]] = None):
        self.status_code = 401
        super().__init__("CREDENTIALS_ERROR", message, details)


class RateLimitError(PipelineException):
    """Client-side rate limit exceeded."""

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMIT_ERROR", message, details)


class RefreshError(PipelineException):
    """Token refresh failed. Handled inside the pipeline, never raised to callers."""

    def __init__(self, message: str = "Token refresh failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("REFRESH_ERROR", message, details)
