"""
Error taxonomy for the authorization layer.

All of these are ``HTTPException`` subclasses so FastAPI renders them with
the status code that is part of the contract. ``detail`` is always a short,
caller-safe message; anything internal goes to the server log only.
"""

from __future__ import annotations

from fastapi import HTTPException, status


class AuthorizationError(HTTPException):
    code = "ERROR"
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Internal server error"

    def __init__(self, detail: str | None = None, headers: dict[str, str] | None = None) -> None:
        super().__init__(
            status_code=self.status_code_default,
            detail=detail or self.default_detail,
            headers=headers,
        )


class Unauthenticated(AuthorizationError):
    code = "UNAUTHORIZED"
    status_code_default = status.HTTP_401_UNAUTHORIZED
    default_detail = "Authentication required"


class Forbidden(AuthorizationError):
    code = "FORBIDDEN"
    status_code_default = status.HTTP_403_FORBIDDEN
    default_detail = "Forbidden"


class NotFound(AuthorizationError):
    code = "NOT_FOUND"
    status_code_default = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class BadRequest(AuthorizationError):
    code = "VALIDATION_ERROR"
    status_code_default = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid request"


class DataIntegrityError(AuthorizationError):
    """Related records are inconsistent (e.g. an invoice whose patient is gone)."""

    code = "DATA_INTEGRITY_ERROR"
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Related record is missing"


class RateLimited(AuthorizationError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code_default = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = "Too many requests. Please try again later."

    def __init__(self, retry_after_seconds: int, detail: str | None = None) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(detail=detail, headers={"Retry-After": str(retry_after_seconds)})
