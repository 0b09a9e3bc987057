from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Services raise these at the point of detection; nothing below the HTTP
    boundary catches or converts them. Each class carries the status code and
    stable error code the boundary uses:
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - validation_error (400)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict | list] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class BadRequestError(ServiceError):
    """Structurally valid request that breaks a domain invariant (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Principal identity missing or unverifiable (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidTokenError(AuthenticationError):
    """Malformed, expired, unverifiable, unknown or revoked credential (401).

    Deliberately carries no sub-reason so callers cannot tell which check failed.
    """

    def __init__(self, message: str = "invalid token") -> None:
        super().__init__(message)


class ForbiddenError(ServiceError):
    """Access denied - insufficient role or ownership (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found or soft-deleted (404)."""
    status_code = 404
    error_code = "not_found"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


__all__ = [
    "ServiceError",
    "BadRequestError",
    "AuthenticationError",
    "InvalidTokenError",
    "ForbiddenError",
    "NotFoundError",
    "ServerError",
]
