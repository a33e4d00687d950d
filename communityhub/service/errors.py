from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass fixes an HTTP ``status_code`` and a stable ``error_code``:
    - validation_error (400)
    - invalid_otp (400)
    - invalid_credentials (401)
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - conflict (409)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
        errors: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}
        self.errors = errors


class ValidationError(ServiceError):
    """Request validation failed (400); ``errors`` defaults to ``[message]``."""
    status_code = 400
    error_code = "validation_error"

    def __init__(self, message: str, **kwargs) -> None:
        super().__init__(message, **kwargs)
        if self.errors is None:
            self.errors = [message]


class BadRequestError(ValidationError):
    """Request is well-formed but semantically invalid."""
    pass


class InvalidOrExpiredOtp(ServiceError):
    """OTP missing, expired or mismatched (400)."""
    status_code = 400
    error_code = "invalid_otp"


class InvalidResetTicket(InvalidOrExpiredOtp):
    pass


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidCredentials(AuthenticationError):
    """Unknown email or wrong password; never says which (401)."""
    error_code = "invalid_credentials"


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class DependencyTimeoutError(ServerError):
    """An external dependency did not answer within its budget."""
    retryable = True

    def __init__(self, dependency: str, timeout: float) -> None:
        super().__init__(
            f"{dependency} timed out",
            detail={"dependency": dependency, "timeout_seconds": timeout},
        )
        self.dependency = dependency


async def with_timeout(awaitable: Awaitable[T], timeout: float, dependency: str) -> T:
    """Await ``awaitable`` within ``timeout`` seconds or raise DependencyTimeoutError."""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        raise DependencyTimeoutError(dependency, timeout) from exc


__all__ = [
    "ServiceError",
    "ValidationError",
    "BadRequestError",
    "InvalidOrExpiredOtp",
    "InvalidResetTicket",
    "AuthenticationError",
    "InvalidCredentials",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "ServerError",
    "DependencyTimeoutError",
    "with_timeout",
]
