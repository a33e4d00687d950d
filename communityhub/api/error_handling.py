from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from communityhub.api.schemas import ErrorBody
from communityhub.logging import get_correlation_id, get_logger, sanitize_error_message
from communityhub.service.errors import ServiceError
from communityhub.storage.errors import ConstraintViolation

logger = get_logger(__name__)

GENERIC_SERVER_ERROR = "Internal server error"

_STATUS_TO_CODE = {
    400: "validation_error",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    415: "validation_error",
    500: "server_error",
}

_LOC_PREFIXES = {"body", "query", "path", "header", "cookie"}


def _error_code_for_status(status_code: int) -> str:
    return _STATUS_TO_CODE.get(status_code, "server_error")


def _error_response(
    status_code: int,
    message: str,
    *,
    code: Optional[str] = None,
    errors: Optional[list[str]] = None,
) -> JSONResponse:
    body = ErrorBody(
        message=message,
        code=code or _error_code_for_status(status_code),
        request_id=get_correlation_id(),
        errors=errors,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def _is_production(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(settings and settings.is_production)


def format_validation_errors(exc: RequestValidationError) -> list[str]:
    """Flatten pydantic errors into ``"field: reason"`` strings."""
    messages: list[str] = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        if len(loc) > 1 and loc[0] in _LOC_PREFIXES:
            loc = loc[1:]
        msg = str(err.get("msg", "invalid value"))
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        field = ".".join(loc)
        messages.append(f"{field}: {msg}" if field else msg)
    return messages


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers so every failure renders as ``{success: false, message}``."""

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = format_validation_errors(exc)
        logger.warning(
            "request_validation_failed",
            path=request.url.path,
            method=request.method,
            errors=errors,
        )
        return _error_response(400, "Validation failed", code="validation_error", errors=errors)

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(409, exc.message, code="conflict")

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
            detail=exc.detail,
            retryable=exc.retryable,
        )
        message = exc.message
        if exc.status_code >= 500 and _is_production(request):
            message = GENERIC_SERVER_ERROR
        return _error_response(exc.status_code, message, code=exc.error_code, errors=exc.errors)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
            if _is_production(request):
                message = GENERIC_SERVER_ERROR
        response = _error_response(exc.status_code, message)
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        if _is_production(request):
            message = GENERIC_SERVER_ERROR
        else:
            message = sanitize_error_message(str(exc)) if str(exc) else GENERIC_SERVER_ERROR
        return _error_response(500, message, code="server_error")
