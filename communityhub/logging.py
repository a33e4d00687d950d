from __future__ import annotations

import logging
import os
import re
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

EventDict = Dict[str, Any]

# Set per request by the HTTP middleware
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind ``correlation_id`` (or a fresh UUID) to the current context and return it."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def _add_correlation_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    cid = correlation_id_var.get()
    if cid:
        event_dict.setdefault("correlation_id", cid)
    return event_dict


_SENSITIVE_KEY_PARTS = ("password", "secret", "token", "authorization", "email", "otp", "ticket")


def _mask(value: str) -> str:
    return f"{value[:2]}***{value[-2:]}" if len(value) > 4 else "***"


def _redact_pii(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask string values whose key names a credential or contact field.

    Keys ending in ``_hash`` hold one-way digests and are left alone.
    """
    for key, value in event_dict.items():
        if not isinstance(value, str) or key.endswith("_hash"):
            continue
        lowered = key.lower()
        if any(part in lowered for part in _SENSITIVE_KEY_PARTS):
            event_dict[key] = _mask(value)
    return event_dict


_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def configure_logging(
    level: str = "INFO", *, json_output: bool = True, dev_mode: bool = False
) -> None:
    """Install the structlog pipeline: JSON lines by default, console output in dev mode."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_correlation_id,
        _redact_pii,
        structlog.processors.StackInfoRenderer(),
    ]
    if dev_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            _LEVELS.get(level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


configure_logging(
    os.getenv("LOG_LEVEL", "INFO"),
    json_output=_env_flag("LOG_JSON", "true"),
    dev_mode=_env_flag("LOG_DEV_MODE", "false"),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


_REDACTED = "[redacted]"

# Fragments that must not reach clients in error messages
_LEAKY_PATTERNS = [
    re.compile(pattern)
    for pattern in (
        r"(?i)(postgres(ql)?|redis|rediss)://\S+",
        r"(?i)(password|secret|token|key|credential|otp)\s*[:=]\s*\S+",
        r"(?i)\b(select|insert|update|delete)\b.{0,80}",
        r"(?i)\b(from|where|join)\s+.{0,50}",
        r"(?i)/(?:home|var|etc|usr|opt|tmp|srv)/\S+",
        r"(?i)[a-z]:\\\S+",
        r"(?i)traceback \(most recent call last\)",
    )
]

_MAX_CLIENT_ERROR_LENGTH = 500


def sanitize_error_message(error: str) -> str:
    """Scrub connection strings, credentials, SQL and paths from ``error`` and cap its length."""
    if not error or not isinstance(error, str):
        return "An error occurred"
    for pattern in _LEAKY_PATTERNS:
        error = pattern.sub(_REDACTED, error)
    if len(error) > _MAX_CLIENT_ERROR_LENGTH:
        error = error[: _MAX_CLIENT_ERROR_LENGTH - 3] + "..."
    return error
