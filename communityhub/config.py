from __future__ import annotations

import os
import secrets
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from communityhub.logging import get_logger

logger = get_logger(__name__)

_MIN_SECRET_LENGTH = 32


class AppEnv(str, Enum):
    DEV = "dev"
    PROD = "prod"


class SameSite(str, Enum):
    LAX = "lax"
    STRICT = "strict"
    NONE = "none"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def _load_or_create_secret(name: str) -> str:
    """Return the secret persisted under SECRETS_DIR, generating it on first use."""
    root = Path(os.getenv("SECRETS_DIR", "/srv/communityhub"))
    secret_path = root / f".{name}"

    try:
        root.mkdir(parents=True, exist_ok=True)
        os.chmod(root, 0o700)
    except PermissionError:
        # Directory may already exist with different ownership (e.g., in container)
        pass
    except OSError as exc:
        logger.warning("secret_dir_setup", error=str(exc), path=str(root))

    if secret_path.exists() and not secret_path.is_symlink():
        try:
            persisted = secret_path.read_text().strip()
            if len(persisted) >= _MIN_SECRET_LENGTH:
                return persisted
        except OSError as exc:
            logger.error("secret_read_failed", error=str(exc), path=str(secret_path))

    generated = secrets.token_urlsafe(64)
    tmp_path = None
    try:
        fd, tmp_path = tempfile.mkstemp(dir=str(root), prefix=f".{name}_", suffix=".tmp")
        try:
            os.write(fd, generated.encode())
            os.fchmod(fd, 0o600)
        finally:
            os.close(fd)
        os.rename(tmp_path, str(secret_path))
    except OSError as exc:
        if tmp_path and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        logger.error("secret_persist_failed", error=str(exc), path=str(secret_path))
        raise RuntimeError(
            f"Unable to persist {name}; set {name.upper()} or make SECRETS_DIR writable"
        ) from exc
    return generated


class Settings(BaseModel):
    """Runtime settings read from the environment and ``.env``."""

    app_env: AppEnv = env_field(AppEnv.DEV, "APP_ENV")
    database_url: str = env_field(
        "postgresql://localhost:5432/communityhub", "DATABASE_URL"
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic test behavior; allows running without Redis",
    )

    # Token signing
    access_token_secret: str = env_field(None, "ACCESS_TOKEN_SECRET", validate_default=True)
    refresh_token_secret: str = env_field(None, "REFRESH_TOKEN_SECRET", validate_default=True)
    jwt_issuer: str = env_field("communityhub", "JWT_ISSUER")
    jwt_audience: str = env_field("communityhub-clients", "JWT_AUDIENCE")
    access_token_ttl_seconds: int = env_field(15 * 60, "ACCESS_TOKEN_TTL_SECONDS")
    refresh_token_ttl_seconds: int = env_field(30 * 24 * 3600, "REFRESH_TOKEN_TTL_SECONDS")

    # Password reset
    otp_ttl_seconds: int = env_field(600, "OTP_TTL_SECONDS")
    reset_ticket_ttl_seconds: int = env_field(15 * 60, "RESET_TICKET_TTL_SECONDS")
    reset_requires_ticket: bool = env_field(
        True,
        "RESET_REQUIRES_TICKET",
        description="Require the ticket returned by verify-otp when resetting a password",
    )

    # Cookies
    cookie_transport: bool = env_field(True, "COOKIE_TRANSPORT")
    cookie_domain: str | None = env_field(None, "COOKIE_DOMAIN")
    cookie_secure: bool = env_field(True, "COOKIE_SECURE")
    cookie_samesite: SameSite = env_field(SameSite.LAX, "COOKIE_SAMESITE")

    # Time budgets for external calls, in seconds
    store_timeout_seconds: float = env_field(5.0, "STORE_TIMEOUT_SECONDS")
    cache_timeout_seconds: float = env_field(2.0, "CACHE_TIMEOUT_SECONDS")
    email_timeout_seconds: float = env_field(15.0, "EMAIL_TIMEOUT_SECONDS")
    hash_timeout_seconds: float = env_field(5.0, "HASH_TIMEOUT_SECONDS")

    # Email
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("Community Hub", "EMAIL_FROM_NAME")

    cors_allow_origins: list[str] = env_field(
        ["http://localhost:3000", "http://localhost:5173"], "CORS_ALLOW_ORIGINS"
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @property
    def is_production(self) -> bool:
        return self.app_env is AppEnv.PROD

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("cookie_samesite", mode="before")
    @classmethod
    def _lower_samesite(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @field_validator(
        "access_token_ttl_seconds",
        "refresh_token_ttl_seconds",
        "otp_ttl_seconds",
        "reset_ticket_ttl_seconds",
        "store_timeout_seconds",
        "cache_timeout_seconds",
        "email_timeout_seconds",
        "hash_timeout_seconds",
    )
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("access_token_secret", mode="before")
    @classmethod
    def _ensure_access_secret(cls, value: str | None) -> str:
        return value or _load_or_create_secret("access_token_secret")

    @field_validator("refresh_token_secret", mode="before")
    @classmethod
    def _ensure_refresh_secret(cls, value: str | None) -> str:
        return value or _load_or_create_secret("refresh_token_secret")

    @model_validator(mode="after")
    def _check_consistency(self) -> "Settings":
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ")
        if self.cookie_samesite is SameSite.NONE and not self.cookie_secure:
            raise ValueError("COOKIE_SAMESITE=none requires COOKIE_SECURE=true")
        if self.refresh_token_ttl_seconds <= self.access_token_ttl_seconds:
            raise ValueError("refresh token TTL must exceed access token TTL")
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
