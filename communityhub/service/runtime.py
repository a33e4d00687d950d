from __future__ import annotations

import asyncio
from typing import Optional
from urllib.parse import urlparse, urlunparse

from redis.exceptions import RedisError

from communityhub.config import Settings, get_settings
from communityhub.logging import get_logger
from communityhub.service.auth import AuthService
from communityhub.service.email import EmailNotifier
from communityhub.service.otp import OTPService
from communityhub.service.passwords import PasswordHasher
from communityhub.service.roles import RoleService
from communityhub.service.tokens import TokenService
from communityhub.storage.memory import MemoryCache, MemoryStore
from communityhub.storage.postgres import PostgresStore
from communityhub.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a connection URL for logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    if parsed.username:
        netloc = f"{parsed.username}:***@{netloc}"
    else:
        netloc = f":***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


def build_notifier(settings: Settings) -> EmailNotifier:
    return EmailNotifier(
        smtp_host=settings.smtp_host,
        smtp_port=settings.smtp_port,
        smtp_user=settings.smtp_user,
        smtp_password=settings.smtp_password,
        smtp_use_tls=settings.smtp_use_tls,
        from_email=settings.email_from_address,
        from_name=settings.email_from_name,
        timeout=settings.email_timeout_seconds,
    )


class Runtime:
    """Holds the service instances shared by request handlers."""

    def __init__(
        self,
        settings: Settings,
        store,
        cache,
        *,
        notifier: Optional[EmailNotifier] = None,
        hasher: Optional[PasswordHasher] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.cache = cache
        self.email = notifier or build_notifier(settings)
        self.hasher = hasher or PasswordHasher()
        self.tokens = TokenService(settings)
        self.otp = OTPService(cache, ttl_seconds=settings.otp_ttl_seconds)
        self.auth = AuthService(
            store,
            cache,
            settings,
            hasher=self.hasher,
            tokens=self.tokens,
            otp=self.otp,
            notifier=self.email,
        )
        self.roles = RoleService(store, store_timeout=settings.store_timeout_seconds)

    async def close(self) -> None:
        await self.cache.close()
        await self.store.close()
        logger.info("runtime_closed")


async def _connect_cache(settings: Settings):
    redis_error: Exception | None = None
    if settings.redis_url:
        cache = RedisCache(settings.redis_url, socket_timeout=settings.cache_timeout_seconds)
        try:
            # Sync ping keeps the async client off the startup loop
            await asyncio.to_thread(cache.verify_connection)
            return cache
        except (RedisError, OSError) as exc:
            redis_error = exc
            await cache.close()

    if not settings.test_mode and not settings.allow_redis_fallback_dev:
        raise RuntimeError(
            "Redis is required for OTP codes and token revocation; start Redis or set "
            "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for the in-memory fallback."
        ) from redis_error

    logger.warning(
        "redis_disabled_fallback",
        redis_url=_mask_url_password(settings.redis_url),
        error=str(redis_error) if redis_error else "redis_url_missing",
        mode="TEST_MODE" if settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV",
    )
    return MemoryCache()


async def build_runtime(settings: Optional[Settings] = None) -> Runtime:
    """Create the store, cache and services described by ``settings``."""
    settings = settings or get_settings()
    logger.info(
        "runtime_init_started",
        use_memory_store=settings.use_memory_store,
        test_mode=settings.test_mode,
        app_env=settings.app_env,
    )

    if settings.use_memory_store:
        store = MemoryStore()
    else:
        store = PostgresStore(settings.database_url)
        try:
            await store.open()
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                database_url=_mask_url_password(settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            await store.close()
            raise

    cache = await _connect_cache(settings)
    runtime = Runtime(settings, store, cache)
    logger.info(
        "runtime_initialized",
        store_type="memory" if settings.use_memory_store else "postgres",
        redis_enabled=isinstance(cache, RedisCache),
        email_configured=runtime.email.is_configured,
    )
    return runtime
