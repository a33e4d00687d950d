from __future__ import annotations

import asyncio
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Awaitable, List, Optional, Protocol, TypeVar

from redis.exceptions import RedisError

from communityhub.config import Settings
from communityhub.logging import get_logger
from communityhub.service.email import EmailNotifier
from communityhub.service.errors import (
    AuthenticationError,
    ConflictError,
    DependencyTimeoutError,
    InvalidCredentials,
    InvalidOrExpiredOtp,
    InvalidResetTicket,
    NotFoundError,
    ServerError,
    ValidationError,
    with_timeout,
)
from communityhub.service.otp import OTPService
from communityhub.service.passwords import PasswordHasher
from communityhub.service.roles import Role
from communityhub.service.tokens import TokenClaims, TokenError, TokenExpired, TokenPair, TokenService
from communityhub.storage.errors import ConstraintViolation
from communityhub.storage.models import User, UserCredential

logger = get_logger(__name__)

T = TypeVar("T")

FORGOT_PASSWORD_MESSAGE = "If that email is registered, an OTP has been sent"


class CredentialStore(Protocol):
    async def create_user(
        self,
        email: str,
        fullname: str,
        password_hash: str,
        *,
        role: str = "USER",
        password_algo: str = "argon2id",
    ) -> User: ...

    async def get_user_by_email(self, email: str) -> Optional[User]: ...

    async def get_user(self, user_id: str) -> Optional[User]: ...

    async def save_password(
        self, user_id: str, password_hash: str, password_algo: str = "argon2id"
    ) -> None: ...

    async def get_password_record(self, user_id: str) -> Optional[UserCredential]: ...

    async def list_users(self, limit: int = 100) -> List[User]: ...


@dataclass
class AuthResult:
    user: User
    tokens: TokenPair


def _email_hash(email: str) -> str:
    return hashlib.sha256(email.encode()).hexdigest()[:16]


def _ticket_key(ticket: str) -> str:
    return f"reset:{hashlib.sha256(ticket.encode()).hexdigest()}"


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    if not header.lower().startswith("bearer "):
        return None
    token = header.split(" ", 1)[1].strip()
    return token or None


class AuthService:
    """Signup, signin, password reset and token refresh flows.

    Every store, cache, hashing and email call runs under its configured
    timeout; a miss raises ``DependencyTimeoutError``.
    """

    def __init__(
        self,
        store: CredentialStore,
        cache,
        settings: Settings,
        *,
        hasher: Optional[PasswordHasher] = None,
        tokens: Optional[TokenService] = None,
        otp: Optional[OTPService] = None,
        notifier: Optional[EmailNotifier] = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.settings = settings
        self.hasher = hasher or PasswordHasher()
        self.tokens = tokens or TokenService(settings)
        self.otp = otp or OTPService(cache, ttl_seconds=settings.otp_ttl_seconds)
        self.notifier = notifier or EmailNotifier()
        self._dummy_hash: Optional[str] = None

    # -- dependency wrappers -------------------------------------------------

    async def _store(self, awaitable: Awaitable[T]) -> T:
        return await with_timeout(awaitable, self.settings.store_timeout_seconds, "store")

    async def _cache(self, awaitable: Awaitable[T]) -> T:
        return await with_timeout(awaitable, self.settings.cache_timeout_seconds, "cache")

    async def _hash(self, password: str) -> str:
        return await with_timeout(
            asyncio.to_thread(self.hasher.hash, password),
            self.settings.hash_timeout_seconds,
            "hasher",
        )

    async def _verify(self, password: str, password_hash: str) -> bool:
        return await with_timeout(
            asyncio.to_thread(self.hasher.verify, password, password_hash),
            self.settings.hash_timeout_seconds,
            "hasher",
        )

    async def _check_password(self, user: User, password: str, *, rehash: bool = False) -> bool:
        record = await self._store(self.store.get_password_record(user.id))
        if not record:
            logger.warning("password_record_missing", user_id=user.id)
            return False
        if record.password_algo != self.hasher.algo:
            logger.warning("password_algo_mismatch", user_id=user.id, algo=record.password_algo)
            return False
        if not await self._verify(password, record.password_hash):
            return False
        if rehash and self.hasher.needs_rehash(record.password_hash):
            await self._upgrade_hash(user, password)
        return True

    async def _upgrade_hash(self, user: User, password: str) -> None:
        try:
            password_hash = await self._hash(password)
            await self._store(self.store.save_password(user.id, password_hash, self.hasher.algo))
        except DependencyTimeoutError as exc:
            logger.warning("password_rehash_skipped", user_id=user.id, dependency=exc.dependency)
            return
        logger.info("password_rehashed", user_id=user.id)

    async def _verify_dummy(self, password: str) -> None:
        """Spend one verification on a throwaway hash so unknown emails cost the same."""
        if self._dummy_hash is None:
            self._dummy_hash = await self._hash(secrets.token_urlsafe(16))
        await self._verify(password, self._dummy_hash)

    # -- flows -----------------------------------------------------------------

    async def signup(self, fullname: str, email: str, password: str) -> AuthResult:
        email = email.strip().lower()
        password_hash = await self._hash(password)
        try:
            user = await self._store(
                self.store.create_user(
                    email,
                    fullname.strip(),
                    password_hash,
                    role=Role.USER.value,
                    password_algo=self.hasher.algo,
                )
            )
        except ConstraintViolation as exc:
            logger.info("signup_conflict", email_hash=_email_hash(email), field=exc.detail.get("field"))
            raise ConflictError("Email already registered", detail=exc.detail) from exc
        logger.info("user_signed_up", user_id=user.id)
        return AuthResult(user=user, tokens=self.tokens.issue(user))

    async def signin(self, email: str, password: str) -> AuthResult:
        email = email.strip().lower()
        user = await self._store(self.store.get_user_by_email(email))
        if not user:
            await self._verify_dummy(password)
            logger.info("signin_failed", reason="unknown_email", email_hash=_email_hash(email))
            raise InvalidCredentials("Invalid email or password")
        if not await self._check_password(user, password, rehash=True):
            logger.info("signin_failed", reason="bad_password", user_id=user.id)
            raise InvalidCredentials("Invalid email or password")
        logger.info("user_signed_in", user_id=user.id)
        return AuthResult(user=user, tokens=self.tokens.issue(user))

    async def forgot_password(self, email: str) -> None:
        """Send a reset code when the email is registered; silent otherwise."""
        email = email.strip().lower()
        user = await self._store(self.store.get_user_by_email(email))
        if not user:
            logger.info("password_reset_unknown_email", email_hash=_email_hash(email))
            return
        code = self.otp.generate()
        try:
            await self._cache(self.otp.save(email, code))
        except (RedisError, OSError, DependencyTimeoutError) as exc:
            # Answer as for unknown emails; the caller may retry later
            logger.error("password_reset_otp_store_failed", user_id=user.id, error=str(exc))
            return
        ttl_minutes = max(1, self.settings.otp_ttl_seconds // 60)
        try:
            sent = await with_timeout(
                asyncio.to_thread(self.notifier.send_otp, user.email, code, ttl_minutes=ttl_minutes),
                self.settings.email_timeout_seconds,
                "email",
            )
        except DependencyTimeoutError:
            logger.error("password_reset_email_timeout", user_id=user.id)
            return
        if not sent:
            logger.warning("password_reset_email_failed", user_id=user.id)
            return
        logger.info("password_reset_requested", user_id=user.id)

    async def verify_otp(self, email: str, otp: str) -> str:
        """Consume the OTP for ``email`` and return a single-use reset ticket."""
        email = email.strip().lower()
        stored = await self._cache(self.otp.get(email))
        if not stored or not hmac.compare_digest(stored.encode(), otp.encode()):
            logger.info("otp_rejected", email_hash=_email_hash(email), had_code=bool(stored))
            raise InvalidOrExpiredOtp("Invalid or expired OTP")
        await self._cache(self.otp.invalidate(email))

        ticket = secrets.token_urlsafe(32)
        await self._cache(
            self.cache.set(
                _ticket_key(ticket), email, ttl_seconds=self.settings.reset_ticket_ttl_seconds
            )
        )
        logger.info("otp_verified", email_hash=_email_hash(email))
        return ticket

    async def reset_password(
        self, email: str, new_password: str, reset_token: Optional[str] = None
    ) -> None:
        email = email.strip().lower()
        if self.settings.reset_requires_ticket:
            if not reset_token:
                raise InvalidResetTicket("Invalid or expired reset token")
            bound_email = await self._cache(self.cache.pop(_ticket_key(reset_token)))
            if not bound_email or not hmac.compare_digest(bound_email.encode(), email.encode()):
                logger.warning("password_reset_invalid_ticket", email_hash=_email_hash(email))
                raise InvalidResetTicket("Invalid or expired reset token")

        user = await self._store(self.store.get_user_by_email(email))
        if not user:
            raise NotFoundError("User not found")
        password_hash = await self._hash(new_password)
        await self._store(self.store.save_password(user.id, password_hash, self.hasher.algo))
        logger.info("password_reset_completed", user_id=user.id)

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        user = await self._store(self.store.get_user(user_id))
        if not user:
            raise AuthenticationError("User not found")
        if not await self._check_password(user, current_password):
            raise InvalidCredentials("Current password is incorrect")
        password_hash = await self._hash(new_password)
        await self._store(self.store.save_password(user.id, password_hash, self.hasher.algo))
        logger.info("password_changed", user_id=user.id)

    async def refresh(self, refresh_token: Optional[str]) -> AuthResult:
        """Rotate a refresh token into a new pair built from the stored user."""
        if not refresh_token:
            raise AuthenticationError("Invalid or expired refresh token")
        try:
            claims = self.tokens.verify_refresh(refresh_token)
        except TokenError as exc:
            logger.info("refresh_rejected", reason=type(exc).__name__)
            raise AuthenticationError("Invalid or expired refresh token") from exc

        # Claiming the jti revokes it; only one concurrent caller can win
        try:
            claimed = await self._cache(
                self.cache.claim_refresh_token(claims.jti, claims.seconds_remaining())
            )
        except (RedisError, OSError) as exc:
            logger.error("refresh_claim_failed", user_id=claims.id, error=str(exc))
            raise ServerError("Unable to refresh token") from exc
        if not claimed:
            logger.warning("refresh_token_reuse", user_id=claims.id)
            raise AuthenticationError("Invalid or expired refresh token")

        user = await self._store(self.store.get_user(claims.id))
        if not user:
            raise AuthenticationError("User not found")

        tokens = self.tokens.issue(user)
        logger.info("tokens_refreshed", user_id=user.id)
        return AuthResult(user=user, tokens=tokens)

    async def logout(self, caller_id: str, refresh_token: Optional[str]) -> None:
        if not refresh_token:
            raise ValidationError("Refresh token is required")
        try:
            claims = self.tokens.verify_refresh(refresh_token)
        except TokenError as exc:
            logger.info("logout_token_unverified", user_id=caller_id, reason=type(exc).__name__)
            return
        if claims.id != caller_id:
            logger.warning("logout_token_owner_mismatch", user_id=caller_id)
            return
        await self._revoke_refresh_token(claims)
        logger.info("user_logged_out", user_id=caller_id)

    # -- tokens ------------------------------------------------------------------

    def authenticate(self, token: Optional[str]) -> TokenClaims:
        """Verify an access token or raise a generic 401."""
        if not token:
            raise AuthenticationError("Missing or invalid token")
        try:
            return self.tokens.verify_access(token)
        except TokenExpired as exc:
            logger.info("access_token_expired")
            raise AuthenticationError("Invalid or expired token") from exc
        except TokenError as exc:
            logger.info("access_token_invalid", reason=str(exc))
            raise AuthenticationError("Invalid or expired token") from exc

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self._store(self.store.get_user(user_id))

    async def list_users(self, limit: int = 100) -> List[User]:
        return await self._store(self.store.list_users(limit=limit))

    async def _revoke_refresh_token(self, claims: TokenClaims) -> None:
        try:
            await self._cache(
                self.cache.mark_refresh_revoked(claims.jti, claims.seconds_remaining())
            )
        except (RedisError, OSError, DependencyTimeoutError) as exc:
            logger.warning("refresh_revocation_failed", user_id=claims.id, error=str(exc))
