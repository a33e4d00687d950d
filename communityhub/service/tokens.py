from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

from communityhub.config import Settings
from communityhub.logging import get_logger
from communityhub.storage.models import User

logger = get_logger(__name__)

JWT_ALGORITHM = "HS256"
ACCESS = "access"
REFRESH = "refresh"


class TokenError(Exception):
    """Base for token verification failures."""


class TokenExpired(TokenError):
    pass


class TokenInvalid(TokenError):
    pass


@dataclass(frozen=True)
class TokenClaims:
    id: str
    email: str
    role: str
    type: str
    jti: str
    exp: int

    def seconds_remaining(self) -> int:
        now = int(datetime.now(timezone.utc).timestamp())
        return max(0, self.exp - now)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_in: int
    refresh_expires_in: int


class TokenService:
    """Issues and verifies HS256 access/refresh tokens.

    Access and refresh tokens are signed with different secrets so a leaked
    access secret cannot mint refresh tokens and vice versa.
    """

    def __init__(self, settings: Settings) -> None:
        self.access_secret = settings.access_token_secret
        self.refresh_secret = settings.refresh_token_secret
        self.issuer = settings.jwt_issuer
        self.audience = settings.jwt_audience
        self.access_ttl = settings.access_token_ttl_seconds
        self.refresh_ttl = settings.refresh_token_ttl_seconds

    def _secret_for(self, token_type: str) -> str:
        return self.access_secret if token_type == ACCESS else self.refresh_secret

    def _encode(self, user: User, token_type: str, ttl_seconds: int) -> str:
        now = datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            "id": user.id,
            "email": user.email,
            "role": user.role,
            "sub": user.id,
            "type": token_type,
            "jti": str(uuid.uuid4()),
            "iat": now,
            "exp": now + timedelta(seconds=ttl_seconds),
            "iss": self.issuer,
            "aud": self.audience,
        }
        return jwt.encode(payload, self._secret_for(token_type), algorithm=JWT_ALGORITHM)

    def issue(self, user: User) -> TokenPair:
        """Issue an access/refresh pair from one snapshot of ``user``."""
        return TokenPair(
            access_token=self._encode(user, ACCESS, self.access_ttl),
            refresh_token=self._encode(user, REFRESH, self.refresh_ttl),
            access_expires_in=self.access_ttl,
            refresh_expires_in=self.refresh_ttl,
        )

    def _decode(self, token: str, token_type: str) -> TokenClaims:
        try:
            payload = jwt.decode(
                token,
                self._secret_for(token_type),
                algorithms=[JWT_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["exp", "iat", "jti", "sub"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpired("token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenInvalid(str(exc)) from exc

        if payload.get("type") != token_type:
            raise TokenInvalid("token type mismatch")
        if not payload.get("id") or payload.get("id") != payload.get("sub"):
            raise TokenInvalid("token subject mismatch")
        return TokenClaims(
            id=str(payload["id"]),
            email=str(payload.get("email", "")),
            role=str(payload.get("role", "")),
            type=token_type,
            jti=str(payload["jti"]),
            exp=int(payload["exp"]),
        )

    def verify_access(self, token: str) -> TokenClaims:
        return self._decode(token, ACCESS)

    def verify_refresh(self, token: str) -> TokenClaims:
        return self._decode(token, REFRESH)
