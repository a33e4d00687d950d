from __future__ import annotations

import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from communityhub.logging import get_logger
from communityhub.storage.errors import ConstraintViolation
from communityhub.storage.models import User, UserCredential

logger = get_logger(__name__)


class MemoryStore:
    """In-process credential store used for tests and local development.

    Mirrors the uniqueness rules of the PostgreSQL schema: emails are unique
    case-insensitively and at most one user holds the ROOT role.
    """

    def __init__(self) -> None:
        self.users: Dict[str, User] = {}
        self.credentials: Dict[str, UserCredential] = {}
        self._data_lock = threading.RLock()

    async def create_user(
        self,
        email: str,
        fullname: str,
        password_hash: str,
        *,
        role: str = "USER",
        password_algo: str = "argon2id",
    ) -> User:
        normalized = email.strip().lower()
        with self._data_lock:
            if any(existing.email == normalized for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            if role == "ROOT" and any(u.role == "ROOT" for u in self.users.values()):
                raise ConstraintViolation("root user already exists", {"field": "role"})
            user = User(
                id=str(uuid.uuid4()),
                email=normalized,
                fullname=fullname,
                role=role,
            )
            self.users[user.id] = user
            self.credentials[user.id] = UserCredential(
                user_id=user.id,
                password_hash=password_hash,
                password_algo=password_algo,
            )
            return user

    async def get_user_by_email(self, email: str) -> Optional[User]:
        normalized = email.strip().lower()
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == normalized), None)

    async def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    async def get_root_user(self) -> Optional[User]:
        with self._data_lock:
            return next((u for u in self.users.values() if u.role == "ROOT"), None)

    async def list_users(self, limit: int = 100) -> List[User]:
        with self._data_lock:
            results = list(self.users.values())
            return sorted(results, key=lambda u: u.created_at, reverse=True)[:limit]

    async def update_user_role(self, user_id: str, role: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            if role == "ROOT" and any(
                u.role == "ROOT" and u.id != user_id for u in self.users.values()
            ):
                raise ConstraintViolation("root user already exists", {"field": "role"})
            user.role = role
            user.updated_at = datetime.now(timezone.utc)
            return user

    async def save_password(
        self, user_id: str, password_hash: str, password_algo: str = "argon2id"
    ) -> None:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation(
                    "user not found for credentials", {"user_id": user_id}
                )
            self.credentials[user_id] = UserCredential(
                user_id=user_id,
                password_hash=password_hash,
                password_algo=password_algo,
            )
            self.users[user_id].updated_at = datetime.now(timezone.utc)

    async def get_password_record(self, user_id: str) -> Optional[UserCredential]:
        with self._data_lock:
            return self.credentials.get(user_id)

    async def close(self) -> None:
        return None


class MemoryCache:
    """Dict-backed TTL cache with the same surface as ``RedisCache``.

    ``clock`` returns monotonic seconds and can be replaced in tests to
    advance time without sleeping.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.monotonic
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.RLock()

    def _live(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live(key)

    async def set(self, key: str, value: str, *, ttl_seconds: Optional[int] = None) -> None:
        with self._lock:
            expires_at = self._clock() + ttl_seconds if ttl_seconds else None
            self._entries[key] = (str(value), expires_at)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def pop(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._live(key)
            self._entries.pop(key, None)
            return value

    async def mark_refresh_revoked(self, jti: str, ttl_seconds: int) -> None:
        if ttl_seconds > 0:
            await self.set(f"auth:refresh_revoked:{jti}", "1", ttl_seconds=ttl_seconds)

    async def claim_refresh_token(self, jti: str, ttl_seconds: int) -> bool:
        """Revoke ``jti`` and report whether this call was the first to do so."""
        key = f"auth:refresh_revoked:{jti}"
        with self._lock:
            if self._live(key) is not None:
                return False
            self._entries[key] = ("1", self._clock() + max(1, ttl_seconds))
            return True

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()
