from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: str
    email: str
    fullname: str
    role: str = "USER"
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None

    def public_dict(self) -> dict:
        """User fields safe to return to clients."""
        return {
            "id": self.id,
            "email": self.email,
            "fullname": self.fullname,
            "role": self.role,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class UserCredential:
    user_id: str
    password_hash: str
    password_algo: str = "argon2id"
    updated_at: datetime = field(default_factory=_utcnow)
