from __future__ import annotations

from argon2 import PasswordHasher as _Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

PASSWORD_ALGO = "argon2id"

# Cost parameters are fixed here rather than configured at runtime
_TIME_COST = 3
_MEMORY_COST_KIB = 64 * 1024
_PARALLELISM = 4


class PasswordHasher:
    """argon2id hashing with a random salt per call."""

    algo = PASSWORD_ALGO

    def __init__(self) -> None:
        self._hasher = _Argon2Hasher(
            time_cost=_TIME_COST,
            memory_cost=_MEMORY_COST_KIB,
            parallelism=_PARALLELISM,
            type=Type.ID,
        )

    def hash(self, plaintext: str) -> str:
        return self._hasher.hash(plaintext)

    def verify(self, plaintext: str, password_hash: str) -> bool:
        """Return True when ``plaintext`` matches; mismatches and malformed hashes return False."""
        try:
            return self._hasher.verify(password_hash, plaintext)
        except (InvalidHash, VerifyMismatchError, VerificationError):
            return False

    def needs_rehash(self, password_hash: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(password_hash)
        except InvalidHash:
            return True
