from __future__ import annotations

import secrets
from typing import Optional

OTP_DIGITS = 6
OTP_TTL_SECONDS = 600


def otp_key(email: str) -> str:
    return f"otp:{email.strip().lower()}"


class OTPService:
    """Stores one live numeric code per email in the cache.

    Codes expire through the cache TTL; this service never sends them.
    """

    def __init__(self, cache, *, ttl_seconds: int = OTP_TTL_SECONDS) -> None:
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def generate() -> str:
        return f"{secrets.randbelow(10 ** OTP_DIGITS):0{OTP_DIGITS}d}"

    async def save(self, email: str, code: str) -> None:
        # Overwrites any previous code for this email
        await self.cache.set(otp_key(email), code, ttl_seconds=self.ttl_seconds)

    async def get(self, email: str) -> Optional[str]:
        return await self.cache.get(otp_key(email))

    async def invalidate(self, email: str) -> None:
        await self.cache.delete(otp_key(email))
