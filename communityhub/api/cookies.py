from __future__ import annotations

from typing import Optional

from fastapi import Request, Response

from communityhub.config import Settings
from communityhub.service.tokens import TokenPair

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


class CookiePolicy:
    """Maps issued tokens onto HttpOnly cookies and back."""

    def __init__(self, settings: Settings) -> None:
        self.enabled = settings.cookie_transport
        self.domain = settings.cookie_domain
        self.secure = settings.cookie_secure
        self.samesite = settings.cookie_samesite.value

    def apply(self, response: Response, tokens: TokenPair) -> None:
        if not self.enabled:
            return
        response.set_cookie(
            ACCESS_COOKIE,
            tokens.access_token,
            max_age=tokens.access_expires_in,
            httponly=True,
            secure=self.secure,
            samesite=self.samesite,
            domain=self.domain,
            path="/",
        )
        response.set_cookie(
            REFRESH_COOKIE,
            tokens.refresh_token,
            max_age=tokens.refresh_expires_in,
            httponly=True,
            secure=self.secure,
            samesite=self.samesite,
            domain=self.domain,
            path="/",
        )

    def clear(self, response: Response) -> None:
        for name in (ACCESS_COOKIE, REFRESH_COOKIE):
            response.delete_cookie(
                name,
                path="/",
                domain=self.domain,
                secure=self.secure,
                httponly=True,
                samesite=self.samesite,
            )

    def access_token(self, request: Request) -> Optional[str]:
        return request.cookies.get(ACCESS_COOKIE) if self.enabled else None

    def refresh_token(self, request: Request) -> Optional[str]:
        return request.cookies.get(REFRESH_COOKIE) if self.enabled else None
