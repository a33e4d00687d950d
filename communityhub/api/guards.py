from __future__ import annotations

from typing import Callable, Optional

from fastapi import Depends, Header, Request

from communityhub.api.cookies import CookiePolicy
from communityhub.logging import get_logger
from communityhub.service.auth import extract_bearer
from communityhub.service.errors import AuthenticationError, ForbiddenError
from communityhub.service.roles import Role, role_at_least
from communityhub.service.runtime import Runtime
from communityhub.service.tokens import TokenClaims

logger = get_logger(__name__)


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_cookie_policy(request: Request) -> CookiePolicy:
    return CookiePolicy(get_runtime(request).settings)


async def get_current_identity(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> TokenClaims:
    """Resolve the caller from the bearer header, falling back to the access cookie."""
    runtime = get_runtime(request)
    if authorization:
        token = extract_bearer(authorization)
        if token is None:
            raise AuthenticationError("Missing or invalid token")
    else:
        token = get_cookie_policy(request).access_token(request)
    claims = runtime.auth.authenticate(token)
    request.state.identity = claims
    return claims


def require_role(minimum: Role) -> Callable:
    """Dependency factory admitting callers whose role ranks at least ``minimum``."""

    async def _guard(
        request: Request, identity: TokenClaims = Depends(get_current_identity)
    ) -> TokenClaims:
        if not role_at_least(identity.role, minimum):
            logger.warning(
                "role_guard_denied",
                path=request.url.path,
                user_id=identity.id,
                role=identity.role,
                required=minimum.value,
            )
            message = "Admin access required" if minimum is Role.ADMIN else "Insufficient permissions"
            raise ForbiddenError(message)
        return identity

    return _guard


require_admin = require_role(Role.ADMIN)
