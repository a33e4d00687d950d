from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from communityhub.api.cookies import CookiePolicy
from communityhub.api.guards import (
    get_cookie_policy,
    get_current_identity,
    get_runtime,
    require_admin,
)
from communityhub.api.schemas import (
    AssignRoleRequest,
    AssignRoleResponse,
    AuthTokensResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    MessageResponse,
    RefreshTokenBody,
    ResetPasswordRequest,
    RoleUserOut,
    SigninRequest,
    SignupRequest,
    UserListResponse,
    UserOut,
    UserResponse,
    VerifyOtpRequest,
    VerifyOtpResponse,
)
from communityhub.service.auth import FORGOT_PASSWORD_MESSAGE, AuthResult
from communityhub.service.errors import AuthenticationError
from communityhub.service.runtime import Runtime
from communityhub.service.tokens import TokenClaims

router = APIRouter()


def _tokens_response(
    result: AuthResult, message: str, response: Response, cookies: CookiePolicy
) -> AuthTokensResponse:
    cookies.apply(response, result.tokens)
    return AuthTokensResponse(
        message=message,
        user=UserOut(**result.user.public_dict()),
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
    )


def _presented_refresh_token(
    request: Request, body: Optional[RefreshTokenBody], cookies: CookiePolicy
) -> Optional[str]:
    if body and body.refresh_token:
        return body.refresh_token
    return cookies.refresh_token(request)


@router.post("/auth/signup", response_model=AuthTokensResponse, status_code=201, tags=["auth"])
async def signup(
    body: SignupRequest,
    response: Response,
    runtime: Runtime = Depends(get_runtime),
    cookies: CookiePolicy = Depends(get_cookie_policy),
):
    result = await runtime.auth.signup(body.fullname, body.email, body.password)
    return _tokens_response(result, "User registered successfully", response, cookies)


@router.post("/auth/signin", response_model=AuthTokensResponse, tags=["auth"])
async def signin(
    body: SigninRequest,
    response: Response,
    runtime: Runtime = Depends(get_runtime),
    cookies: CookiePolicy = Depends(get_cookie_policy),
):
    result = await runtime.auth.signin(body.email, body.password)
    return _tokens_response(result, "Login successful", response, cookies)


@router.post("/auth/forgot-password", response_model=MessageResponse, tags=["auth"])
async def forgot_password(body: ForgotPasswordRequest, runtime: Runtime = Depends(get_runtime)):
    # Same answer whether or not the email is registered
    await runtime.auth.forgot_password(body.email)
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/auth/verify-otp", response_model=VerifyOtpResponse, tags=["auth"])
async def verify_otp(body: VerifyOtpRequest, runtime: Runtime = Depends(get_runtime)):
    ticket = await runtime.auth.verify_otp(body.email, body.otp)
    return VerifyOtpResponse(message="OTP verified", reset_token=ticket)


@router.post("/auth/reset-password", response_model=MessageResponse, tags=["auth"])
async def reset_password(body: ResetPasswordRequest, runtime: Runtime = Depends(get_runtime)):
    await runtime.auth.reset_password(body.email, body.new_password, body.reset_token)
    return MessageResponse(message="Password reset successfully")


@router.post("/auth/refresh", response_model=AuthTokensResponse, tags=["auth"])
async def refresh(
    request: Request,
    response: Response,
    body: Optional[RefreshTokenBody] = None,
    runtime: Runtime = Depends(get_runtime),
    cookies: CookiePolicy = Depends(get_cookie_policy),
):
    token = _presented_refresh_token(request, body, cookies)
    result = await runtime.auth.refresh(token)
    return _tokens_response(result, "Token refreshed", response, cookies)


@router.post("/auth/logout", response_model=MessageResponse, tags=["auth"])
async def logout(
    request: Request,
    response: Response,
    body: Optional[RefreshTokenBody] = None,
    identity: TokenClaims = Depends(get_current_identity),
    runtime: Runtime = Depends(get_runtime),
    cookies: CookiePolicy = Depends(get_cookie_policy),
):
    token = _presented_refresh_token(request, body, cookies)
    await runtime.auth.logout(identity.id, token)
    cookies.clear(response)
    return MessageResponse(message="Logged out successfully")


@router.post("/auth/change-password", response_model=MessageResponse, tags=["auth"])
async def change_password(
    body: ChangePasswordRequest,
    identity: TokenClaims = Depends(get_current_identity),
    runtime: Runtime = Depends(get_runtime),
):
    await runtime.auth.change_password(identity.id, body.current_password, body.new_password)
    return MessageResponse(message="Password changed successfully")


@router.get("/auth/me", response_model=UserResponse, tags=["auth"])
async def me(
    identity: TokenClaims = Depends(get_current_identity),
    runtime: Runtime = Depends(get_runtime),
):
    user = await runtime.auth.get_user(identity.id)
    if not user:
        raise AuthenticationError("User not found")
    return UserResponse(user=UserOut(**user.public_dict()))


@router.post("/roles/assign", response_model=AssignRoleResponse, tags=["roles"])
async def assign_role(
    body: AssignRoleRequest,
    identity: TokenClaims = Depends(get_current_identity),
    runtime: Runtime = Depends(get_runtime),
):
    # Permission rules live in RoleService so their order is preserved
    updated = await runtime.roles.assign_role(identity.id, body.user_id, body.role)
    return AssignRoleResponse(user=RoleUserOut(**updated))


@router.get("/users", response_model=UserListResponse, tags=["users"])
async def list_users(
    limit: int = Query(100, ge=1, le=200),
    identity: TokenClaims = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
):
    users = await runtime.auth.list_users(limit=limit)
    return UserListResponse(users=[UserOut(**u.public_dict()) for u in users])
