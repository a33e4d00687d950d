from __future__ import annotations

import re
import unicodedata
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

MAX_PASSWORD_LENGTH = 128
MIN_PASSWORD_LENGTH = 8


def _normalize_unicode(value: str) -> str:
    """NFKC-normalize and drop zero-width and bidi override characters."""
    zero_width = '\u200b\u200c\u200d\ufeff'
    bidi_overrides = set(chr(c) for c in range(0x202A, 0x202F))
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = ''.join(c for c in value if c not in zero_width and c not in bidi_overrides)
    return unicodedata.normalize('NFKC', cleaned)


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
_OTP_PATTERN = re.compile(r"^\d{6}$")


def _validate_email(value: str) -> str:
    normalized = _normalize_unicode(value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("must be a valid email")
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("must be a valid email")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("must be a valid email")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("must be a valid email")
    return normalized


def _validate_password_strength(value: str) -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(value) > MAX_PASSWORD_LENGTH:
        raise ValueError(f"must be at most {MAX_PASSWORD_LENGTH} characters")
    return value


class _EmailBody(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def _validate_email_field(cls, value: str) -> str:
        return _validate_email(value)


class SignupRequest(_EmailBody):
    fullname: str
    password: str

    @field_validator("fullname")
    @classmethod
    def _validate_fullname(cls, value: str) -> str:
        cleaned = " ".join(_normalize_unicode(value).split())
        if len(cleaned) < 2:
            raise ValueError("must be at least 2 characters")
        if len(cleaned) > 100:
            raise ValueError("must be at most 100 characters")
        return cleaned

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class SigninRequest(_EmailBody):
    password: str = Field(..., min_length=1, max_length=MAX_PASSWORD_LENGTH)


class ForgotPasswordRequest(_EmailBody):
    pass


class VerifyOtpRequest(_EmailBody):
    otp: str

    @field_validator("otp")
    @classmethod
    def _validate_otp(cls, value: str) -> str:
        value = value.strip()
        if not _OTP_PATTERN.match(value):
            raise ValueError("must be a 6-digit code")
        return value


class ResetPasswordRequest(_EmailBody):
    new_password: str = Field(..., validation_alias=AliasChoices("new_password", "newPassword"))
    reset_token: Optional[str] = Field(
        default=None,
        max_length=256,
        validation_alias=AliasChoices("reset_token", "resetToken"),
    )

    @field_validator("new_password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(
        ...,
        min_length=1,
        max_length=MAX_PASSWORD_LENGTH,
        validation_alias=AliasChoices("current_password", "currentPassword"),
    )
    new_password: str = Field(..., validation_alias=AliasChoices("new_password", "newPassword"))

    @field_validator("new_password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class RefreshTokenBody(BaseModel):
    refresh_token: Optional[str] = Field(
        default=None,
        max_length=4096,
        validation_alias=AliasChoices("refresh_token", "refreshToken"),
    )


class AssignRoleRequest(BaseModel):
    user_id: str = Field(
        ..., min_length=1, max_length=128, validation_alias=AliasChoices("userId", "user_id")
    )
    role: str = Field(..., max_length=32)


# -- responses ------------------------------------------------------------------


class UserOut(BaseModel):
    id: str
    email: str
    fullname: str
    role: str
    created_at: Optional[str] = None


class RoleUserOut(BaseModel):
    id: str
    email: str
    role: str


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class AuthTokensResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    user: UserOut
    access_token: str = Field(..., alias="accessToken")
    refresh_token: str = Field(..., alias="refreshToken")


class VerifyOtpResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    reset_token: str = Field(..., alias="resetToken")


class UserResponse(BaseModel):
    success: bool = True
    user: UserOut


class UserListResponse(BaseModel):
    success: bool = True
    users: List[UserOut]


class AssignRoleResponse(BaseModel):
    success: bool = True
    message: str = "Role updated"
    user: RoleUserOut


class ErrorBody(BaseModel):
    success: bool = False
    message: str
    code: str
    request_id: Optional[str] = None
    errors: Optional[List[str]] = None
