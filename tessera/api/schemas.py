from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

MAX_PASSWORD_LENGTH = 128
MIN_PASSWORD_LENGTH = 2


def _normalize_unicode(value: str) -> str:
    """NFKC-normalize and strip zero-width and bidi override characters."""
    zero_width = "\u200b\u200c\u200d\ufeff"
    cleaned = "".join(c for c in value if c not in zero_width)
    bidi_overrides = set(chr(c) for c in range(0x202A, 0x202F))
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(c for c in cleaned if c not in bidi_overrides)
    return unicodedata.normalize("NFKC", cleaned)


_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "invalid_token",
    "invalid_code",
    "token_expired",
    "code_expired",
    "not_found",
    "validation_error",
    "conflict",
    "delivery_failed",
    "storage_error",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """API envelope wrapping every response body."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = _normalize_unicode(value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    if len(normalized) < 3:
        raise ValueError("email address too short")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64:
        raise ValueError("email local part too long")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _validate_password(value: str) -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(value) > MAX_PASSWORD_LENGTH:
        raise ValueError(f"password must be at most {MAX_PASSWORD_LENGTH} characters")
    return value


def _validate_device_name(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("device_name must not be empty")
    return value


class SignupRequest(BaseModel):
    email: str
    password: str
    device_name: str = Field(..., max_length=128)
    name: Optional[str] = Field(default=None, max_length=128)
    picture_uri: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("email")
    @classmethod
    def _validate_signup_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _validate_signup_password(cls, value: str) -> str:
        return _validate_password(value)

    @field_validator("device_name")
    @classmethod
    def _validate_signup_device(cls, value: str) -> str:
        return _validate_device_name(value)


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., max_length=MAX_PASSWORD_LENGTH)
    device_name: str = Field(..., max_length=128)
    totp: Optional[str] = Field(default=None, max_length=10)

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("device_name")
    @classmethod
    def _validate_login_device(cls, value: str) -> str:
        return _validate_device_name(value)


class UserResponse(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    picture_uri: Optional[str] = None
    is_2fa_enabled: bool = False
    last_access_at: Optional[datetime] = None
    created_at: datetime


class SignInResponse(BaseModel):
    token: str
    is_2fa_enabled: bool = False
    user: Optional[UserResponse] = None


class TwoFactorCodeRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=6, pattern=r"^\d{6}$")


class TwoFactorEnrollResponse(BaseModel):
    success: bool
    secret: Optional[str] = None
    otpauth_uri: Optional[str] = None


class PasswordResetRequest(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def _validate_password_reset_email(cls, value: str) -> str:
        return _validate_email(value)


class PasswordResetConfirm(BaseModel):
    email: str
    code: str = Field(..., min_length=1, max_length=10, pattern=r"^\d+$")
    new_password: str
    device_name: str = Field(..., max_length=128)

    @field_validator("email")
    @classmethod
    def _validate_reset_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("new_password")
    @classmethod
    def _validate_new_password(cls, value: str) -> str:
        return _validate_password(value)

    @field_validator("device_name")
    @classmethod
    def _validate_reset_device(cls, value: str) -> str:
        return _validate_device_name(value)


class TokenResponse(BaseModel):
    token: str


class LogoutRequest(BaseModel):
    all_devices: bool = False


class SessionInfo(BaseModel):
    device_name: str
    created_at: int = Field(..., description="Epoch milliseconds")
    last_access_at: int = Field(..., description="Epoch milliseconds")
    current: bool = False


class SessionListResponse(BaseModel):
    items: List[SessionInfo]
