from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header

from tessera.api.schemas import (
    Envelope,
    LoginRequest,
    LogoutRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    SessionInfo,
    SessionListResponse,
    SignInResponse,
    SignupRequest,
    TokenResponse,
    TwoFactorCodeRequest,
    TwoFactorEnrollResponse,
    UserResponse,
)
from tessera.service.auth import AuthService, SignInResult
from tessera.service.runtime import get_runtime
from tessera.service.sessions import AuthContext
from tessera.storage.models import User


def _user_response(user: User) -> UserResponse:
    return UserResponse(**user.public_dict())


def _sign_in_response(result: SignInResult) -> SignInResponse:
    return SignInResponse(
        token=result.token,
        is_2fa_enabled=result.is_2fa_enabled,
        user=_user_response(result.user) if result.user else None,
    )


async def get_identity(authorization: Optional[str] = Header(None)) -> Optional[AuthContext]:
    """Resolve the bearer header; ``None`` means the caller is anonymous."""
    runtime = get_runtime()
    return await runtime.auth.identity_from_header(authorization)


# Every route resolves the header, so a dead token is rejected even where
# no identity is required. FastAPI caches the result per request.
router = APIRouter(prefix="/v1", dependencies=[Depends(get_identity)])


async def get_user(ctx: Optional[AuthContext] = Depends(get_identity)) -> AuthContext:
    return AuthService.check_access(ctx)


async def get_step_up_user(ctx: Optional[AuthContext] = Depends(get_identity)) -> AuthContext:
    """Like :func:`get_user` but also admits the short-lived token issued before 2FA."""
    return AuthService.check_access(ctx, allow_short_lived=True)


@router.post("/auth/signup", response_model=Envelope, status_code=201, tags=["auth"])
async def signup(body: SignupRequest):
    """Create a new account and a session for the requesting device.

    Raises:
        409: If the e-mail is already registered
    """
    runtime = get_runtime()
    user, token = await runtime.auth.create_account(
        body.email,
        body.password,
        body.device_name,
        name=body.name,
        picture_uri=body.picture_uri,
    )
    return Envelope(
        status="ok",
        data=SignInResponse(token=token, is_2fa_enabled=False, user=_user_response(user)),
    )


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    """Authenticate with e-mail and password.

    Accounts with two-factor enabled receive a short-lived token and
    ``is_2fa_enabled: true`` unless a valid ``totp`` code was sent along;
    the short-lived token is exchanged at ``/auth/2fa/complete``.

    Raises:
        404: If no active account uses the e-mail
        401: If the password or TOTP code is wrong
    """
    runtime = get_runtime()
    result = await runtime.auth.sign_in(
        body.email, body.password, body.device_name, totp=body.totp
    )
    return Envelope(status="ok", data=_sign_in_response(result))


@router.post("/auth/2fa/complete", response_model=Envelope, tags=["auth"])
async def complete_two_factor(
    body: TwoFactorCodeRequest, principal: AuthContext = Depends(get_step_up_user)
):
    runtime = get_runtime()
    result = await runtime.auth.complete_two_factor(principal, body.code)
    return Envelope(status="ok", data=_sign_in_response(result))


@router.post("/auth/2fa/enroll", response_model=Envelope, tags=["auth"])
async def enroll_two_factor(principal: AuthContext = Depends(get_user)):
    """Start two-factor enrollment and return the shared secret.

    Calling again before verification returns the same secret; once
    two-factor is enabled no secret is returned.
    """
    runtime = get_runtime()
    result, uri = await runtime.auth.enroll_two_factor(principal)
    return Envelope(
        status="ok",
        data=TwoFactorEnrollResponse(success=result.success, secret=result.secret, otpauth_uri=uri),
    )


@router.post("/auth/2fa/verify", response_model=Envelope, tags=["auth"])
async def verify_two_factor(
    body: TwoFactorCodeRequest, principal: AuthContext = Depends(get_user)
):
    runtime = get_runtime()
    await runtime.auth.verify_two_factor(principal, body.code)
    return Envelope(status="ok", data={"is_2fa_enabled": True})


@router.post("/auth/reset/request", response_model=Envelope, tags=["auth"])
async def request_password_reset(body: PasswordResetRequest):
    """Send a one-time reset code by e-mail.

    Answers the same for unknown addresses.

    Raises:
        502: If the code could not be handed to the mail server
    """
    runtime = get_runtime()
    await runtime.auth.request_password_reset(body.email)
    return Envelope(status="ok", data={"status": "sent"})


@router.post("/auth/reset/confirm", response_model=Envelope, tags=["auth"])
async def confirm_password_reset(body: PasswordResetConfirm):
    """Set a new password with a reset code; every other session is signed out."""
    runtime = get_runtime()
    token = await runtime.auth.reset_password(
        body.email, int(body.code), body.new_password, body.device_name
    )
    return Envelope(status="ok", data=TokenResponse(token=token))


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(
    body: Optional[LogoutRequest] = None, principal: AuthContext = Depends(get_user)
):
    runtime = get_runtime()
    all_devices = bool(body and body.all_devices)
    await runtime.auth.sign_out(principal, all_devices=all_devices)
    return Envelope(
        status="ok",
        data={"message": "all sessions revoked" if all_devices else "session revoked"},
    )


@router.get("/auth/sessions", response_model=Envelope, tags=["auth"])
async def list_sessions(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    items = await runtime.auth.list_sessions(principal)
    return Envelope(
        status="ok",
        data=SessionListResponse(items=[SessionInfo(**item) for item in items]),
    )


@router.get("/me", response_model=Envelope, tags=["auth"])
async def get_current_user(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    user = await runtime.auth.me(principal)
    return Envelope(status="ok", data=_user_response(user))
