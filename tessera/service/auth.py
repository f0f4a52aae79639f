from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional

from tessera.config import Settings
from tessera.logging import get_logger, hash_email
from tessera.service.errors import (
    AuthenticationError,
    ConflictError,
    InvalidCodeError,
    NotFoundError,
    TokenDecodeError,
)
from tessera.service.password_reset import PasswordResetWorkflow
from tessera.service.sessions import AuthContext, SessionRegistry
from tessera.service.step_up import StepUpTokenIssuer
from tessera.service.totp import EnrollmentResult, TOTPManager
from tessera.storage.errors import ConstraintViolation
from tessera.storage.models import User, utcnow

logger = get_logger(__name__)


@dataclass
class SignInResult:
    token: str
    is_2fa_enabled: bool = False
    user: Optional[User] = None


class AuthService:
    """Account and session operations exposed to the API layer.

    Composes the credential store with the session registry, the step-up
    issuer, the TOTP manager and the password reset workflow.
    """

    def __init__(
        self,
        store,
        registry: SessionRegistry,
        step_up: StepUpTokenIssuer,
        totp: TOTPManager,
        resets: PasswordResetWorkflow,
        settings: Settings,
    ) -> None:
        self.store = store
        self.registry = registry
        self.step_up = step_up
        self.totp = totp
        self.resets = resets
        self.settings = settings
        self.logger = logger

    async def create_account(
        self,
        email: str,
        password: str,
        device_name: str,
        *,
        name: Optional[str] = None,
        picture_uri: Optional[str] = None,
    ) -> tuple[User, str]:
        try:
            user = self.store.create_user(email, password, name=name, picture_uri=picture_uri)
        except ConstraintViolation as exc:
            raise ConflictError("Email already in use", detail=exc.detail) from exc
        user.last_access_at = utcnow()
        user = self.store.save_user(user)
        token = await self.registry.issue(user.id, device_name)
        self.logger.info("account_created", user_id=user.id)
        return user, token

    async def sign_in(
        self,
        email: str,
        password: str,
        device_name: str,
        totp: Optional[str] = None,
    ) -> SignInResult:
        user = self.store.get_user_by_email(email)
        if not user:
            self.logger.info("sign_in_unknown_email", email_hash=hash_email(email))
            raise NotFoundError("User not found")
        if not self.store.verify_password(user, password):
            raise AuthenticationError("User not found")

        user.last_access_at = utcnow()
        user = self.store.save_user(user)

        if user.is_2fa_enabled:
            if not totp:
                token = self.step_up.issue_step_up(user.id, device_name)
                self.logger.info("sign_in_step_up_required", user_id=user.id)
                return SignInResult(token=token, is_2fa_enabled=True)
            if not self.totp.verify(user.secret_2fa or "", totp):
                self.logger.warning("sign_in_totp_rejected", user_id=user.id)
                raise InvalidCodeError("Invalid code")

        token = await self.registry.issue(user.id, device_name)
        self.logger.info("sign_in_succeeded", user_id=user.id, device_name=device_name)
        return SignInResult(token=token, is_2fa_enabled=user.is_2fa_enabled, user=user)

    async def complete_two_factor(self, ctx: AuthContext, code: str) -> SignInResult:
        """Trade a step-up identity plus a TOTP code for a standard session."""
        user = self.store.get_user(ctx.user_id)
        if not user or user.is_deleted:
            raise NotFoundError("User not found")
        if not user.secret_2fa:
            raise NotFoundError("Two-factor authentication is not set up")
        if not self.totp.verify(user.secret_2fa, code):
            self.logger.warning("two_factor_code_rejected", user_id=user.id)
            raise InvalidCodeError("Invalid code")
        token = await self.registry.issue(user.id, ctx.device_name)
        self.logger.info("two_factor_completed", user_id=user.id)
        return SignInResult(token=token, is_2fa_enabled=user.is_2fa_enabled, user=user)

    async def enroll_two_factor(self, ctx: AuthContext) -> tuple[EnrollmentResult, Optional[str]]:
        result = await self.totp.enroll(ctx.user_id)
        uri = None
        if result.secret:
            user = self.store.get_user(ctx.user_id)
            uri = self.totp.provisioning_uri(result.secret, user.email if user else ctx.user_id)
        return result, uri

    async def verify_two_factor(self, ctx: AuthContext, code: str) -> bool:
        return await self.totp.verify_and_enable(ctx.user_id, code)

    async def me(self, ctx: AuthContext) -> User:
        user = self.store.get_user(ctx.user_id)
        if not user or user.is_deleted:
            raise NotFoundError("User not found")
        return user

    async def sign_out(self, ctx: AuthContext, *, all_devices: bool = False) -> None:
        await self.registry.revoke(ctx.user_id, None if all_devices else ctx.token)

    async def list_sessions(self, ctx: AuthContext) -> List[dict[str, Any]]:
        rows = await self.registry.list_sessions(ctx.user_id)
        return [
            {
                "device_name": row.device_name,
                "created_at": row.created_at,
                "last_access_at": row.last_access_at,
                "current": row.token == ctx.token,
            }
            for row in rows
        ]

    async def request_password_reset(self, email: str) -> bool:
        return await self.resets.request_reset(email)

    async def reset_password(
        self, email: str, code: int, new_password: str, device_name: str
    ) -> str:
        return await self.resets.consume_reset(email, code, new_password, device_name)

    async def identity_from_header(self, header: Any) -> Optional[AuthContext]:
        """Resolve an ``Authorization`` header value to an identity.

        Malformed or undecodable headers mean "anonymous" and return ``None``.
        A token that decodes but is revoked, or a step-up token past its
        deadline, raises instead so the client learns its token is dead.
        """
        if not isinstance(header, str):
            return None
        parts = header.split(" ")
        if len(parts) != 2:
            return None
        scheme, token = parts
        if scheme.lower() != "bearer":
            return None
        # "null" is what some clients send for an unset variable
        if not token or token == "null":
            return None
        try:
            return await self.registry.validate(token)
        except TokenDecodeError:
            return None

    @staticmethod
    def check_access(ctx: Optional[AuthContext], *, allow_short_lived: bool = False) -> AuthContext:
        if ctx is None or not ctx.user_id:
            raise AuthenticationError("User is invalid")
        if ctx.is_short_lived and not allow_short_lived:
            raise AuthenticationError("Token is invalid")
        return ctx
