from __future__ import annotations

import asyncio
import secrets
from datetime import datetime, timedelta
from typing import Optional

from tessera.config import Settings
from tessera.logging import get_logger, hash_email
from tessera.service.errors import CodeExpiredError, DeliveryFailedError, NotFoundError
from tessera.service.sessions import SessionRegistry
from tessera.storage.models import utcnow

logger = get_logger(__name__)


def generate_reset_code(digits: int) -> int:
    """Uniform random integer with exactly ``digits`` decimal digits."""
    low = 10 ** (digits - 1)
    return low + secrets.randbelow(10**digits - low)


class PasswordResetWorkflow:
    """One-time numeric code flow for recovering an account by e-mail.

    A user is in one of three states: no code, code issued, or code expired.
    Issuing a new code always overwrites the previous one. Consuming a valid
    code revokes every session of the user before handing out a fresh token.
    """

    def __init__(self, store, registry: SessionRegistry, mailer, settings: Settings) -> None:
        self.store = store
        self.registry = registry
        self.mailer = mailer
        self.settings = settings

    def _now(self) -> datetime:
        return utcnow()

    async def request_reset(self, email: str) -> bool:
        user = self.store.get_user_by_email(email)
        if not user:
            # Same answer as the happy path so callers cannot probe for accounts
            logger.info("password_reset_unknown_email", email_hash=hash_email(email))
            return True

        expire_hours = self.settings.reset_code_expire_hours
        user.reset_code = generate_reset_code(self.settings.reset_code_digits)
        user.reset_expires_at = self._now() + timedelta(hours=expire_hours)
        self.store.save_user(user)
        logger.info("password_reset_code_issued", user_id=user.id)

        try:
            sent = await asyncio.to_thread(
                self.mailer.send_password_reset_code, user.email, user.reset_code, expire_hours
            )
        except Exception as exc:
            logger.error("password_reset_delivery_error", user_id=user.id, error=str(exc))
            sent = False
        if not sent:
            raise DeliveryFailedError("Failed to send code to user's email")
        return True

    async def consume_reset(
        self,
        email: str,
        code: int,
        new_password: str,
        device_name: str,
    ) -> str:
        """Swap the password for ``new_password`` and return a token for ``device_name``."""
        user = self.store.get_user_by_reset_code(email, code)
        if not user:
            raise NotFoundError("Code not found")

        expires_at: Optional[datetime] = user.reset_expires_at
        if expires_at is None or self._now() >= expires_at:
            user.clear_reset_code()
            self.store.save_user(user)
            logger.info("password_reset_code_expired", user_id=user.id)
            raise CodeExpiredError("Code has expired")

        await self.registry.revoke(user.id)
        user.clear_reset_code()
        user.last_access_at = self._now()
        self.store.save_user(user, password=new_password)
        token = await self.registry.issue(user.id, device_name)
        logger.info("password_reset_completed", user_id=user.id)
        return token
