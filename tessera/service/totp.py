from __future__ import annotations

import base64
import hashlib
import hmac
import os
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, urlencode

from tessera.config import Settings
from tessera.logging import get_logger
from tessera.service.errors import InvalidCodeError, NotFoundError, ServerError

logger = get_logger(__name__)

TOTP_INTERVAL = 30
TOTP_DIGITS = 6
# One step either side of "now" for clock drift
TOTP_DRIFT_STEPS = 1


@dataclass
class EnrollmentResult:
    success: bool
    secret: Optional[str] = None


class TOTPManager:
    """Two-factor enrollment and verification against RFC 6238 codes (SHA1, 30s, 6 digits)."""

    def __init__(self, store, settings: Settings) -> None:
        self.store = store
        self.settings = settings
        self.logger = logger

    def _now(self) -> float:
        return time.time()

    @staticmethod
    def _new_secret() -> str:
        return base64.b32encode(os.urandom(20)).decode("utf-8").rstrip("=")

    def _unique_secret(self) -> str:
        for attempt in range(1, self.settings.totp_secret_max_attempts + 1):
            candidate = self._new_secret()
            if not self.store.get_user_by_2fa_secret(candidate):
                return candidate
            self.logger.warning("totp_secret_collision", attempt=attempt)
        raise ServerError("Unable to allocate a two-factor secret")

    async def enroll(self, user_id: str) -> EnrollmentResult:
        """Start 2FA enrollment for ``user_id``.

        A user with a pending enrollment gets their stored secret back; a user
        who already finished enrollment gets no secret and nothing changes.
        """
        user = self.store.get_user(user_id)
        if not user or user.is_deleted:
            raise NotFoundError("User not found")
        if user.is_2fa_enabled:
            return EnrollmentResult(success=True)
        if user.secret_2fa:
            return EnrollmentResult(success=True, secret=user.secret_2fa)
        user.secret_2fa = self._unique_secret()
        self.store.save_user(user)
        self.logger.info("totp_enrollment_started", user_id=user_id)
        return EnrollmentResult(success=True, secret=user.secret_2fa)

    async def verify_and_enable(self, user_id: str, code: str) -> bool:
        user = self.store.get_user(user_id)
        if not user or not user.secret_2fa:
            raise NotFoundError("Two-factor authentication is not set up")
        if not self.verify(user.secret_2fa, code):
            self.logger.warning("totp_verification_failed", user_id=user_id)
            raise InvalidCodeError("Invalid code")
        if not user.is_2fa_enabled:
            user.is_2fa_enabled = True
            self.store.save_user(user)
            self.logger.info("totp_enabled", user_id=user_id)
        return True

    def verify(self, secret: str, code: str, *, at: Optional[float] = None) -> bool:
        if not secret or not code:
            return False
        code = str(code).strip()
        if len(code) != TOTP_DIGITS or not code.isdigit():
            return False
        now = self._now() if at is None else at
        for offset in range(-TOTP_DRIFT_STEPS, TOTP_DRIFT_STEPS + 1):
            generated = generate_totp(secret, now + offset * TOTP_INTERVAL)
            if generated and hmac.compare_digest(generated, code):
                return True
        return False

    def provisioning_uri(self, secret: str, account: str) -> str:
        issuer = self.settings.totp_issuer
        label = quote(f"{issuer}:{account}")
        query = urlencode(
            {
                "secret": secret,
                "issuer": issuer,
                "algorithm": "SHA1",
                "digits": TOTP_DIGITS,
                "period": TOTP_INTERVAL,
            }
        )
        return f"otpauth://totp/{label}?{query}"


def generate_totp(
    secret: str, timestamp: float, *, interval: int = TOTP_INTERVAL, digits: int = TOTP_DIGITS
) -> str:
    padded = secret + "=" * ((8 - len(secret) % 8) % 8)
    try:
        key = base64.b32decode(padded, True)
    except (ValueError, TypeError):
        logger.warning("totp_secret_invalid")
        return ""
    counter = int(timestamp // interval).to_bytes(8, "big")
    digest = hmac.new(key, counter, hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    code_int = (int.from_bytes(digest[offset : offset + 4], "big") & 0x7FFFFFFF) % (
        10**digits
    )
    return str(code_int).zfill(digits)
