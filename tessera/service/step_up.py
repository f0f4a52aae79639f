from __future__ import annotations

from tessera.config import Settings
from tessera.logging import get_logger
from tessera.service.tokens import TokenCodec, TokenPayload
from tessera.storage.models import epoch_ms

logger = get_logger(__name__)


class StepUpTokenIssuer:
    """Issues the short-lived token handed out between the password and TOTP checks.

    The token is self-contained: it is not written to the session registry
    and cannot be revoked, only outlived.
    """

    def __init__(self, codec: TokenCodec, settings: Settings) -> None:
        self.codec = codec
        self.settings = settings

    def _now(self) -> int:
        return epoch_ms()

    @property
    def window_ms(self) -> int:
        return self.settings.step_up_window_minutes * 60 * 1000

    def issue_step_up(self, user_id: str, device_name: str) -> str:
        expiration_date = self._now() + self.window_ms
        token = self.codec.encode(
            TokenPayload(
                user_id=user_id,
                device_name=device_name,
                is_short_lived=True,
                expiration_date=expiration_date,
            )
        )
        logger.info("step_up_token_issued", user_id=user_id, expiration_date=expiration_date)
        return token
