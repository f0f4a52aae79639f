from __future__ import annotations

import base64
import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from tessera.logging import get_logger
from tessera.service.errors import TokenDecodeError

logger = get_logger(__name__)


@dataclass(frozen=True)
class TokenPayload:
    """Claims sealed inside a bearer token.

    Standard tokens carry no deadline and are only honoured while they sit in
    the owner's session list. Short-lived (step-up) tokens carry an absolute
    ``expiration_date`` in epoch milliseconds and are never listed.
    """

    user_id: str
    device_name: str
    is_short_lived: bool = False
    expiration_date: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "user_id": self.user_id,
            "device_name": self.device_name,
            "is_short_lived": self.is_short_lived,
        }
        if self.is_short_lived:
            data["expiration_date"] = self.expiration_date
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "TokenPayload":
        if not isinstance(data, dict):
            raise ValueError("payload must be an object")
        user_id = data.get("user_id")
        device_name = data.get("device_name")
        is_short_lived = data.get("is_short_lived", False)
        if not isinstance(user_id, str) or not user_id:
            raise ValueError("user_id missing")
        if not isinstance(device_name, str):
            raise ValueError("device_name missing")
        if not isinstance(is_short_lived, bool):
            raise ValueError("is_short_lived must be boolean")
        expiration_date = None
        if is_short_lived:
            expiration_date = data.get("expiration_date")
            if isinstance(expiration_date, bool) or not isinstance(expiration_date, int):
                raise ValueError("short-lived token without expiration_date")
        return cls(
            user_id=user_id,
            device_name=device_name,
            is_short_lived=is_short_lived,
            expiration_date=expiration_date,
        )


class TokenCodec:
    """Seals and opens token payloads with Fernet (AES-CBC + HMAC-SHA256).

    The cipher key is derived from the configured secret once, at construction.
    Fernet tokens embed a random IV, so encoding the same payload twice yields
    two different tokens.
    """

    def __init__(self, secret_key: str) -> None:
        if not secret_key:
            raise ValueError("secret_key is required")
        self._fernet = Fernet(self._derive_cipher_key(secret_key))

    @staticmethod
    def _derive_cipher_key(key_material: str) -> bytes:
        return base64.urlsafe_b64encode(hashlib.sha256(key_material.encode()).digest())

    def encode(self, payload: TokenPayload) -> str:
        body = json.dumps(payload.to_dict(), separators=(",", ":")).encode()
        return self._fernet.encrypt(body).decode()

    def decode(self, token: str) -> TokenPayload:
        """Open ``token`` or raise :class:`TokenDecodeError`.

        Every failure mode (bad base64, wrong key, tampered MAC, body that is
        not a payload) collapses into the same error with no crypto detail.
        """
        try:
            body = self._fernet.decrypt(token.encode())
            return TokenPayload.from_dict(json.loads(body))
        except (InvalidToken, ValueError, TypeError, AttributeError, UnicodeError):
            logger.info("token_decode_failed")
            raise TokenDecodeError("Token is invalid") from None
