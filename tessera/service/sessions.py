"""Per-user, multi-device session registry.

Each user owns one list of session rows in the keyed store. Issuing a token
appends a row; validating a standard token requires its exact value to be in
the list; revoking removes one row or the whole key.

All writes are read-modify-write of the entire list without any
compare-and-set. Two requests issuing tokens for the same user at the same
time can therefore drop one of the rows (last write wins), and the losing
token will fail validation. This mirrors the behaviour of the store and is
left as-is; see ``DESIGN.md``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol

from tessera.config import Settings
from tessera.logging import get_logger
from tessera.service.errors import InvalidTokenError, TokenExpiredError
from tessera.service.tokens import TokenCodec, TokenPayload
from tessera.storage.errors import StorageError
from tessera.storage.models import SessionRow, epoch_ms

logger = get_logger(__name__)


class SessionListStore(Protocol):
    async def load_session_list(self, user_id: str) -> list: ...

    async def store_session_list(self, user_id: str, rows: list) -> None: ...

    async def delete_session_list(self, user_id: str) -> None: ...


@dataclass(frozen=True)
class AuthContext:
    """Identity resolved from a validated bearer token."""

    user_id: str
    device_name: str
    is_short_lived: bool
    token: str


class SessionRegistry:
    def __init__(self, cache: SessionListStore, codec: TokenCodec, settings: Settings) -> None:
        self.cache = cache
        self.codec = codec
        self.settings = settings

    def _now(self) -> int:
        return epoch_ms()

    async def _load(self, user_id: str) -> List[SessionRow]:
        raw_rows = await self.cache.load_session_list(user_id)
        try:
            return [SessionRow.from_dict(row) for row in raw_rows]
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError("corrupt session list") from exc

    async def _store(self, user_id: str, rows: List[SessionRow]) -> None:
        if rows:
            await self.cache.store_session_list(user_id, [row.to_dict() for row in rows])
        else:
            await self.cache.delete_session_list(user_id)

    async def issue(self, user_id: str, device_name: str) -> str:
        """Mint a standard token for ``device_name`` and record it in the user's list."""
        token = self.codec.encode(TokenPayload(user_id=user_id, device_name=device_name))
        now = self._now()
        rows = await self._load(user_id)
        existing = next((row for row in rows if row.token == token), None)
        if existing:
            existing.last_access_at = now
        else:
            rows.append(
                SessionRow(
                    token=token,
                    device_name=device_name,
                    created_at=now,
                    last_access_at=now,
                )
            )
        await self._store(user_id, rows)
        logger.info("session_issued", user_id=user_id, device_name=device_name, sessions=len(rows))
        return token

    async def validate(self, token: str) -> AuthContext:
        """Resolve ``token`` to an identity.

        Raises:
            TokenDecodeError: the token does not decrypt to a payload.
            TokenExpiredError: a short-lived token reached its deadline.
            InvalidTokenError: a standard token is not in its owner's list.
        """
        payload = self.codec.decode(token)
        if payload.is_short_lived:
            # Deadline is exclusive: the token dies at expiration_date
            if self._now() >= (payload.expiration_date or 0):
                logger.info("step_up_token_expired", user_id=payload.user_id)
                raise TokenExpiredError("Token has expired")
            return AuthContext(
                user_id=payload.user_id,
                device_name=payload.device_name,
                is_short_lived=True,
                token=token,
            )

        rows = await self._load(payload.user_id)
        if not any(row.token == token for row in rows):
            logger.info("session_not_found", user_id=payload.user_id)
            raise InvalidTokenError("Token is invalid")
        if self.settings.session_touch_on_validate:
            await self.touch(payload.user_id, token)
        return AuthContext(
            user_id=payload.user_id,
            device_name=payload.device_name,
            is_short_lived=False,
            token=token,
        )

    async def touch(self, user_id: str, token: str) -> bool:
        """Bump ``last_access_at`` on the row holding ``token``; never creates a row."""
        rows = await self._load(user_id)
        row = next((r for r in rows if r.token == token), None)
        if not row:
            return False
        row.last_access_at = self._now()
        await self._store(user_id, rows)
        return True

    async def revoke(self, user_id: str, token: Optional[str] = None) -> None:
        """Remove one session, or every session of ``user_id`` when ``token`` is omitted."""
        if token is None:
            await self.cache.delete_session_list(user_id)
            logger.info("sessions_revoked_all", user_id=user_id)
            return
        rows = await self._load(user_id)
        remaining = [row for row in rows if row.token != token]
        await self._store(user_id, remaining)
        logger.info(
            "session_revoked",
            user_id=user_id,
            removed=len(rows) - len(remaining),
            sessions=len(remaining),
        )

    async def list_sessions(self, user_id: str) -> List[SessionRow]:
        return await self._load(user_id)
