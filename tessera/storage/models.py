from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class User:
    id: str
    email: str
    name: Optional[str] = None
    picture_uri: Optional[str] = None
    password_hash: Optional[str] = None
    secret_2fa: Optional[str] = None
    is_2fa_enabled: bool = False
    reset_code: Optional[int] = None
    reset_expires_at: Optional[datetime] = None
    last_access_at: Optional[datetime] = None
    is_deleted: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        email: str,
        *,
        name: Optional[str] = None,
        picture_uri: Optional[str] = None,
    ) -> "User":
        return cls(
            id=str(uuid.uuid4()),
            email=email,
            name=name,
            picture_uri=picture_uri,
        )

    def clear_reset_code(self) -> None:
        self.reset_code = None
        self.reset_expires_at = None

    def public_dict(self) -> Dict[str, Any]:
        """Profile fields safe to return to the account owner."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "picture_uri": self.picture_uri,
            "is_2fa_enabled": self.is_2fa_enabled,
            "last_access_at": self.last_access_at,
            "created_at": self.created_at,
        }


@dataclass
class SessionRow:
    """One device session inside a user's session list.

    Timestamps are epoch milliseconds so the list serializes to plain JSON.
    """

    token: str
    device_name: str
    created_at: int
    last_access_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "deviceName": self.device_name,
            "createdAt": self.created_at,
            "lastAccessAt": self.last_access_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionRow":
        return cls(
            token=str(data["token"]),
            device_name=str(data.get("deviceName") or ""),
            created_at=int(data.get("createdAt") or 0),
            last_access_at=int(data.get("lastAccessAt") or 0),
        )
