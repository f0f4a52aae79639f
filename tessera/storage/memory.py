from __future__ import annotations

import threading
from dataclasses import replace
from typing import Dict, Optional

from tessera.logging import get_logger
from tessera.storage.common import check_password, hash_password, normalize_email
from tessera.storage.errors import ConstraintViolation
from tessera.storage.models import User, utcnow


class MemoryStore:
    """In-process credential store used for tests and single-node development.

    Users are copied on the way in and out so callers observe the same
    save-to-persist semantics as the Postgres store.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        # RLock for all data operations to ensure thread safety
        self._data_lock = threading.RLock()

    def create_user(
        self,
        email: str,
        password: str,
        *,
        name: Optional[str] = None,
        picture_uri: Optional[str] = None,
    ) -> User:
        email = normalize_email(email)
        with self._data_lock:
            if any(existing.email == email for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User.new(email, name=name, picture_uri=picture_uri)
            user.password_hash = hash_password(password)
            self.users[user.id] = user
            return replace(user)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def get_user_by_email(self, email: str, *, include_deleted: bool = False) -> Optional[User]:
        email = normalize_email(email)
        with self._data_lock:
            for user in self.users.values():
                if user.email == email and (include_deleted or not user.is_deleted):
                    return replace(user)
            return None

    def get_user_by_reset_code(self, email: str, code: int) -> Optional[User]:
        email = normalize_email(email)
        with self._data_lock:
            for user in self.users.values():
                if (
                    user.email == email
                    and not user.is_deleted
                    and user.reset_code is not None
                    and user.reset_code == code
                ):
                    return replace(user)
            return None

    def get_user_by_2fa_secret(self, secret: str) -> Optional[User]:
        with self._data_lock:
            for user in self.users.values():
                if user.secret_2fa == secret:
                    return replace(user)
            return None

    def save_user(self, user: User, password: Optional[str] = None) -> User:
        """Persist every field of ``user``; a plain ``password`` is hashed before storing."""
        with self._data_lock:
            if user.id not in self.users:
                raise ConstraintViolation("user not found", {"user_id": user.id})
            user.email = normalize_email(user.email)
            clash = next(
                (u for u in self.users.values() if u.email == user.email and u.id != user.id),
                None,
            )
            if clash:
                raise ConstraintViolation("email already exists", {"field": "email"})
            if password is not None:
                user.password_hash = hash_password(password)
            user.updated_at = utcnow()
            self.users[user.id] = replace(user)
            return replace(user)

    def verify_password(self, user: User, password: str) -> bool:
        with self._data_lock:
            stored = self.users.get(user.id)
            password_hash = stored.password_hash if stored else user.password_hash
        ok = check_password(password_hash, password)
        if not ok:
            self.logger.warning("password_verification_failed", user_id=user.id)
        return ok

    def close(self) -> None:
        return None
