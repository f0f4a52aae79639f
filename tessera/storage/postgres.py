from __future__ import annotations

import contextlib
import uuid
from typing import Any, Iterator, Optional

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from tessera.logging import get_logger
from tessera.storage.common import (
    check_password,
    hash_password,
    normalize_email,
    safe_row_value,
)
from tessera.storage.errors import ConstraintViolation, StorageError
from tessera.storage.models import User, utcnow

_USER_COLUMNS = (
    "id, email, name, picture_uri, password_hash, secret_2fa, is_2fa_enabled, "
    "reset_code, reset_expires_at, last_access_at, is_deleted, created_at, updated_at"
)


class PostgresStore:
    """Postgres-backed credential store for user records."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
            open=True,
        )
        self._ensure_user_table()

    @contextlib.contextmanager
    def _connect(self) -> Iterator[psycopg.Connection]:
        try:
            with self.pool.connection() as conn:
                yield conn
        except errors.UniqueViolation as exc:
            raise ConstraintViolation("email already exists", {"field": "email"}) from exc
        except psycopg.Error as exc:
            self.logger.error("postgres_query_failed", error=str(exc))
            raise StorageError("credential store unavailable") from exc

    def _ensure_user_table(self) -> None:
        """Create the ``app_user`` table if it is missing."""

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS app_user (
                    id UUID PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    name TEXT,
                    picture_uri TEXT,
                    password_hash TEXT,
                    secret_2fa TEXT UNIQUE,
                    is_2fa_enabled BOOLEAN NOT NULL DEFAULT FALSE,
                    reset_code BIGINT,
                    reset_expires_at TIMESTAMPTZ,
                    last_access_at TIMESTAMPTZ,
                    is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )

    @staticmethod
    def _user_from_row(row: Any) -> User:
        return User(
            id=str(row["id"]),
            email=row["email"],
            name=safe_row_value(row, "name"),
            picture_uri=safe_row_value(row, "picture_uri"),
            password_hash=safe_row_value(row, "password_hash"),
            secret_2fa=safe_row_value(row, "secret_2fa"),
            is_2fa_enabled=bool(safe_row_value(row, "is_2fa_enabled", False)),
            reset_code=safe_row_value(row, "reset_code"),
            reset_expires_at=safe_row_value(row, "reset_expires_at"),
            last_access_at=safe_row_value(row, "last_access_at"),
            is_deleted=bool(safe_row_value(row, "is_deleted", False)),
            created_at=safe_row_value(row, "created_at") or utcnow(),
            updated_at=safe_row_value(row, "updated_at") or utcnow(),
        )

    def _fetch_one(self, query: str, params: tuple) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        if not row:
            return None
        return self._user_from_row(row)

    def create_user(
        self,
        email: str,
        password: str,
        *,
        name: Optional[str] = None,
        picture_uri: Optional[str] = None,
    ) -> User:
        user = User(
            id=str(uuid.uuid4()),
            email=normalize_email(email),
            name=name,
            picture_uri=picture_uri,
            password_hash=hash_password(password),
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO app_user (id, email, name, picture_uri, password_hash, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    user.id,
                    user.email,
                    user.name,
                    user.picture_uri,
                    user.password_hash,
                    user.created_at,
                    user.updated_at,
                ),
            )
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        try:
            uuid.UUID(str(user_id))
        except ValueError:
            return None
        return self._fetch_one(
            f"SELECT {_USER_COLUMNS} FROM app_user WHERE id = %s", (user_id,)
        )

    def get_user_by_email(self, email: str, *, include_deleted: bool = False) -> Optional[User]:
        query = f"SELECT {_USER_COLUMNS} FROM app_user WHERE email = %s"
        if not include_deleted:
            query += " AND is_deleted = FALSE"
        return self._fetch_one(query, (normalize_email(email),))

    def get_user_by_reset_code(self, email: str, code: int) -> Optional[User]:
        return self._fetch_one(
            f"""
            SELECT {_USER_COLUMNS} FROM app_user
            WHERE email = %s AND reset_code = %s AND is_deleted = FALSE
            """,
            (normalize_email(email), code),
        )

    def get_user_by_2fa_secret(self, secret: str) -> Optional[User]:
        return self._fetch_one(
            f"SELECT {_USER_COLUMNS} FROM app_user WHERE secret_2fa = %s", (secret,)
        )

    def save_user(self, user: User, password: Optional[str] = None) -> User:
        """Persist every field of ``user``; a plain ``password`` is hashed before storing."""
        if password is not None:
            user.password_hash = hash_password(password)
        user.email = normalize_email(user.email)
        user.updated_at = utcnow()
        with self._connect() as conn:
            result = conn.execute(
                """
                UPDATE app_user
                SET email = %s, name = %s, picture_uri = %s, password_hash = %s,
                    secret_2fa = %s, is_2fa_enabled = %s, reset_code = %s,
                    reset_expires_at = %s, last_access_at = %s, is_deleted = %s,
                    updated_at = %s
                WHERE id = %s
                """,
                (
                    user.email,
                    user.name,
                    user.picture_uri,
                    user.password_hash,
                    user.secret_2fa,
                    user.is_2fa_enabled,
                    user.reset_code,
                    user.reset_expires_at,
                    user.last_access_at,
                    user.is_deleted,
                    user.updated_at,
                    user.id,
                ),
            )
            if result.rowcount == 0:
                raise ConstraintViolation("user not found", {"user_id": user.id})
        return user

    def verify_password(self, user: User, password: str) -> bool:
        ok = check_password(user.password_hash, password)
        if not ok:
            self.logger.warning("password_verification_failed", user_id=user.id)
        return ok

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()
