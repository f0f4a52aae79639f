"""Common storage utilities shared between memory and postgres implementations."""

from __future__ import annotations

from typing import Any, Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError

# argon2id with library defaults; parameters travel inside the encoded hash
_pwd_hasher = PasswordHasher(type=Type.ID)


def hash_password(password: str) -> str:
    """Return the encoded argon2id hash of ``password``."""
    return _pwd_hasher.hash(password)


def check_password(password_hash: Optional[str], password: str) -> bool:
    """Verify ``password`` against a stored hash, treating a missing or corrupt hash as a mismatch."""
    if not password_hash:
        return False
    try:
        return _pwd_hasher.verify(password_hash, password)
    except (InvalidHash, VerificationError):
        return False


def normalize_email(email: str) -> str:
    return email.strip().lower()


def safe_row_value(row: Any, key: str, default: Optional[Any] = None) -> Optional[Any]:
    """Safely extract value from row dict or object.

    Works with both dict-like objects and objects with attribute access.
    """
    if hasattr(row, "get"):
        return row.get(key, default)
    try:
        return row[key]
    except (KeyError, TypeError, AttributeError):
        return default
