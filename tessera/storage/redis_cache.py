from __future__ import annotations

import json
import threading
from typing import Any, Dict, List, Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from tessera.storage.errors import StorageError


def session_list_key(user_id: str) -> str:
    return f"auth:sessions:{user_id}"


def _decode_session_list(raw: Optional[str]) -> List[Dict[str, Any]]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as exc:
        raise StorageError("corrupt session list") from exc
    if not isinstance(data, list):
        raise StorageError("corrupt session list")
    for item in data:
        if not isinstance(item, dict) or not isinstance(item.get("token"), str):
            raise StorageError("corrupt session list")
    return data


class RedisCache:
    """Thin Redis wrapper holding one JSON session list per user id.

    Every write replaces the whole list; there is no compare-and-set, so two
    writers racing on the same user keep only the last list written.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        # Use a short-lived synchronous client to avoid binding the async client to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def load_session_list(self, user_id: str) -> List[Dict[str, Any]]:
        try:
            raw = await self.client.get(session_list_key(user_id))
        except RedisError as exc:
            raise StorageError("session store unavailable") from exc
        return _decode_session_list(raw)

    async def store_session_list(self, user_id: str, rows: List[Dict[str, Any]]) -> None:
        try:
            await self.client.set(session_list_key(user_id), json.dumps(rows))
        except RedisError as exc:
            raise StorageError("session store unavailable") from exc

    async def delete_session_list(self, user_id: str) -> None:
        try:
            await self.client.delete(session_list_key(user_id))
        except RedisError as exc:
            raise StorageError("session store unavailable") from exc

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.aclose()


class SyncRedisCache:
    """Synchronous Redis wrapper for use in tests.

    Uses a synchronous Redis client internally to avoid event loop binding
    issues in pytest, but exposes async methods so they can be awaited
    uniformly like RedisCache.
    """

    def __init__(self, redis_url: str, *, socket_timeout: float = RedisCache.DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self._sync_client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity."""
        self._sync_client.ping()

    async def load_session_list(self, user_id: str) -> List[Dict[str, Any]]:
        try:
            raw = self._sync_client.get(session_list_key(user_id))
        except RedisError as exc:
            raise StorageError("session store unavailable") from exc
        return _decode_session_list(raw)

    async def store_session_list(self, user_id: str, rows: List[Dict[str, Any]]) -> None:
        try:
            self._sync_client.set(session_list_key(user_id), json.dumps(rows))
        except RedisError as exc:
            raise StorageError("session store unavailable") from exc

    async def delete_session_list(self, user_id: str) -> None:
        try:
            self._sync_client.delete(session_list_key(user_id))
        except RedisError as exc:
            raise StorageError("session store unavailable") from exc

    async def close(self) -> None:
        """Close Redis connection."""
        self._sync_client.close()


class MemoryCache:
    """Process-local stand-in for Redis when running without it.

    Values are stored as JSON strings so reads hand back fresh copies, the same
    as a round trip through Redis.
    """

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def verify_connection(self) -> None:
        return None

    async def load_session_list(self, user_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            raw = self._data.get(session_list_key(user_id))
        return _decode_session_list(raw)

    async def store_session_list(self, user_id: str, rows: List[Dict[str, Any]]) -> None:
        with self._lock:
            self._data[session_list_key(user_id)] = json.dumps(rows)

    async def delete_session_list(self, user_id: str) -> None:
        with self._lock:
            self._data.pop(session_list_key(user_id), None)

    async def close(self) -> None:
        with self._lock:
            self._data.clear()
