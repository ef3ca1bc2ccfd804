"""Key/value storage for pending authorization states and user sessions.

Redis is used when configured and reachable; otherwise an in-memory store
is used so that a single-process deployment works without extra services.
"""

from __future__ import annotations

import fnmatch
import json
import time
from abc import ABC, abstractmethod
from typing import Any, TypeVar

from loguru import logger
from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)


class StorageError(RuntimeError):
    """Raised when the storage backend fails."""


class SessionStorage(ABC):
    """Abstract interface for session storage backends."""

    @abstractmethod
    async def set(self, key: str, value: BaseModel, ttl_seconds: int) -> None:
        """Store a record with TTL.

        Args:
            key: Record identifier
            value: Record data (Pydantic model)
            ttl_seconds: Time to live in seconds
        """

    @abstractmethod
    async def get(self, key: str, model_class: type[T]) -> T | None:
        """Retrieve a record, or None if missing or expired."""

    @abstractmethod
    async def consume(
        self, key: str, model_class: type[T], flag: str = "consumed"
    ) -> tuple[T | None, bool]:
        """Atomically flip a boolean field of a record from false to true.

        The read and the write happen as one operation, so of several
        concurrent callers for the same key exactly one observes ``True``.

        Args:
            key: Record identifier
            model_class: Pydantic model class to deserialize to
            flag: Name of the boolean field to flip

        Returns:
            The record as it was before this call (None if missing) and
            whether this call performed the flip.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a record."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if a record exists and is not expired."""

    @abstractmethod
    async def cleanup_expired(self) -> int:
        """Clean up expired records.

        Returns:
            Number of records cleaned up
        """

    @abstractmethod
    async def list_keys(self, pattern: str) -> list[str]:
        """List keys matching a glob pattern (e.g. ``"session:*"``)."""

    async def list_records(self, pattern: str, model_class: type[T]) -> list[T]:
        """List valid records matching a pattern."""
        records = []
        for key in await self.list_keys(pattern):
            record = await self.get(key, model_class)
            if record is not None:
                records.append(record)
        return records

    @abstractmethod
    async def ping(self) -> bool:
        """Check that the backend answers."""


class InMemorySessionStorage(SessionStorage):
    """In-memory storage with TTL support.

    All methods run without awaiting in between reading and writing, so every
    operation is atomic with respect to other tasks on the event loop.
    """

    def __init__(self):
        self._data: dict[str, dict[str, Any]] = {}

    def _live_entry(self, key: str) -> dict[str, Any] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if time.time() > entry["expires_at"]:
            del self._data[key]
            return None
        return entry

    async def set(self, key: str, value: BaseModel, ttl_seconds: int) -> None:
        self._data[key] = {
            "data": json.loads(value.model_dump_json()),
            "expires_at": time.time() + ttl_seconds,
        }

    async def get(self, key: str, model_class: type[T]) -> T | None:
        entry = self._live_entry(key)
        if entry is None:
            return None
        return model_class.model_validate(entry["data"])

    async def consume(
        self, key: str, model_class: type[T], flag: str = "consumed"
    ) -> tuple[T | None, bool]:
        entry = self._live_entry(key)
        if entry is None:
            return None, False
        before = dict(entry["data"])
        if before.get(flag):
            return model_class.model_validate(before), False
        entry["data"][flag] = True
        return model_class.model_validate(before), True

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def exists(self, key: str) -> bool:
        return self._live_entry(key) is not None

    async def cleanup_expired(self) -> int:
        now = time.time()
        expired_keys = [
            key for key, entry in self._data.items() if now > entry["expires_at"]
        ]
        for key in expired_keys:
            del self._data[key]
        return len(expired_keys)

    async def list_keys(self, pattern: str) -> list[str]:
        return [
            key
            for key in list(self._data.keys())
            if fnmatch.fnmatch(key, pattern) and self._live_entry(key) is not None
        ]

    async def ping(self) -> bool:
        return True


# Flip ARGV[1] on the JSON record stored at KEYS[1], keeping its TTL.
# Returns nil when missing, otherwise {flipped, pre-image}.
_CONSUME_SCRIPT = """
local raw = redis.call('GET', KEYS[1])
if not raw then
    return nil
end
local record = cjson.decode(raw)
if record[ARGV[1]] == true then
    return {0, raw}
end
record[ARGV[1]] = true
redis.call('SET', KEYS[1], cjson.encode(record), 'KEEPTTL')
return {1, raw}
"""


class RedisSessionStorage(SessionStorage):
    """Redis-based storage with JSON serialization."""

    def __init__(self, redis_client):
        self._redis = redis_client

    async def set(self, key: str, value: BaseModel, ttl_seconds: int) -> None:
        try:
            await self._redis.setex(key, ttl_seconds, value.model_dump_json())
        except Exception as e:
            raise StorageError(f"Redis set failed: {e}") from e

    async def get(self, key: str, model_class: type[T]) -> T | None:
        try:
            data = await self._redis.get(key)
        except Exception as e:
            raise StorageError(f"Redis get failed: {e}") from e
        if data is None:
            return None
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return model_class.model_validate_json(data)

    async def consume(
        self, key: str, model_class: type[T], flag: str = "consumed"
    ) -> tuple[T | None, bool]:
        try:
            result = await self._redis.eval(_CONSUME_SCRIPT, 1, key, flag)
        except Exception as e:
            raise StorageError(f"Redis consume failed: {e}") from e
        if result is None:
            return None, False
        flipped, raw = result
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return model_class.model_validate_json(raw), bool(int(flipped))

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except Exception as e:
            raise StorageError(f"Redis delete failed: {e}") from e

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._redis.exists(key))
        except Exception as e:
            raise StorageError(f"Redis exists failed: {e}") from e

    async def cleanup_expired(self) -> int:
        """Redis handles expiration automatically."""
        return 0

    async def list_keys(self, pattern: str) -> list[str]:
        try:
            keys = []
            cursor = 0
            while True:
                cursor, batch = await self._redis.scan(cursor, match=pattern, count=100)
                keys.extend(k.decode("utf-8") if isinstance(k, bytes) else k for k in batch)
                if cursor == 0:
                    break
            return keys
        except Exception as e:
            raise StorageError(f"Redis scan failed: {e}") from e

    async def ping(self) -> bool:
        try:
            await self._redis.ping()
            return True
        except Exception:
            logger.warning("Redis ping failed")
            return False


_storage: SessionStorage | None = None


async def _detect_redis_availability() -> SessionStorage:
    """Attempt to create Redis storage, fall back to in-memory."""
    import redis.asyncio as redis

    from src.signin.runtime.context import get_config

    config = get_config()
    if not config.redis.enabled or not config.redis.url:
        logger.info("Session storage: Redis not configured, using in-memory storage")
        return InMemorySessionStorage()

    redis_client = redis.from_url(
        config.redis.connection_string,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=config.redis.socket_timeout,
        socket_timeout=config.redis.socket_timeout,
    )
    redis_storage = RedisSessionStorage(redis_client)
    if await redis_storage.ping():
        logger.info("Session storage: Redis connected")
        return redis_storage

    if config.app.environment == "production":
        raise StorageError("Redis is configured but unreachable")
    logger.warning("Redis unavailable, using in-memory session storage")
    return InMemorySessionStorage()


async def get_session_storage() -> SessionStorage:
    """Get the configured session storage instance."""
    global _storage

    if _storage is None:
        _storage = await _detect_redis_availability()

    return _storage


def _reset_storage() -> None:
    """Reset storage instance (for testing)."""
    global _storage
    _storage = None
