"""Expiring key-value stores backing broker sessions and OAuth states."""

from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from redis import asyncio as aioredis
from sqlalchemy import delete

from ..config import MetaAdsSettings
from ..logging import get_logger
from .db import session_scope
from .models import KeyValueEntry, as_utc

logger = get_logger(__name__)


class KeyValueStore(Protocol):
    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None: ...

    async def get(self, key: str) -> Any | None: ...

    async def delete(self, key: str) -> None: ...

    async def pop(self, key: str) -> Any | None:
        """Return and remove a live entry in one step."""
        ...


class MemoryKeyValueStore:
    """Process-local store; entries vanish on restart."""

    def __init__(self) -> None:
        self._data: dict[str, tuple[Any, float | None]] = {}
        self._lock = asyncio.Lock()

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        expires_at = time.monotonic() + ttl_seconds if ttl_seconds else None
        async with self._lock:
            self._data[key] = (value, expires_at)

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                del self._data[key]
                return None
            return value

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def pop(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._data.pop(key, None)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            return None
        return value

    async def purge_expired(self) -> int:
        now = time.monotonic()
        async with self._lock:
            expired = [key for key, (_, expires_at) in self._data.items() if expires_at is not None and expires_at <= now]
            for key in expired:
                del self._data[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)


class DatabaseKeyValueStore:
    """Stores entries in the ``kv_entries`` table."""

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=ttl_seconds) if ttl_seconds else None
        async with session_scope() as session:
            row = await session.get(KeyValueEntry, key)
            if row is None:
                session.add(KeyValueEntry(key=key, value=value, expires_at=expires_at, updated_at=now))
            else:
                row.value = value
                row.expires_at = expires_at
                row.updated_at = now

    async def get(self, key: str) -> Any | None:
        async with session_scope() as session:
            row = await session.get(KeyValueEntry, key)
            if row is None:
                return None
            expires_at = as_utc(row.expires_at)
            if expires_at is not None and expires_at <= datetime.now(timezone.utc):
                await session.delete(row)
                return None
            return row.value

    async def delete(self, key: str) -> None:
        async with session_scope() as session:
            await session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))

    async def pop(self, key: str) -> Any | None:
        # DELETE ... RETURNING so only one caller gets the row
        async with session_scope() as session:
            result = await session.execute(
                delete(KeyValueEntry)
                .where(KeyValueEntry.key == key)
                .returning(KeyValueEntry.value, KeyValueEntry.expires_at)
            )
            row = result.first()
        if row is None:
            return None
        expires_at = as_utc(row.expires_at)
        if expires_at is not None and expires_at <= datetime.now(timezone.utc):
            return None
        return row.value

    async def purge_expired(self) -> int:
        async with session_scope() as session:
            result = await session.execute(
                delete(KeyValueEntry).where(KeyValueEntry.expires_at <= datetime.now(timezone.utc))
            )
            return result.rowcount or 0


class RedisKeyValueStore:
    """JSON values in Redis with native key expiry."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKeyValueStore":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        await self._redis.set(key, json.dumps(value), ex=ttl_seconds or None)

    async def get(self, key: str) -> Any | None:
        raw = await self._redis.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def pop(self, key: str) -> Any | None:
        raw = await self._redis.getdel(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def aclose(self) -> None:
        await self._redis.aclose()


def build_kv_store(settings: MetaAdsSettings) -> KeyValueStore:
    """Select the backend named by ``session_backend``."""

    if settings.session_backend == "redis":
        assert settings.redis_url is not None  # enforced by settings validation
        store: KeyValueStore = RedisKeyValueStore.from_url(settings.redis_url)
    elif settings.session_backend == "database":
        store = DatabaseKeyValueStore()
    else:
        store = MemoryKeyValueStore()
    logger.info("kv_store_selected", backend=settings.session_backend)
    return store


__all__ = [
    "DatabaseKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "RedisKeyValueStore",
    "build_kv_store",
]
