"""Redis-backed key-value stores used for deduplication and lookup caches."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional, Union

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

DEFAULT_DEDUP_TTL = timedelta(hours=48)


class StoreError(RuntimeError):
    """Raised when the backing key-value store cannot be reached or written."""


class KeyValueStore:
    """Thin async wrapper around one redis logical database.

    Values are stored as raw bytes; expiry is the only invalidation path.
    """

    def __init__(self, client: redis.Redis, name: str) -> None:
        self._client = client
        self.name = name

    @classmethod
    def connect(
        cls,
        host: str,
        port: int,
        db: int,
        *,
        name: str,
        password: Optional[str] = None,
        timeout: float = 5.0,
    ) -> "KeyValueStore":
        client = redis.Redis(
            host=host,
            port=port,
            db=db,
            password=password,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client, name)

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._client.exists(key))
        except RedisError as exc:
            raise StoreError(f"{self.name}: exists({key!r}) failed: {exc}") from exc

    async def get(self, key: str) -> Optional[bytes]:
        try:
            return await self._client.get(key)
        except RedisError as exc:
            raise StoreError(f"{self.name}: get({key!r}) failed: {exc}") from exc

    async def set(self, key: str, value: Union[bytes, str, int], ttl: timedelta) -> None:
        try:
            await self._client.set(key, value, ex=ttl)
        except RedisError as exc:
            raise StoreError(f"{self.name}: set({key!r}) failed: {exc}") from exc

    async def add(self, key: str, value: Union[bytes, str, int], ttl: timedelta) -> bool:
        """Set ``key`` only if it is absent; return whether it was written."""

        try:
            return bool(await self._client.set(key, value, ex=ttl, nx=True))
        except RedisError as exc:
            raise StoreError(f"{self.name}: add({key!r}) failed: {exc}") from exc

    async def ping(self) -> None:
        try:
            await self._client.ping()
        except RedisError as exc:
            raise StoreError(f"{self.name}: ping failed: {exc}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()


class DedupStore:
    """Remembers which sign-in IDs were already forwarded."""

    MARKER = 1

    def __init__(self, store: KeyValueStore, ttl: timedelta = DEFAULT_DEDUP_TTL) -> None:
        self._store = store
        self.ttl = ttl

    async def exists(self, event_id: str) -> bool:
        return await self._store.exists(event_id)

    async def mark(self, event_id: str, ttl: Optional[timedelta] = None) -> bool:
        """Record ``event_id``; ``False`` means another caller marked it first."""

        added = await self._store.add(event_id, self.MARKER, ttl or self.ttl)
        if added:
            logger.debug("Marked sign-in %s as forwarded", event_id)
        return added


__all__ = ["DEFAULT_DEDUP_TTL", "DedupStore", "KeyValueStore", "StoreError"]
