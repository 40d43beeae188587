"""Memoizing lookups backed by a time-expiring key-value store."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Generic, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .store import KeyValueStore, StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class LookupFailed(RuntimeError):
    """Raised when an IP lookup cannot produce a value."""

    def __init__(self, source: str, ip: str, reason: str) -> None:
        super().__init__(f"{source} lookup for {ip} failed: {reason}")
        self.source = source
        self.ip = ip


class CachedLookup(Generic[T]):
    """Write-through-on-miss cache in front of an HTTP lookup service.

    Hits are served from the store without touching the network. Misses
    fetch the raw body, parse it, store the raw bytes with ``ttl`` and
    return the parsed value. Failures are never cached.
    """

    name = "lookup"
    model: Type[T]
    ttl: timedelta

    def __init__(self, store: KeyValueStore, client: httpx.AsyncClient) -> None:
        self._store = store
        self._client = client

    async def fetch(self, ip: str) -> bytes:  # pragma: no cover - interface
        raise NotImplementedError

    def parse(self, raw: bytes) -> T:
        return self.model.model_validate_json(raw)

    async def lookup(self, ip: str) -> T:
        try:
            cached: Optional[bytes] = await self._store.get(ip)
        except StoreError as exc:
            raise LookupFailed(self.name, ip, str(exc)) from exc

        if cached is not None:
            logger.debug("%s cache hit for %s", self.name, ip)
            return self._parse(ip, cached)

        logger.debug("%s cache miss for %s", self.name, ip)
        try:
            raw = await self.fetch(ip)
        except httpx.HTTPError as exc:
            raise LookupFailed(self.name, ip, f"request error: {exc}") from exc
        value = self._parse(ip, raw)

        try:
            await self._store.set(ip, raw, self.ttl)
        except StoreError as exc:
            raise LookupFailed(self.name, ip, str(exc)) from exc
        return value

    def _parse(self, ip: str, raw: bytes) -> T:
        try:
            return self.parse(raw)
        except (ValidationError, ValueError) as exc:
            raise LookupFailed(self.name, ip, f"unreadable response: {exc}") from exc


__all__ = ["CachedLookup", "LookupFailed"]
