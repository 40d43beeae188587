"""Geolocation lookups for addresses the identity provider did not resolve."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

import httpx

from ..cache import CachedLookup
from ..models import GeoLookupData
from ..store import KeyValueStore

GEO_URL = "https://tools.keycdn.com/geo.json"
GEO_CACHE_TTL = timedelta(days=7)
GEO_TIMEOUT = 10.0


class GeoCache(CachedLookup[GeoLookupData]):
    """Resolve IP addresses through the KeyCDN geo tool, memoized for a week."""

    name = "geo"
    model = GeoLookupData
    ttl = GEO_CACHE_TTL

    def __init__(
        self,
        store: KeyValueStore,
        client: httpx.AsyncClient,
        *,
        timeout: float = GEO_TIMEOUT,
        user_agent: Optional[str] = None,
        url: str = GEO_URL,
    ) -> None:
        super().__init__(store, client)
        self._timeout = timeout
        self._user_agent = user_agent
        self._url = url

    async def fetch(self, ip: str) -> bytes:
        headers = {"Accept": "application/json"}
        if self._user_agent:
            headers["User-Agent"] = self._user_agent
        response = await self._client.get(
            self._url, params={"host": ip}, headers=headers, timeout=self._timeout
        )
        response.raise_for_status()
        return response.content

    def parse(self, raw: bytes) -> GeoLookupData:
        data = super().parse(raw)
        if data.status != "success":
            raise ValueError(data.description or f"status {data.status!r}")
        return data


__all__ = ["GEO_CACHE_TTL", "GeoCache"]
