"""AbuseIPDB reputation lookups."""

from __future__ import annotations

from datetime import timedelta

import httpx
from pydantic import BaseModel, Field

from .cache import CachedLookup
from .models import ReputationData
from .store import KeyValueStore

ABUSEIPDB_CHECK_URL = "https://api.abuseipdb.com/api/v2/check"
REPUTATION_CACHE_TTL = timedelta(hours=48)


class _CheckResponse(BaseModel):
    data: ReputationData = Field(default_factory=ReputationData)


class ReputationCache(CachedLookup[ReputationData]):
    """Abuse confidence score, report count and ISP for an address."""

    name = "reputation"
    model = ReputationData
    ttl = REPUTATION_CACHE_TTL

    def __init__(
        self,
        store: KeyValueStore,
        client: httpx.AsyncClient,
        api_key: str,
        *,
        max_age_days: int = 365,
        timeout: float = 10.0,
        url: str = ABUSEIPDB_CHECK_URL,
    ) -> None:
        super().__init__(store, client)
        self._api_key = api_key
        self._max_age_days = max_age_days
        self._timeout = timeout
        self._url = url

    async def fetch(self, ip: str) -> bytes:
        headers = {"Key": self._api_key, "Accept": "application/json"}
        params = {"ipAddress": ip, "maxAgeInDays": str(self._max_age_days)}
        response = await self._client.get(self._url, headers=headers, params=params, timeout=self._timeout)
        response.raise_for_status()
        return response.content

    def parse(self, raw: bytes) -> ReputationData:
        return _CheckResponse.model_validate_json(raw).data


__all__ = ["REPUTATION_CACHE_TTL", "ReputationCache"]
