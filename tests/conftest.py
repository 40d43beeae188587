from __future__ import annotations

import json
import sys
from datetime import timedelta
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from signin_forwarder.models import SignInEvent  # noqa: E402
from signin_forwarder.normalizer import Enricher  # noqa: E402
from signin_forwarder.reputation import ReputationCache  # noqa: E402
from signin_forwarder.store import DedupStore, KeyValueStore  # noqa: E402
from signin_forwarder.utils.geo import GeoCache  # noqa: E402

GEO_BODY = {
    "status": "success",
    "description": "Data successfully received.",
    "data": {
        "geo": {
            "host": "8.8.8.8",
            "ip": "8.8.8.8",
            "asn": 15169,
            "isp": "GOOGLE",
            "country_name": "United States",
            "country_code": "US",
            "region_name": "Kansas",
            "city": "Cheney",
            "latitude": 37.751,
            "longitude": -97.822,
        }
    },
}

REPUTATION_BODY = {
    "data": {
        "ipAddress": "8.8.8.8",
        "isPublic": True,
        "ipVersion": 4,
        "isWhitelisted": True,
        "abuseConfidenceScore": 0,
        "countryCode": "US",
        "usageType": "Content Delivery Network",
        "isp": "Google LLC",
        "domain": "google.com",
        "totalReports": 0,
        "numDistinctUsers": 0,
        "lastReportedAt": None,
    }
}


class FakeRedis:
    """In-memory stand-in for the subset of ``redis.asyncio.Redis`` we use."""

    def __init__(self) -> None:
        self.data: Dict[str, bytes] = {}
        self.ttls: Dict[str, timedelta] = {}
        self.writes: List[str] = []
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("connection refused")

    async def exists(self, key: str) -> int:
        self._check()
        return int(key in self.data)

    async def get(self, key: str) -> Optional[bytes]:
        self._check()
        return self.data.get(key)

    async def set(self, key: str, value: Any, ex: Optional[timedelta] = None, nx: bool = False) -> Optional[bool]:
        self._check()
        if nx and key in self.data:
            return None
        if isinstance(value, int):
            value = str(value)
        if isinstance(value, str):
            value = value.encode("utf-8")
        self.data[key] = value
        if ex is not None:
            self.ttls[key] = ex
        self.writes.append(key)
        return True

    async def ping(self) -> bool:
        self._check()
        return True

    async def aclose(self) -> None:
        self.closed = True

    def expire_now(self, key: str) -> None:
        self.data.pop(key, None)
        self.ttls.pop(key, None)


class RecordingHandler:
    """``httpx.MockTransport`` handler that records requests per host."""

    def __init__(self, routes: Dict[str, Callable[[httpx.Request], httpx.Response]]) -> None:
        self.routes = routes
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.host)
        if handler is None:
            return httpx.Response(404, json={"error": "no route"})
        return handler(request)

    def calls_to(self, host: str) -> List[httpx.Request]:
        return [request for request in self.requests if request.url.host == host]


def json_response(body: Any, status_code: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    raw = json.dumps(body).encode("utf-8")
    return lambda request: httpx.Response(status_code, content=raw, headers={"Content-Type": "application/json"})


class FakeSink:
    def __init__(self) -> None:
        self.messages: List[bytes] = []

    def send(self, message: bytes) -> None:
        self.messages.append(message)

    def close(self) -> None:
        pass


class FakeProvider:
    def __init__(self, events: Optional[List[SignInEvent]] = None, error: Optional[Exception] = None) -> None:
        self.events = events or []
        self.error = error
        self.filters: List[str] = []

    async def list_signins_with_filter(self, filter_expr: str) -> List[SignInEvent]:
        self.filters.append(filter_expr)
        if self.error is not None:
            raise self.error
        return list(self.events)

    async def authenticate(self) -> None:
        pass

    async def aclose(self) -> None:
        pass


def signin_payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": "abc123",
        "createdDateTime": "2024-03-01T12:00:00Z",
        "userDisplayName": "Ada Lovelace",
        "userPrincipalName": "ada@example.com",
        "appDisplayName": "Office 365 Exchange Online",
        "clientAppUsed": "Browser",
        "resourceDisplayName": "Office 365 Exchange Online",
        "ipAddress": "8.8.8.8",
        "deviceDetail": {"operatingSystem": "Windows10", "browser": "Edge 120.0"},
        "location": {
            "city": "",
            "state": "",
            "countryOrRegion": "",
            "geoCoordinates": {"latitude": None, "longitude": None},
        },
        "status": {"errorCode": 0, "failureReason": "Other.", "additionalDetails": None},
    }
    payload.update(overrides)
    return payload


def make_event(**overrides: Any) -> SignInEvent:
    return SignInEvent.model_validate(signin_payload(**overrides))


@pytest.fixture
def geo_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def reputation_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def dedup_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def dedup(dedup_redis: FakeRedis) -> DedupStore:
    return DedupStore(KeyValueStore(dedup_redis, "dedup"))


@pytest.fixture
def lookup_handler() -> RecordingHandler:
    return RecordingHandler(
        {
            "tools.keycdn.com": json_response(GEO_BODY),
            "api.abuseipdb.com": json_response(REPUTATION_BODY),
        }
    )


@pytest_asyncio.fixture
async def mock_http() -> AsyncIterator[Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]]:
    """Factory for mock-transport clients, all closed at teardown."""

    clients: List[httpx.AsyncClient] = []

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.aclose()


@pytest_asyncio.fixture
async def http_client(lookup_handler: RecordingHandler) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(lookup_handler)) as client:
        yield client


@pytest.fixture
def geo_cache(geo_redis: FakeRedis, http_client: httpx.AsyncClient) -> GeoCache:
    return GeoCache(KeyValueStore(geo_redis, "geo-cache"), http_client)


@pytest.fixture
def reputation_cache(reputation_redis: FakeRedis, http_client: httpx.AsyncClient) -> ReputationCache:
    return ReputationCache(KeyValueStore(reputation_redis, "reputation-cache"), http_client, "test-key")


@pytest.fixture
def enricher(geo_cache: GeoCache, reputation_cache: ReputationCache) -> Enricher:
    return Enricher(geo_cache, reputation_cache, app_name="azure-signins", hostname="collector-1")
