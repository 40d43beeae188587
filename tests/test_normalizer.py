import httpx
import pytest

from conftest import GEO_BODY, FakeRedis, RecordingHandler, json_response, make_event

from signin_forwarder.normalizer import Enricher, EnrichmentError, format_geodata, status_description
from signin_forwarder.reputation import ReputationCache
from signin_forwarder.store import KeyValueStore
from signin_forwarder.utils.geo import GeoCache

PROVIDER_LOCATION = {
    "city": "Berlin",
    "state": "Berlin",
    "countryOrRegion": "DE",
    "geoCoordinates": {"latitude": 52.52437, "longitude": 13.41053},
}


def test_format_geodata_uses_six_decimals():
    assert format_geodata(37.751, -97.822) == "37.751000,-97.822000"
    assert format_geodata(0.0, 0.0) == "0.000000,0.000000"


def test_status_description_empty_for_success():
    event = make_event(status={"errorCode": 0, "failureReason": "Other.", "additionalDetails": "x"})
    assert status_description(event) == ""


def test_status_description_concatenates_without_separator():
    event = make_event(
        status={
            "errorCode": 50126,
            "failureReason": "Invalid username or password.",
            "additionalDetails": "The user didn't enter the right credentials.",
        }
    )
    assert status_description(event) == (
        "Invalid username or password.The user didn't enter the right credentials."
    )


@pytest.mark.asyncio
async def test_provider_location_skips_geo_lookup(enricher, lookup_handler):
    event = make_event(location=PROVIDER_LOCATION)

    record = await enricher.enrich(event)

    assert lookup_handler.calls_to("tools.keycdn.com") == []
    assert record.location == "Berlin Berlin DE"
    assert record.location_city == "Berlin"
    assert record.location_country == "DE"
    assert record.geodata == "52.524370,13.410530"
    assert record.short_message == (
        "Ada Lovelace from Berlin Berlin DE with Windows10 Edge 120.0 via Office 365 Exchange Online"
    )


@pytest.mark.asyncio
async def test_missing_city_falls_back_to_geo_cache_once(enricher, lookup_handler):
    record = await enricher.enrich(make_event())

    assert len(lookup_handler.calls_to("tools.keycdn.com")) == 1
    assert record.location == "cheney kansas us"
    assert record.location_city == "cheney"
    assert record.location_state == "kansas"
    assert record.location_country == "us"
    assert record.geodata == "37.751000,-97.822000"


@pytest.mark.asyncio
async def test_record_fields(enricher, lookup_handler):
    record = await enricher.enrich(make_event())

    assert record.timestamp == 1709294400
    assert record.signin_id == "abc123"
    assert record.host == "collector-1"
    assert record.application_name == "azure-signins"
    assert record.device_detail == "Windows10 Edge 120.0"
    assert record.ip_address == "8.8.8.8"
    assert record.status_code == 0
    assert record.status_description == ""
    assert record.abuse_confidence_score == 0
    assert record.total_reports == 0
    assert record.isp == "Google LLC"
    assert len(lookup_handler.calls_to("api.abuseipdb.com")) == 1


@pytest.mark.asyncio
async def test_reputation_always_looked_up(enricher, lookup_handler):
    await enricher.enrich(make_event(location=PROVIDER_LOCATION))

    assert len(lookup_handler.calls_to("api.abuseipdb.com")) == 1


@pytest.mark.asyncio
async def test_reputation_failure_aborts_record(mock_http):
    handler = RecordingHandler(
        {
            "tools.keycdn.com": json_response(GEO_BODY),
            "api.abuseipdb.com": json_response({"errors": [{"detail": "quota"}]}, status_code=429),
        }
    )
    client = mock_http(handler)
    enricher = Enricher(
        GeoCache(KeyValueStore(FakeRedis(), "geo-cache"), client),
        ReputationCache(KeyValueStore(FakeRedis(), "reputation-cache"), client, "key"),
        app_name="azure-signins",
        hostname="collector-1",
    )

    with pytest.raises(EnrichmentError, match="abc123"):
        await enricher.enrich(make_event())


@pytest.mark.asyncio
async def test_geo_failure_aborts_record_before_reputation(mock_http):
    handler = RecordingHandler({"tools.keycdn.com": lambda request: httpx.Response(503)})
    client = mock_http(handler)
    enricher = Enricher(
        GeoCache(KeyValueStore(FakeRedis(), "geo-cache"), client),
        ReputationCache(KeyValueStore(FakeRedis(), "reputation-cache"), client, "key"),
        app_name="azure-signins",
        hostname="collector-1",
    )

    with pytest.raises(EnrichmentError):
        await enricher.enrich(make_event())
    assert handler.calls_to("api.abuseipdb.com") == []


@pytest.mark.asyncio
async def test_hostname_defaults_to_system_hostname(geo_cache, reputation_cache, monkeypatch):
    monkeypatch.setattr("socket.gethostname", lambda: "box-7")

    enricher = Enricher(geo_cache, reputation_cache, app_name="azure-signins")

    assert enricher._hostname == "box-7"
