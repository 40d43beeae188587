"""Enrichment of Microsoft sign-in events into GELF log records."""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from typing import Optional

from .cache import LookupFailed
from .models import NormalizedLogRecord, SignInEvent
from .reputation import ReputationCache
from .utils.geo import GeoCache

logger = logging.getLogger(__name__)


class EnrichmentError(RuntimeError):
    """Raised when a record cannot be assembled for an event."""

    def __init__(self, event_id: str, reason: str) -> None:
        super().__init__(f"could not enrich sign-in {event_id}: {reason}")
        self.event_id = event_id


@dataclass(frozen=True)
class ResolvedLocation:
    city: str
    state: str
    country: str
    latitude: float
    longitude: float

    @property
    def text(self) -> str:
        return join_fields(self.city, self.state, self.country)

    @property
    def geodata(self) -> str:
        return format_geodata(self.latitude, self.longitude)


def join_fields(*parts: str) -> str:
    return " ".join(parts)


def format_geodata(latitude: float, longitude: float) -> str:
    """Render coordinates as ``lat,lon`` with six decimal places each."""

    return f"{latitude:.6f},{longitude:.6f}"


def status_description(event: SignInEvent) -> str:
    if event.status.error_code == 0:
        return ""
    return event.status.failure_reason + event.status.additional_details


def location_from_event(event: SignInEvent) -> ResolvedLocation:
    location = event.location
    coords = location.geo_coordinates
    return ResolvedLocation(
        city=location.city,
        state=location.state,
        country=location.country_or_region,
        latitude=coords.latitude,
        longitude=coords.longitude,
    )


class Enricher:
    """Builds :class:`NormalizedLogRecord` instances from raw sign-ins.

    Location comes from the event when the provider resolved a city,
    otherwise from the geo cache. Reputation is always looked up. A failed
    lookup aborts the record.
    """

    def __init__(
        self,
        geo: GeoCache,
        reputation: ReputationCache,
        app_name: str,
        hostname: Optional[str] = None,
    ) -> None:
        self._geo = geo
        self._reputation = reputation
        self._app_name = app_name
        self._hostname = hostname or socket.gethostname()

    async def resolve_location(self, event: SignInEvent) -> ResolvedLocation:
        if event.location.city:
            return location_from_event(event)

        lookup = await self._geo.lookup(event.ip_address)
        geo = lookup.geo
        return ResolvedLocation(
            city=(geo.city or "").lower(),
            state=(geo.region_name or "").lower(),
            country=(geo.country_code or "").lower(),
            latitude=geo.latitude or 0.0,
            longitude=geo.longitude or 0.0,
        )

    async def enrich(self, event: SignInEvent) -> NormalizedLogRecord:
        try:
            location = await self.resolve_location(event)
            reputation = await self._reputation.lookup(event.ip_address)
        except LookupFailed as exc:
            raise EnrichmentError(event.id, str(exc)) from exc

        device = event.device_detail
        device_detail = join_fields(device.operating_system, device.browser)
        short_message = (
            f"{event.user_display_name} from {location.text} with {device_detail} "
            f"via {event.resource_display_name}"
        )

        return NormalizedLogRecord(
            timestamp=int(event.created_date_time.timestamp()),
            signin_id=event.id,
            host=self._hostname,
            application_name=self._app_name,
            short_message=short_message,
            user_principal_name=event.user_principal_name,
            user_display_name=event.user_display_name,
            app_display_name=event.app_display_name,
            ip_address=event.ip_address,
            client_app_used=event.client_app_used,
            resource_display_name=event.resource_display_name,
            device_detail=device_detail,
            location=location.text,
            location_city=location.city,
            location_state=location.state,
            location_country=location.country,
            geodata=location.geodata,
            status_code=event.status.error_code,
            status_description=status_description(event),
            abuse_confidence_score=reputation.abuse_confidence_score,
            total_reports=reputation.total_reports,
            isp=reputation.isp or "",
        )


__all__ = [
    "EnrichmentError",
    "Enricher",
    "ResolvedLocation",
    "format_geodata",
    "location_from_event",
    "status_description",
]
