"""Pydantic models used by the sign-in forwarder."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _GraphModel(BaseModel):
    """Base for Graph payloads: camelCase aliases, unknown keys ignored."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def _none_to_default(cls, value, info):
        # Graph sends explicit nulls for fields it could not resolve.
        if value is None:
            field = cls.model_fields[info.field_name]
            if not field.is_required():
                return field.get_default(call_default_factory=True)
        return value


class GeoCoordinates(_GraphModel):
    latitude: float = 0.0
    longitude: float = 0.0
    altitude: Optional[float] = None


class SignInLocation(_GraphModel):
    """Location as resolved by the identity provider."""

    city: str = ""
    state: str = ""
    country_or_region: str = Field(default="", alias="countryOrRegion")
    geo_coordinates: GeoCoordinates = Field(default_factory=GeoCoordinates, alias="geoCoordinates")


class DeviceDetail(_GraphModel):
    device_id: str = Field(default="", alias="deviceId")
    display_name: str = Field(default="", alias="displayName")
    operating_system: str = Field(default="", alias="operatingSystem")
    browser: str = ""


class SignInStatus(_GraphModel):
    error_code: int = Field(default=0, alias="errorCode")
    failure_reason: str = Field(default="", alias="failureReason")
    additional_details: str = Field(default="", alias="additionalDetails")


class SignInEvent(_GraphModel):
    """One ``auditLogs/signIns`` entry. Read-only once parsed."""

    id: str
    created_date_time: datetime = Field(alias="createdDateTime")
    user_display_name: str = Field(default="", alias="userDisplayName")
    user_principal_name: str = Field(default="", alias="userPrincipalName")
    app_display_name: str = Field(default="", alias="appDisplayName")
    client_app_used: str = Field(default="", alias="clientAppUsed")
    resource_display_name: str = Field(default="", alias="resourceDisplayName")
    ip_address: str = Field(default="", alias="ipAddress")
    device_detail: DeviceDetail = Field(default_factory=DeviceDetail, alias="deviceDetail")
    location: SignInLocation = Field(default_factory=SignInLocation)
    status: SignInStatus = Field(default_factory=SignInStatus)

    @field_validator("created_date_time")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class GeoDetails(BaseModel):
    """The ``data.geo`` object of a KeyCDN geo response."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    host: Optional[str] = None
    ip: Optional[str] = None
    rdns: Optional[str] = None
    asn: Optional[int] = None
    isp: Optional[str] = None
    country_name: Optional[str] = None
    country_code: Optional[str] = None
    region_name: Optional[str] = None
    region_code: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    continent_name: Optional[str] = None
    continent_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    metro_code: Optional[Any] = None
    timezone: Optional[str] = None
    local_datetime: Optional[str] = Field(default=None, alias="datetime")


class _GeoData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    geo: GeoDetails = Field(default_factory=GeoDetails)


class GeoLookupData(BaseModel):
    """Geolocation response body returned by the KeyCDN geo tool."""

    model_config = ConfigDict(extra="ignore")

    status: str = ""
    description: str = ""
    data: _GeoData = Field(default_factory=_GeoData)

    @property
    def geo(self) -> GeoDetails:
        return self.data.geo


class ReputationData(BaseModel):
    """AbuseIPDB ``check`` result for a single address."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    ip_address: str = Field(default="", alias="ipAddress")
    is_public: Optional[bool] = Field(default=None, alias="isPublic")
    ip_version: Optional[int] = Field(default=None, alias="ipVersion")
    is_whitelisted: Optional[bool] = Field(default=None, alias="isWhitelisted")
    abuse_confidence_score: int = Field(default=0, alias="abuseConfidenceScore")
    country_code: Optional[str] = Field(default=None, alias="countryCode")
    usage_type: Optional[str] = Field(default=None, alias="usageType")
    isp: Optional[str] = None
    domain: Optional[str] = None
    total_reports: int = Field(default=0, alias="totalReports")
    num_distinct_users: int = Field(default=0, alias="numDistinctUsers")
    last_reported_at: Optional[datetime] = Field(default=None, alias="lastReportedAt")


class NormalizedLogRecord(BaseModel):
    """Flat GELF record forwarded to Graylog.

    The aliases are the field names consumers of the collector already
    query on, including their historical spelling.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    timestamp: int
    signin_id: str = Field(alias="_signin_id")
    host: str
    application_name: str
    short_message: str
    user_principal_name: str = Field(alias="_user_Principal_Name")
    user_display_name: str = Field(alias="_user_Display_Name")
    app_display_name: str = Field(alias="_app_Display_Name")
    ip_address: str = Field(alias="_Ip_Address")
    client_app_used: str = Field(alias="_client_App_Used")
    resource_display_name: str = Field(alias="_resourse_Display_Name")
    device_detail: str = Field(alias="_device_detail")
    location: str = Field(alias="_location")
    location_city: str = Field(alias="_location_city")
    location_state: str = Field(alias="_location_state")
    location_country: str = Field(alias="_location_country")
    geodata: str = Field(alias="_geodata")
    status_code: int = Field(alias="_status_code")
    status_description: str = Field(default="", alias="_status_descripton")
    abuse_confidence_score: int = Field(default=0, alias="_abuseConfidenceScore")
    total_reports: int = Field(default=0, alias="_totalReports")
    isp: str = Field(default="", alias="_ipinfo_isp")

    def to_gelf(self) -> bytes:
        """Serialize to the compact UTF-8 JSON payload sent to the sink."""

        return self.model_dump_json(by_alias=True).encode("utf-8")


__all__ = [
    "DeviceDetail",
    "GeoCoordinates",
    "GeoDetails",
    "GeoLookupData",
    "NormalizedLogRecord",
    "ReputationData",
    "SignInEvent",
    "SignInLocation",
    "SignInStatus",
]
