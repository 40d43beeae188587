"""Configuration utilities for the sign-in forwarder."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("/etc/azure-log-exporter/config.yml")

# Key names used by config files written for the original exporter.
LEGACY_KEYS = {
    "msgraph_tenantID": "tenant_id",
    "msgraph_appID": "application_id",
    "msgraph_secretKey": "secret_key",
    "abuseipdb_apikey": "abuseipdb_api_key",
    "redis_expiration": "redis_expiration_hours",
}

EXAMPLE_CONFIG = """\
redis_address: '127.0.0.1:6379'
redis_expiration_hours: 48
graylog_host: '127.0.0.1'
graylog_port: 12201
tenant_id: '<TenantID>'
application_id: '<ApplicationID>'
secret_key: '<SecretKey>'
app_name_in_graylog: '<name shown in the application_name field>'
abuseipdb_api_key: '<AbuseIPDB API key>'
# KeyCDN rejects geo lookups without a 'keycdn-tools:<your site>' User-Agent.
geo_user_agent: 'keycdn-tools:https://<your site>'
"""


class ConfigError(RuntimeError):
    """Raised when the configuration cannot be loaded or is invalid."""


class Settings(BaseSettings):
    """File and environment backed settings for the forwarder."""

    model_config = SettingsConfigDict(
        env_prefix="SIGNIN_FORWARDER_",
        extra="ignore",
    )

    redis_address: str = "localhost:6379"
    redis_password: Optional[str] = None
    redis_expiration_hours: int = Field(default=48, gt=0)
    redis_timeout: float = Field(default=5.0, gt=0)
    dedup_db: int = Field(default=1, ge=0)
    reputation_db: int = Field(default=2, ge=0)
    geo_db: int = Field(default=3, ge=0)

    graylog_host: str = "localhost"
    graylog_port: int = Field(default=12201, gt=0, lt=65536)
    gelf_chunk_size: int = Field(default=1420, ge=64)
    gelf_compress: bool = True

    tenant_id: str
    application_id: str
    secret_key: str
    graph_timeout: float = Field(default=30.0, gt=0)

    app_name_in_graylog: str = "azure-signins"
    hostname: Optional[str] = None

    abuseipdb_api_key: str
    abuseipdb_max_age_days: int = Field(default=365, ge=1, le=365)
    abuseipdb_timeout: float = Field(default=10.0, gt=0)

    geo_timeout: float = Field(default=10.0, gt=0)
    geo_user_agent: Optional[str] = None

    poll_interval_seconds: int = Field(default=60, gt=0)
    lookback_minutes: int = Field(default=10, gt=0)
    enrich_workers: int = Field(default=1, ge=1)

    log_level: str = "INFO"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment overrides values read from the config file.
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @field_validator("redis_address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        host, sep, port = value.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValueError("redis_address must look like 'host:port'")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {value!r}")
        return level

    @model_validator(mode="after")
    def _lookback_covers_interval(self) -> "Settings":
        if self.lookback_minutes * 60 <= self.poll_interval_seconds:
            raise ValueError("lookback_minutes must exceed poll_interval_seconds")
        return self

    @property
    def redis_host(self) -> str:
        return self.redis_address.rpartition(":")[0].strip("[]")

    @property
    def redis_port(self) -> int:
        return int(self.redis_address.rpartition(":")[2])


def load_yaml_config(path: Union[str, Path, None]) -> Dict[str, Any]:
    """Read a YAML config file into a dict with legacy keys translated."""

    if not path:
        return {}
    config_path = Path(path).expanduser()
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigError(
            f"Config file {config_path} does not exist. Please create it, for example:\n{EXAMPLE_CONFIG}"
        ) from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file {config_path} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    logger.info("Loaded config from %s", config_path)
    return {LEGACY_KEYS.get(key, key): value for key, value in data.items()}


def load_settings(path: Union[str, Path, None] = None, **overrides: Any) -> Settings:
    """Build :class:`Settings` from an optional YAML file plus the environment.

    Precedence, lowest first: YAML file, environment, ``overrides``.
    """

    values = load_yaml_config(path)
    try:
        settings = Settings(**values)
        if overrides:
            # model_validate does not consult the environment again.
            settings = Settings.model_validate({**settings.model_dump(), **overrides})
        return settings
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


__all__ = ["ConfigError", "DEFAULT_CONFIG_PATH", "Settings", "load_settings", "load_yaml_config"]
