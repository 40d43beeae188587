"""Poll Microsoft sign-in logs, enrich them and forward them to Graylog."""

from .config import ConfigError, Settings, load_settings
from .models import NormalizedLogRecord, SignInEvent
from .normalizer import Enricher, EnrichmentError
from .poller import PipelineContext, Poller, StartupError, TickSummary
from .store import DedupStore, KeyValueStore, StoreError

__version__ = "0.3.0"

__all__ = [
    "ConfigError",
    "DedupStore",
    "Enricher",
    "EnrichmentError",
    "KeyValueStore",
    "NormalizedLogRecord",
    "PipelineContext",
    "Poller",
    "Settings",
    "SignInEvent",
    "StartupError",
    "StoreError",
    "TickSummary",
    "load_settings",
]
