"""Polling loop that forwards new sign-ins to Graylog."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

import httpx

from .config import Settings
from .models import SignInEvent
from .normalizer import Enricher, EnrichmentError
from .providers.microsoft import GraphAuthError, GraphClient, GraphRequestError, signin_filter
from .reputation import ReputationCache
from .sink import GelfUdpSink
from .store import DedupStore, KeyValueStore, StoreError
from .utils.geo import GeoCache

logger = logging.getLogger(__name__)


class StartupError(RuntimeError):
    """Raised when the pipeline cannot be brought up."""


@dataclass
class TickSummary:
    fetched: int = 0
    duplicates: int = 0
    forwarded: int = 0
    failed: int = 0


@dataclass
class PipelineContext:
    """Every client handle the pipeline needs, constructed once at startup."""

    provider: GraphClient
    dedup: DedupStore
    enricher: Enricher
    sink: GelfUdpSink
    stores: List[KeyValueStore] = field(default_factory=list)
    http: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineContext":
        # The sink resolves its address here and may raise; build it before
        # anything that holds connections.
        sink = GelfUdpSink(
            settings.graylog_host,
            settings.graylog_port,
            chunk_size=settings.gelf_chunk_size,
            compress=settings.gelf_compress,
        )
        if not settings.geo_user_agent:
            logger.warning("geo_user_agent is not set; KeyCDN may reject fallback geolocation lookups")

        def _store(db: int, name: str) -> KeyValueStore:
            return KeyValueStore.connect(
                settings.redis_host,
                settings.redis_port,
                db,
                name=name,
                password=settings.redis_password,
                timeout=settings.redis_timeout,
            )

        dedup_store = _store(settings.dedup_db, "dedup")
        reputation_store = _store(settings.reputation_db, "reputation-cache")
        geo_store = _store(settings.geo_db, "geo-cache")
        http = httpx.AsyncClient()

        enricher = Enricher(
            GeoCache(
                geo_store,
                http,
                timeout=settings.geo_timeout,
                user_agent=settings.geo_user_agent,
            ),
            ReputationCache(
                reputation_store,
                http,
                settings.abuseipdb_api_key,
                max_age_days=settings.abuseipdb_max_age_days,
                timeout=settings.abuseipdb_timeout,
            ),
            app_name=settings.app_name_in_graylog,
            hostname=settings.hostname,
        )
        provider = GraphClient(
            settings.tenant_id,
            settings.application_id,
            settings.secret_key,
            timeout=settings.graph_timeout,
        )
        return cls(
            provider=provider,
            dedup=DedupStore(dedup_store, timedelta(hours=settings.redis_expiration_hours)),
            enricher=enricher,
            sink=sink,
            stores=[dedup_store, reputation_store, geo_store],
            http=http,
        )

    async def check_connectivity(self) -> None:
        """Ping every store and authenticate against Graph."""

        for store in self.stores:
            try:
                await store.ping()
            except StoreError as exc:
                raise StartupError(str(exc)) from exc
        try:
            await self.provider.authenticate()
        except GraphAuthError as exc:
            raise StartupError(f"Graph authentication failed: {exc}") from exc

    async def aclose(self) -> None:
        self.sink.close()
        await self.provider.aclose()
        if self.http is not None:
            await self.http.aclose()
        for store in self.stores:
            await store.aclose()


class Poller:
    """Queries recent sign-ins on a fixed interval and forwards unseen ones.

    Windows of consecutive polls overlap on purpose; the dedup store, not
    the filter, keeps an event from being forwarded twice. An event is
    marked as seen before it is enriched and sent, so a crash in between
    loses that event instead of duplicating it.
    """

    def __init__(
        self,
        context: PipelineContext,
        *,
        interval: timedelta = timedelta(minutes=1),
        lookback: timedelta = timedelta(minutes=10),
        workers: int = 1,
    ) -> None:
        self._ctx = context
        self.interval = interval
        self.lookback = lookback
        self._workers = max(1, workers)

    @classmethod
    def from_settings(cls, context: PipelineContext, settings: Settings) -> "Poller":
        return cls(
            context,
            interval=timedelta(seconds=settings.poll_interval_seconds),
            lookback=timedelta(minutes=settings.lookback_minutes),
            workers=settings.enrich_workers,
        )

    async def run_forever(self, stop: Optional[asyncio.Event] = None) -> None:
        stop = stop or asyncio.Event()
        loop = asyncio.get_running_loop()
        interval = self.interval.total_seconds()
        logger.info("Polling sign-ins every %ss with a %s lookback", interval, self.lookback)
        while not stop.is_set():
            started = loop.time()
            try:
                await self.poll_once()
            except Exception:
                logger.exception("Unexpected error during poll")
            delay = max(0.0, interval - (loop.time() - started))
            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        logger.info("Poller stopped")

    async def poll_once(self, now: Optional[datetime] = None) -> TickSummary:
        now = now or datetime.now(timezone.utc)
        filter_expr = signin_filter(now - self.lookback)
        summary = TickSummary()
        try:
            events = await self._ctx.provider.list_signins_with_filter(filter_expr)
        except (GraphAuthError, GraphRequestError) as exc:
            logger.error("Could not list sign-ins (%s): %s", filter_expr, exc)
            return summary

        summary.fetched = len(events)
        await self._process_all(events, summary)
        logger.info(
            "Tick done: fetched=%d duplicates=%d forwarded=%d failed=%d",
            summary.fetched,
            summary.duplicates,
            summary.forwarded,
            summary.failed,
        )
        return summary

    async def _process_all(self, events: Sequence[SignInEvent], summary: TickSummary) -> None:
        if self._workers == 1:
            for event in events:
                self._tally(summary, await self.process_event(event))
            return

        semaphore = asyncio.Semaphore(self._workers)

        async def _bounded(event: SignInEvent) -> Optional[bool]:
            async with semaphore:
                return await self.process_event(event)

        for outcome in await asyncio.gather(*(_bounded(event) for event in events)):
            self._tally(summary, outcome)

    @staticmethod
    def _tally(summary: TickSummary, outcome: Optional[bool]) -> None:
        if outcome is None:
            summary.duplicates += 1
        elif outcome:
            summary.forwarded += 1
        else:
            summary.failed += 1

    async def process_event(self, event: SignInEvent) -> Optional[bool]:
        """Forward ``event`` unless already seen.

        Returns ``None`` for duplicates, ``True`` when forwarded and
        ``False`` when the event was dropped because of an error.
        """

        try:
            if await self._ctx.dedup.exists(event.id):
                return None
            if not await self._ctx.dedup.mark(event.id):
                return None
        except StoreError as exc:
            logger.warning("Dedup store unavailable for sign-in %s: %s", event.id, exc)
            return False

        try:
            record = await self._ctx.enricher.enrich(event)
            self._ctx.sink.send(record.to_gelf())
        except EnrichmentError as exc:
            logger.warning("Dropping sign-in %s: %s", event.id, exc)
            return False
        except Exception:
            logger.exception("Dropping sign-in %s", event.id)
            return False
        return True


__all__ = ["PipelineContext", "Poller", "StartupError", "TickSummary"]
