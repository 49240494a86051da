from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from pump_token_feed.core.classifier import CategoryThresholds
from pump_token_feed.core.config import Settings
from pump_token_feed.core.enums import TokenCategory
from pump_token_feed.core.models import PriceMetric, TokenRecord
from pump_token_feed.enrichment.price_enricher import EMPTY_SUMMARY, EnrichmentSummary, PriceEnricher
from pump_token_feed.pipeline.scheduling import DeferredTaskScheduler, SleepFn
from pump_token_feed.sources.metadata import TokenMetadataClient
from pump_token_feed.sources.normalizer import TokenEventNormalizer
from pump_token_feed.sources.rest import DexPaidStatusClient, PoolMetricsClient
from pump_token_feed.sources.websocket import FeedConnection
from pump_token_feed.store.record_store import RecordStore, StoreSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FeedSnapshot:
    """Everything a consumer reads, captured at one instant."""

    records: tuple[TokenRecord, ...]
    new: tuple[TokenRecord, ...]
    bonding: tuple[TokenRecord, ...]
    graduated: tuple[TokenRecord, ...]
    connected: bool
    last_error: str | None
    raw_trail: tuple[dict[str, Any], ...]
    price_data: dict[str, PriceMetric] = field(default_factory=dict)
    is_price_loading: bool = False
    version: int = 0


class TokenFeedPipeline:
    def __init__(
        self,
        settings: Settings,
        *,
        connect_factory: Callable[..., Any] | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._settings = settings
        thresholds = CategoryThresholds(
            bonding=settings.bonding_threshold,
            graduated=settings.graduated_threshold,
        )

        self._store = RecordStore(capacity=settings.record_capacity)
        self._metadata_client = TokenMetadataClient(settings.http_timeout_seconds, transport=http_transport)
        self._metrics_client = PoolMetricsClient(
            settings.pool_search_base_url,
            settings.http_timeout_seconds,
            transport=http_transport,
        )
        self._dex_client = DexPaidStatusClient(
            settings.dex_orders_base_url,
            settings.http_timeout_seconds,
            transport=http_transport,
        )

        self._normalizer = TokenEventNormalizer(
            sink=self._store.append,
            metadata_fetcher=self._metadata_client,
            settle_delay_seconds=settings.settle_delay_seconds,
            placeholder_image=settings.placeholder_image,
            thresholds=thresholds,
            sleep=sleep,
        )
        self._connection = FeedConnection(
            url=settings.feed_url,
            on_frame=self._normalizer.submit,
            subscribe_method=settings.subscribe_method,
            reconnect_seconds=settings.reconnect_delay_seconds,
            raw_trail_capacity=settings.raw_trail_capacity,
            connect_factory=connect_factory,
            sleep=sleep,
        )
        self._enricher = PriceEnricher(
            self._metrics_client,
            on_metric=self._store.merge_metric,
            batch_size=settings.enrich_batch_size,
            request_spacing_seconds=settings.enrich_request_spacing_seconds,
            batch_pause_seconds=settings.enrich_batch_pause_seconds,
            sleep=sleep,
        )
        self._enrichment_jobs = DeferredTaskScheduler(name="enrich")

        self._last_identifiers: tuple[str, ...] = ()
        self._running = False
        self._closed = False
        self._store.subscribe(self._on_store_change)

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def connection(self) -> FeedConnection:
        return self._connection

    @property
    def normalizer(self) -> TokenEventNormalizer:
        return self._normalizer

    @property
    def enricher(self) -> PriceEnricher:
        return self._enricher

    @property
    def enrichment_jobs(self) -> DeferredTaskScheduler:
        return self._enrichment_jobs

    def start(self) -> None:
        if self._closed:
            raise RuntimeError("pipeline already stopped")
        self._running = True
        self._connection.start()
        self._on_store_change(self._store.snapshot())
        logger.info("Token feed pipeline started", extra={"feed_url": self._settings.feed_url})

    async def stop(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._running = False

        self._enricher.close()
        await self._connection.stop()
        self._store.close()
        await self._normalizer.cancel_pending()
        await self._enrichment_jobs.cancel_all()

        await self._metadata_client.aclose()
        await self._metrics_client.aclose()
        await self._dex_client.aclose()
        logger.info("Token feed pipeline stopped")

    async def refetch_prices(self) -> EnrichmentSummary:
        if self._closed:
            return EMPTY_SUMMARY
        return await self._enricher.refetch_all(self._store.identifiers())

    async def dex_paid_status(self, mint: str) -> bool:
        record = self._store.get(mint)
        if record is None or record.category is not TokenCategory.BONDING:
            return False
        return await self._dex_client.fetch_paid_status(mint)

    def snapshot(self) -> FeedSnapshot:
        store_snapshot = self._store.snapshot()
        return FeedSnapshot(
            records=store_snapshot.records,
            new=store_snapshot.views.new,
            bonding=store_snapshot.views.bonding,
            graduated=store_snapshot.views.graduated,
            connected=self._connection.connected,
            last_error=self._connection.last_error,
            raw_trail=self._connection.raw_trail,
            price_data=self._enricher.price_data,
            is_price_loading=self._enricher.is_loading,
            version=store_snapshot.version,
        )

    def _on_store_change(self, snapshot: StoreSnapshot) -> None:
        if not self._running:
            return
        identifiers = tuple(record.mint for record in snapshot.records)
        if not identifiers or identifiers == self._last_identifiers:
            return
        self._last_identifiers = identifiers
        self._enrichment_jobs.schedule(lambda: self._sync_prices(identifiers))

    async def _sync_prices(self, identifiers: tuple[str, ...]) -> None:
        await self._enricher.sync(identifiers)
