from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from pump_token_feed.core.models import PriceMetric
from pump_token_feed.pipeline.scheduling import SleepFn

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 3
DEFAULT_REQUEST_SPACING_SECONDS = 0.1
DEFAULT_BATCH_PAUSE_SECONDS = 2.0


class PriceMetricSource(Protocol):
    async def fetch_price_metric(self, mint: str) -> PriceMetric | None: ...


@dataclass(frozen=True, slots=True)
class EnrichmentSummary:
    requested: int
    fetched: int
    failed: int
    batch_sizes: tuple[int, ...]

    @property
    def missing(self) -> int:
        return self.requested - self.fetched - self.failed


EMPTY_SUMMARY = EnrichmentSummary(requested=0, fetched=0, failed=0, batch_sizes=())


def iter_batches(identifiers: Sequence[str], batch_size: int) -> Iterator[tuple[str, ...]]:
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    for start in range(0, len(identifiers), batch_size):
        yield tuple(identifiers[start : start + batch_size])


class PriceEnricher:
    """Rate-limited metric fetcher for known mints.

    `sync` only fetches mints absent from the previous `sync` call;
    `refetch_all` fetches everything it is given. `price_data` only keeps
    mints named by the latest `sync`.
    """

    def __init__(
        self,
        source: PriceMetricSource,
        *,
        on_metric: Callable[[str, PriceMetric], Any] | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        request_spacing_seconds: float = DEFAULT_REQUEST_SPACING_SECONDS,
        batch_pause_seconds: float = DEFAULT_BATCH_PAUSE_SECONDS,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._source = source
        self._on_metric = on_metric
        self._batch_size = batch_size
        self._request_spacing_seconds = request_spacing_seconds
        self._batch_pause_seconds = batch_pause_seconds
        self._sleep = sleep
        self._previous_identifiers: tuple[str, ...] = ()
        self._price_data: dict[str, PriceMetric] = {}
        self._active_runs = 0
        self._closed = False

    @property
    def is_loading(self) -> bool:
        return self._active_runs > 0

    @property
    def price_data(self) -> dict[str, PriceMetric]:
        return dict(self._price_data)

    def novel_identifiers(self, identifiers: Sequence[str]) -> tuple[str, ...]:
        previous = set(self._previous_identifiers)
        seen: set[str] = set()
        novel: list[str] = []
        for mint in identifiers:
            if mint in previous or mint in seen:
                continue
            seen.add(mint)
            novel.append(mint)
        return tuple(novel)

    def close(self) -> None:
        """Stop issuing requests; a pass in flight ends after its current request."""
        self._closed = True

    async def sync(self, identifiers: Sequence[str]) -> EnrichmentSummary:
        if self._closed:
            return EMPTY_SUMMARY
        novel = self.novel_identifiers(identifiers)
        self._previous_identifiers = tuple(identifiers)
        self._forget_missing(self._previous_identifiers)
        if not novel:
            return EMPTY_SUMMARY
        return await self._fetch(novel)

    async def refetch_all(self, identifiers: Sequence[str]) -> EnrichmentSummary:
        if self._closed:
            return EMPTY_SUMMARY
        return await self._fetch(tuple(dict.fromkeys(identifiers)))

    async def _fetch(self, identifiers: tuple[str, ...]) -> EnrichmentSummary:
        if not identifiers:
            return EMPTY_SUMMARY

        batches = list(iter_batches(identifiers, self._batch_size))
        fetched: dict[str, PriceMetric] = {}
        failed = 0

        self._active_runs += 1
        try:
            for index, batch in enumerate(batches):
                for mint in batch:
                    await self._sleep(self._request_spacing_seconds)
                    if self._closed:
                        break
                    try:
                        metric = await self._source.fetch_price_metric(mint)
                    except asyncio.CancelledError:
                        raise
                    except Exception as exc:
                        failed += 1
                        logger.warning(
                            "Skipping price fetch after error",
                            extra={"mint": mint, "reason": f"{exc.__class__.__name__}: {exc}"},
                        )
                        continue
                    if metric is None:
                        continue
                    fetched[mint] = metric
                    self._price_data[mint] = metric
                    self._publish(mint, metric)

                if self._closed:
                    break
                if index < len(batches) - 1:
                    await self._sleep(self._batch_pause_seconds)
        finally:
            self._active_runs -= 1

        summary = EnrichmentSummary(
            requested=len(identifiers),
            fetched=len(fetched),
            failed=failed,
            batch_sizes=tuple(len(batch) for batch in batches),
        )
        logger.info(
            "Price enrichment pass complete",
            extra={
                "requested": summary.requested,
                "fetched": summary.fetched,
                "failed": summary.failed,
                "batches": len(batches),
            },
        )
        return summary

    def _forget_missing(self, identifiers: tuple[str, ...]) -> None:
        known = set(identifiers)
        for mint in [mint for mint in self._price_data if mint not in known]:
            del self._price_data[mint]

    def _publish(self, mint: str, metric: PriceMetric) -> None:
        if self._on_metric is None:
            return
        try:
            self._on_metric(mint, metric)
        except Exception:
            logger.exception("Price metric handler failed", extra={"mint": mint})
