from __future__ import annotations

import asyncio

import httpx
import pytest
from feed_fakes import GatedSleep, wait_until

from pump_token_feed.core.models import PriceMetric
from pump_token_feed.enrichment.price_enricher import EMPTY_SUMMARY, PriceEnricher, iter_batches


class _RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class _FakeSource:
    def __init__(self, *, failing: set[str] | None = None, empty: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.empty = empty or set()
        self.calls: list[str] = []

    async def fetch_price_metric(self, mint: str) -> PriceMetric | None:
        self.calls.append(mint)
        if mint in self.failing:
            request = httpx.Request("GET", "https://api.mevx.io/api/v1/pools/search")
            raise httpx.HTTPStatusError("server error", request=request, response=httpx.Response(500, request=request))
        if mint in self.empty:
            return None
        return PriceMetric(price=0.01, market_cap=float(len(self.calls)) * 1_000.0)


def test_iter_batches_groups_in_order() -> None:
    assert list(iter_batches(["a", "b", "c", "d"], 3)) == [("a", "b", "c"), ("d",)]
    with pytest.raises(ValueError):
        list(iter_batches(["a"], 0))


def test_sync_paces_requests_and_pauses_between_batches() -> None:
    sleep = _RecordingSleep()
    source = _FakeSource()
    published: list[str] = []
    enricher = PriceEnricher(source, on_metric=lambda mint, _: published.append(mint), sleep=sleep)
    mints = [f"m{index}" for index in range(7)]

    summary = asyncio.run(enricher.sync(mints))

    assert summary.batch_sizes == (3, 3, 1)
    assert summary.requested == 7
    assert summary.fetched == 7
    assert sleep.calls == [0.1, 0.1, 0.1, 2.0, 0.1, 0.1, 0.1, 2.0, 0.1]
    assert source.calls == mints
    assert published == mints
    assert set(enricher.price_data) == set(mints)
    assert not enricher.is_loading


def test_sync_only_fetches_identifiers_new_since_last_call() -> None:
    source = _FakeSource()
    enricher = PriceEnricher(source, sleep=_RecordingSleep())

    asyncio.run(enricher.sync(["a", "b"]))
    second = asyncio.run(enricher.sync(["c", "a", "b"]))
    third = asyncio.run(enricher.sync(["c", "a", "b"]))

    assert source.calls == ["a", "b", "c"]
    assert second.requested == 1
    assert third.requested == 0
    assert third.batch_sizes == ()


def test_sync_diffs_against_previous_call_not_fetch_history() -> None:
    source = _FakeSource()
    enricher = PriceEnricher(source, sleep=_RecordingSleep())

    asyncio.run(enricher.sync(["a", "b"]))
    asyncio.run(enricher.sync(["b"]))
    asyncio.run(enricher.sync(["a", "b"]))

    assert source.calls == ["a", "b", "a"]


def test_failures_are_skipped_and_counted() -> None:
    source = _FakeSource(failing={"b"}, empty={"c"})
    published: dict[str, PriceMetric] = {}
    enricher = PriceEnricher(source, on_metric=published.__setitem__, sleep=_RecordingSleep())

    summary = asyncio.run(enricher.sync(["a", "b", "c", "d"]))

    assert source.calls == ["a", "b", "c", "d"]
    assert summary.fetched == 2
    assert summary.failed == 1
    assert summary.missing == 1
    assert set(published) == {"a", "d"}
    assert set(enricher.price_data) == {"a", "d"}


def test_failing_handler_does_not_stop_the_pass() -> None:
    source = _FakeSource()

    def _broken(mint: str, metric: PriceMetric) -> None:
        raise RuntimeError("handler exploded")

    enricher = PriceEnricher(source, on_metric=_broken, sleep=_RecordingSleep())

    summary = asyncio.run(enricher.sync(["a", "b"]))

    assert summary.fetched == 2


def test_refetch_all_ignores_previous_identifiers() -> None:
    sleep = _RecordingSleep()
    source = _FakeSource()
    enricher = PriceEnricher(source, batch_size=2, request_spacing_seconds=0.0, batch_pause_seconds=1.5, sleep=sleep)

    asyncio.run(enricher.sync(["a", "b", "c"]))
    summary = asyncio.run(enricher.refetch_all(["a", "b", "c", "a"]))

    assert summary.requested == 3
    assert summary.batch_sizes == (2, 1)
    assert source.calls == ["a", "b", "c", "a", "b", "c"]
    assert sleep.calls.count(1.5) == 2


def test_is_loading_while_pass_in_flight() -> None:
    async def scenario() -> None:
        release = asyncio.Event()
        observed: list[bool] = []

        async def gated_sleep(_: float) -> None:
            await release.wait()

        enricher = PriceEnricher(_FakeSource(), sleep=gated_sleep)
        task = asyncio.create_task(enricher.sync(["a"]))
        await asyncio.sleep(0)
        observed.append(enricher.is_loading)

        release.set()
        await task
        observed.append(enricher.is_loading)

        assert observed == [True, False]

    asyncio.run(scenario())


def test_unexpected_source_error_skips_only_that_mint() -> None:
    calls: list[str] = []

    class _FlakySource:
        async def fetch_price_metric(self, mint: str) -> PriceMetric | None:
            calls.append(mint)
            if mint == "b":
                raise KeyError("unexpected")
            return PriceMetric(market_cap=20_000.0)

    enricher = PriceEnricher(_FlakySource(), sleep=_RecordingSleep())

    summary = asyncio.run(enricher.sync(["a", "b", "c"]))

    assert calls == ["a", "b", "c"]
    assert summary.fetched == 2
    assert summary.failed == 1
    assert set(enricher.price_data) == {"a", "c"}


def test_closed_enricher_stops_issuing_requests() -> None:
    source = _FakeSource()

    async def scenario() -> None:
        sleep = GatedSleep()
        enricher = PriceEnricher(source, sleep=sleep)
        task = asyncio.create_task(enricher.refetch_all(["a", "b", "c", "d"]))
        await wait_until(lambda: sleep.calls == [0.1])

        enricher.close()
        sleep.release()
        summary = await task

        assert summary.fetched == 0
        assert not enricher.is_loading
        assert await enricher.sync(["e"]) is EMPTY_SUMMARY
        assert await enricher.refetch_all(["e"]) is EMPTY_SUMMARY

    asyncio.run(scenario())

    assert source.calls == []


def test_price_data_only_keeps_current_identifiers() -> None:
    enricher = PriceEnricher(_FakeSource(), sleep=_RecordingSleep())

    for window in range(7):
        mints = [f"w{window}-{index}" for index in range(150)]
        asyncio.run(enricher.sync(mints))

    assert len(enricher.price_data) == 150
    assert all(mint.startswith("w6-") for mint in enricher.price_data)

    asyncio.run(enricher.sync(["w6-0", "w6-1"]))
    assert set(enricher.price_data) == {"w6-0", "w6-1"}
