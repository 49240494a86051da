import asyncio

import httpx
import pytest

from pump_token_feed.sources.rest import (
    DexPaidStatusClient,
    PoolMetricsClient,
    parse_dex_paid_status,
    parse_price_metric,
)

MINT = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"

POOL_SEARCH_RESPONSE = {
    "pools": [
        {
            "poolAddress": "PoolAddr111",
            "priceUsd": "0.0000452",
            "marketCap": 45_200.5,
            "liquidUsd": "18250.25",
            "metadata": {"curvePercent": 72.5},
            "poolReports": [
                {"interval": "5m", "buyVolume": 10, "sellVolume": 10, "priceChangePercent": 1.0},
                {"interval": "24h", "buyVolume": "1500.5", "sellVolume": 499.5, "priceChangePercent": -12.75},
            ],
        },
        {"poolAddress": "Ignored", "marketCap": 1.0},
    ]
}


def test_parse_price_metric_reads_first_pool_and_24h_report() -> None:
    metric = parse_price_metric(POOL_SEARCH_RESPONSE)

    assert metric is not None
    assert metric.price == pytest.approx(0.0000452)
    assert metric.market_cap == pytest.approx(45_200.5)
    assert metric.liquidity == pytest.approx(18_250.25)
    assert metric.volume_24h == pytest.approx(2_000.0)
    assert metric.price_change_24h == pytest.approx(-12.75)
    assert metric.curve_percent == pytest.approx(72.5)


def test_parse_price_metric_defaults_missing_fields_to_zero() -> None:
    metric = parse_price_metric({"pools": [{"marketCap": "not-a-number", "priceUsd": None}]})

    assert metric is not None
    assert metric.market_cap == 0.0
    assert metric.price == 0.0
    assert metric.volume_24h == 0.0
    assert metric.curve_percent == 0.0


@pytest.mark.parametrize("payload", [{"pools": []}, {}, {"pools": "x"}, [], None])
def test_parse_price_metric_without_pool_is_none(payload: object) -> None:
    assert parse_price_metric(payload) is None


def test_pool_metrics_client_queries_by_mint() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status_code=200, request=request, json=POOL_SEARCH_RESPONSE)

    async def scenario() -> None:
        client = PoolMetricsClient("https://api.mevx.io/", transport=httpx.MockTransport(handler))
        try:
            metric = await client.fetch_price_metric(MINT)
        finally:
            await client.aclose()
        assert metric is not None
        assert metric.market_cap == pytest.approx(45_200.5)

    asyncio.run(scenario())

    assert len(seen) == 1
    assert seen[0].url.host == "api.mevx.io"
    assert seen[0].url.path == "/api/v1/pools/search"
    assert seen[0].url.params["q"] == MINT


def test_pool_metrics_client_raises_on_server_error_without_retry() -> None:
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        return httpx.Response(status_code=500, request=request, json={"error": "boom"})

    async def scenario() -> None:
        client = PoolMetricsClient("https://api.mevx.io", transport=httpx.MockTransport(handler))
        try:
            with pytest.raises(httpx.HTTPStatusError):
                await client.fetch_price_metric(MINT)
        finally:
            await client.aclose()

    asyncio.run(scenario())

    assert call_count == 1


def test_pool_metrics_client_returns_none_for_empty_search() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=200, request=request, json={"pools": []})

    async def scenario() -> None:
        client = PoolMetricsClient("https://api.mevx.io", transport=httpx.MockTransport(handler))
        try:
            assert await client.fetch_price_metric(MINT) is None
        finally:
            await client.aclose()

    asyncio.run(scenario())


def test_parse_dex_paid_status() -> None:
    assert parse_dex_paid_status([{"type": "tokenProfile", "status": "approved"}]) is True
    assert parse_dex_paid_status([{"type": "tokenProfile", "status": "processing"}]) is False
    assert parse_dex_paid_status([]) is False
    assert parse_dex_paid_status({"status": "approved"}) is False


@pytest.mark.parametrize(
    ("status_code", "body", "expected"),
    [
        (200, [{"type": "tokenProfile", "status": "approved", "paymentTimestamp": 1}], True),
        (200, [{"type": "tokenProfile", "status": "on-hold"}], False),
        (404, {"error": "not found"}, False),
        (503, {"error": "unavailable"}, False),
    ],
)
def test_dex_paid_status_client(status_code: int, body: object, expected: bool) -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(status_code=status_code, request=request, json=body)

    async def scenario() -> bool:
        client = DexPaidStatusClient("https://api.dexscreener.com", transport=httpx.MockTransport(handler))
        try:
            return await client.fetch_paid_status(MINT)
        finally:
            await client.aclose()

    assert asyncio.run(scenario()) is expected
    assert paths == [f"/orders/v1/solana/{MINT}"]


def test_dex_paid_status_client_treats_transport_error_as_unpaid() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    async def scenario() -> bool:
        client = DexPaidStatusClient("https://api.dexscreener.com", transport=httpx.MockTransport(handler))
        try:
            return await client.fetch_paid_status(MINT)
        finally:
            await client.aclose()

    assert asyncio.run(scenario()) is False
