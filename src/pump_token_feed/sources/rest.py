from __future__ import annotations

import logging
import math
from typing import Any

import httpx

from pump_token_feed.core.models import PriceMetric

logger = logging.getLogger(__name__)

REPORT_INTERVAL_24H = "24h"
DEX_ORDER_APPROVED = "approved"


def _number(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


def parse_price_metric(payload: Any) -> PriceMetric | None:
    """Metric from the first pool of a pool-search response; `None` when there is no pool."""
    if not isinstance(payload, dict):
        return None
    pools = payload.get("pools")
    if not isinstance(pools, list) or not pools or not isinstance(pools[0], dict):
        return None

    pool = pools[0]
    reports = pool.get("poolReports")
    report_24h: dict[str, Any] | None = None
    if isinstance(reports, list):
        report_24h = next(
            (item for item in reports if isinstance(item, dict) and item.get("interval") == REPORT_INTERVAL_24H),
            None,
        )

    pool_metadata = pool.get("metadata")
    curve_percent = _number(pool_metadata.get("curvePercent")) if isinstance(pool_metadata, dict) else 0.0

    volume_24h = 0.0
    price_change_24h = 0.0
    if report_24h is not None:
        volume_24h = _number(report_24h.get("buyVolume")) + _number(report_24h.get("sellVolume"))
        price_change_24h = _number(report_24h.get("priceChangePercent"))

    return PriceMetric(
        price=_number(pool.get("priceUsd")),
        market_cap=_number(pool.get("marketCap")),
        volume_24h=volume_24h,
        price_change_24h=price_change_24h,
        liquidity=_number(pool.get("liquidUsd")),
        curve_percent=curve_percent,
    )


def parse_dex_paid_status(payload: Any) -> bool:
    if not isinstance(payload, list) or not payload:
        return False
    first = payload[0]
    return isinstance(first, dict) and first.get("status") == DEX_ORDER_APPROVED


class PoolMetricsClient:
    """Pool-search query service keyed by mint address.

    Requests are never retried here; pacing between calls belongs to the caller.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_price_metric(self, mint: str) -> PriceMetric | None:
        response = await self._client.get("/api/v1/pools/search", params={"q": mint})
        response.raise_for_status()
        metric = parse_price_metric(response.json())
        if metric is None:
            logger.info("No price data available for token", extra={"mint": mint})
        return metric


class DexPaidStatusClient:
    def __init__(
        self,
        base_url: str,
        timeout_seconds: float | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_paid_status(self, mint: str) -> bool:
        """Whether an approved DEX profile order exists for `mint`; a 404 means no order."""
        try:
            response = await self._client.get(f"/orders/v1/solana/{mint}")
            if response.status_code == 404:
                return False
            response.raise_for_status()
            return parse_dex_paid_status(response.json())
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "DEX paid status lookup failed",
                extra={"mint": mint, "reason": f"{exc.__class__.__name__}: {exc}"},
            )
            return False
