from __future__ import annotations

import asyncio
import logging
import math
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Final, Protocol

from pump_token_feed.core.classifier import DEFAULT_THRESHOLDS, CategoryThresholds
from pump_token_feed.core.formatting import format_usd_fixed
from pump_token_feed.core.models import (
    UNKNOWN_CREATOR,
    UNKNOWN_NAME,
    UNKNOWN_SYMBOL,
    TokenMetadata,
    TokenRecord,
)
from pump_token_feed.pipeline.scheduling import DeferredTaskScheduler, SleepFn

CREATE_MARKER: Final[str] = "create"
SUBSCRIBE_NEW_TOKEN: Final[str] = "subscribeNewToken"
DEFAULT_PLACEHOLDER_IMAGE: Final[str] = "/placeholder.svg?height=48&width=48"

_FORMATTING_CHARS = re.compile(r"[$,\s]")
_FIRST_NUMBER = re.compile(r"[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?")

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(datetime.now(tz=UTC).timestamp() * 1000)


def _is_present(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (int, float)):
        return value != 0
    return True


@dataclass(frozen=True, slots=True)
class FieldExtractor:
    """Read one upstream key; `None` when the key is absent, empty or of the wrong type."""

    key: str
    accepts: tuple[type, ...] | None = None

    def __call__(self, body: dict[str, Any]) -> Any | None:
        value = body.get(self.key)
        if not _is_present(value):
            return None
        if isinstance(value, bool):
            return None
        if self.accepts is not None and not isinstance(value, self.accepts):
            return None
        return value


def first_match(body: dict[str, Any], extractors: Sequence[FieldExtractor]) -> Any | None:
    for extractor in extractors:
        value = extractor(body)
        if value is not None:
            return value
    return None


def _chain(*keys: str, accepts: tuple[type, ...] | None = None) -> tuple[FieldExtractor, ...]:
    return tuple(FieldExtractor(key, accepts) for key in keys)


_SCALAR = (str, int, float)

MINT_EXTRACTORS: Final = _chain("mint", "token", "address", "ca", accepts=(str,))
NAME_EXTRACTORS: Final = _chain("name", "tokenName", accepts=(str,))
SYMBOL_EXTRACTORS: Final = _chain("symbol", "tokenSymbol", accepts=(str,))
CREATOR_EXTRACTORS: Final = _chain(
    "traderpublickey",
    "traderPublicKey",
    "trader_public_key",
    "creator",
    "user",
    "deployer",
    "authority",
    accepts=(str,),
)
METADATA_URI_EXTRACTORS: Final = _chain("uri", "metadata_uri", "metadataUri", accepts=(str,))
SIGNATURE_EXTRACTORS: Final = _chain("signature", "txId", "transaction", accepts=(str,))
PRICE_EXTRACTORS: Final = _chain("price", "initialPrice", "sol_amount", accepts=_SCALAR)
MARKET_CAP_EXTRACTORS: Final = _chain("market_cap", "marketCap", "fdv", "usd_market_cap", accepts=_SCALAR)
LIQUIDITY_EXTRACTORS: Final = _chain("liquidity", "liquidityPool", accepts=_SCALAR)
CREATED_AT_EXTRACTORS: Final = _chain("timestamp", "blockTime", "created_timestamp", accepts=(int, float))
DESCRIPTION_EXTRACTORS: Final = _chain("description", accepts=(str,))


def coerce_number(value: Any) -> float:
    """Numeric value of `value`; failures give 0.0.

    Strings lose currency signs, thousands separators and spaces, then the
    first number in what remains is read (`"Market cap $12,000"` gives 12000.0).
    """
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = _FIRST_NUMBER.search(_FORMATTING_CHARS.sub("", value))
        if match is None:
            return 0.0
        number = float(match.group())
    else:
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


def _is_create(value: Any) -> bool:
    return value == CREATE_MARKER


def is_creation_frame(payload: dict[str, Any]) -> bool:
    if any(_is_create(payload.get(key)) for key in ("type", "method", "txType")):
        return True
    data = payload.get("data")
    if isinstance(data, dict) and _is_create(data.get("type")):
        return True
    if _is_present(payload.get("tokenData")):
        return True
    if payload.get("method") == SUBSCRIBE_NEW_TOKEN and _is_present(data):
        return True
    if _is_present(payload.get("mint")) and _is_present(payload.get("creator")):
        return True
    return _is_present(payload.get("token")) and _is_present(payload.get("user"))


def select_token_body(payload: dict[str, Any]) -> dict[str, Any]:
    """Pick the object carrying token fields among the known upstream shapes."""
    if any(_is_create(payload.get(key)) for key in ("type", "method", "txType")):
        return payload
    data = payload.get("data")
    if isinstance(data, dict) and _is_create(data.get("type")):
        return data
    token_data = payload.get("tokenData")
    if isinstance(token_data, dict):
        return token_data
    if payload.get("method") == SUBSCRIBE_NEW_TOKEN and isinstance(data, dict):
        return data
    return payload


@dataclass(frozen=True, slots=True)
class NormalizedEvent:
    mint: str
    name: str
    symbol: str
    creator: str
    description: str
    created_at_ms: int
    metadata_uri: str | None = None
    signature: str | None = None
    price: str | None = None
    market_cap_value: float = 0.0
    liquidity: str | None = None


def normalize_event(payload: dict[str, Any], *, ingested_at_ms: int) -> NormalizedEvent | None:
    """Canonical field set of one raw payload, or `None` when no identifier resolves."""
    body = select_token_body(payload)

    mint = first_match(body, MINT_EXTRACTORS)
    if mint is None:
        return None

    raw_price = first_match(body, PRICE_EXTRACTORS)
    raw_market_cap = first_match(body, MARKET_CAP_EXTRACTORS)
    raw_liquidity = first_match(body, LIQUIDITY_EXTRACTORS)
    created_at = first_match(body, CREATED_AT_EXTRACTORS)
    if created_at is not None and not math.isfinite(created_at):
        created_at = None

    return NormalizedEvent(
        mint=mint.strip(),
        name=first_match(body, NAME_EXTRACTORS) or UNKNOWN_NAME,
        symbol=first_match(body, SYMBOL_EXTRACTORS) or UNKNOWN_SYMBOL,
        creator=first_match(body, CREATOR_EXTRACTORS) or UNKNOWN_CREATOR,
        description=first_match(body, DESCRIPTION_EXTRACTORS) or "",
        created_at_ms=int(created_at) if created_at is not None else ingested_at_ms,
        metadata_uri=first_match(body, METADATA_URI_EXTRACTORS),
        signature=first_match(body, SIGNATURE_EXTRACTORS),
        price=format_usd_fixed(coerce_number(raw_price), 6) if raw_price is not None else None,
        market_cap_value=coerce_number(raw_market_cap),
        liquidity=format_usd_fixed(coerce_number(raw_liquidity), 2) if raw_liquidity is not None else None,
    )


def build_record(
    event: NormalizedEvent,
    metadata: TokenMetadata | None,
    *,
    placeholder_image: str = DEFAULT_PLACEHOLDER_IMAGE,
    thresholds: CategoryThresholds = DEFAULT_THRESHOLDS,
) -> TokenRecord:
    meta = metadata or TokenMetadata()
    return TokenRecord(
        mint=event.mint,
        name=meta.name or event.name,
        symbol=meta.symbol or event.symbol,
        description=meta.description or event.description,
        image=meta.image or placeholder_image,
        creator=event.creator,
        created_at_ms=event.created_at_ms,
        metadata_uri=event.metadata_uri,
        signature=event.signature,
        price=event.price,
        market_cap_value=event.market_cap_value,
        liquidity=event.liquidity,
        twitter=meta.twitter,
        telegram=meta.telegram,
        website=meta.website,
        thresholds=thresholds,
    )


class MetadataFetcher(Protocol):
    async def fetch_metadata(self, uri: str) -> TokenMetadata | None: ...


class TokenEventNormalizer:
    """Turn creation frames into records after the settling delay.

    Every accepted frame gets its own deferred job, so a frame that is still
    settling never holds back the next one.
    """

    def __init__(
        self,
        *,
        sink: Callable[[TokenRecord], None],
        metadata_fetcher: MetadataFetcher | None = None,
        settle_delay_seconds: float = 1.0,
        placeholder_image: str = DEFAULT_PLACEHOLDER_IMAGE,
        thresholds: CategoryThresholds = DEFAULT_THRESHOLDS,
        clock: Callable[[], int] = now_ms,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._sink = sink
        self._metadata_fetcher = metadata_fetcher
        self._placeholder_image = placeholder_image
        self._thresholds = thresholds
        self._clock = clock
        self._scheduler = DeferredTaskScheduler(name="normalize", delay_seconds=settle_delay_seconds, sleep=sleep)
        self.discarded = 0
        self.produced = 0

    @property
    def scheduler(self) -> DeferredTaskScheduler:
        return self._scheduler

    def submit(self, payload: dict[str, Any]) -> asyncio.Task[None] | None:
        if not is_creation_frame(payload):
            return None
        return self._scheduler.schedule(lambda: self.process(payload))

    async def process(self, payload: dict[str, Any]) -> TokenRecord | None:
        event = normalize_event(payload, ingested_at_ms=self._clock())
        if event is None:
            self.discarded += 1
            logger.debug("No mint address in token payload; skipping", extra={"keys": sorted(payload)})
            return None

        metadata: TokenMetadata | None = None
        if event.metadata_uri and self._metadata_fetcher is not None:
            metadata = await self._metadata_fetcher.fetch_metadata(event.metadata_uri)

        record = build_record(
            event,
            metadata,
            placeholder_image=self._placeholder_image,
            thresholds=self._thresholds,
        )
        logger.debug(
            "Normalized token",
            extra={"mint": record.mint, "market_cap": record.market_cap_value, "category": record.category.value},
        )
        self.produced += 1
        self._sink(record)
        return record

    async def drain(self) -> None:
        await self._scheduler.drain()

    async def cancel_pending(self) -> None:
        await self._scheduler.cancel_all()
