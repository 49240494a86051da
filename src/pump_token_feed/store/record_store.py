from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass

import polars as pl

from pump_token_feed.core.enums import TokenCategory
from pump_token_feed.core.formatting import format_usd_fixed, format_usd_grouped
from pump_token_feed.core.models import PriceMetric, TokenRecord

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 150

_FRAME_SCHEMA: dict[str, pl.DataType] = {
    "mint": pl.Utf8(),
    "name": pl.Utf8(),
    "symbol": pl.Utf8(),
    "description": pl.Utf8(),
    "image": pl.Utf8(),
    "creator": pl.Utf8(),
    "created_at_ms": pl.Int64(),
    "metadata_uri": pl.Utf8(),
    "signature": pl.Utf8(),
    "price": pl.Utf8(),
    "market_cap_value": pl.Float64(),
    "liquidity": pl.Utf8(),
    "twitter": pl.Utf8(),
    "telegram": pl.Utf8(),
    "website": pl.Utf8(),
    "category": pl.Utf8(),
}


@dataclass(frozen=True, slots=True)
class CategoryViews:
    new: tuple[TokenRecord, ...] = ()
    bonding: tuple[TokenRecord, ...] = ()
    graduated: tuple[TokenRecord, ...] = ()

    def for_category(self, category: TokenCategory) -> tuple[TokenRecord, ...]:
        if category is TokenCategory.BONDING:
            return self.bonding
        if category is TokenCategory.GRADUATED:
            return self.graduated
        return self.new


def partition_by_category(records: tuple[TokenRecord, ...]) -> CategoryViews:
    buckets: dict[TokenCategory, list[TokenRecord]] = {category: [] for category in TokenCategory}
    for record in records:
        buckets[record.category].append(record)
    return CategoryViews(
        new=tuple(buckets[TokenCategory.NEW]),
        bonding=tuple(buckets[TokenCategory.BONDING]),
        graduated=tuple(buckets[TokenCategory.GRADUATED]),
    )


@dataclass(frozen=True, slots=True)
class StoreSnapshot:
    records: tuple[TokenRecord, ...] = ()
    views: CategoryViews = CategoryViews()
    version: int = 0


StoreListener = Callable[[StoreSnapshot], None]


def apply_metric(record: TokenRecord, metric: PriceMetric) -> TokenRecord:
    """Overwrite market cap, price and liquidity; the category follows the new market cap."""
    return dataclasses.replace(
        record,
        market_cap_value=metric.market_cap,
        price=format_usd_fixed(metric.price, 6),
        liquidity=format_usd_grouped(metric.liquidity) if metric.liquidity else record.liquidity,
    )


class RecordStore:
    """Bounded, most-recent-first collection of token records.

    Readers always see a complete `StoreSnapshot`: every mutation builds a new
    snapshot and swaps it in with a single assignment.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._snapshot = StoreSnapshot()
        self._listeners: list[StoreListener] = []
        self._closed = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._snapshot.records)

    def snapshot(self) -> StoreSnapshot:
        return self._snapshot

    @property
    def records(self) -> tuple[TokenRecord, ...]:
        return self._snapshot.records

    @property
    def views(self) -> CategoryViews:
        return self._snapshot.views

    def identifiers(self) -> tuple[str, ...]:
        return tuple(record.mint for record in self._snapshot.records)

    def get(self, mint: str) -> TokenRecord | None:
        for record in self._snapshot.records:
            if record.mint == mint:
                return record
        return None

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def append(self, record: TokenRecord) -> None:
        if self._closed:
            logger.debug("Store closed; dropping record", extra={"mint": record.mint})
            return

        current = self._snapshot.records
        index = self._index_of(current, record.mint)
        if index is None:
            updated = (record, *current[: self._capacity - 1])
        else:
            updated = (*current[:index], record, *current[index + 1 :])
        self._swap(updated)

    def merge_metric(self, mint: str, metric: PriceMetric) -> bool:
        """Apply `metric` to the record for `mint`; returns whether the store changed."""
        if self._closed:
            return False
        # zero market cap means the pool has no usable data yet
        if not metric.market_cap:
            return False

        current = self._snapshot.records
        index = self._index_of(current, mint)
        if index is None:
            return False

        updated_record = apply_metric(current[index], metric)
        if updated_record == current[index]:
            return False
        self._swap((*current[:index], updated_record, *current[index + 1 :]))
        return True

    def close(self) -> None:
        self._closed = True
        self._listeners.clear()

    def to_frame(self) -> pl.DataFrame:
        return pl.DataFrame([record.as_row() for record in self._snapshot.records], schema=_FRAME_SCHEMA)

    @staticmethod
    def _index_of(records: tuple[TokenRecord, ...], mint: str) -> int | None:
        for index, record in enumerate(records):
            if record.mint == mint:
                return index
        return None

    def _swap(self, records: tuple[TokenRecord, ...]) -> None:
        snapshot = StoreSnapshot(
            records=records,
            views=partition_by_category(records),
            version=self._snapshot.version + 1,
        )
        self._snapshot = snapshot
        for listener in tuple(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Store listener failed")
