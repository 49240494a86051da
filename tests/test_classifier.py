from __future__ import annotations

import dataclasses
import math

import pytest

from pump_token_feed.core.classifier import CategoryThresholds, classify
from pump_token_feed.core.enums import TokenCategory
from pump_token_feed.core.models import TokenRecord


@pytest.mark.parametrize(
    ("market_cap", "expected"),
    [
        (0.0, TokenCategory.NEW),
        (9_999.0, TokenCategory.NEW),
        (9_999.99, TokenCategory.NEW),
        (10_000.0, TokenCategory.BONDING),
        (49_999.0, TokenCategory.BONDING),
        (50_000.0, TokenCategory.GRADUATED),
        (2_500_000.0, TokenCategory.GRADUATED),
        (-5.0, TokenCategory.NEW),
    ],
)
def test_classify_tier_boundaries(market_cap: float, expected: TokenCategory) -> None:
    assert classify(market_cap) is expected


def test_classify_nan_is_new() -> None:
    assert classify(math.nan) is TokenCategory.NEW


def test_classify_with_overridden_thresholds() -> None:
    thresholds = CategoryThresholds(bonding=100.0, graduated=1_000.0)

    assert classify(99.0, thresholds) is TokenCategory.NEW
    assert classify(100.0, thresholds) is TokenCategory.BONDING
    assert classify(1_000.0, thresholds) is TokenCategory.GRADUATED


def test_thresholds_reject_inverted_tiers() -> None:
    with pytest.raises(ValueError):
        CategoryThresholds(bonding=60_000.0, graduated=50_000.0)


def test_record_category_follows_market_cap_on_replace() -> None:
    record = TokenRecord(mint="Mint111", market_cap_value=5_000.0)
    assert record.category is TokenCategory.NEW

    bonded = dataclasses.replace(record, market_cap_value=10_000.0)
    graduated = dataclasses.replace(bonded, market_cap_value=75_000.0)

    assert bonded.category is TokenCategory.BONDING
    assert graduated.category is TokenCategory.GRADUATED


def test_record_category_is_not_an_init_argument() -> None:
    with pytest.raises(TypeError):
        TokenRecord(mint="Mint111", category=TokenCategory.GRADUATED)  # type: ignore[call-arg]


def test_record_market_cap_display() -> None:
    assert TokenRecord(mint="a").market_cap_display is None
    assert TokenRecord(mint="a", market_cap_value=12_345.67).market_cap_display == "$12,345.67"
