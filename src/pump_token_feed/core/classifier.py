from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from pump_token_feed.core.enums import TokenCategory

BONDING_THRESHOLD_USD: Final[float] = 10_000.0
GRADUATED_THRESHOLD_USD: Final[float] = 50_000.0


@dataclass(frozen=True, slots=True)
class CategoryThresholds:
    """Lower bounds (inclusive) of the Bonding and Graduated tiers."""

    bonding: float = BONDING_THRESHOLD_USD
    graduated: float = GRADUATED_THRESHOLD_USD

    def __post_init__(self) -> None:
        if self.graduated < self.bonding:
            raise ValueError(
                f"graduated threshold ({self.graduated}) must be >= bonding threshold ({self.bonding})"
            )


DEFAULT_THRESHOLDS: Final[CategoryThresholds] = CategoryThresholds()


def classify(market_cap_value: float, thresholds: CategoryThresholds = DEFAULT_THRESHOLDS) -> TokenCategory:
    if market_cap_value >= thresholds.graduated:
        return TokenCategory.GRADUATED
    if market_cap_value >= thresholds.bonding:
        return TokenCategory.BONDING
    return TokenCategory.NEW
