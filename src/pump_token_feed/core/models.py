from __future__ import annotations

from dataclasses import dataclass, field

from pump_token_feed.core.classifier import DEFAULT_THRESHOLDS, CategoryThresholds, classify
from pump_token_feed.core.enums import TokenCategory
from pump_token_feed.core.formatting import format_usd_grouped

UNKNOWN_NAME = "Unknown Token"
UNKNOWN_SYMBOL = "UNKNOWN"
UNKNOWN_CREATOR = "Unknown"


@dataclass(frozen=True, slots=True)
class TokenMetadata:
    name: str | None = None
    symbol: str | None = None
    description: str | None = None
    image: str | None = None
    twitter: str | None = None
    telegram: str | None = None
    website: str | None = None


@dataclass(frozen=True, slots=True)
class PriceMetric:
    price: float = 0.0
    market_cap: float = 0.0
    volume_24h: float = 0.0
    price_change_24h: float = 0.0
    liquidity: float = 0.0
    curve_percent: float = 0.0


@dataclass(frozen=True, slots=True)
class TokenRecord:
    """Canonical record for one mint.

    `category` is not an init argument: it is recomputed from `market_cap_value`
    on every construction, including `dataclasses.replace`.
    """

    mint: str
    name: str = UNKNOWN_NAME
    symbol: str = UNKNOWN_SYMBOL
    description: str = ""
    image: str = ""
    creator: str = UNKNOWN_CREATOR
    created_at_ms: int = 0
    metadata_uri: str | None = None
    signature: str | None = None
    price: str | None = None
    market_cap_value: float = 0.0
    liquidity: str | None = None
    twitter: str | None = None
    telegram: str | None = None
    website: str | None = None
    thresholds: CategoryThresholds = field(default=DEFAULT_THRESHOLDS, repr=False, compare=False)
    category: TokenCategory = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "category", classify(self.market_cap_value, self.thresholds))

    @property
    def market_cap_display(self) -> str | None:
        if not self.market_cap_value:
            return None
        return format_usd_grouped(self.market_cap_value)

    def as_row(self) -> dict[str, object]:
        return {
            "mint": self.mint,
            "name": self.name,
            "symbol": self.symbol,
            "description": self.description,
            "image": self.image,
            "creator": self.creator,
            "created_at_ms": self.created_at_ms,
            "metadata_uri": self.metadata_uri,
            "signature": self.signature,
            "price": self.price,
            "market_cap_value": float(self.market_cap_value),
            "liquidity": self.liquidity,
            "twitter": self.twitter,
            "telegram": self.telegram,
            "website": self.website,
            "category": self.category.value,
        }
