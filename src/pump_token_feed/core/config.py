from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    feed_url: str = Field(default="wss://pumpportal.fun/api/data")
    subscribe_method: str = Field(default="subscribeNewToken")
    pool_search_base_url: str = Field(default="https://api.mevx.io")
    dex_orders_base_url: str = Field(default="https://api.dexscreener.com")

    record_capacity: int = Field(default=150, ge=1)
    raw_trail_capacity: int = Field(default=20, ge=1)

    bonding_threshold: float = Field(default=10_000.0, ge=0)
    graduated_threshold: float = Field(default=50_000.0, ge=0)

    enrich_batch_size: int = Field(default=3, ge=1)
    enrich_request_spacing_seconds: float = Field(default=0.1, ge=0)
    enrich_batch_pause_seconds: float = Field(default=2.0, ge=0)

    reconnect_delay_seconds: float = Field(default=5.0, ge=0)
    # delay between receiving a creation frame and reading it
    settle_delay_seconds: float = Field(default=1.0, ge=0)

    # None disables the client timeout
    http_timeout_seconds: float | None = Field(default=None, gt=0)

    placeholder_image: str = Field(default="/placeholder.svg?height=48&width=48")

    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_prefix="PTF_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_threshold_order(self) -> Settings:
        if self.graduated_threshold < self.bonding_threshold:
            raise ValueError("graduated_threshold must be >= bonding_threshold")
        return self
