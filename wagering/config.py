"""Settlement policy and application settings, loaded from ``WAGER_*`` env vars."""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="WAGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "Clan Wager API"
    log_level: str = "INFO"

    # Share of the pot kept by the platform on wager settlement
    platform_fee_rate: Decimal = Field(default=Decimal("0.10"), ge=0, lt=1)
    max_campaign_battles: int = Field(default=2, ge=1)

    min_withdrawal_credits: int = Field(default=100, ge=1)
    withdrawal_fee_credits: int = Field(default=5, ge=0)
    usd_cents_per_100_credits: int = 200


@lru_cache
def get_settings() -> Settings:
    return Settings()
