"""Configuration settings for the susu ledger service."""

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from susu.models import FullWithdrawalPolicy


class Settings(BaseSettings):
    """Flat settings read from ``SUSU_*`` environment variables or ``.env``."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Commission rules
    full_withdrawal_policy: FullWithdrawalPolicy = Field(
        default=FullWithdrawalPolicy.INCLUSIVE,
        validation_alias="SUSU_FULL_WITHDRAWAL_POLICY",
        description="Comparator for the full-withdrawal check (inclusive: <=, strict: <)",
    )
    min_rate: Decimal = Field(
        default=Decimal("0.01"),
        validation_alias="SUSU_MIN_RATE",
        description="Smallest box value accepted on a rate change",
    )

    # Storage
    storage_backend: Literal["memory", "sqlite"] = Field(
        default="memory", validation_alias="SUSU_STORAGE_BACKEND"
    )
    sqlite_path: str = Field(default="susu_ledger.db", validation_alias="SUSU_SQLITE_PATH")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="SUSU_LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="SUSU_LOG_FORMAT"
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
