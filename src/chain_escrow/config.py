"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a required setting is missing, the app fails fast with a
clear error message.

Usage:
    from chain_escrow.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, TypeAdapter
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChainSourceSettings(BaseModel):
    """One ledger deployment the indexer follows."""

    chain_id: int = Field(..., gt=0)
    rpc_url: str
    contract_address: str = Field(..., min_length=42, max_length=42)
    confirmations: int = Field(default=2, ge=0)


class Settings(BaseSettings):
    """Central configuration for the escrow ledger and its indexer."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://escrow:escrow_dev"
        "@localhost:5432/chain_escrow"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis (notification sink) ---
    redis_url: str = "redis://localhost:6379/0"
    notification_channel_prefix: str = "notifications"
    notification_history_size: int = 50

    # --- Indexer ---
    indexer_enabled: bool = True
    indexer_poll_interval_seconds: float = 30.0
    indexer_read_timeout_seconds: float = 10.0
    indexer_start_height: int = 0
    # JSON list, e.g. [{"chain_id": 11155111, "rpc_url": "...", "contract_address": "0x..."}]
    chain_sources_json: str = "[]"

    # --- Ledger defaults ---
    ledger_default_fee_rate: int = Field(default=250, ge=0)  # 2.5%
    ledger_max_fee_rate: int = Field(default=1000, ge=0)  # 10%

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def chain_sources(self) -> list[ChainSourceSettings]:
        """Parse the configured chain sources."""
        if not self.chain_sources_json.strip():
            return []
        return TypeAdapter(list[ChainSourceSettings]).validate_json(self.chain_sources_json)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
