"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a setting is malformed, the app fails fast with a clear
error message.

Usage:
    from escrow_settlement.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the escrow settlement service."""

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

    # --- Storage ---
    store_backend: Literal["sql", "memory"] = "sql"
    database_url: str = (
        "postgresql+asyncpg://escrow:escrow_dev"
        "@localhost:5432/escrow_settlement"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    # --- Payment rail ---
    payment_rail_mode: Literal["simulated", "stripe"] = "simulated"
    stripe_secret_key: str = ""
    stripe_max_network_retries: int = 3

    # --- Platform fee and period defaults (amounts in minor units) ---
    platform_fee_percentage: float = 2.5
    platform_fee_fixed: int = 30
    rail_fee_percentage: float = 2.9
    rail_fee_fixed: int = 30
    default_dispute_period_days: int = 7
    default_auto_release_days: int = 14
    default_inspection_days: int = 3
    min_transaction_amount: int = 100  # $1.00
    max_transaction_amount: int = 1_000_000  # $10,000
    requires_tracking_above: int = 5000  # $50

    # --- Settlement ---
    settlement_claim_ttl_seconds: int = 300
    stale_write_max_attempts: int = 5

    # --- Scheduler ---
    scheduler_enabled: bool = False
    scheduler_interval_seconds: int = 3600
    sweep_page_size: int = 100
    cron_secret: str = ""

    # --- Reminders ---
    unshipped_reminder_days: int = 3
    confirmation_reminder_days: int = 2

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def simulate_payments(self) -> bool:
        return self.payment_rail_mode == "simulated"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
