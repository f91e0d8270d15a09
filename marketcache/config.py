"""
MarketCache - Configuration Settings
"""
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # =========================
    # Application Settings
    # =========================
    APP_NAME: str = "MarketCache"
    APP_ENV: str = "development"
    DEBUG: bool = False
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    @field_validator("CORS_ORIGINS", "BACKFILL_EXCHANGES", mode="before")
    @classmethod
    def parse_list(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return []
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [item.strip() for item in v.split(",") if item.strip()]
        return v

    # =========================
    # Database - PostgreSQL
    # =========================
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "marketcache"
    POSTGRES_USER: str = "marketcache_user"
    POSTGRES_PASSWORD: str = "dev_password_123"
    # Direct DATABASE_URL from environment (overrides individual settings)
    DATABASE_URL: str = ""
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20

    @property
    def database_url(self) -> str:
        """Get the async database URL."""
        if self.DATABASE_URL:
            url = self.DATABASE_URL
            # Ensure it uses asyncpg driver
            if url.startswith("postgresql://"):
                url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
            return url
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # =========================
    # Data Provider - EODHD
    # =========================
    EODHD_API_KEY: str = ""
    EODHD_BASE_URL: str = "https://eodhd.com/"
    EODHD_TIMEOUT_SECONDS: float = 15.0
    EODHD_RETRY_ATTEMPTS: int = 3
    EODHD_RETRY_DELAY: float = 1.0
    EODHD_RETRY_DELAY_MAX: float = 30.0

    # =========================
    # Rate Governor / Circuit Breaker
    # =========================
    RATE_LIMIT_PERMITS: int = 1000
    RATE_LIMIT_WINDOW_SECONDS: float = 60.0
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_COOLDOWN_SECONDS: float = 30.0

    # =========================
    # Cache TTLs (hours)
    # =========================
    CACHE_TTL_EXCHANGES_HOURS: float = 24.0
    CACHE_TTL_SYMBOLS_HOURS: float = 24.0
    CACHE_TTL_QUOTES_HOURS: float = 0.25
    CACHE_TTL_FUNDAMENTALS_HOURS: float = 168.0

    # =========================
    # Bulk Backfill
    # =========================
    BULK_BATCH_SIZE: int = 3000
    BULK_CONCURRENCY: int = 5
    BULK_STAGGER_MS: int = 50
    BULK_INTER_BATCH_DELAY_SECONDS: float = 1.0
    BULK_COOLDOWN_PER_HIT_SECONDS: float = 60.0
    BULK_MAX_COOLDOWN_SECONDS: float = 300.0
    # 0 disables ageing out of unavailability records
    LEDGER_RETRY_AFTER_DAYS: int = 0

    @field_validator(
        "RATE_LIMIT_PERMITS",
        "BULK_BATCH_SIZE",
        "BULK_CONCURRENCY",
        "CIRCUIT_FAILURE_THRESHOLD",
        "EODHD_RETRY_ATTEMPTS",
    )
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("LEDGER_RETRY_AFTER_DAYS")
    @classmethod
    def must_not_be_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be zero or positive")
        return v

    # =========================
    # Scheduler Settings
    # =========================
    BACKFILL_SCHEDULE_ENABLED: bool = False
    BACKFILL_EXCHANGES: List[str] = []
    BACKFILL_CRON_HOUR: int = 2
    BACKFILL_CRON_MINUTE: int = 0
    TIMEZONE: str = "UTC"

    # =========================
    # Logging
    # =========================
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = "logs"

    @property
    def ledger_retry_after_days(self) -> Optional[int]:
        return self.LEDGER_RETRY_AFTER_DAYS or None


# Create global settings instance
settings = Settings()
