"""
Unit Tests - Configuration
"""
from datetime import timedelta
import pytest
from pydantic import ValidationError as PydanticValidationError

from marketcache.config import Settings
from marketcache.data_providers.eodhd import EODHDConfig
from marketcache.services.bulk_backfill import BackfillConfig
from marketcache.services.market_data import CacheTtlConfig


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        settings = make_settings()
        assert settings.RATE_LIMIT_PERMITS == 1000
        assert settings.RATE_LIMIT_WINDOW_SECONDS == 60.0
        assert settings.BULK_BATCH_SIZE == 3000
        assert settings.BULK_CONCURRENCY == 5
        assert settings.EODHD_BASE_URL == "https://eodhd.com/"
        assert settings.ledger_retry_after_days is None

    def test_environment_is_read(self):
        settings = make_settings()
        assert settings.APP_ENV == "testing"
        assert settings.EODHD_API_KEY == "test-api-key"

    def test_list_fields_accept_comma_separated_values(self):
        settings = make_settings(BACKFILL_EXCHANGES="US, LSE", CORS_ORIGINS='["http://a", "http://b"]')
        assert settings.BACKFILL_EXCHANGES == ["US", "LSE"]
        assert settings.CORS_ORIGINS == ["http://a", "http://b"]

    def test_empty_list_string(self):
        assert make_settings(BACKFILL_EXCHANGES="").BACKFILL_EXCHANGES == []

    @pytest.mark.parametrize("field", ["RATE_LIMIT_PERMITS", "BULK_BATCH_SIZE", "BULK_CONCURRENCY"])
    def test_positive_fields(self, field):
        with pytest.raises(PydanticValidationError):
            make_settings(**{field: 0})

    def test_ledger_retry_after(self):
        assert make_settings(LEDGER_RETRY_AFTER_DAYS=30).ledger_retry_after_days == 30
        with pytest.raises(PydanticValidationError):
            make_settings(LEDGER_RETRY_AFTER_DAYS=-1)

    def test_database_url_uses_asyncpg(self):
        settings = make_settings(DATABASE_URL="postgresql://u:p@db:5432/cache")
        assert settings.database_url == "postgresql+asyncpg://u:p@db:5432/cache"

    def test_database_url_from_parts(self):
        settings = make_settings(DATABASE_URL="", POSTGRES_HOST="db", POSTGRES_DB="x")
        assert settings.database_url.startswith("postgresql+asyncpg://")
        assert settings.database_url.endswith("@db:5432/x")


class TestDerivedConfigs:
    """Tests for the component configs built from Settings."""

    def test_eodhd_config(self):
        config = EODHDConfig.from_settings(make_settings(EODHD_RETRY_ATTEMPTS=2, EODHD_TIMEOUT_SECONDS=5))
        assert config.api_key == "test-api-key"
        assert config.retry_attempts == 2
        assert config.timeout_seconds == 5

    def test_backfill_config(self):
        config = BackfillConfig.from_settings(make_settings(BULK_STAGGER_MS=100))
        assert config.stagger_seconds == pytest.approx(0.1)
        assert config.fundamentals_ttl == timedelta(days=7)
        assert config.cooldown_for(10) == 300

    def test_cache_ttls(self):
        ttl = CacheTtlConfig.from_settings(make_settings())
        assert ttl.exchanges == timedelta(hours=24)
        assert ttl.quotes == timedelta(minutes=15)
        assert ttl.fundamentals == timedelta(days=7)
