"""
Service Container

Builds the shared instances once and hands them out explicitly. The rate
governor created here is the single permit pool used by both interactive
reads and bulk backfills.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncEngine
from loguru import logger

from marketcache.config import Settings
from marketcache.data_providers.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from marketcache.data_providers.eodhd import EODHDClient, EODHDConfig, PROVIDER_NAME
from marketcache.data_providers.rate_limiter import RateGovernor, RateGovernorConfig
from marketcache.db.database import create_engine, create_session_factory, init_db
from marketcache.scheduler.backfill_scheduler import BackfillScheduler
from marketcache.services.bulk_backfill import BackfillConfig, BulkBackfillOrchestrator
from marketcache.services.market_data import CacheTtlConfig, MarketDataService
from marketcache.storage.gateway import StorageGateway
from marketcache.storage.ledger import UnavailabilityLedger
from marketcache.storage.sql import SqlStorageGateway


@dataclass
class ServiceContainer:
    """Everything the API and the scheduler need."""
    settings: Settings
    governor: RateGovernor
    provider: EODHDClient
    storage: StorageGateway
    ledger: UnavailabilityLedger
    market_data: MarketDataService
    backfill: BulkBackfillOrchestrator
    scheduler: BackfillScheduler
    engine: Optional[AsyncEngine] = None

    @classmethod
    def build(
        cls,
        settings: Settings,
        storage: Optional[StorageGateway] = None,
        provider: Optional[EODHDClient] = None,
    ) -> "ServiceContainer":
        """
        Wire the object graph from settings.

        ``storage`` and ``provider`` may be supplied to replace the SQL
        gateway and the HTTP client (tests, tooling).
        """
        governor = RateGovernor(
            RateGovernorConfig(
                permits=settings.RATE_LIMIT_PERMITS,
                window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
            )
        )
        if provider is None:
            breaker = CircuitBreaker(
                PROVIDER_NAME,
                CircuitBreakerConfig(
                    failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
                    cooldown_seconds=settings.CIRCUIT_COOLDOWN_SECONDS,
                ),
            )
            provider = EODHDClient(EODHDConfig.from_settings(settings), governor, breaker)
        else:
            governor = provider.governor

        engine = None
        if storage is None:
            engine = create_engine(settings)
            storage = SqlStorageGateway(create_session_factory(engine))

        retry_days = settings.ledger_retry_after_days
        ledger = UnavailabilityLedger(
            storage,
            retry_after=timedelta(days=retry_days) if retry_days else None,
        )
        market_data = MarketDataService(provider, storage, CacheTtlConfig.from_settings(settings))
        backfill = BulkBackfillOrchestrator(provider, storage, ledger, BackfillConfig.from_settings(settings))
        scheduler = BackfillScheduler(backfill, timezone=settings.TIMEZONE)

        return cls(
            settings=settings,
            governor=governor,
            provider=provider,
            storage=storage,
            ledger=ledger,
            market_data=market_data,
            backfill=backfill,
            scheduler=scheduler,
            engine=engine,
        )

    async def startup(self) -> None:
        """Create tables, open the HTTP session and start scheduled backfills."""
        if self.engine is not None:
            await init_db(self.engine)
            logger.info("Database initialized")

        await self.provider.initialize()

        if not self.settings.EODHD_API_KEY:
            logger.warning("EODHD_API_KEY is not set; provider calls will be rejected")

        if self.settings.BACKFILL_SCHEDULE_ENABLED and self.settings.BACKFILL_EXCHANGES:
            for exchange_code in self.settings.BACKFILL_EXCHANGES:
                self.scheduler.add_daily_backfill(
                    exchange_code,
                    hour=self.settings.BACKFILL_CRON_HOUR,
                    minute=self.settings.BACKFILL_CRON_MINUTE,
                )
            self.scheduler.start()

    async def shutdown(self) -> None:
        self.scheduler.stop()
        await self.provider.close()
        if self.engine is not None:
            await self.engine.dispose()
            logger.info("Database connections closed")
