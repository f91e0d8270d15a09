"""
Business Services

Read-through cache gate and bulk backfill orchestration.
"""
from marketcache.services.market_data import (
    MarketDataService,
    CacheResult,
    CacheSource,
    CacheTtlConfig,
    RefreshResult,
)
from marketcache.services.bulk_backfill import (
    BulkBackfillOrchestrator,
    BackfillConfig,
    BackfillState,
    BulkRunResult,
    SymbolOutcome,
)
from marketcache.services.single_flight import SingleFlight

__all__ = [
    "MarketDataService",
    "CacheResult",
    "CacheSource",
    "CacheTtlConfig",
    "RefreshResult",
    "BulkBackfillOrchestrator",
    "BackfillConfig",
    "BackfillState",
    "BulkRunResult",
    "SymbolOutcome",
    "SingleFlight",
]
