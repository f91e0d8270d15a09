"""
Bulk Backfill Orchestrator

Fetches fundamentals for every symbol of an exchange that has none cached,
under the shared rate governor.

Flow:
- Load all cached symbols of the exchange (NotFound if there are none)
- Drop symbols that already have fundamentals and symbols in the
  unavailability ledger
- Process the rest in sequential batches; inside a batch a fixed pool of
  workers drains a bounded queue, with staggered worker start times
- Success upserts fundamentals and clears the ledger entry; a rate limit is
  only counted; a daily limit aborts the whole run; anything else is
  recorded in the ledger so later runs skip the symbol
- Between batches: a cool-down proportional to the rate-limit hits of the
  batch (capped), otherwise a short fixed delay

States: IDLE -> BATCHING -> FETCHING -> COOLDOWN | NEXT_BATCH ->
COMPLETED | ABORTED_DAILY_LIMIT | CANCELLED
"""
import asyncio
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Sequence
from loguru import logger

from marketcache.config import Settings
from marketcache.data_providers.eodhd import EODHDClient
from marketcache.data_providers.models import Symbol
from marketcache.storage.gateway import StorageGateway, SymbolKey
from marketcache.storage.ledger import UnavailabilityLedger
from marketcache.utils.clock import Clock, cancellable_sleep, utc_now
from marketcache.utils.exceptions import (
    NotFoundError,
    OperationCancelledError,
    ProviderDailyLimitError,
    ProviderRateLimitError,
    ValidationError,
)


class BackfillState(str, Enum):
    """Backfill run states."""
    IDLE = "idle"
    BATCHING = "batching"
    FETCHING = "fetching"
    COOLDOWN = "cooldown"
    NEXT_BATCH = "next_batch"
    COMPLETED = "completed"
    ABORTED_DAILY_LIMIT = "aborted_daily_limit"
    CANCELLED = "cancelled"


class SymbolOutcome(str, Enum):
    """Result of one per-symbol fetch."""
    SUCCESS = "success"
    RATE_LIMIT = "rate_limit"
    DAILY_LIMIT = "daily_limit"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class BackfillConfig:
    """Batching, concurrency and back-off settings."""
    batch_size: int = 3000
    concurrency: int = 5
    stagger_seconds: float = 0.05
    inter_batch_delay_seconds: float = 1.0
    cooldown_per_hit_seconds: float = 60.0
    max_cooldown_seconds: float = 300.0
    fundamentals_ttl: timedelta = timedelta(days=7)

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackfillConfig":
        return cls(
            batch_size=settings.BULK_BATCH_SIZE,
            concurrency=settings.BULK_CONCURRENCY,
            stagger_seconds=settings.BULK_STAGGER_MS / 1000.0,
            inter_batch_delay_seconds=settings.BULK_INTER_BATCH_DELAY_SECONDS,
            cooldown_per_hit_seconds=settings.BULK_COOLDOWN_PER_HIT_SECONDS,
            max_cooldown_seconds=settings.BULK_MAX_COOLDOWN_SECONDS,
            fundamentals_ttl=timedelta(hours=settings.CACHE_TTL_FUNDAMENTALS_HOURS),
        )

    def cooldown_for(self, rate_limit_hits: int) -> float:
        """Cool-down after a batch with ``rate_limit_hits`` throttled symbols."""
        return min(self.max_cooldown_seconds, rate_limit_hits * self.cooldown_per_hit_seconds)


@dataclass
class BulkRunResult:
    """Counters of one backfill run."""
    exchange_code: str
    started_at: datetime
    total_symbols: int = 0
    symbols_without_data: int = 0
    skipped_no_data: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    rate_limit_hits: int = 0
    daily_limit_hit: bool = False
    cancelled: bool = False
    total_wait_time: timedelta = field(default_factory=timedelta)
    batches_processed: int = 0
    completed_at: Optional[datetime] = None
    state: BackfillState = BackfillState.IDLE

    @property
    def duration(self) -> Optional[timedelta]:
        if self.completed_at is None:
            return None
        return self.completed_at - self.started_at

    def record(self, outcome: SymbolOutcome) -> None:
        """Fold one per-symbol outcome into the counters."""
        if outcome == SymbolOutcome.CANCELLED:
            return
        self.processed += 1
        if outcome == SymbolOutcome.SUCCESS:
            self.successful += 1
            return
        self.failed += 1
        if outcome == SymbolOutcome.RATE_LIMIT:
            self.rate_limit_hits += 1
        elif outcome == SymbolOutcome.DAILY_LIMIT:
            self.daily_limit_hit = True

    def to_dict(self) -> dict:
        duration = self.duration
        return {
            "exchange_code": self.exchange_code,
            "state": self.state.value,
            "total_symbols": self.total_symbols,
            "symbols_without_data": self.symbols_without_data,
            "skipped_no_data": self.skipped_no_data,
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "rate_limit_hits": self.rate_limit_hits,
            "daily_limit_hit": self.daily_limit_hit,
            "cancelled": self.cancelled,
            "total_wait_time_seconds": self.total_wait_time.total_seconds(),
            "batches_processed": self.batches_processed,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": duration.total_seconds() if duration is not None else None,
        }


def partition(items: Sequence[Symbol], size: int) -> list[list[Symbol]]:
    """Split into consecutive batches of at most ``size`` items."""
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class BulkBackfillOrchestrator:
    """
    Drives bulk fundamentals backfills for whole exchanges.

    Usage:
        orchestrator = BulkBackfillOrchestrator(client, storage, ledger, BackfillConfig())
        result = await orchestrator.backfill("LSE")
    """

    def __init__(
        self,
        provider: EODHDClient,
        storage: StorageGateway,
        ledger: UnavailabilityLedger,
        config: Optional[BackfillConfig] = None,
        clock: Clock = utc_now,
    ):
        self.provider = provider
        self.storage = storage
        self.ledger = ledger
        self.config = config or BackfillConfig()
        self._clock = clock
        self._runs: dict[str, BulkRunResult] = {}
        self._active: set[str] = set()

    def is_running(self, exchange_code: str) -> bool:
        return exchange_code.upper() in self._active

    def get_run(self, exchange_code: str) -> Optional[BulkRunResult]:
        """Current or most recent run for an exchange."""
        return self._runs.get(exchange_code.upper())

    # ==================== Run ====================

    async def backfill(
        self,
        exchange_code: str,
        batch_size: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BulkRunResult:
        """
        Backfill missing fundamentals for an exchange.

        Args:
            exchange_code: Exchange to process
            batch_size: Symbols per batch (defaults to the configured size)
            cancel_event: Cooperative cancellation; once set no new symbol or
                batch starts and the accumulated counters are returned

        Raises:
            ValidationError: bad batch size, or a run for the exchange is already active
            NotFoundError: the exchange has no cached symbols
        """
        code = (exchange_code or "").strip().upper()
        size = batch_size if batch_size is not None else self.config.batch_size
        if not code:
            raise ValidationError("Exchange code is required.")
        if size <= 0:
            raise ValidationError("Batch size must be greater than 0.")
        if code in self._active:
            raise ValidationError(f"A backfill for {code} is already running", code="BACKFILL_RUNNING")

        self._active.add(code)
        try:
            return await self._run(code, size, cancel_event)
        finally:
            self._active.discard(code)

    async def _run(self, code: str, batch_size: int, cancel_event: Optional[asyncio.Event]) -> BulkRunResult:
        result = BulkRunResult(exchange_code=code, started_at=self._clock())
        self._runs[code] = result
        logger.info(f"Starting bulk fetch of fundamentals for {code} with batch size {batch_size}")

        symbols = await self.storage.get_all_symbols(code)
        if not symbols:
            result.completed_at = self._clock()
            raise NotFoundError(f"Exchange '{code}' has no cached symbols", details={"exchange_code": code})

        result.state = BackfillState.BATCHING
        work = await self._select_work(code, symbols, result)
        batches = partition(work, batch_size)
        logger.info(
            f"Found {result.symbols_without_data} symbols without fundamentals out of "
            f"{result.total_symbols} (skipped {result.skipped_no_data} marked as no-data-available); "
            f"{len(batches)} batches"
        )

        # One stop signal for the run: external cancellation or a daily-limit abort
        stop = asyncio.Event()
        if cancel_event is not None and cancel_event.is_set():
            stop.set()
        watcher = asyncio.create_task(self._forward(cancel_event, stop)) if cancel_event is not None else None
        try:
            for index, batch in enumerate(batches, start=1):
                if stop.is_set():
                    break

                result.batches_processed += 1
                result.state = BackfillState.FETCHING
                logger.info(f"Processing batch {index}/{len(batches)} with {len(batch)} symbols")

                batch_hits_before = result.rate_limit_hits
                await self._run_batch(batch, result, stop)
                batch_hits = result.rate_limit_hits - batch_hits_before

                if result.daily_limit_hit:
                    logger.error(f"Daily limit exceeded in batch {index}. Stopping bulk fetch for {code}.")
                    break
                if stop.is_set() or index == len(batches):
                    continue

                if batch_hits > 0:
                    result.state = BackfillState.COOLDOWN
                    delay = self.config.cooldown_for(batch_hits)
                    logger.warning(f"Rate limit hit {batch_hits}x in batch {index}. Pausing {delay:.0f}s")
                else:
                    result.state = BackfillState.NEXT_BATCH
                    delay = self.config.inter_batch_delay_seconds

                started = self._clock()
                await cancellable_sleep(delay, stop)
                if batch_hits > 0:
                    result.total_wait_time += self._clock() - started
        finally:
            if watcher is not None:
                watcher.cancel()
                with suppress(asyncio.CancelledError):
                    await watcher

        result.cancelled = cancel_event is not None and cancel_event.is_set() and not result.daily_limit_hit
        if result.daily_limit_hit:
            result.state = BackfillState.ABORTED_DAILY_LIMIT
        elif result.cancelled:
            result.state = BackfillState.CANCELLED
        else:
            result.state = BackfillState.COMPLETED
        result.completed_at = self._clock()

        logger.info(
            f"Bulk fetch {result.state.value} for {code}: {result.processed} processed, "
            f"{result.successful} successful, {result.failed} failed, "
            f"{result.rate_limit_hits} rate limited in {result.duration} "
            f"(waited {result.total_wait_time} for rate limits)"
        )
        return result

    async def _select_work(self, code: str, symbols: list[Symbol], result: BulkRunResult) -> list[Symbol]:
        """Exclude symbols with cached fundamentals (any age) and ledger entries."""
        have_fundamentals = await self.storage.fundamentals_tickers(code)
        marked = await self.ledger.marked_tickers(code)

        work = []
        for symbol in symbols:
            ticker = symbol.ticker.upper()
            if ticker in have_fundamentals:
                continue
            if ticker in marked:
                result.skipped_no_data += 1
                logger.debug(f"Skipping {symbol.full_symbol} - marked as no data available")
                continue
            work.append(symbol)

        result.total_symbols = len(symbols)
        result.symbols_without_data = len(work)
        return work

    @staticmethod
    async def _forward(source: asyncio.Event, target: asyncio.Event) -> None:
        await source.wait()
        target.set()

    # ==================== Batch ====================

    async def _run_batch(self, batch: list[Symbol], result: BulkRunResult, stop: asyncio.Event) -> None:
        """Run one batch through a fixed worker pool and wait until every worker settles."""
        workers = min(self.config.concurrency, len(batch))
        queue: asyncio.Queue = asyncio.Queue(maxsize=workers * 2)

        async def worker(index: int) -> None:
            if index:
                await cancellable_sleep(self.config.stagger_seconds * index, stop)
            # Workers drain until the sentinel even after a stop, so the feeder never blocks
            while True:
                symbol = await queue.get()
                try:
                    if symbol is None:
                        return
                    if stop.is_set():
                        continue
                    outcome = await self._process_symbol(symbol, stop)
                    result.record(outcome)
                    if outcome == SymbolOutcome.DAILY_LIMIT:
                        stop.set()
                finally:
                    queue.task_done()

        tasks = [asyncio.create_task(worker(i)) for i in range(workers)]
        try:
            for symbol in batch:
                if stop.is_set():
                    break
                await queue.put(symbol)
            for _ in range(workers):
                await queue.put(None)
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

    async def _process_symbol(self, symbol: Symbol, stop: asyncio.Event) -> SymbolOutcome:
        """Fetch and store fundamentals for one symbol."""
        key = SymbolKey(symbol.ticker, symbol.exchange_code)
        try:
            fetched = await self.provider.get_fundamentals(symbol.ticker, symbol.exchange_code, cancel_event=stop)
            if fetched.ok:
                await self.storage.upsert_fundamentals(
                    key.exchange_code, fetched.value, self._clock(), self.config.fundamentals_ttl
                )
                try:
                    await self.ledger.clear(key)
                except Exception as e:
                    logger.error(f"Stored fundamentals for {key} but could not clear its ledger entry: {e}")
                logger.debug(f"Fetched and cached fundamentals for {key}")
                return SymbolOutcome.SUCCESS

            error = fetched.error
            if isinstance(error, ProviderDailyLimitError):
                logger.error(f"Daily limit exceeded for {key}: {error.message} - stopping bulk fetch")
                return SymbolOutcome.DAILY_LIMIT
            if isinstance(error, ProviderRateLimitError):
                logger.warning(f"Rate limit hit for {key}: {error.message}")
                return SymbolOutcome.RATE_LIMIT

            await self._mark_failed(key, error.message)
            logger.warning(f"Failed to fetch fundamentals for {key}: {error.message} - marked as no-data-available")
            return SymbolOutcome.FAILED
        except OperationCancelledError:
            return SymbolOutcome.CANCELLED
        except Exception as e:
            await self._mark_failed(key, str(e))
            logger.error(f"Error processing {key}: {e} - marked as no-data-available")
            return SymbolOutcome.FAILED

    async def _mark_failed(self, key: SymbolKey, message: str) -> None:
        try:
            await self.ledger.mark_failed(key, message)
        except Exception as e:
            logger.error(f"Could not record {key} in the unavailability ledger: {e}")
