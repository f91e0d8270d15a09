"""
Market Data Service

Read-through cache over the provider client. Each read serves the cached
entry while it is fresh, otherwise fetches from the provider, upserts the
result with fetched_at=now and re-runs the caller's query against the cache
so both paths answer with the same filter, sort and paging semantics.

Provider errors propagate unchanged and leave the cache untouched. A failed
cache write after a successful fetch is logged and the fetched data is
returned anyway.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Awaitable, Generic, Optional, Sequence, TypeVar
from loguru import logger

from marketcache.config import Settings
from marketcache.data_providers.eodhd import EODHDClient
from marketcache.data_providers.models import (
    Exchange,
    Symbol,
    StockQuote,
    StockFundamentals,
    HistoricalPrice,
    parse_full_symbol,
)
from marketcache.services.single_flight import SingleFlight
from marketcache.storage.gateway import (
    CachedEntity,
    MAX_PAGE_SIZE,
    MAX_SEARCH_LENGTH,
    StorageGateway,
    SymbolPage,
    SymbolQuery,
)
from marketcache.utils.clock import Clock, utc_now
from marketcache.utils.exceptions import NotFoundError, ProviderError, ValidationError


T = TypeVar("T")

MAX_EXCHANGE_CODE_LENGTH = 10
MAX_HISTORY_DAYS = 365


class CacheSource(str, Enum):
    """Where a response was served from."""
    CACHE = "cache"
    PROVIDER = "provider"


@dataclass
class CacheTtlConfig:
    """Per-entity cache TTLs."""
    exchanges: timedelta = timedelta(hours=24)
    symbols: timedelta = timedelta(hours=24)
    quotes: timedelta = timedelta(minutes=15)
    fundamentals: timedelta = timedelta(days=7)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheTtlConfig":
        return cls(
            exchanges=timedelta(hours=settings.CACHE_TTL_EXCHANGES_HOURS),
            symbols=timedelta(hours=settings.CACHE_TTL_SYMBOLS_HOURS),
            quotes=timedelta(hours=settings.CACHE_TTL_QUOTES_HOURS),
            fundamentals=timedelta(hours=settings.CACHE_TTL_FUNDAMENTALS_HOURS),
        )


@dataclass
class CacheResult(Generic[T]):
    """A read-through response with its cache metadata."""
    items: T
    source: CacheSource
    ttl_remaining_seconds: int
    fetched_at: datetime
    total_count: Optional[int] = None
    page: Optional[int] = None
    page_size: Optional[int] = None

    @property
    def total_pages(self) -> Optional[int]:
        if self.total_count is None or not self.page_size:
            return None
        return (self.total_count + self.page_size - 1) // self.page_size


@dataclass
class RefreshResult:
    """Outcome of a forced symbol list refresh."""
    exchange_code: str
    count: int
    fetched_at: datetime
    cached: bool


@dataclass
class StockDetails:
    """Symbol, quote and fundamentals of one stock; each data part may be missing."""
    symbol: Symbol
    quote: Optional[StockQuote]
    fundamentals: Optional[StockFundamentals]
    quote_fetched_at: Optional[datetime]
    fundamentals_fetched_at: Optional[datetime]
    requested_at: datetime


@dataclass
class _Fetched(Generic[T]):
    """What a single-flight refresh hands to every waiting caller."""
    payload: T
    fetched_at: datetime
    written: bool


class MarketDataService:
    """
    Cache read-through gate for exchanges, symbols, quotes and fundamentals.

    Concurrent refreshes of the same cache key share one provider call.
    Interactive reads never touch the unavailability ledger.
    """

    def __init__(
        self,
        provider: EODHDClient,
        storage: StorageGateway,
        ttl: Optional[CacheTtlConfig] = None,
        single_flight: Optional[SingleFlight] = None,
        clock: Clock = utc_now,
    ):
        self.provider = provider
        self.storage = storage
        self.ttl = ttl or CacheTtlConfig()
        self.single_flight = single_flight or SingleFlight()
        self._clock = clock

    # ==================== Helpers ====================

    def _hit(self, cached: CachedEntity, items, **extra) -> CacheResult:
        return CacheResult(
            items=items,
            source=CacheSource.CACHE,
            ttl_remaining_seconds=cached.ttl_remaining(self._clock()),
            fetched_at=cached.fetched_at,
            **extra,
        )

    def _fresh(self, cached: Optional[CachedEntity], what: str, force_refresh: bool) -> bool:
        """Log and decide whether a cached entry can be served."""
        if force_refresh:
            logger.info(f"Force refresh requested for {what}, bypassing cache")
            return False
        if cached is None:
            logger.info(f"{what} cache miss, fetching from provider")
            return False
        if cached.is_fresh(self._clock()):
            return True
        logger.info(f"{what} cache expired, fetching from provider")
        return False

    async def _write_cache(self, what: str, write: Awaitable) -> bool:
        """Run a cache write. Failures are logged, never raised."""
        try:
            await write
            return True
        except Exception as e:
            logger.error(f"Failed to cache {what}: {e}")
            return False

    @staticmethod
    def _validate_exchange_code(exchange_code: str) -> str:
        code = (exchange_code or "").strip().upper()
        if not code:
            raise ValidationError("Exchange code is required.")
        if len(code) > MAX_EXCHANGE_CODE_LENGTH:
            raise ValidationError(f"Exchange code cannot exceed {MAX_EXCHANGE_CODE_LENGTH} characters.")
        return code

    @staticmethod
    def _validate_query(query: SymbolQuery) -> None:
        MarketDataService._validate_exchange_code(query.exchange_code)
        if query.page < 1:
            raise ValidationError("Page must be greater than 0.")
        if query.page_size < 1:
            raise ValidationError("Page size must be greater than 0.")
        if query.page_size > MAX_PAGE_SIZE:
            raise ValidationError(f"Page size cannot exceed {MAX_PAGE_SIZE}.")
        if query.search and len(query.search) > MAX_SEARCH_LENGTH:
            raise ValidationError(f"Search query cannot exceed {MAX_SEARCH_LENGTH} characters.")

    @staticmethod
    def _split_symbol(full_symbol: str) -> tuple[str, str]:
        try:
            return parse_full_symbol(full_symbol)
        except ValueError as e:
            raise ValidationError(str(e), details={"ticker": full_symbol})

    # ==================== Exchanges ====================

    async def get_exchanges(self, force_refresh: bool = False) -> CacheResult[list[Exchange]]:
        """Get all exchanges, from cache while fresh."""
        cached = None if force_refresh else await self.storage.get_exchanges()
        if self._fresh(cached, "Exchanges", force_refresh):
            logger.info(f"Exchanges cache hit. TTL remaining: {cached.ttl_remaining(self._clock())}s")
            return self._hit(cached, cached.payload)

        fetched = await self.single_flight.run("exchanges", self._fetch_exchanges)

        items = fetched.payload
        if fetched.written:
            requeried = await self.storage.get_exchanges()
            if requeried is not None:
                items = requeried.payload

        return CacheResult(
            items=items,
            source=CacheSource.PROVIDER,
            ttl_remaining_seconds=int(self.ttl.exchanges.total_seconds()),
            fetched_at=fetched.fetched_at,
        )

    async def _fetch_exchanges(self) -> _Fetched[list[Exchange]]:
        exchanges = (await self.provider.get_exchanges()).unwrap()
        fetched_at = self._clock()
        written = await self._write_cache(
            "exchanges", self.storage.replace_exchanges(exchanges, fetched_at, self.ttl.exchanges)
        )
        if written:
            logger.info(f"Cached {len(exchanges)} exchanges with TTL {self.ttl.exchanges}")
        return _Fetched(sorted(exchanges, key=lambda e: e.code), fetched_at, written)

    async def refresh_exchanges(self) -> int:
        """Replace the cached exchange list with a fresh provider copy. Returns the exchange count."""
        logger.info("Force refresh requested for exchanges")
        fetched = await self.single_flight.run("exchanges", self._fetch_exchanges)
        logger.info(f"Refreshed {len(fetched.payload)} exchanges")
        return len(fetched.payload)

    async def _require_exchange(self, exchange_code: str) -> Exchange:
        """Resolve an exchange code, loading the exchange list if needed."""
        exchange = await self.storage.get_exchange(exchange_code)
        if exchange is not None:
            return exchange

        exchanges = await self.get_exchanges()
        for candidate in exchanges.items:
            if candidate.code.upper() == exchange_code:
                return candidate
        raise NotFoundError(
            f"Exchange '{exchange_code}' not found",
            details={"exchange_code": exchange_code},
        )

    # ==================== Symbols ====================

    async def get_symbols(self, query: SymbolQuery, force_refresh: bool = False) -> CacheResult[list[Symbol]]:
        """
        Get a page of symbols for an exchange.

        Raises:
            ValidationError: bad paging or filter parameters
            NotFoundError: unknown exchange code
        """
        self._validate_query(query)
        code = query.exchange_code
        await self._require_exchange(code)

        page = None if force_refresh else await self.storage.get_symbols(query)
        cached = page.as_cached() if page is not None else None
        if self._fresh(cached, f"Symbols for {code}", force_refresh):
            logger.info(f"Symbols cache hit for {code}. TTL remaining: {cached.ttl_remaining(self._clock())}s")
            return self._hit(cached, page.items, total_count=page.total_count, page=page.page, page_size=page.page_size)

        fetched = await self.single_flight.run(
            f"symbols:{code}", lambda: self._fetch_symbols(code)
        )
        return await self._provider_page(query, fetched)

    async def _provider_page(self, query: SymbolQuery, fetched: "_Fetched[list[Symbol]]") -> CacheResult[list[Symbol]]:
        """Answer a symbol query after a provider fetch, from the cache when the write succeeded."""
        page: Optional[SymbolPage] = None
        if fetched.written:
            page = await self.storage.get_symbols(query)

        if page is not None:
            items, total = page.items, page.total_count
        else:
            items, total = query.apply(self._dedupe(fetched.payload))

        return CacheResult(
            items=items,
            source=CacheSource.PROVIDER,
            ttl_remaining_seconds=int(self.ttl.symbols.total_seconds()),
            fetched_at=fetched.fetched_at,
            total_count=total,
            page=query.page,
            page_size=query.page_size,
        )

    @staticmethod
    def _dedupe(symbols: Sequence[Symbol]) -> list[Symbol]:
        seen: dict[str, Symbol] = {}
        for symbol in symbols:
            seen.setdefault(symbol.ticker.upper(), symbol)
        return list(seen.values())

    async def _fetch_symbols(self, code: str) -> _Fetched[list[Symbol]]:
        symbols = (await self.provider.get_symbols(code)).unwrap()
        fetched_at = self._clock()
        written = await self._write_cache(
            f"symbols for {code}", self.storage.replace_symbols(code, symbols, fetched_at, self.ttl.symbols)
        )
        if written:
            logger.info(f"Cached {len(symbols)} symbols for {code} with TTL {self.ttl.symbols}")
        return _Fetched(symbols, fetched_at, written)

    async def refresh_symbols(self, exchange_code: str) -> RefreshResult:
        """
        Replace the cached symbol list of an exchange with a fresh provider copy.

        Raises:
            ValidationError: bad exchange code
            NotFoundError: unknown exchange code
        """
        code = self._validate_exchange_code(exchange_code)
        await self._require_exchange(code)

        fetched = await self.single_flight.run(
            f"symbols-refresh:{code}", lambda: self._fetch_symbols(code)
        )
        count = len(self._dedupe(fetched.payload))
        logger.info(f"Refreshed {count} symbols for {code}")
        return RefreshResult(exchange_code=code, count=count, fetched_at=fetched.fetched_at, cached=fetched.written)

    # ==================== Quotes / Fundamentals ====================

    async def get_quote(self, full_symbol: str, force_refresh: bool = False) -> CacheResult[StockQuote]:
        """Get the latest quote for ``TICKER.EXCHANGE``."""
        ticker, exchange = self._split_symbol(full_symbol)
        what = f"Quote for {ticker}.{exchange}"

        cached = None if force_refresh else await self.storage.get_quote(ticker, exchange)
        if self._fresh(cached, what, force_refresh):
            return self._hit(cached, cached.payload)

        async def fetch() -> _Fetched[StockQuote]:
            quote = (await self.provider.get_quote(ticker, exchange)).unwrap()
            fetched_at = self._clock()
            written = await self._write_cache(
                what.lower(), self.storage.upsert_quote(exchange, quote, fetched_at, self.ttl.quotes)
            )
            return _Fetched(quote, fetched_at, written)

        fetched = await self.single_flight.run(f"quote:{ticker}.{exchange}", fetch)
        return CacheResult(
            items=fetched.payload,
            source=CacheSource.PROVIDER,
            ttl_remaining_seconds=int(self.ttl.quotes.total_seconds()),
            fetched_at=fetched.fetched_at,
        )

    async def get_fundamentals(self, full_symbol: str, force_refresh: bool = False) -> CacheResult[StockFundamentals]:
        """
        Get fundamentals for ``TICKER.EXCHANGE``.

        A provider failure is raised as-is; a daily-limit error in particular
        is global and is never recorded against the symbol.
        """
        ticker, exchange = self._split_symbol(full_symbol)
        what = f"Fundamentals for {ticker}.{exchange}"

        cached = None if force_refresh else await self.storage.get_fundamentals(ticker, exchange)
        if self._fresh(cached, what, force_refresh):
            return self._hit(cached, cached.payload)

        async def fetch() -> _Fetched[StockFundamentals]:
            fundamentals = (await self.provider.get_fundamentals(ticker, exchange)).unwrap()
            fetched_at = self._clock()
            written = await self._write_cache(
                what.lower(),
                self.storage.upsert_fundamentals(exchange, fundamentals, fetched_at, self.ttl.fundamentals),
            )
            return _Fetched(fundamentals, fetched_at, written)

        fetched = await self.single_flight.run(f"fundamentals:{ticker}.{exchange}", fetch)
        return CacheResult(
            items=fetched.payload,
            source=CacheSource.PROVIDER,
            ttl_remaining_seconds=int(self.ttl.fundamentals.total_seconds()),
            fetched_at=fetched.fetched_at,
        )

    async def get_stock_details(self, full_symbol: str, force_refresh: bool = False) -> StockDetails:
        """
        Get the symbol, quote and fundamentals of a stock in one call.

        Quote and fundamentals are read through independently; a provider
        failure on one leaves that part empty and is logged. A symbol missing
        from the cache is answered with a minimal placeholder.

        Raises:
            ValidationError: ticker without an exchange suffix
        """
        ticker, exchange = self._split_symbol(full_symbol)
        logger.info(f"Getting stock details for {ticker}.{exchange}, force_refresh={force_refresh}")

        symbol = await self.storage.get_symbol(ticker, exchange)
        if symbol is None:
            logger.warning(f"Symbol {ticker}.{exchange} not found in cache, using minimal symbol data")
            symbol = Symbol(ticker=ticker, exchange_code=exchange, name=ticker)

        quote = quote_fetched_at = None
        try:
            result = await self.get_quote(symbol.full_symbol, force_refresh=force_refresh)
            quote, quote_fetched_at = result.items, result.fetched_at
        except ProviderError as e:
            logger.warning(f"Failed to get quote for {symbol.full_symbol}: {e}")

        fundamentals = fundamentals_fetched_at = None
        try:
            result = await self.get_fundamentals(symbol.full_symbol, force_refresh=force_refresh)
            fundamentals, fundamentals_fetched_at = result.items, result.fetched_at
        except ProviderError as e:
            logger.warning(f"Failed to get fundamentals for {symbol.full_symbol}: {e}")

        logger.info(
            f"Stock details for {symbol.full_symbol}: "
            f"quote={quote is not None}, fundamentals={fundamentals is not None}"
        )
        return StockDetails(
            symbol=symbol,
            quote=quote,
            fundamentals=fundamentals,
            quote_fetched_at=quote_fetched_at,
            fundamentals_fetched_at=fundamentals_fetched_at,
            requested_at=self._clock(),
        )

    # ==================== Historical Prices ====================

    async def get_historical_prices(
        self,
        full_symbol: str,
        start_date: date,
        end_date: date,
    ) -> CacheResult[list[HistoricalPrice]]:
        """
        Get end-of-day bars. Not cached.

        Raises:
            ValidationError: bad ticker or date range (start must precede end,
                at most 365 days)
        """
        ticker, exchange = self._split_symbol(full_symbol)
        if start_date >= end_date:
            raise ValidationError("Start date must be before end date.")
        if (end_date - start_date).days > MAX_HISTORY_DAYS:
            raise ValidationError(f"Date range cannot exceed {MAX_HISTORY_DAYS} days.")

        prices = (await self.provider.get_historical_prices(ticker, exchange, start_date, end_date)).unwrap()
        logger.info(f"Fetched {len(prices)} historical prices for {ticker}.{exchange}")
        return CacheResult(
            items=prices,
            source=CacheSource.PROVIDER,
            ttl_remaining_seconds=0,
            fetched_at=self._clock(),
        )
