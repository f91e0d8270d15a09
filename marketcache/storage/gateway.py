"""
Storage Gateway

Contract between the cache services and persistence. The services only see
this interface; SqlStorageGateway is the single production implementation.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Generic, Optional, Sequence, TypeVar

from marketcache.data_providers.models import (
    Exchange,
    Symbol,
    StockQuote,
    StockFundamentals,
)
from marketcache.utils.clock import utc_now


T = TypeVar("T")

MAX_PAGE_SIZE = 500
MAX_SEARCH_LENGTH = 100


# ==================== Value Types ====================

@dataclass
class CachedEntity(Generic[T]):
    """A cached payload with the instant it was fetched and its TTL."""
    payload: T
    fetched_at: datetime
    ttl: timedelta

    @property
    def expires_at(self) -> datetime:
        return self.fetched_at + self.ttl

    def is_fresh(self, now: Optional[datetime] = None) -> bool:
        """Valid iff now < fetched_at + ttl."""
        return (now or utc_now()) < self.expires_at

    def ttl_remaining(self, now: Optional[datetime] = None) -> int:
        """Whole seconds until expiry, never negative."""
        remaining = (self.expires_at - (now or utc_now())).total_seconds()
        return max(0, int(remaining))


class SortField(str, Enum):
    TICKER = "ticker"
    NAME = "name"
    TYPE = "type"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass
class SymbolQuery:
    """Pagination, filter and sort parameters for a symbol listing."""
    exchange_code: str
    page: int = 1
    page_size: int = 50
    search: Optional[str] = None
    type_filter: Optional[str] = None
    sort_by: SortField = SortField.TICKER
    sort_direction: SortDirection = SortDirection.ASC

    def __post_init__(self):
        self.exchange_code = (self.exchange_code or "").strip().upper()
        self.search = (self.search or "").strip() or None
        self.type_filter = (self.type_filter or "").strip() or None
        self.sort_by = SortField(self.sort_by)
        self.sort_direction = SortDirection(self.sort_direction)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def matches(self, symbol: Symbol) -> bool:
        """Filter semantics shared with the SQL adapter."""
        if self.search:
            needle = self.search.lower()
            if needle not in symbol.ticker.lower() and needle not in (symbol.name or "").lower():
                return False
        if self.type_filter and (symbol.type or "").lower() != self.type_filter.lower():
            return False
        return True

    def sort_key(self, symbol: Symbol):
        value = getattr(symbol, self.sort_by.value) or ""
        return (value.lower(), symbol.ticker)

    def apply(self, symbols: Sequence[Symbol]) -> tuple[list[Symbol], int]:
        """Filter, sort and page an in-memory list. Returns (page items, total matches)."""
        matched = [s for s in symbols if self.matches(s)]
        matched.sort(key=self.sort_key, reverse=self.sort_direction == SortDirection.DESC)
        return matched[self.offset:self.offset + self.page_size], len(matched)


@dataclass
class SymbolPage:
    """One page of cached symbols plus the cache metadata of the exchange."""
    items: list[Symbol]
    total_count: int
    page: int
    page_size: int
    fetched_at: datetime
    ttl: timedelta

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total_count + self.page_size - 1) // self.page_size

    def as_cached(self) -> CachedEntity["SymbolPage"]:
        return CachedEntity(payload=self, fetched_at=self.fetched_at, ttl=self.ttl)


@dataclass(frozen=True)
class SymbolKey:
    """Ledger key, normalised to upper case."""
    ticker: str
    exchange_code: str

    def __post_init__(self):
        object.__setattr__(self, "ticker", self.ticker.strip().upper())
        object.__setattr__(self, "exchange_code", self.exchange_code.strip().upper())

    @property
    def full_symbol(self) -> str:
        return f"{self.ticker}.{self.exchange_code}"

    def __str__(self) -> str:
        return self.full_symbol


@dataclass
class UnavailabilityRecord:
    """A symbol known to yield no data."""
    ticker: str
    exchange_code: str
    failure_count: int
    first_failed_at: datetime
    last_attempted_at: datetime
    last_error_message: Optional[str] = None

    @property
    def key(self) -> SymbolKey:
        return SymbolKey(self.ticker, self.exchange_code)

    def to_dict(self) -> dict:
        return {
            "ticker": self.ticker,
            "exchange_code": self.exchange_code,
            "failure_count": self.failure_count,
            "first_failed_at": self.first_failed_at.isoformat(),
            "last_attempted_at": self.last_attempted_at.isoformat(),
            "last_error_message": self.last_error_message,
        }


# ==================== Contract ====================

class StorageGateway(ABC):
    """
    Read/upsert access to cached entities and the unavailability ledger.

    Implementations must isolate calls from each other: a failed write in
    one call never rolls back or blocks another concurrent call.
    """

    # Exchanges

    @abstractmethod
    async def get_exchanges(self) -> Optional[CachedEntity[list[Exchange]]]:
        """All cached exchanges, or None when nothing is cached."""

    @abstractmethod
    async def get_exchange(self, code: str) -> Optional[Exchange]:
        ...

    @abstractmethod
    async def replace_exchanges(self, exchanges: Sequence[Exchange], fetched_at: datetime, ttl: timedelta) -> int:
        """Store the provider's full exchange list; cached exchanges missing from it are removed."""

    # Symbols

    @abstractmethod
    async def get_symbols(self, query: SymbolQuery) -> Optional[SymbolPage]:
        """A page of symbols, or None when the exchange has no cached symbols."""

    @abstractmethod
    async def get_all_symbols(self, exchange_code: str) -> list[Symbol]:
        ...

    @abstractmethod
    async def get_symbol(self, ticker: str, exchange_code: str) -> Optional[Symbol]:
        ...

    @abstractmethod
    async def replace_symbols(
        self, exchange_code: str, symbols: Sequence[Symbol], fetched_at: datetime, ttl: timedelta
    ) -> int:
        """
        Store the provider's full symbol list of an exchange in one transaction.

        De-duplicated by ticker (first occurrence wins). Cached symbols missing
        from the list are removed, so the list has a single fetched_at.
        """

    # Quotes and fundamentals

    @abstractmethod
    async def get_quote(self, ticker: str, exchange_code: str) -> Optional[CachedEntity[StockQuote]]:
        ...

    @abstractmethod
    async def upsert_quote(self, exchange_code: str, quote: StockQuote, fetched_at: datetime, ttl: timedelta) -> None:
        ...

    @abstractmethod
    async def get_fundamentals(self, ticker: str, exchange_code: str) -> Optional[CachedEntity[StockFundamentals]]:
        ...

    @abstractmethod
    async def upsert_fundamentals(
        self, exchange_code: str, fundamentals: StockFundamentals, fetched_at: datetime, ttl: timedelta
    ) -> None:
        ...

    @abstractmethod
    async def fundamentals_tickers(self, exchange_code: str) -> set[str]:
        """Tickers of the exchange that have cached fundamentals, regardless of age."""

    # Unavailability ledger

    @abstractmethod
    async def get_unavailable(self, key: SymbolKey) -> Optional[UnavailabilityRecord]:
        ...

    @abstractmethod
    async def mark_unavailable(self, key: SymbolKey, message: Optional[str], now: datetime) -> UnavailabilityRecord:
        ...

    @abstractmethod
    async def clear_unavailable(self, key: SymbolKey) -> bool:
        ...

    @abstractmethod
    async def list_unavailable(self, exchange_code: str) -> list[UnavailabilityRecord]:
        ...

    @abstractmethod
    async def unavailable_tickers(self, exchange_code: str, attempted_after: Optional[datetime] = None) -> set[str]:
        """Tickers with a ledger record, optionally only those attempted after a cutoff."""
