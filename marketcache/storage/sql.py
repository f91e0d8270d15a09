"""
SQL Storage Gateway

The production StorageGateway, backed by SQLAlchemy async sessions.
Every call opens its own session and commits or rolls back on exit, so
concurrent callers never share a transaction.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketcache.data_providers.models import Exchange, Symbol, StockQuote, StockFundamentals
from marketcache.db.models.unavailable_symbol import UnavailableSymbol
from marketcache.db.repositories import (
    ExchangeRepository,
    SymbolRepository,
    QuoteRepository,
    FundamentalsRepository,
    UnavailableSymbolRepository,
)
from marketcache.storage.gateway import (
    CachedEntity,
    StorageGateway,
    SymbolKey,
    SymbolPage,
    SymbolQuery,
    UnavailabilityRecord,
)
from marketcache.utils.clock import ensure_utc


def _ttl_seconds(ttl: timedelta) -> int:
    return int(ttl.total_seconds())


def _to_record(row: UnavailableSymbol) -> UnavailabilityRecord:
    return UnavailabilityRecord(
        ticker=row.ticker,
        exchange_code=row.exchange_code,
        failure_count=row.failure_count,
        first_failed_at=ensure_utc(row.first_failed_at),
        last_attempted_at=ensure_utc(row.last_attempted_at),
        last_error_message=row.last_error_message,
    )


class SqlStorageGateway(StorageGateway):
    """StorageGateway over a relational database."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    # ==================== Exchanges ====================

    async def get_exchanges(self) -> Optional[CachedEntity[list[Exchange]]]:
        async with self._session() as db:
            rows = await ExchangeRepository(db).get_all()
        if not rows:
            return None
        return CachedEntity(
            payload=[row.to_domain() for row in rows],
            fetched_at=min(ensure_utc(row.fetched_at) for row in rows),
            ttl=min(row.ttl for row in rows),
        )

    async def get_exchange(self, code: str) -> Optional[Exchange]:
        async with self._session() as db:
            row = await ExchangeRepository(db).get_by_code(code)
        return row.to_domain() if row else None

    async def replace_exchanges(self, exchanges: Sequence[Exchange], fetched_at: datetime, ttl: timedelta) -> int:
        async with self._session() as db:
            return await ExchangeRepository(db).replace_all(exchanges, fetched_at, _ttl_seconds(ttl))

    # ==================== Symbols ====================

    async def get_symbols(self, query: SymbolQuery) -> Optional[SymbolPage]:
        async with self._session() as db:
            repo = SymbolRepository(db)
            count, fetched_at, ttl_seconds = await repo.get_cache_info(query.exchange_code)
            if count == 0 or fetched_at is None:
                return None
            rows, total = await repo.get_page(query)
        return SymbolPage(
            items=[row.to_domain() for row in rows],
            total_count=total,
            page=query.page,
            page_size=query.page_size,
            fetched_at=ensure_utc(fetched_at),
            ttl=timedelta(seconds=ttl_seconds),
        )

    async def get_all_symbols(self, exchange_code: str) -> list[Symbol]:
        async with self._session() as db:
            rows = await SymbolRepository(db).get_all(exchange_code)
        return [row.to_domain() for row in rows]

    async def get_symbol(self, ticker: str, exchange_code: str) -> Optional[Symbol]:
        async with self._session() as db:
            row = await SymbolRepository(db).get(ticker, exchange_code)
        return row.to_domain() if row else None

    async def replace_symbols(
        self, exchange_code: str, symbols: Sequence[Symbol], fetched_at: datetime, ttl: timedelta
    ) -> int:
        async with self._session() as db:
            return await SymbolRepository(db).replace_all(exchange_code, symbols, fetched_at, _ttl_seconds(ttl))

    # ==================== Quotes / Fundamentals ====================

    async def get_quote(self, ticker: str, exchange_code: str) -> Optional[CachedEntity[StockQuote]]:
        async with self._session() as db:
            row = await QuoteRepository(db).get(f"{ticker}.{exchange_code}")
        if row is None:
            return None
        return CachedEntity(payload=row.to_domain(), fetched_at=ensure_utc(row.fetched_at), ttl=row.ttl)

    async def upsert_quote(self, exchange_code: str, quote: StockQuote, fetched_at: datetime, ttl: timedelta) -> None:
        async with self._session() as db:
            await QuoteRepository(db).upsert(
                quote.ticker, exchange_code, quote.to_dict(), fetched_at, _ttl_seconds(ttl)
            )

    async def get_fundamentals(self, ticker: str, exchange_code: str) -> Optional[CachedEntity[StockFundamentals]]:
        async with self._session() as db:
            row = await FundamentalsRepository(db).get(f"{ticker}.{exchange_code}")
        if row is None:
            return None
        return CachedEntity(payload=row.to_domain(), fetched_at=ensure_utc(row.fetched_at), ttl=row.ttl)

    async def upsert_fundamentals(
        self, exchange_code: str, fundamentals: StockFundamentals, fetched_at: datetime, ttl: timedelta
    ) -> None:
        async with self._session() as db:
            await FundamentalsRepository(db).upsert(
                fundamentals.ticker, exchange_code, fundamentals.to_dict(), fetched_at, _ttl_seconds(ttl)
            )

    async def fundamentals_tickers(self, exchange_code: str) -> set[str]:
        async with self._session() as db:
            return await FundamentalsRepository(db).tickers_for_exchange(exchange_code)

    # ==================== Unavailability Ledger ====================

    async def get_unavailable(self, key: SymbolKey) -> Optional[UnavailabilityRecord]:
        async with self._session() as db:
            row = await UnavailableSymbolRepository(db).get(key.ticker, key.exchange_code)
        return _to_record(row) if row else None

    async def mark_unavailable(self, key: SymbolKey, message: Optional[str], now: datetime) -> UnavailabilityRecord:
        async with self._session() as db:
            row = await UnavailableSymbolRepository(db).mark_failed(key.ticker, key.exchange_code, message, now)
            return _to_record(row)

    async def clear_unavailable(self, key: SymbolKey) -> bool:
        async with self._session() as db:
            return await UnavailableSymbolRepository(db).clear(key.ticker, key.exchange_code)

    async def list_unavailable(self, exchange_code: str) -> list[UnavailabilityRecord]:
        async with self._session() as db:
            rows = await UnavailableSymbolRepository(db).list_for_exchange(exchange_code)
        return [_to_record(row) for row in rows]

    async def unavailable_tickers(self, exchange_code: str, attempted_after: Optional[datetime] = None) -> set[str]:
        async with self._session() as db:
            return await UnavailableSymbolRepository(db).tickers_for_exchange(exchange_code, attempted_after)
