"""
Symbol Repository

Database operations for cached exchange symbol lists.
"""
from datetime import datetime
from typing import Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, or_, select
from loguru import logger

from marketcache.data_providers.models import Symbol
from marketcache.db.models.base import TouchAction, touch
from marketcache.db.models.symbol import CachedSymbol
from marketcache.storage.gateway import SymbolQuery, SortDirection


class SymbolRepository:
    """Repository for CachedSymbol database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _live(exchange_code: str):
        return (
            CachedSymbol.exchange_code == exchange_code.upper(),
            CachedSymbol.deleted_at.is_(None),
        )

    async def get_cache_info(self, exchange_code: str) -> tuple[int, Optional[datetime], int]:
        """
        Row count, fetched_at and TTL of the live symbol list of an exchange.

        Rows are only written as a whole list, so min() is the time of the
        last replacement.
        """
        result = await self.db.execute(
            select(
                func.count(CachedSymbol.id),
                func.min(CachedSymbol.fetched_at),
                func.min(CachedSymbol.ttl_seconds),
            ).where(*self._live(exchange_code))
        )
        count, fetched_at, ttl_seconds = result.one()
        return int(count or 0), fetched_at, int(ttl_seconds or 0)

    async def get_page(self, query: SymbolQuery) -> tuple[list[CachedSymbol], int]:
        """
        Get one page of symbols for an exchange.

        Search matches ticker or name (case-insensitive substring); the type
        filter is a case-insensitive exact match.

        Returns:
            (rows on the page, total matching rows)
        """
        conditions = list(self._live(query.exchange_code))
        if query.search:
            pattern = f"%{query.search.lower()}%"
            conditions.append(
                or_(
                    func.lower(CachedSymbol.ticker).like(pattern),
                    func.lower(CachedSymbol.name).like(pattern),
                )
            )
        if query.type_filter:
            conditions.append(func.lower(CachedSymbol.type) == query.type_filter.lower())

        total_result = await self.db.execute(select(func.count(CachedSymbol.id)).where(*conditions))
        total = int(total_result.scalar_one() or 0)

        sort_column = func.lower(func.coalesce(getattr(CachedSymbol, query.sort_by.value), ""))
        if query.sort_direction == SortDirection.DESC:
            order = (sort_column.desc(), CachedSymbol.ticker.desc())
        else:
            order = (sort_column.asc(), CachedSymbol.ticker.asc())

        result = await self.db.execute(
            select(CachedSymbol)
            .where(*conditions)
            .order_by(*order)
            .offset(query.offset)
            .limit(query.page_size)
        )
        return list(result.scalars().all()), total

    async def get_all(self, exchange_code: str) -> list[CachedSymbol]:
        """Get every live symbol of an exchange ordered by ticker."""
        result = await self.db.execute(
            select(CachedSymbol).where(*self._live(exchange_code)).order_by(CachedSymbol.ticker)
        )
        return list(result.scalars().all())

    async def get(self, ticker: str, exchange_code: str) -> Optional[CachedSymbol]:
        result = await self.db.execute(
            select(CachedSymbol).where(
                *self._live(exchange_code),
                CachedSymbol.ticker == ticker.upper(),
            )
        )
        return result.scalar_one_or_none()

    async def replace_all(
        self,
        exchange_code: str,
        symbols: Sequence[Symbol],
        fetched_at: datetime,
        ttl_seconds: int,
    ) -> int:
        """
        Make the live symbol list of an exchange equal to ``symbols``.

        Duplicate tickers in the input are dropped (first occurrence wins).
        Live rows missing from the input are soft-deleted, so every live row
        carries the same fetched_at afterwards.

        Returns:
            Number of unique symbols written
        """
        code = exchange_code.upper()
        unique: dict[str, Symbol] = {}
        for symbol in symbols:
            unique.setdefault(symbol.ticker.upper(), symbol)
        if len(unique) < len(symbols):
            logger.warning(f"Removed {len(symbols) - len(unique)} duplicate tickers for {code}")

        result = await self.db.execute(select(CachedSymbol).where(CachedSymbol.exchange_code == code))
        existing = {row.ticker: row for row in result.scalars().all()}

        for ticker, symbol in unique.items():
            row = existing.get(ticker)
            if row is None:
                row = CachedSymbol(ticker=ticker, exchange_code=code)
                touch(row, TouchAction.INSERT)
                self.db.add(row)
            else:
                touch(row, TouchAction.INSERT if row.is_deleted else TouchAction.UPDATE)
            row.apply(symbol)
            row.fetched_at = fetched_at
            row.ttl_seconds = ttl_seconds

        removed = 0
        for ticker, row in existing.items():
            if ticker not in unique and not row.is_deleted:
                touch(row, TouchAction.DELETE)
                removed += 1

        await self.db.flush()
        logger.debug(f"Stored {len(unique)} symbols for {code}, removed {removed}")
        return len(unique)
