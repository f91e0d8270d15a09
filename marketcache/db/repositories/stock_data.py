"""
Stock Data Repositories

Database operations for cached quote and fundamentals documents.
"""
from datetime import datetime
from typing import Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from marketcache.db.models.base import TouchAction, touch
from marketcache.db.models.stock_data import CachedQuote, CachedFundamentals


class _StockDocumentRepository:
    """Shared upsert/get logic for documents keyed by full symbol."""

    model = None

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _find(self, full_symbol: str):
        result = await self.db.execute(
            select(self.model).where(self.model.full_symbol == full_symbol.upper())
        )
        return result.scalar_one_or_none()

    async def get(self, full_symbol: str):
        """Get a live document by full symbol."""
        row = await self._find(full_symbol)
        if row is None or row.is_deleted:
            return None
        return row

    async def upsert(
        self,
        ticker: str,
        exchange_code: str,
        data: dict[str, Any],
        fetched_at: datetime,
        ttl_seconds: int,
    ):
        """Insert or replace the document for a symbol."""
        ticker = ticker.upper()
        exchange_code = exchange_code.upper()
        full_symbol = f"{ticker}.{exchange_code}"

        row = await self._find(full_symbol)
        if row is None:
            row = self.model(ticker=ticker, exchange_code=exchange_code, full_symbol=full_symbol)
            touch(row, TouchAction.INSERT)
            self.db.add(row)
        else:
            touch(row, TouchAction.INSERT if row.is_deleted else TouchAction.UPDATE)
        row.data = data
        row.fetched_at = fetched_at
        row.ttl_seconds = ttl_seconds

        await self.db.flush()
        return row


class QuoteRepository(_StockDocumentRepository):
    """Repository for CachedQuote."""

    model = CachedQuote


class FundamentalsRepository(_StockDocumentRepository):
    """Repository for CachedFundamentals."""

    model = CachedFundamentals

    async def tickers_for_exchange(self, exchange_code: str) -> set[str]:
        """Tickers with live fundamentals on an exchange, regardless of age."""
        result = await self.db.execute(
            select(CachedFundamentals.ticker).where(
                CachedFundamentals.exchange_code == exchange_code.upper(),
                CachedFundamentals.deleted_at.is_(None),
            )
        )
        return set(result.scalars().all())
