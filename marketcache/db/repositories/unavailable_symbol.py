"""
Unavailable Symbol Repository

Database operations for the unavailability ledger.
"""
from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from loguru import logger

from marketcache.db.models.base import TouchAction, touch
from marketcache.db.models.unavailable_symbol import UnavailableSymbol


class UnavailableSymbolRepository:
    """Repository for UnavailableSymbol database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _find(self, ticker: str, exchange_code: str) -> Optional[UnavailableSymbol]:
        result = await self.db.execute(
            select(UnavailableSymbol).where(
                UnavailableSymbol.ticker == ticker.upper(),
                UnavailableSymbol.exchange_code == exchange_code.upper(),
            )
        )
        return result.scalar_one_or_none()

    async def get(self, ticker: str, exchange_code: str) -> Optional[UnavailableSymbol]:
        """Get the live record for a symbol."""
        row = await self._find(ticker, exchange_code)
        if row is None or row.is_deleted:
            return None
        return row

    async def mark_failed(
        self,
        ticker: str,
        exchange_code: str,
        message: Optional[str],
        now: datetime,
    ) -> UnavailableSymbol:
        """
        Record a failed fetch.

        Creates the record with failure_count=1, or increments the count and
        overwrites last_attempted_at / last_error_message. A cleared (soft
        deleted) record starts over from 1.
        """
        row = await self._find(ticker, exchange_code)
        if row is None or row.is_deleted:
            if row is None:
                row = UnavailableSymbol(ticker=ticker.upper(), exchange_code=exchange_code.upper())
                self.db.add(row)
            touch(row, TouchAction.INSERT, now)
            row.failure_count = 1
            row.first_failed_at = now
        else:
            touch(row, TouchAction.UPDATE, now)
            row.failure_count = (row.failure_count or 0) + 1
        row.last_attempted_at = now
        row.last_error_message = message

        await self.db.flush()
        logger.debug(f"Marked {row.ticker}.{row.exchange_code} unavailable (x{row.failure_count})")
        return row

    async def clear(self, ticker: str, exchange_code: str) -> bool:
        """Soft-delete the record. Returns True if a live record existed."""
        row = await self.get(ticker, exchange_code)
        if row is None:
            return False
        touch(row, TouchAction.DELETE)
        await self.db.flush()
        return True

    async def list_for_exchange(self, exchange_code: str) -> list[UnavailableSymbol]:
        result = await self.db.execute(
            select(UnavailableSymbol)
            .where(
                UnavailableSymbol.exchange_code == exchange_code.upper(),
                UnavailableSymbol.deleted_at.is_(None),
            )
            .order_by(UnavailableSymbol.ticker)
        )
        return list(result.scalars().all())

    async def tickers_for_exchange(
        self,
        exchange_code: str,
        attempted_after: Optional[datetime] = None,
    ) -> set[str]:
        """Tickers with a live record, optionally only those attempted after a cutoff."""
        conditions = [
            UnavailableSymbol.exchange_code == exchange_code.upper(),
            UnavailableSymbol.deleted_at.is_(None),
        ]
        if attempted_after is not None:
            conditions.append(UnavailableSymbol.last_attempted_at > attempted_after)
        result = await self.db.execute(select(UnavailableSymbol.ticker).where(*conditions))
        return set(result.scalars().all())
