"""
Exchange Repository

Database operations for cached exchanges.
"""
from datetime import datetime
from typing import Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from loguru import logger

from marketcache.data_providers.models import Exchange
from marketcache.db.models.base import TouchAction, touch
from marketcache.db.models.exchange import CachedExchange


class ExchangeRepository:
    """
    Repository for CachedExchange database operations.

    Writes are flushed, not committed; the caller owns the transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_all(self) -> list[CachedExchange]:
        """Get all live exchanges ordered by code."""
        result = await self.db.execute(
            select(CachedExchange)
            .where(CachedExchange.deleted_at.is_(None))
            .order_by(CachedExchange.code)
        )
        return list(result.scalars().all())

    async def get_by_code(self, code: str) -> Optional[CachedExchange]:
        """Get a live exchange by code (case-insensitive)."""
        result = await self.db.execute(
            select(CachedExchange).where(
                CachedExchange.code == code.upper(),
                CachedExchange.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def replace_all(
        self,
        exchanges: Sequence[Exchange],
        fetched_at: datetime,
        ttl_seconds: int,
    ) -> int:
        """
        Make the live exchange list equal to ``exchanges``.

        Soft-deleted rows are revived as inserts; live rows missing from the
        input are soft-deleted.

        Returns:
            Number of exchanges written
        """
        result = await self.db.execute(select(CachedExchange))
        existing = {row.code: row for row in result.scalars().all()}

        written: set[str] = set()
        for exchange in exchanges:
            code = exchange.code.upper()
            row = existing.get(code)
            if row is None:
                row = CachedExchange(code=code)
                touch(row, TouchAction.INSERT)
                self.db.add(row)
                existing[code] = row
            else:
                touch(row, TouchAction.INSERT if row.is_deleted else TouchAction.UPDATE)
            row.apply(exchange)
            row.fetched_at = fetched_at
            row.ttl_seconds = ttl_seconds
            written.add(code)

        for code, row in existing.items():
            if code not in written and not row.is_deleted:
                touch(row, TouchAction.DELETE)
                logger.info(f"Exchange {code} no longer listed by provider")

        await self.db.flush()
        logger.debug(f"Stored {len(written)} exchanges")
        return len(written)
