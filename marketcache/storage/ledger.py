"""
Unavailability Ledger

Durable skip-list of (ticker, exchange) pairs whose fetch produced no data.
Bulk backfills consult it to avoid spending quota on repeat failures; a
successful fetch clears the entry.

Records do not expire unless ``retry_after`` is set, in which case a record
whose last attempt is older than that window no longer counts as marked.
The record itself is kept so a repeat failure keeps counting up.
"""
from datetime import timedelta
from typing import Optional

from marketcache.storage.gateway import StorageGateway, SymbolKey, UnavailabilityRecord
from marketcache.utils.clock import Clock, ensure_utc, utc_now


MAX_ERROR_MESSAGE_LENGTH = 1000


class UnavailabilityLedger:
    """Facade over the gateway's ledger CRUD."""

    def __init__(
        self,
        gateway: StorageGateway,
        retry_after: Optional[timedelta] = None,
        clock: Clock = utc_now,
    ):
        self.gateway = gateway
        self.retry_after = retry_after
        self._clock = clock

    async def mark_failed(self, key: SymbolKey, message: Optional[str] = None) -> UnavailabilityRecord:
        """Insert with failure_count=1 or increment an existing record."""
        if message and len(message) > MAX_ERROR_MESSAGE_LENGTH:
            message = message[:MAX_ERROR_MESSAGE_LENGTH]
        return await self.gateway.mark_unavailable(key, message, self._clock())

    async def is_marked(self, key: SymbolKey) -> bool:
        record = await self.gateway.get_unavailable(key)
        if record is None:
            return False
        if self.retry_after is None:
            return True
        return ensure_utc(record.last_attempted_at) > self._clock() - self.retry_after

    async def clear(self, key: SymbolKey) -> bool:
        """Remove the record. Returns True if one existed."""
        return await self.gateway.clear_unavailable(key)

    async def list_for_exchange(self, exchange_code: str) -> list[UnavailabilityRecord]:
        return await self.gateway.list_unavailable(exchange_code)

    async def marked_tickers(self, exchange_code: str) -> set[str]:
        """Tickers currently marked on an exchange, in one query."""
        cutoff = self._clock() - self.retry_after if self.retry_after is not None else None
        return await self.gateway.unavailable_tickers(exchange_code, attempted_after=cutoff)
