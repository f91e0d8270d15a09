"""
MarketCache - Unavailable Symbol Model

Durable record of (ticker, exchange) pairs whose fundamentals fetch failed,
so bulk backfills stop spending quota on them.
"""
from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint, Index

from marketcache.db.database import Base
from marketcache.db.models.base import TimestampMixin
from marketcache.utils.clock import utc_now


class UnavailableSymbol(TimestampMixin, Base):
    """Unavailability ledger record.

    Attributes:
        failure_count: Incremented on every failed fetch
        first_failed_at: First failure since the record was (re)created
        last_attempted_at: Most recent failed attempt
        last_error_message: Error text of the most recent failure
    """

    __tablename__ = "unavailable_symbols"

    id = Column(Integer, primary_key=True, index=True)
    ticker = Column(String(50), nullable=False)
    exchange_code = Column(String(20), nullable=False)
    failure_count = Column(Integer, nullable=False, default=1)
    first_failed_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    last_attempted_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    last_error_message = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("exchange_code", "ticker", name="uq_unavailable_symbols_key"),
        Index("ix_unavailable_symbols_exchange_code", "exchange_code"),
    )

    def __repr__(self):
        return f"<UnavailableSymbol {self.ticker}.{self.exchange_code} x{self.failure_count}>"
