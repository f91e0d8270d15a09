"""
MarketCache - Cached Quote and Fundamentals Models

Payloads are stored as JSON documents keyed by full symbol (TICKER.EXCHANGE).
"""
from datetime import datetime
from sqlalchemy import Column, Index, Integer, JSON, String

from marketcache.db.database import Base
from marketcache.db.models.base import TimestampMixin, CacheColumnsMixin
from marketcache.data_providers.models import StockQuote, StockFundamentals
from marketcache.utils.clock import ensure_utc


class _StockDocumentMixin:
    ticker = Column(String(50), nullable=False)
    exchange_code = Column(String(20), nullable=False)
    full_symbol = Column(String(80), nullable=False, unique=True)
    data = Column(JSON, nullable=False, default=dict)


class CachedQuote(_StockDocumentMixin, TimestampMixin, CacheColumnsMixin, Base):
    """Cached latest quote."""

    __tablename__ = "stock_quotes"

    id = Column(Integer, primary_key=True, index=True)

    def __repr__(self):
        return f"<CachedQuote {self.full_symbol}>"

    def to_domain(self) -> StockQuote:
        payload = dict(self.data or {})
        last_updated = payload.pop("last_updated", None)
        quote = StockQuote(**payload)
        if last_updated:
            quote.last_updated = ensure_utc(datetime.fromisoformat(last_updated))
        return quote


class CachedFundamentals(_StockDocumentMixin, TimestampMixin, CacheColumnsMixin, Base):
    """Cached fundamentals document."""

    __tablename__ = "stock_fundamentals"
    __table_args__ = (
        Index("ix_stock_fundamentals_exchange_code", "exchange_code"),
    )

    id = Column(Integer, primary_key=True, index=True)

    def __repr__(self):
        return f"<CachedFundamentals {self.full_symbol}>"

    def to_domain(self) -> StockFundamentals:
        payload = dict(self.data or {})
        last_updated = payload.pop("last_updated", None)
        fundamentals = StockFundamentals(**payload)
        if last_updated:
            fundamentals.last_updated = ensure_utc(datetime.fromisoformat(last_updated))
        return fundamentals
