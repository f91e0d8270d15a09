"""
MarketCache - Cached Symbol Model
"""
from sqlalchemy import Boolean, Column, Index, Integer, String, UniqueConstraint

from marketcache.db.database import Base
from marketcache.db.models.base import TimestampMixin, CacheColumnsMixin
from marketcache.data_providers.models import Symbol


class CachedSymbol(TimestampMixin, CacheColumnsMixin, Base):
    """Cached symbol row, unique per (exchange_code, ticker)."""

    __tablename__ = "symbols"

    id = Column(Integer, primary_key=True, index=True)
    ticker = Column(String(50), nullable=False)
    exchange_code = Column(String(20), nullable=False)
    parent_exchange = Column(String(50), nullable=False, default="")
    name = Column(String(500), nullable=False, default="")
    type = Column(String(50), nullable=True)
    isin = Column(String(20), nullable=True)
    currency = Column(String(10), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("exchange_code", "ticker", name="uq_symbols_exchange_ticker"),
        Index("ix_symbols_exchange_code", "exchange_code"),
    )

    def __repr__(self):
        return f"<CachedSymbol {self.ticker}.{self.exchange_code}>"

    @property
    def full_symbol(self) -> str:
        return f"{self.ticker}.{self.exchange_code}"

    def to_domain(self) -> Symbol:
        return Symbol(
            ticker=self.ticker,
            exchange_code=self.exchange_code,
            name=self.name or "",
            parent_exchange=self.parent_exchange or "",
            type=self.type,
            isin=self.isin,
            currency=self.currency,
            is_active=bool(self.is_active),
        )

    def apply(self, symbol: Symbol) -> None:
        """Copy provider fields onto the row."""
        self.parent_exchange = symbol.parent_exchange
        self.name = symbol.name
        self.type = symbol.type
        self.isin = symbol.isin
        self.currency = symbol.currency
        self.is_active = symbol.is_active
