"""
MarketCache - Cached Exchange Model

One row per exchange from the provider's exchange list. All rows of a
refresh share the same fetched_at, so the oldest fetched_at is the
freshness of the whole list.
"""
from sqlalchemy import Column, Integer, String

from marketcache.db.database import Base
from marketcache.db.models.base import TimestampMixin, CacheColumnsMixin
from marketcache.data_providers.models import Exchange


class CachedExchange(TimestampMixin, CacheColumnsMixin, Base):
    """Cached exchange row."""

    __tablename__ = "exchanges"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(20), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    country = Column(String(100), nullable=False, default="")
    currency = Column(String(10), nullable=False, default="")
    operating_mic = Column(String(100), nullable=True)

    def __repr__(self):
        return f"<CachedExchange {self.code}>"

    def to_domain(self) -> Exchange:
        return Exchange(
            code=self.code,
            name=self.name,
            country=self.country or "",
            currency=self.currency or "",
            operating_mic=self.operating_mic,
        )

    def apply(self, exchange: Exchange) -> None:
        """Copy provider fields onto the row."""
        self.name = exchange.name
        self.country = exchange.country
        self.currency = exchange.currency
        self.operating_mic = exchange.operating_mic
