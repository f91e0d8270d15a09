"""
Database models for the market data cache.
"""
from marketcache.db.models.base import TimestampMixin, TouchAction, touch
from marketcache.db.models.exchange import CachedExchange
from marketcache.db.models.symbol import CachedSymbol
from marketcache.db.models.stock_data import CachedQuote, CachedFundamentals
from marketcache.db.models.unavailable_symbol import UnavailableSymbol

__all__ = [
    "TimestampMixin",
    "TouchAction",
    "touch",
    "CachedExchange",
    "CachedSymbol",
    "CachedQuote",
    "CachedFundamentals",
    "UnavailableSymbol",
]
