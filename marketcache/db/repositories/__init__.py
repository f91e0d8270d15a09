"""
MarketCache - Data Repositories

Repository pattern implementations for database operations.
"""
from marketcache.db.repositories.exchange import ExchangeRepository
from marketcache.db.repositories.symbol import SymbolRepository
from marketcache.db.repositories.stock_data import QuoteRepository, FundamentalsRepository
from marketcache.db.repositories.unavailable_symbol import UnavailableSymbolRepository

__all__ = [
    "ExchangeRepository",
    "SymbolRepository",
    "QuoteRepository",
    "FundamentalsRepository",
    "UnavailableSymbolRepository",
]
