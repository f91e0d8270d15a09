"""
MarketCache

Rate-governed market data cache: provider refresh, read-through caching
and bulk fundamentals backfill.
"""
__version__ = "0.1.0"
