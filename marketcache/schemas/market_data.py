"""
MarketCache - API Schemas
"""
from datetime import date as calendar_date, datetime
from typing import Any, Optional
from pydantic import BaseModel, Field


class CacheMetadata(BaseModel):
    """Where a response came from and how long it stays valid."""
    source: str = Field(..., description="'cache' or 'provider'")
    ttl_seconds: int = Field(..., description="Seconds until the cached entry expires")


class ErrorResponse(BaseModel):
    """Error body returned for every handled failure."""
    code: str
    message: str
    trace_id: str
    details: dict[str, Any] = {}


# =========================
# Exchanges
# =========================

class ExchangeResponse(BaseModel):
    code: str
    name: str
    operating_mic: Optional[str] = None
    country: str = ""
    currency: str = ""

    model_config = {"from_attributes": True}


class ExchangesResponse(BaseModel):
    count: int
    items: list[ExchangeResponse]
    fetched_at: datetime
    cache: CacheMetadata


# =========================
# Symbols
# =========================

class SymbolResponse(BaseModel):
    ticker: str
    full_symbol: str
    exchange_code: str
    parent_exchange: str = ""
    name: str = ""
    type: Optional[str] = None
    isin: Optional[str] = None
    currency: Optional[str] = None
    is_active: bool = True

    model_config = {"from_attributes": True}


class PaginationInfo(BaseModel):
    page: int
    page_size: int
    total_items: int
    total_pages: int
    has_next: bool
    has_previous: bool


class SymbolsResponse(BaseModel):
    exchange_code: str
    pagination: PaginationInfo
    items: list[SymbolResponse]
    fetched_at: datetime
    cache: CacheMetadata


class RefreshExchangesResponse(BaseModel):
    count: int
    refreshed_at: datetime


class RefreshSymbolsResponse(BaseModel):
    exchange_code: str
    count: int
    fetched_at: datetime
    cached: bool


class UnavailableSymbolResponse(BaseModel):
    ticker: str
    exchange_code: str
    failure_count: int
    first_failed_at: datetime
    last_attempted_at: datetime
    last_error_message: Optional[str] = None

    model_config = {"from_attributes": True}


# =========================
# Stocks
# =========================

class StockQuoteResponse(BaseModel):
    quote: dict[str, Any]
    fetched_at: datetime
    cache: CacheMetadata


class StockFundamentalsResponse(BaseModel):
    fundamentals: dict[str, Any]
    fetched_at: datetime
    cache: CacheMetadata


class StockDetailsResponse(BaseModel):
    symbol: SymbolResponse
    quote: Optional[dict[str, Any]] = None
    fundamentals: Optional[dict[str, Any]] = None
    quote_fetched_at: Optional[datetime] = None
    fundamentals_fetched_at: Optional[datetime] = None
    requested_at: datetime


class HistoricalPriceResponse(BaseModel):
    date: calendar_date
    open: float
    high: float
    low: float
    close: float
    volume: int
    adjusted_close: Optional[float] = None

    model_config = {"from_attributes": True}


class HistoricalPricesResponse(BaseModel):
    ticker: str
    prices: list[HistoricalPriceResponse]
    fetched_at: datetime


# =========================
# Bulk backfill
# =========================

class BulkFetchResponse(BaseModel):
    exchange_code: str
    state: str
    total_symbols: int
    symbols_without_data: int
    skipped_no_data: int
    processed: int
    successful: int
    failed: int
    rate_limit_hits: int
    daily_limit_hit: bool
    cancelled: bool
    total_wait_time_seconds: float
    batches_processed: int
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
