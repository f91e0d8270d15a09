"""
MarketCache - Stock Endpoints
Details, quotes, fundamentals and end-of-day history per symbol
"""
from datetime import date
from fastapi import APIRouter, Depends, Query

from marketcache.api.dependencies import get_market_data
from marketcache.schemas.market_data import (
    CacheMetadata,
    HistoricalPriceResponse,
    HistoricalPricesResponse,
    StockDetailsResponse,
    StockFundamentalsResponse,
    StockQuoteResponse,
    SymbolResponse,
)
from marketcache.services.market_data import MarketDataService

router = APIRouter()


@router.get(
    "/{full_symbol}",
    response_model=StockDetailsResponse,
    summary="Get stock details",
    description=(
        "Symbol, quote and fundamentals in one response. Quote or fundamentals "
        "are null when the provider cannot supply them."
    )
)
async def get_stock_details(
    full_symbol: str,
    force_refresh: bool = Query(False, description="Bypass the cache"),
    service: MarketDataService = Depends(get_market_data),
):
    details = await service.get_stock_details(full_symbol, force_refresh=force_refresh)
    return StockDetailsResponse(
        symbol=SymbolResponse.model_validate(details.symbol),
        quote=details.quote.to_dict() if details.quote is not None else None,
        fundamentals=details.fundamentals.to_dict() if details.fundamentals is not None else None,
        quote_fetched_at=details.quote_fetched_at,
        fundamentals_fetched_at=details.fundamentals_fetched_at,
        requested_at=details.requested_at,
    )


@router.get(
    "/{full_symbol}/quote",
    response_model=StockQuoteResponse,
    summary="Get quote",
    description="Latest quote for a symbol in TICKER.EXCHANGE form."
)
async def get_quote(
    full_symbol: str,
    force_refresh: bool = Query(False, description="Bypass the cache"),
    service: MarketDataService = Depends(get_market_data),
):
    result = await service.get_quote(full_symbol, force_refresh=force_refresh)
    return StockQuoteResponse(
        quote=result.items.to_dict(),
        fetched_at=result.fetched_at,
        cache=CacheMetadata(source=result.source.value, ttl_seconds=result.ttl_remaining_seconds),
    )


@router.get(
    "/{full_symbol}/fundamentals",
    response_model=StockFundamentalsResponse,
    summary="Get fundamentals",
    description="Company fundamentals for a symbol in TICKER.EXCHANGE form."
)
async def get_fundamentals(
    full_symbol: str,
    force_refresh: bool = Query(False, description="Bypass the cache"),
    service: MarketDataService = Depends(get_market_data),
):
    result = await service.get_fundamentals(full_symbol, force_refresh=force_refresh)
    return StockFundamentalsResponse(
        fundamentals=result.items.to_dict(),
        fetched_at=result.fetched_at,
        cache=CacheMetadata(source=result.source.value, ttl_seconds=result.ttl_remaining_seconds),
    )


@router.get(
    "/{full_symbol}/history",
    response_model=HistoricalPricesResponse,
    summary="Get historical prices",
    description="End-of-day bars between two dates (at most 365 days). Not cached."
)
async def get_history(
    full_symbol: str,
    start_date: date = Query(..., description="First day (YYYY-MM-DD)"),
    end_date: date = Query(..., description="Last day (YYYY-MM-DD)"),
    service: MarketDataService = Depends(get_market_data),
):
    result = await service.get_historical_prices(full_symbol, start_date, end_date)
    return HistoricalPricesResponse(
        ticker=full_symbol.strip().upper(),
        prices=[HistoricalPriceResponse.model_validate(p) for p in result.items],
        fetched_at=result.fetched_at,
    )
