"""
MarketCache - Exchange Endpoints
Exchanges, symbol listings, refreshes and bulk fundamentals backfill
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from loguru import logger

from marketcache.api.dependencies import get_backfill, get_container, get_market_data
from marketcache.container import ServiceContainer
from marketcache.schemas.market_data import (
    BulkFetchResponse,
    CacheMetadata,
    ExchangeResponse,
    ExchangesResponse,
    PaginationInfo,
    RefreshExchangesResponse,
    RefreshSymbolsResponse,
    SymbolResponse,
    SymbolsResponse,
    UnavailableSymbolResponse,
)
from marketcache.services.bulk_backfill import BulkBackfillOrchestrator
from marketcache.services.market_data import MarketDataService
from marketcache.storage.gateway import MAX_PAGE_SIZE, SortDirection, SortField, SymbolQuery
from marketcache.utils.clock import utc_now

router = APIRouter()


@router.get(
    "",
    response_model=ExchangesResponse,
    summary="List exchanges",
    description="All exchanges known to the provider, served from cache while fresh."
)
async def list_exchanges(
    force_refresh: bool = Query(False, description="Bypass the cache"),
    service: MarketDataService = Depends(get_market_data),
):
    result = await service.get_exchanges(force_refresh=force_refresh)
    return ExchangesResponse(
        count=len(result.items),
        items=[ExchangeResponse.model_validate(e) for e in result.items],
        fetched_at=result.fetched_at,
        cache=CacheMetadata(source=result.source.value, ttl_seconds=result.ttl_remaining_seconds),
    )


@router.post(
    "/refresh",
    response_model=RefreshExchangesResponse,
    summary="Refresh exchanges",
    description="Replace the cached exchange list with a fresh copy from the provider."
)
async def refresh_exchanges(
    service: MarketDataService = Depends(get_market_data),
):
    count = await service.refresh_exchanges()
    return RefreshExchangesResponse(count=count, refreshed_at=utc_now())


@router.get(
    "/{exchange_code}/symbols",
    response_model=SymbolsResponse,
    summary="List symbols of an exchange",
    description="Paginated, searchable and sortable symbol list, served from cache while fresh."
)
async def list_symbols(
    exchange_code: str,
    page: int = Query(1, description="Page number, starting at 1"),
    page_size: int = Query(50, description=f"Items per page (max {MAX_PAGE_SIZE})"),
    q: Optional[str] = Query(None, description="Case-insensitive substring of ticker or name"),
    type: Optional[str] = Query(None, description="Security type, e.g. 'Common Stock'"),
    sort_by: SortField = Query(SortField.TICKER),
    sort_dir: SortDirection = Query(SortDirection.ASC),
    force_refresh: bool = Query(False, description="Bypass the cache"),
    service: MarketDataService = Depends(get_market_data),
):
    query = SymbolQuery(
        exchange_code=exchange_code,
        page=page,
        page_size=page_size,
        search=q,
        type_filter=type,
        sort_by=sort_by,
        sort_direction=sort_dir,
    )
    result = await service.get_symbols(query, force_refresh=force_refresh)
    total_pages = result.total_pages or 0

    return SymbolsResponse(
        exchange_code=query.exchange_code,
        pagination=PaginationInfo(
            page=query.page,
            page_size=query.page_size,
            total_items=result.total_count or 0,
            total_pages=total_pages,
            has_next=query.page < total_pages,
            has_previous=query.page > 1,
        ),
        items=[SymbolResponse.model_validate(s) for s in result.items],
        fetched_at=result.fetched_at,
        cache=CacheMetadata(source=result.source.value, ttl_seconds=result.ttl_remaining_seconds),
    )


@router.post(
    "/{exchange_code}/symbols/refresh",
    response_model=RefreshSymbolsResponse,
    summary="Refresh symbols of an exchange",
    description="Replace the cached symbol list with a fresh copy from the provider."
)
async def refresh_symbols(
    exchange_code: str,
    service: MarketDataService = Depends(get_market_data),
):
    result = await service.refresh_symbols(exchange_code)
    return RefreshSymbolsResponse(
        exchange_code=result.exchange_code,
        count=result.count,
        fetched_at=result.fetched_at,
        cached=result.cached,
    )


@router.post(
    "/{exchange_code}/fundamentals/bulk-fetch",
    response_model=BulkFetchResponse,
    summary="Backfill fundamentals",
    description=(
        "Fetch fundamentals for every cached symbol of the exchange that has none, "
        "skipping symbols known to have no data. Runs until done, cancelled or the daily limit is hit."
    )
)
async def bulk_fetch_fundamentals(
    exchange_code: str,
    batch_size: Optional[int] = Query(None, description="Symbols per batch"),
    orchestrator: BulkBackfillOrchestrator = Depends(get_backfill),
):
    logger.info(f"Bulk fundamentals fetch requested for {exchange_code}")
    result = await orchestrator.backfill(exchange_code, batch_size=batch_size)
    return BulkFetchResponse(**result.to_dict())


@router.get(
    "/{exchange_code}/unavailable",
    response_model=list[UnavailableSymbolResponse],
    summary="List unavailable symbols",
    description="Symbols recorded as having no fundamentals data at the provider."
)
async def list_unavailable_symbols(
    exchange_code: str,
    container: ServiceContainer = Depends(get_container),
):
    records = await container.ledger.list_for_exchange(exchange_code.strip().upper())
    return [UnavailableSymbolResponse.model_validate(r) for r in records]
