"""
MarketCache - FastAPI Dependencies
"""
from fastapi import Depends, Request

from marketcache.container import ServiceContainer
from marketcache.services.bulk_backfill import BulkBackfillOrchestrator
from marketcache.services.market_data import MarketDataService


def get_container(request: Request) -> ServiceContainer:
    """Service container stored on the application at startup."""
    return request.app.state.container


def get_market_data(container: ServiceContainer = Depends(get_container)) -> MarketDataService:
    return container.market_data


def get_backfill(container: ServiceContainer = Depends(get_container)) -> BulkBackfillOrchestrator:
    return container.backfill
