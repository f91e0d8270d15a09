"""
MarketCache - API v1 Router
"""
from fastapi import APIRouter

from marketcache.api.v1.endpoints import exchanges, stocks, providers

api_router = APIRouter()


@api_router.get("/", tags=["API Info"])
async def api_root():
    """API v1 root - returns version info."""
    return {
        "api": "MarketCache",
        "version": "v1",
        "status": "operational"
    }


api_router.include_router(exchanges.router, prefix="/exchanges", tags=["Exchanges"])
api_router.include_router(stocks.router, prefix="/stocks", tags=["Stocks"])
api_router.include_router(providers.router, prefix="/providers", tags=["Provider Monitoring"])
