"""
MarketCache - Provider Status Endpoints
Rate governor, circuit breaker and scheduled backfill status
"""
from fastapi import APIRouter, Depends

from marketcache.api.dependencies import get_container
from marketcache.container import ServiceContainer
from marketcache.utils.clock import utc_now

router = APIRouter()


@router.get(
    "/status",
    summary="Get provider status",
    description="Permit usage of the shared rate governor, client counters and circuit state."
)
async def get_provider_status(container: ServiceContainer = Depends(get_container)):
    return {
        "rate_limit": container.governor.get_stats(),
        "client": container.provider.get_stats(),
        "scheduler": container.scheduler.get_jobs_status(),
        "timestamp": utc_now().isoformat(),
    }


@router.get(
    "/health",
    summary="Check provider connectivity",
    description="Performs one authenticated call against the provider. Consumes one permit."
)
async def check_provider_health(container: ServiceContainer = Depends(get_container)):
    healthy = await container.provider.health_check()
    return {
        "provider": container.provider.get_stats()["provider"],
        "healthy": healthy,
        "timestamp": utc_now().isoformat(),
    }
