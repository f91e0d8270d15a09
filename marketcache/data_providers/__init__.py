"""
Data Providers Package

Rate governor, circuit breaker and the EODHD client.
"""
from marketcache.data_providers.rate_limiter import RateGovernor, RateGovernorConfig
from marketcache.data_providers.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from marketcache.data_providers.eodhd import EODHDClient, EODHDConfig, ProviderResult

__all__ = [
    "RateGovernor",
    "RateGovernorConfig",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "EODHDClient",
    "EODHDConfig",
    "ProviderResult",
]
