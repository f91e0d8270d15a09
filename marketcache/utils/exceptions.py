"""
MarketCache - Custom Exceptions
Error taxonomy shared by the provider client, the cache and the API layer
"""
from typing import Optional, Any, Dict


class MarketCacheException(Exception):
    """Base exception for MarketCache."""

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str = "An error occurred",
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


# =========================
# Request Exceptions
# =========================

class ValidationError(MarketCacheException):
    """Malformed caller input (bad ticker, bad page parameters)."""

    status_code = 400
    default_code = "VALIDATION_ERROR"


class NotFoundError(MarketCacheException):
    """Unknown exchange or symbol."""

    status_code = 404
    default_code = "NOT_FOUND"


# =========================
# Provider Exceptions
# =========================

class ProviderError(MarketCacheException):
    """Base class for errors reported by the market data provider."""

    status_code = 503
    default_code = "PROVIDER_ERROR"

    def __init__(self, provider: str, message: str, code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.provider = provider
        super().__init__(message=f"[{provider}] {message}", code=code, details=details)


class ProviderRateLimitError(ProviderError):
    """Transient throttling. Retry after the suggested delay."""

    status_code = 429
    default_code = "PROVIDER_RATE_LIMIT"

    def __init__(self, provider: str, retry_after: float = 60.0, message: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(
            provider,
            message or f"Rate limit exceeded, retry after {retry_after:.0f}s",
            details={"retry_after": retry_after},
        )


class ProviderDailyLimitError(ProviderError):
    """Daily request quota exhausted. Terminal until the next quota period."""

    status_code = 429
    default_code = "PROVIDER_DAILY_LIMIT"

    def __init__(self, provider: str, message: Optional[str] = None):
        super().__init__(provider, message or "Daily request quota exhausted")


class ProviderUnavailableError(ProviderError):
    """Network error, timeout, 5xx, malformed payload or open circuit."""

    status_code = 503
    default_code = "PROVIDER_UNAVAILABLE"

    def __init__(self, provider: str, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(provider, message, details={"status": status} if status else None)


# =========================
# Internal Exceptions
# =========================

class InternalError(MarketCacheException):
    """Unexpected failure."""

    status_code = 500
    default_code = "INTERNAL_ERROR"


class OperationCancelledError(MarketCacheException):
    """A cooperative cancellation signal fired while waiting."""

    status_code = 499
    default_code = "CANCELLED"

    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message=message)
