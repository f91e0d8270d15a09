"""
EODHD (End of Day Historical Data) Client

Provides access to the EODHD API for exchanges, symbol lists, quotes,
end-of-day prices and fundamentals.

Every call goes through the shared rate governor and the circuit breaker,
is retried with capped exponential backoff on transient failures, and
returns a ProviderResult instead of raising. Only cancellation propagates.

API Documentation: https://eodhd.com/financial-apis/
"""
import asyncio
import json
from dataclasses import dataclass
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Generic, Optional, TypeVar
from urllib.parse import quote as url_quote
import aiohttp
from loguru import logger

from marketcache.config import Settings
from marketcache.data_providers.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from marketcache.data_providers.models import (
    Exchange,
    Symbol,
    StockQuote,
    StockFundamentals,
    HistoricalPrice,
    to_float,
)
from marketcache.data_providers.rate_limiter import RateGovernor
from marketcache.utils.clock import cancellable_sleep, utc_now
from marketcache.utils.exceptions import (
    MarketCacheException,
    ProviderRateLimitError,
    ProviderDailyLimitError,
    ProviderUnavailableError,
    InternalError,
    OperationCancelledError,
)


PROVIDER_NAME = "eodhd"
DEFAULT_RETRY_AFTER_SECONDS = 60.0

# Body markers EODHD uses when the daily quota (not the per-minute rate) is exhausted
DAILY_LIMIT_MARKERS = ("daily", "quota", "limit exceeded", "maximum requests", "per day")

T = TypeVar("T")


@dataclass
class EODHDConfig:
    """Connection and retry settings for the EODHD client."""
    api_key: str = ""
    base_url: str = "https://eodhd.com/"
    timeout_seconds: float = 15.0
    retry_attempts: int = 3
    retry_delay: float = 1.0
    retry_delay_max: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "EODHDConfig":
        return cls(
            api_key=settings.EODHD_API_KEY,
            base_url=settings.EODHD_BASE_URL,
            timeout_seconds=settings.EODHD_TIMEOUT_SECONDS,
            retry_attempts=settings.EODHD_RETRY_ATTEMPTS,
            retry_delay=settings.EODHD_RETRY_DELAY,
            retry_delay_max=settings.EODHD_RETRY_DELAY_MAX,
        )

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.retry_delay_max, self.retry_delay * (2 ** attempt))


@dataclass
class ProviderResult(Generic[T]):
    """Tagged outcome of a provider call: either ``value`` or ``error``."""
    value: Optional[T] = None
    error: Optional[MarketCacheException] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T, attempts: int = 1) -> "ProviderResult[T]":
        return cls(value=value, attempts=attempts)

    @classmethod
    def failure(cls, error: MarketCacheException, attempts: int = 0) -> "ProviderResult[T]":
        return cls(error=error, attempts=attempts)

    def unwrap(self) -> T:
        """Return the value or raise the typed error."""
        if self.error is not None:
            raise self.error
        return self.value


class MalformedResponseError(ValueError):
    """Provider payload does not have the expected shape."""


def is_daily_limit_body(body: str) -> bool:
    """Check a 429 body for quota-exhaustion markers."""
    text = (body or "").lower()
    return any(marker in text for marker in DAILY_LIMIT_MARKERS)


def parse_retry_after(value: Optional[str], default: float = DEFAULT_RETRY_AFTER_SECONDS) -> float:
    """
    Parse a Retry-After header.

    Accepts delta-seconds or an HTTP date. Falls back to ``default`` when
    the header is missing or unreadable.
    """
    if not value:
        return default
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return default
    if when is None:
        return default
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - utc_now()).total_seconds())


class EODHDClient:
    """
    EODHD data provider client.

    Exchange codes:
    - US: AAPL.US, MSFT.US
    - London: BP.LSE
    - Frankfurt: SAP.XETRA

    Usage:
        client = EODHDClient(EODHDConfig(api_key="..."), governor)
        await client.initialize()

        result = await client.get_fundamentals("AAPL", "US")
        if result.ok:
            fundamentals = result.value
    """

    def __init__(
        self,
        config: EODHDConfig,
        governor: RateGovernor,
        breaker: Optional[CircuitBreaker] = None,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Callable[[float, Optional[asyncio.Event]], Any] = cancellable_sleep,
    ):
        self.config = config
        self.governor = governor
        self.breaker = breaker or CircuitBreaker(PROVIDER_NAME, CircuitBreakerConfig())
        self._session = session
        self._owns_session = session is None
        self._sleep = sleep

        self.total_requests = 0
        self.total_retries = 0
        self.rate_limit_hits = 0
        self.daily_limit_hits = 0

    async def initialize(self) -> None:
        """Initialize HTTP session."""
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
            logger.info("EODHD client initialized")

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None
        logger.info("EODHD client closed")

    # ==================== Public API ====================

    async def get_exchanges(
        self, cancel_event: Optional[asyncio.Event] = None
    ) -> ProviderResult[list[Exchange]]:
        """Get the list of supported exchanges."""
        return await self._request("api/exchanges-list/", self._parse_exchanges, cancel_event=cancel_event)

    async def get_symbols(
        self, exchange_code: str, cancel_event: Optional[asyncio.Event] = None
    ) -> ProviderResult[list[Symbol]]:
        """Get all symbols listed on an exchange."""
        code = exchange_code.upper()
        return await self._request(
            f"api/exchange-symbol-list/{url_quote(code, safe='')}",
            lambda data: self._parse_symbols(code, data),
            cancel_event=cancel_event,
        )

    async def get_quote(
        self, ticker: str, exchange: str, cancel_event: Optional[asyncio.Event] = None
    ) -> ProviderResult[StockQuote]:
        """Get the latest (delayed) quote for a symbol."""
        return await self._request(
            f"api/real-time/{self._symbol_path(ticker, exchange)}",
            lambda data: self._parse_quote(ticker, data),
            cancel_event=cancel_event,
        )

    async def get_historical_prices(
        self,
        ticker: str,
        exchange: str,
        start_date: date,
        end_date: date,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ProviderResult[list[HistoricalPrice]]:
        """Get end-of-day bars between two dates (inclusive)."""
        return await self._request(
            f"api/eod/{self._symbol_path(ticker, exchange)}",
            self._parse_historical,
            params={"from": start_date.isoformat(), "to": end_date.isoformat()},
            cancel_event=cancel_event,
        )

    async def get_fundamentals(
        self, ticker: str, exchange: str, cancel_event: Optional[asyncio.Event] = None
    ) -> ProviderResult[StockFundamentals]:
        """Get fundamentals for a symbol."""
        return await self._request(
            f"api/fundamentals/{self._symbol_path(ticker, exchange)}",
            lambda data: self._parse_fundamentals(ticker, data),
            cancel_event=cancel_event,
        )

    async def health_check(self) -> bool:
        """Check API connectivity. Consumes one permit."""
        result = await self._request("api/user", lambda data: isinstance(data, dict))
        if not result.ok:
            logger.error(f"EODHD health check failed: {result.error}")
        return bool(result.ok and result.value)

    def get_stats(self) -> dict:
        return {
            "provider": PROVIDER_NAME,
            "total_requests": self.total_requests,
            "total_retries": self.total_retries,
            "rate_limit_hits": self.rate_limit_hits,
            "daily_limit_hits": self.daily_limit_hits,
            "circuit": self.breaker.get_stats(),
        }

    # ==================== Request Pipeline ====================

    @staticmethod
    def _symbol_path(ticker: str, exchange: str) -> str:
        return f"{url_quote(ticker.upper(), safe='')}.{url_quote(exchange.upper(), safe='')}"

    def _url(self, endpoint: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{endpoint.lstrip('/')}"

    async def _request(
        self,
        endpoint: str,
        parser: Callable[[Any], T],
        params: Optional[dict[str, str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ProviderResult[T]:
        """
        Circuit check, permit, HTTP GET, classify. Retries transient failures.

        Raises:
            OperationCancelledError / asyncio.CancelledError only
        """
        if not self.breaker.can_request():
            return ProviderResult.failure(
                ProviderUnavailableError(
                    PROVIDER_NAME,
                    f"Circuit breaker open, retry in {self.breaker.retry_in():.0f}s",
                )
            )
        is_trial = self.breaker.state == CircuitState.HALF_OPEN

        query = {"api_token": self.config.api_key, "fmt": "json", **(params or {})}
        url = self._url(endpoint)
        max_attempts = self.config.retry_attempts + 1
        last_error: Optional[MarketCacheException] = None

        try:
            for attempt in range(max_attempts):
                await self.governor.acquire(cancel_event)
                self.total_requests += 1

                outcome = await self._send(url, query)
                result = self._classify(endpoint, outcome, parser, attempt + 1)
                if result is not None:
                    return result

                last_error = outcome.error
                self.breaker.record_failure(str(last_error))
                if self.breaker.state == CircuitState.OPEN or attempt + 1 >= max_attempts:
                    break

                delay = self.config.backoff(attempt)
                self.total_retries += 1
                logger.warning(
                    f"EODHD transient failure on {endpoint} ({last_error}), "
                    f"retry {attempt + 1}/{self.config.retry_attempts} in {delay:.1f}s"
                )
                if await self._sleep(delay, cancel_event):
                    raise OperationCancelledError("Cancelled during provider retry backoff")

            return ProviderResult.failure(
                last_error or ProviderUnavailableError(PROVIDER_NAME, "Request failed"),
                attempts=attempt + 1,
            )
        except OperationCancelledError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error calling EODHD {endpoint}: {e}")
            return ProviderResult.failure(InternalError(f"Unexpected provider client error: {e}"))
        finally:
            if is_trial:
                self.breaker.release_trial()

    async def _send(self, url: str, query: dict[str, str]) -> "_RawOutcome":
        """Issue one GET. Network errors and timeouts come back as transient outcomes."""
        if self._session is None:
            await self.initialize()
        try:
            async with self._session.get(url, params=query) as response:
                body = await response.text()
                return _RawOutcome(
                    status=response.status,
                    body=body,
                    retry_after=response.headers.get("Retry-After"),
                )
        except asyncio.TimeoutError:
            return _RawOutcome(
                error=ProviderUnavailableError(
                    PROVIDER_NAME, f"Request timed out after {self.config.timeout_seconds:.0f}s"
                )
            )
        except aiohttp.ClientError as e:
            return _RawOutcome(error=ProviderUnavailableError(PROVIDER_NAME, f"Connection error: {e}"))

    def _classify(
        self,
        endpoint: str,
        outcome: "_RawOutcome",
        parser: Callable[[Any], T],
        attempts: int,
    ) -> Optional[ProviderResult[T]]:
        """
        Map a raw outcome to a final result.

        Returns None when the outcome is transient and may be retried.
        """
        if outcome.error is not None:
            return None

        status = outcome.status
        if status == 429:
            if is_daily_limit_body(outcome.body):
                self.daily_limit_hits += 1
                logger.error("EODHD daily limit exceeded. Quota resets tomorrow.")
                return ProviderResult.failure(
                    ProviderDailyLimitError(PROVIDER_NAME, "Daily API quota exceeded. Try again tomorrow."),
                    attempts,
                )
            retry_after = parse_retry_after(outcome.retry_after)
            self.rate_limit_hits += 1
            logger.warning(f"EODHD rate limit hit on {endpoint}, retry after {retry_after:.0f}s")
            return ProviderResult.failure(ProviderRateLimitError(PROVIDER_NAME, retry_after), attempts)

        if status >= 500 or status == 408:
            outcome.error = ProviderUnavailableError(PROVIDER_NAME, f"API error {status}", status=status)
            return None

        # The provider answered; the circuit only tracks transient failures.
        self.breaker.record_success()

        if status < 200 or status >= 300:
            logger.warning(f"EODHD returned {status} for {endpoint}")
            return ProviderResult.failure(
                ProviderUnavailableError(PROVIDER_NAME, f"API error {status}", status=status),
                attempts,
            )

        try:
            data = json.loads(outcome.body)
            return ProviderResult.success(parser(data), attempts)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.warning(f"EODHD returned malformed payload for {endpoint}: {e}")
            return ProviderResult.failure(
                ProviderUnavailableError(PROVIDER_NAME, f"Malformed response: {e}", status=status),
                attempts,
            )

    # ==================== Parsers ====================

    @staticmethod
    def _require(data: Any, kind: type, what: str) -> Any:
        if not isinstance(data, kind):
            raise MalformedResponseError(f"expected {kind.__name__} for {what}, got {type(data).__name__}")
        return data

    def _parse_exchanges(self, data: Any) -> list[Exchange]:
        """Parse exchanges-list response."""
        items = self._require(data, list, "exchanges")
        return [
            Exchange(
                code=item["Code"],
                name=item.get("Name") or item["Code"],
                country=item.get("Country") or "",
                currency=item.get("Currency") or "",
                operating_mic=item.get("OperatingMIC") or None,
            )
            for item in items
        ]

    def _parse_symbols(self, exchange_code: str, data: Any) -> list[Symbol]:
        """Parse exchange-symbol-list response."""
        items = self._require(data, list, "symbols")
        symbols = []
        for item in items:
            ticker = (item.get("Code") or "").strip()
            if not ticker:
                continue
            symbols.append(
                Symbol(
                    ticker=ticker.upper(),
                    exchange_code=exchange_code,
                    parent_exchange=item.get("Exchange") or exchange_code,
                    name=item.get("Name") or "",
                    type=item.get("Type") or None,
                    isin=item.get("Isin") or None,
                    currency=item.get("Currency") or None,
                    is_active=not bool(item.get("IsDelisted")),
                )
            )
        return symbols

    def _parse_quote(self, ticker: str, data: Any) -> StockQuote:
        """Parse real-time quote response."""
        item = self._require(data, dict, "quote")
        if "code" not in item:
            raise MalformedResponseError("quote payload has no code")

        timestamp = item.get("timestamp")
        if isinstance(timestamp, (int, float)):
            last_updated = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        else:
            last_updated = utc_now()

        return StockQuote(
            ticker=ticker.upper(),
            current_price=to_float(item.get("close")),
            previous_close=to_float(item.get("previousClose")),
            change=to_float(item.get("change")),
            change_percent=to_float(item.get("change_p")),
            open=to_float(item.get("open")),
            high=to_float(item.get("high")),
            low=to_float(item.get("low")),
            volume=to_float(item.get("volume")),
            last_updated=last_updated,
        )

    def _parse_historical(self, data: Any) -> list[HistoricalPrice]:
        """Parse end-of-day bars."""
        items = self._require(data, list, "historical prices")
        return [
            HistoricalPrice(
                date=datetime.strptime(item["date"], "%Y-%m-%d").date(),
                open=float(item.get("open") or 0),
                high=float(item.get("high") or 0),
                low=float(item.get("low") or 0),
                close=float(item.get("close") or 0),
                volume=int(item.get("volume") or 0),
                adjusted_close=to_float(item.get("adjusted_close")),
            )
            for item in items
        ]

    def _parse_fundamentals(self, ticker: str, data: Any) -> StockFundamentals:
        """
        Parse fundamentals document.

        EODHD answers unknown or uncovered symbols with an empty object or
        list, which is treated as malformed so the caller sees a failure.
        """
        doc = self._require(data, dict, "fundamentals")
        general = doc.get("General")
        if not isinstance(general, dict) or not general:
            raise MalformedResponseError("fundamentals payload has no General section")
        highlights = doc.get("Highlights") or {}
        valuation = doc.get("Valuation") or {}
        technicals = doc.get("Technicals") or {}

        return StockFundamentals(
            ticker=ticker.upper(),
            company_name=general.get("Name"),
            sector=general.get("Sector"),
            industry=general.get("Industry"),
            description=general.get("Description"),
            website=general.get("WebURL"),
            logo_url=general.get("LogoURL"),
            market_cap=to_float(highlights.get("MarketCapitalization")),
            trailing_pe=to_float(highlights.get("PERatio") or valuation.get("TrailingPE")),
            forward_pe=to_float(valuation.get("ForwardPE")),
            peg=to_float(highlights.get("PEGRatio")),
            price_to_sales=to_float(valuation.get("PriceSalesTTM")),
            price_to_book=to_float(valuation.get("PriceBookMRQ")),
            enterprise_value=to_float(valuation.get("EnterpriseValue")),
            enterprise_to_revenue=to_float(valuation.get("EnterpriseValueRevenue")),
            enterprise_to_ebitda=to_float(valuation.get("EnterpriseValueEbitda")),
            profit_margins=to_float(highlights.get("ProfitMargin")),
            operating_margins=to_float(highlights.get("OperatingMarginTTM")),
            return_on_assets=to_float(highlights.get("ReturnOnAssetsTTM")),
            return_on_equity=to_float(highlights.get("ReturnOnEquityTTM")),
            revenue=to_float(highlights.get("RevenueTTM")),
            revenue_per_share=to_float(highlights.get("RevenuePerShareTTM")),
            quarterly_revenue_growth=to_float(highlights.get("QuarterlyRevenueGrowthYOY")),
            quarterly_earnings_growth=to_float(highlights.get("QuarterlyEarningsGrowthYOY")),
            book_value=to_float(highlights.get("BookValue")),
            dividend_rate=to_float(highlights.get("DividendShare")),
            dividend_yield=to_float(highlights.get("DividendYield")),
            beta=to_float(technicals.get("Beta")),
            fifty_two_week_low=to_float(technicals.get("52WeekLow")),
            fifty_two_week_high=to_float(technicals.get("52WeekHigh")),
        )


@dataclass
class _RawOutcome:
    """One HTTP exchange, before classification."""
    status: int = 0
    body: str = ""
    retry_after: Optional[str] = None
    error: Optional[MarketCacheException] = None
