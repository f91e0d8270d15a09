"""
MarketCache - Test Configuration
Shared fixtures, an in-memory storage gateway and scripted provider fakes.
"""
import asyncio
import json
import os
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence
import pytest

# Set test environment
os.environ["APP_ENV"] = "testing"
os.environ["EODHD_API_KEY"] = "test-api-key"
os.environ["BACKFILL_SCHEDULE_ENABLED"] = "false"

from marketcache.data_providers.eodhd import ProviderResult
from marketcache.data_providers.models import (
    Exchange,
    Symbol,
    StockQuote,
    StockFundamentals,
    HistoricalPrice,
)
from marketcache.storage.gateway import (
    CachedEntity,
    StorageGateway,
    SymbolKey,
    SymbolPage,
    SymbolQuery,
    UnavailabilityRecord,
)
from marketcache.utils.exceptions import ProviderUnavailableError


NOW = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# =========================
# Storage
# =========================

class InMemoryStorageGateway(StorageGateway):
    """Dict-backed StorageGateway with call counters and injectable write failures."""

    def __init__(self):
        self.exchanges: dict[str, tuple[Exchange, datetime, timedelta]] = {}
        self.symbols: dict[str, dict[str, tuple[Symbol, datetime, timedelta]]] = {}
        self.quotes: dict[str, CachedEntity] = {}
        self.fundamentals: dict[str, CachedEntity] = {}
        self.ledger: dict[SymbolKey, UnavailabilityRecord] = {}
        self.fail_writes = False
        self.calls: dict[str, int] = {}

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    def _check_write(self) -> None:
        if self.fail_writes:
            raise RuntimeError("database is read-only")

    # Exchanges

    async def get_exchanges(self):
        self._count("get_exchanges")
        if not self.exchanges:
            return None
        rows = list(self.exchanges.values())
        return CachedEntity(
            payload=sorted((r[0] for r in rows), key=lambda e: e.code),
            fetched_at=min(r[1] for r in rows),
            ttl=min(r[2] for r in rows),
        )

    async def get_exchange(self, code):
        entry = self.exchanges.get(code.upper())
        return entry[0] if entry else None

    async def replace_exchanges(self, exchanges, fetched_at, ttl):
        self._count("replace_exchanges")
        self._check_write()
        self.exchanges = {exchange.code.upper(): (exchange, fetched_at, ttl) for exchange in exchanges}
        return len(self.exchanges)

    # Symbols

    async def get_symbols(self, query: SymbolQuery) -> Optional[SymbolPage]:
        self._count("get_symbols")
        rows = self.symbols.get(query.exchange_code)
        if not rows:
            return None
        items, total = query.apply([r[0] for r in rows.values()])
        return SymbolPage(
            items=items,
            total_count=total,
            page=query.page,
            page_size=query.page_size,
            fetched_at=min(r[1] for r in rows.values()),
            ttl=min(r[2] for r in rows.values()),
        )

    async def get_all_symbols(self, exchange_code):
        rows = self.symbols.get(exchange_code.upper(), {})
        return sorted((r[0] for r in rows.values()), key=lambda s: s.ticker)

    async def get_symbol(self, ticker, exchange_code):
        entry = self.symbols.get(exchange_code.upper(), {}).get(ticker.upper())
        return entry[0] if entry else None

    async def replace_symbols(self, exchange_code, symbols: Sequence[Symbol], fetched_at, ttl):
        self._count("replace_symbols")
        self._check_write()
        rows = {}
        for symbol in symbols:
            rows.setdefault(symbol.ticker.upper(), (symbol, fetched_at, ttl))
        self.symbols[exchange_code.upper()] = rows
        return len(rows)

    # Quotes and fundamentals

    async def get_quote(self, ticker, exchange_code):
        return self.quotes.get(f"{ticker}.{exchange_code}")

    async def upsert_quote(self, exchange_code, quote, fetched_at, ttl):
        self._count("upsert_quote")
        self._check_write()
        self.quotes[f"{quote.ticker}.{exchange_code}"] = CachedEntity(quote, fetched_at, ttl)

    async def get_fundamentals(self, ticker, exchange_code):
        return self.fundamentals.get(f"{ticker}.{exchange_code}")

    async def upsert_fundamentals(self, exchange_code, fundamentals, fetched_at, ttl):
        self._count("upsert_fundamentals")
        self._check_write()
        self.fundamentals[f"{fundamentals.ticker}.{exchange_code}"] = CachedEntity(fundamentals, fetched_at, ttl)

    async def fundamentals_tickers(self, exchange_code):
        suffix = f".{exchange_code.upper()}"
        return {key[: -len(suffix)] for key in self.fundamentals if key.endswith(suffix)}

    # Ledger

    async def get_unavailable(self, key):
        return self.ledger.get(key)

    async def mark_unavailable(self, key, message, now):
        self._check_write()
        record = self.ledger.get(key)
        if record is None:
            record = UnavailabilityRecord(
                ticker=key.ticker,
                exchange_code=key.exchange_code,
                failure_count=1,
                first_failed_at=now,
                last_attempted_at=now,
                last_error_message=message,
            )
            self.ledger[key] = record
        else:
            record.failure_count += 1
            record.last_attempted_at = now
            record.last_error_message = message
        return record

    async def clear_unavailable(self, key):
        return self.ledger.pop(key, None) is not None

    async def list_unavailable(self, exchange_code):
        return sorted(
            (r for r in self.ledger.values() if r.exchange_code == exchange_code.upper()),
            key=lambda r: r.ticker,
        )

    async def unavailable_tickers(self, exchange_code, attempted_after=None):
        return {
            r.ticker
            for r in self.ledger.values()
            if r.exchange_code == exchange_code.upper()
            and (attempted_after is None or r.last_attempted_at > attempted_after)
        }


# =========================
# Provider
# =========================

def unavailable(message: str = "API error 404") -> ProviderResult:
    return ProviderResult.failure(ProviderUnavailableError("eodhd", message, status=404), attempts=1)


class FakeProvider:
    """
    Scripted stand-in for EODHDClient.

    Each ``*_result`` attribute is either a ProviderResult or a callable
    returning one. ``gate`` (when set) blocks every call until released.
    """

    def __init__(self):
        self.exchanges_result = ProviderResult.success([])
        self.symbols_result = ProviderResult.success([])
        self.quote_result = None
        self.history_result = ProviderResult.success([])
        self.fundamentals_results: dict[str, object] = {}
        self.default_fundamentals = None
        self.gate: Optional[asyncio.Event] = None
        self.calls: list[tuple] = []

    async def _resolve(self, result, *args):
        if self.gate is not None:
            await self.gate.wait()
        if callable(result):
            result = result(*args)
            if asyncio.iscoroutine(result):
                result = await result
        return result

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    async def get_exchanges(self, cancel_event=None):
        self.calls.append(("exchanges",))
        return await self._resolve(self.exchanges_result)

    async def get_symbols(self, exchange_code, cancel_event=None):
        self.calls.append(("symbols", exchange_code))
        return await self._resolve(self.symbols_result, exchange_code)

    async def get_quote(self, ticker, exchange, cancel_event=None):
        self.calls.append(("quote", ticker, exchange))
        return await self._resolve(self.quote_result, ticker, exchange)

    async def get_historical_prices(self, ticker, exchange, start_date, end_date, cancel_event=None):
        self.calls.append(("history", ticker, exchange, start_date, end_date))
        return await self._resolve(self.history_result)

    async def get_fundamentals(self, ticker, exchange, cancel_event=None):
        self.calls.append(("fundamentals", ticker, exchange))
        result = self.fundamentals_results.get(ticker, self.default_fundamentals)
        if result is None:
            result = ProviderResult.success(StockFundamentals(ticker=ticker, company_name=f"{ticker} plc"))
        return await self._resolve(result, ticker, exchange, cancel_event)


# =========================
# HTTP session
# =========================

class FakeResponse:
    def __init__(self, status: int = 200, body="", headers: Optional[dict] = None):
        self.status = status
        self._body = body if isinstance(body, str) else json.dumps(body)
        self.headers = headers or {}

    async def text(self) -> str:
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Replays queued responses (or raises queued exceptions) for ``get``."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[tuple[str, dict]] = []
        self.closed = False

    def queue(self, *responses) -> None:
        self.responses.extend(responses)

    def get(self, url, params=None):
        self.requests.append((url, dict(params or {})))
        if not self.responses:
            raise AssertionError(f"Unexpected request to {url}")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    async def close(self):
        self.closed = True


# =========================
# Fixtures
# =========================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> InMemoryStorageGateway:
    return InMemoryStorageGateway()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def sample_exchanges() -> list[Exchange]:
    return [
        Exchange(code="US", name="USA Stocks", country="USA", currency="USD", operating_mic="XNAS"),
        Exchange(code="LSE", name="London Exchange", country="UK", currency="GBP", operating_mic="XLON"),
    ]


@pytest.fixture
def sample_symbols() -> list[Symbol]:
    return [
        Symbol(ticker="AAPL", exchange_code="US", name="Apple Inc", type="Common Stock"),
        Symbol(ticker="MSFT", exchange_code="US", name="Microsoft Corp", type="Common Stock"),
        Symbol(ticker="SPY", exchange_code="US", name="SPDR S&P 500 ETF", type="ETF"),
    ]


@pytest.fixture
def sample_quote() -> StockQuote:
    return StockQuote(ticker="AAPL", current_price=190.5, previous_close=189.0, change=1.5, last_updated=NOW)


@pytest.fixture
def sample_prices() -> list[HistoricalPrice]:
    from datetime import date
    return [
        HistoricalPrice(date=date(2024, 1, 2), open=1.0, high=2.0, low=0.5, close=1.5, volume=100),
        HistoricalPrice(date=date(2024, 1, 3), open=1.5, high=2.5, low=1.0, close=2.0, volume=200),
    ]
