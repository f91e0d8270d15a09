"""
Market Data Models

Normalized data structures returned by the provider client and stored in the cache.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, date
from typing import Optional, Any

from marketcache.utils.clock import utc_now


def to_float(value: Any) -> Optional[float]:
    """Convert provider numerics (numbers, numeric strings, "NA") to float."""
    if value is None or value == "" or value == "NA":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class Exchange:
    """A stock exchange listed by the provider."""
    code: str
    name: str
    country: str = ""
    currency: str = ""
    operating_mic: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Symbol:
    """A tradable instrument listed on an exchange."""
    ticker: str
    exchange_code: str
    name: str
    parent_exchange: str = ""
    type: Optional[str] = None
    isin: Optional[str] = None
    currency: Optional[str] = None
    is_active: bool = True

    @property
    def full_symbol(self) -> str:
        """Globally unique identifier, e.g. ``AAPL.US``."""
        return f"{self.ticker}.{self.exchange_code}"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["full_symbol"] = self.full_symbol
        return data


@dataclass
class StockQuote:
    """Latest quote for a symbol."""
    ticker: str
    current_price: Optional[float] = None
    previous_close: Optional[float] = None
    change: Optional[float] = None
    change_percent: Optional[float] = None
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    volume: Optional[float] = None
    last_updated: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_updated"] = self.last_updated.isoformat()
        return data


@dataclass
class StockFundamentals:
    """
    Fundamental data for a symbol.

    Built from the General, Highlights, Valuation and Technicals sections of
    the provider's fundamentals document.
    """
    ticker: str
    company_name: Optional[str] = None
    sector: Optional[str] = None
    industry: Optional[str] = None
    description: Optional[str] = None
    website: Optional[str] = None
    logo_url: Optional[str] = None
    market_cap: Optional[float] = None
    trailing_pe: Optional[float] = None
    forward_pe: Optional[float] = None
    peg: Optional[float] = None
    price_to_sales: Optional[float] = None
    price_to_book: Optional[float] = None
    enterprise_value: Optional[float] = None
    enterprise_to_revenue: Optional[float] = None
    enterprise_to_ebitda: Optional[float] = None
    profit_margins: Optional[float] = None
    operating_margins: Optional[float] = None
    return_on_assets: Optional[float] = None
    return_on_equity: Optional[float] = None
    revenue: Optional[float] = None
    revenue_per_share: Optional[float] = None
    quarterly_revenue_growth: Optional[float] = None
    quarterly_earnings_growth: Optional[float] = None
    book_value: Optional[float] = None
    dividend_rate: Optional[float] = None
    dividend_yield: Optional[float] = None
    beta: Optional[float] = None
    fifty_two_week_low: Optional[float] = None
    fifty_two_week_high: Optional[float] = None
    last_updated: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_updated"] = self.last_updated.isoformat()
        return data


@dataclass
class HistoricalPrice:
    """One end-of-day bar."""
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: int
    adjusted_close: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        return data


def parse_full_symbol(full_symbol: str) -> tuple[str, str]:
    """
    Split ``TICKER.EXCHANGE`` into its parts.

    The exchange is the text after the last dot so tickers such as
    ``BRK.B.US`` keep their inner dot.

    Raises:
        ValueError: if the suffix is missing or either part is empty
    """
    value = (full_symbol or "").strip()
    ticker, sep, exchange = value.rpartition(".")
    if not sep or not ticker or not exchange:
        raise ValueError(f"Ticker '{full_symbol}' must include an exchange suffix, e.g. AAPL.US")
    return ticker.upper(), exchange.upper()
