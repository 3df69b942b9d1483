"""Live quotes with provider fallback and a database-backed price cache."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Union

import yfinance as yf
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from brokersync.config import Settings, get_settings
from brokersync.core.http import request_json
from brokersync.core.parsing import normalize_ticker, to_finite_number
from brokersync.data.market.models import Quote
from brokersync.db.models import PriceCache
from brokersync.exceptions import (
    ConfigError,
    InvalidRequestError,
    NoDataError,
    ProviderRateLimitedError,
    SyncError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

ALPHA_VANTAGE_URL = "https://www.alphavantage.co/query"
FINNHUB_QUOTE_URL = "https://finnhub.io/api/v1/quote"

# Timeout for yfinance API calls (seconds)
YFINANCE_TIMEOUT = 30

# Symbol format mappings for Yahoo Finance compatibility
SYMBOL_MAPPINGS = {
    # Warrant formats: /WS -> -WT (Yahoo Finance warrant suffix)
    "/WS": "-WT",
    "/W": "-WT",
    ".WS": "-WT",
    ".W": "-WT",
}


def _utcnow() -> datetime:
    """Get current UTC time as naive datetime for database compatibility."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_yahoo_symbol(symbol: str) -> str:
    """Map a ticker to Yahoo Finance format (e.g. 'IONQ/WS' -> 'IONQ-WT')."""
    original = symbol.upper()
    for suffix, yahoo_suffix in SYMBOL_MAPPINGS.items():
        if original.endswith(suffix):
            yahoo_symbol = original[: -len(suffix)] + yahoo_suffix
            logger.debug(f"Normalized symbol {original} -> {yahoo_symbol}")
            return yahoo_symbol
    return original


class QuoteProvider(ABC):
    """A single source of live quotes."""

    name: str = ""

    @abstractmethod
    def fetch_quote(self, ticker: str) -> Quote:
        """Fetch the latest quote for a normalized ticker.

        Raises:
            NoDataError: If the provider knows nothing about the ticker
            UpstreamError: On provider failure (including rate limiting)
        """
        pass


class AlphaVantageProvider(QuoteProvider):
    """Alpha Vantage GLOBAL_QUOTE endpoint."""

    name = "alphavantage"

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def fetch_quote(self, ticker: str) -> Quote:
        api_key = self.settings.alpha_vantage_api_key
        if not api_key:
            raise ConfigError("Alpha Vantage API key is not configured")

        data = request_json(
            "GET",
            ALPHA_VANTAGE_URL,
            label="Alpha Vantage quote request",
            params={"function": "GLOBAL_QUOTE", "symbol": ticker, "apikey": api_key},
        )
        if not isinstance(data, dict):
            raise UpstreamError("Invalid response from Alpha Vantage")

        # Notes and information messages are how the free tier signals throttling
        for key in ("Note", "Information"):
            notice = data.get(key)
            if isinstance(notice, str) and notice.strip():
                logger.warning(f"Alpha Vantage notice for {ticker}: {notice.strip()}")
                raise ProviderRateLimitedError(notice.strip())

        error_message = data.get("Error Message")
        if isinstance(error_message, str) and error_message.strip():
            raise NoDataError(error_message.strip())

        raw = data.get("Global Quote")
        if not isinstance(raw, dict) or not raw:
            raise NoDataError(f"No quote data found for {ticker}")

        price = to_finite_number(raw.get("05. price"))
        if price is None:
            raise UpstreamError("Invalid price returned from Alpha Vantage")

        trading_day = raw.get("07. latest trading day")
        timestamp = _utcnow()
        if isinstance(trading_day, str) and trading_day.strip():
            trading_day = trading_day.strip()
            try:
                timestamp = datetime.strptime(trading_day, "%Y-%m-%d")
            except ValueError:
                logger.debug(f"Unparseable Alpha Vantage trading day: {trading_day}")
        else:
            trading_day = None

        return Quote(
            symbol=ticker,
            price=price,
            change=to_finite_number(raw.get("09. change")) or 0.0,
            change_percent=to_finite_number(raw.get("10. change percent")) or 0.0,
            volume=to_finite_number(raw.get("06. volume")),
            high=to_finite_number(raw.get("03. high")),
            low=to_finite_number(raw.get("04. low")),
            trading_day=trading_day,
            timestamp=timestamp,
            provider=self.name,
        )


class FinnhubProvider(QuoteProvider):
    """Finnhub /quote endpoint."""

    name = "finnhub"

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def fetch_quote(self, ticker: str) -> Quote:
        api_key = self.settings.finnhub_api_key
        if not api_key:
            raise ConfigError("Finnhub API key is not configured")

        data = request_json(
            "GET",
            FINNHUB_QUOTE_URL,
            label="Finnhub quote request",
            params={"symbol": ticker, "token": api_key},
        )
        if not isinstance(data, dict):
            raise UpstreamError("Invalid response from Finnhub")

        # Finnhub answers unknown symbols with zeros rather than an error
        price = to_finite_number(data.get("c"))
        if not price:
            raise NoDataError(f"No quote data found for {ticker}")

        trading_day = None
        timestamp = _utcnow()
        epoch = to_finite_number(data.get("t"))
        if epoch:
            timestamp = datetime.fromtimestamp(epoch, timezone.utc).replace(tzinfo=None)
            trading_day = timestamp.strftime("%Y-%m-%d")

        return Quote(
            symbol=ticker,
            price=price,
            change=to_finite_number(data.get("d")) or 0.0,
            change_percent=to_finite_number(data.get("dp")) or 0.0,
            high=to_finite_number(data.get("h")),
            low=to_finite_number(data.get("l")),
            trading_day=trading_day,
            timestamp=timestamp,
            provider=self.name,
        )


class YahooFinanceProvider(QuoteProvider):
    """Quotes from yfinance, with a hard timeout around each call."""

    name = "yfinance"

    # Shared executor for timeout handling (reused across calls)
    _executor: Optional[ThreadPoolExecutor] = None

    def __init__(self, timeout: int = YFINANCE_TIMEOUT):
        self.timeout = timeout

    @classmethod
    def _get_executor(cls) -> ThreadPoolExecutor:
        """Get or create shared executor."""
        if cls._executor is None:
            cls._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="market_data")
        return cls._executor

    def _fetch_with_timeout(self, func, *args, **kwargs):
        executor = self._get_executor()
        future = executor.submit(func, *args, **kwargs)
        try:
            return future.result(timeout=self.timeout)
        except FuturesTimeoutError as e:
            logger.warning(f"Timeout after {self.timeout}s fetching market data")
            raise UpstreamError(f"Yahoo Finance timed out after {self.timeout}s") from e

    def fetch_quote(self, ticker: str) -> Quote:
        yahoo_symbol = to_yahoo_symbol(ticker)

        def _fetch():
            yf_ticker = yf.Ticker(yahoo_symbol)
            info = yf_ticker.info or {}
            price = info.get("currentPrice") or info.get("regularMarketPrice")
            if price is None:
                hist = yf_ticker.history(period="1d")
                if not hist.empty:
                    price = float(hist["Close"].iloc[-1])
            return price, info

        try:
            price, info = self._fetch_with_timeout(_fetch)
        except SyncError:
            raise
        except Exception as e:
            logger.error(f"yfinance error for {ticker}: {e}")
            raise UpstreamError(f"Yahoo Finance request failed for {ticker}") from e

        price = to_finite_number(price)
        if price is None:
            raise NoDataError(f"No quote data found for {ticker}")

        timestamp = _utcnow()
        market_time = to_finite_number(info.get("regularMarketTime"))
        if market_time:
            timestamp = datetime.fromtimestamp(market_time, timezone.utc).replace(tzinfo=None)

        return Quote(
            symbol=ticker,
            price=price,
            change=to_finite_number(info.get("regularMarketChange")) or 0.0,
            change_percent=to_finite_number(info.get("regularMarketChangePercent")) or 0.0,
            volume=to_finite_number(info.get("regularMarketVolume")),
            high=to_finite_number(info.get("regularMarketDayHigh") or info.get("dayHigh")),
            low=to_finite_number(info.get("regularMarketDayLow") or info.get("dayLow")),
            trading_day=timestamp.strftime("%Y-%m-%d"),
            timestamp=timestamp,
            provider=self.name,
        )


class QuoteProviderChain:
    """Tries quote providers in order until one succeeds."""

    def __init__(self, providers: Sequence[QuoteProvider], default_order: Optional[Sequence[str]] = None):
        self.providers: Dict[str, QuoteProvider] = {p.name: p for p in providers}
        self.default_order = list(default_order or [p.name for p in providers])
        unknown = [name for name in self.default_order if name not in self.providers]
        if unknown:
            raise ConfigError(f"Unknown quote provider(s) in order: {', '.join(unknown)}")

    def resolve_order(self, preferred: Union[str, Sequence[str], None] = None) -> List[str]:
        """Provider names to try, in order.

        A single preferred name is tried first, then the rest of the default
        order. A sequence replaces the default order entirely.
        """
        if preferred is None:
            order = list(self.default_order)
        elif isinstance(preferred, str):
            name = preferred.strip().lower()
            order = [name] + [n for n in self.default_order if n != name]
        else:
            order = [name.strip().lower() for name in preferred]

        for name in order:
            if name not in self.providers:
                raise InvalidRequestError(f"Unknown quote provider: {name}")
        return order

    def get_quote(self, ticker: str, preferred: Union[str, Sequence[str], None] = None) -> Quote:
        """Get a quote from the first provider that answers.

        Args:
            ticker: Ticker symbol (normalized before use)
            preferred: Provider name to try first, or an explicit order

        Returns:
            Quote tagged with the provider that produced it

        Raises:
            InvalidRequestError: On an empty ticker or unknown provider
            SyncError: The last provider's error when every provider fails
        """
        symbol = normalize_ticker(ticker)
        if not symbol:
            raise InvalidRequestError("Ticker symbol is required")

        order = self.resolve_order(preferred)
        if not order:
            raise InvalidRequestError("No quote providers requested")

        last_error: Optional[Exception] = None
        for name in order:
            try:
                quote = self.providers[name].fetch_quote(symbol)
                logger.debug(f"Fetched {symbol} from {name}: ${quote.price}")
                return quote
            except Exception as e:
                logger.warning(f"Quote provider {name} failed for {symbol}: {e}")
                last_error = e

        raise last_error


def build_default_chain(settings: Optional[Settings] = None) -> QuoteProviderChain:
    """Chain over every built-in provider, ordered by QUOTE_PROVIDER_ORDER."""
    settings = settings or get_settings()
    return QuoteProviderChain(
        [
            AlphaVantageProvider(settings),
            FinnhubProvider(settings),
            YahooFinanceProvider(timeout=settings.http_timeout_seconds),
        ],
        default_order=settings.quote_provider_order,
    )


@dataclass
class QuoteBatchResult:
    """Outcome of a sequential multi-ticker refresh."""

    quotes: List[Quote] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)


class QuoteService:
    """Quotes with a PriceCache in front of the provider chain."""

    def __init__(
        self,
        db: Session,
        chain: Optional[QuoteProviderChain] = None,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.chain = chain or build_default_chain(self.settings)
        self.cache_seconds = self.settings.price_cache_seconds
        self.sleep = sleep

    def _cached(self, symbol: str) -> Optional[Quote]:
        cached = self.db.query(PriceCache).filter_by(symbol=symbol).first()
        now = _utcnow()
        if cached and cached.fetched_at >= now - timedelta(seconds=self.cache_seconds):
            logger.debug(f"Cache hit for {symbol}: ${cached.price}")
            return Quote(
                symbol=symbol,
                price=cached.price,
                change=cached.change,
                change_percent=cached.change_percent,
                timestamp=cached.fetched_at,
                provider=cached.provider or "cache",
            )
        return None

    def _store(self, quote: Quote) -> None:
        try:
            # merge is an upsert on the symbol primary key
            self.db.merge(
                PriceCache(
                    symbol=quote.symbol,
                    price=quote.price,
                    change=quote.change,
                    change_percent=quote.change_percent,
                    provider=quote.provider,
                    fetched_at=_utcnow(),
                )
            )
            self.db.flush()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error updating price cache for {quote.symbol}: {e}")

    def get_quote(self, ticker: str, provider: Optional[str] = None) -> Quote:
        """Get a quote, serving a fresh cached price when no provider is requested.

        Args:
            ticker: Ticker symbol
            provider: Provider to try first (bypasses the cache)

        Returns:
            Quote
        """
        symbol = normalize_ticker(ticker)
        if not symbol:
            raise InvalidRequestError("Ticker symbol is required")

        if provider is None:
            cached = self._cached(symbol)
            if cached is not None:
                return cached

        quote = self.chain.get_quote(symbol, preferred=provider)
        self._store(quote)
        return quote

    def get_quotes(
        self,
        tickers: Sequence[str],
        delay_seconds: Optional[float] = None,
    ) -> QuoteBatchResult:
        """Refresh several tickers one at a time, pausing between requests.

        Failures are recorded per ticker and never stop the batch.
        """
        delay = self.settings.quote_batch_delay_seconds if delay_seconds is None else delay_seconds
        result = QuoteBatchResult()
        symbols = [s for s in (normalize_ticker(t) for t in tickers) if s]

        for index, symbol in enumerate(symbols):
            try:
                result.quotes.append(self.get_quote(symbol))
            except Exception as e:
                logger.error(f"Quote refresh failed for {symbol}: {e}")
                result.failures.append({"symbol": symbol, "error": str(e)})

            if index < len(symbols) - 1 and delay > 0:
                self.sleep(delay)

        logger.info(f"Refreshed {len(result.quotes)}/{len(symbols)} quotes")
        return result
