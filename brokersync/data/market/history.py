"""Historical price series with chunked backfill for unbounded periods."""

from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, NamedTuple, Optional, Union

import pandas as pd
import yfinance as yf
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from brokersync.config import Settings, get_settings
from brokersync.core.http import request_json
from brokersync.core.parsing import normalize_ticker, to_finite_number
from brokersync.data.market.models import BackfillResult, HistoricalPoint
from brokersync.db.models import HistoricalPriceCache, utcnow
from brokersync.exceptions import (
    ConfigError,
    InvalidRequestError,
    NoDataError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

FINNHUB_CANDLE_URL = "https://finnhub.io/api/v1/stock/candle"

DAY_SECONDS = 60 * 60 * 24

# Candle width per resolution; a cache this close to now counts as current
RESOLUTION_SECONDS: Dict[str, int] = {
    "1": 60,
    "5": 60 * 5,
    "15": 60 * 15,
    "30": 60 * 30,
    "60": 60 * 60,
    "D": DAY_SECONDS,
    "W": DAY_SECONDS * 7,
    "M": DAY_SECONDS * 30,
}


class Period(str, Enum):
    """Supported history periods."""

    ONE_DAY = "1D"
    ONE_MONTH = "1M"
    THREE_MONTHS = "3M"
    ONE_YEAR = "1Y"
    FIVE_YEARS = "5Y"
    MAX = "MAX"


class RangeConfig(NamedTuple):
    resolution: str
    days_back: Optional[int]  # None means unbounded


RANGE_CONFIG: Dict[Period, RangeConfig] = {
    Period.ONE_DAY: RangeConfig("5", 2),
    Period.ONE_MONTH: RangeConfig("D", 30),
    Period.THREE_MONTHS: RangeConfig("D", 90),
    Period.ONE_YEAR: RangeConfig("D", 365),
    Period.FIVE_YEARS: RangeConfig("D", 365 * 5),
    Period.MAX: RangeConfig("D", None),
}

# Retained window, measured back from the latest point
PERIOD_FILTER_DAYS: Dict[Period, int] = {
    Period.ONE_DAY: 1,
    Period.ONE_MONTH: 30,
    Period.THREE_MONTHS: 90,
    Period.ONE_YEAR: 365,
    Period.FIVE_YEARS: 365 * 5,
}


def parse_period(value: Union[str, Period]) -> Period:
    """Parse a period string such as '1y' or 'MAX'."""
    if isinstance(value, Period):
        return value
    try:
        return Period((value or "").strip().upper())
    except ValueError:
        raise InvalidRequestError("Unsupported period") from None


def _iso_date(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, timezone.utc).isoformat().replace("+00:00", "Z")


class CandleSource(ABC):
    """A provider of OHLCV candles."""

    name: str = ""

    @abstractmethod
    def fetch_candles(self, symbol: str, resolution: str, start: int, end: int) -> List[HistoricalPoint]:
        """Fetch candles in [start, end] (epoch seconds).

        Returns:
            Points in provider order; an empty list when there is no data
        """
        pass


class FinnhubCandleSource(CandleSource):
    """Finnhub /stock/candle endpoint."""

    name = "finnhub"

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def fetch_candles(self, symbol: str, resolution: str, start: int, end: int) -> List[HistoricalPoint]:
        api_key = self.settings.finnhub_api_key
        if not api_key:
            raise ConfigError("Finnhub API key is not configured")

        data = request_json(
            "GET",
            FINNHUB_CANDLE_URL,
            label="Finnhub candle request",
            params={
                "symbol": symbol,
                "resolution": resolution,
                "from": int(start),
                "to": int(end),
                "token": api_key,
            },
        )
        if not isinstance(data, dict):
            raise UpstreamError("Invalid response from Finnhub")
        if data.get("error"):
            raise UpstreamError(f"Finnhub error: {data['error']}")

        timestamps = data.get("t")
        if data.get("s") != "ok" or not isinstance(timestamps, list):
            return []

        def column(key: str, index: int) -> float:
            values = data.get(key) or []
            value = to_finite_number(values[index]) if index < len(values) else None
            return value if value is not None else 0.0

        points = []
        for index, raw_ts in enumerate(timestamps):
            ts = to_finite_number(raw_ts)
            if ts is None:
                continue
            ts = int(ts)
            points.append(
                HistoricalPoint(
                    timestamp=ts,
                    date=_iso_date(ts),
                    open=column("o", index),
                    high=column("h", index),
                    low=column("l", index),
                    close=column("c", index),
                    volume=column("v", index),
                )
            )
        return points


# Finnhub resolution -> yfinance interval
YAHOO_INTERVALS = {
    "1": "1m",
    "5": "5m",
    "15": "15m",
    "30": "30m",
    "60": "60m",
    "D": "1d",
    "W": "1wk",
    "M": "1mo",
}

OHLC_COLUMNS = ["Open", "High", "Low", "Close"]


class YahooCandleSource(CandleSource):
    """Candles from yfinance history."""

    name = "yfinance"

    def fetch_candles(self, symbol: str, resolution: str, start: int, end: int) -> List[HistoricalPoint]:
        interval = YAHOO_INTERVALS.get(resolution)
        if interval is None:
            raise InvalidRequestError(f"Unsupported resolution: {resolution}")

        try:
            hist = yf.Ticker(symbol).history(
                start=datetime.fromtimestamp(start, timezone.utc),
                end=datetime.fromtimestamp(end, timezone.utc),
                interval=interval,
            )
        except Exception as e:
            logger.error(f"yfinance history error for {symbol}: {e}")
            raise UpstreamError(f"Yahoo Finance history request failed for {symbol}") from e

        if hist is None or hist.empty:
            return []

        # Rows with a missing or infinite price are dropped
        prices = hist[OHLC_COLUMNS].replace([math.inf, -math.inf], math.nan)
        hist = hist[prices.notna().all(axis=1)]

        points = []
        for index, row in hist.iterrows():
            ts = int(pd.Timestamp(index).timestamp())
            points.append(
                HistoricalPoint(
                    timestamp=ts,
                    date=_iso_date(ts),
                    open=float(row["Open"]),
                    high=float(row["High"]),
                    low=float(row["Low"]),
                    close=float(row["Close"]),
                    volume=to_finite_number(float(row["Volume"])) if "Volume" in row else None,
                )
            )
        return points


def get_candle_source(name: str, settings: Optional[Settings] = None) -> CandleSource:
    """Look up a candle source by name ('finnhub' or 'yfinance')."""
    name = (name or "").strip().lower()
    if name == FinnhubCandleSource.name:
        return FinnhubCandleSource(settings)
    if name == YahooCandleSource.name:
        return YahooCandleSource()
    raise InvalidRequestError(f"Unknown history source: {name}")


def dedupe_and_filter(points: List[HistoricalPoint], period: Period) -> List[HistoricalPoint]:
    """Deduplicate by timestamp (last wins), sort ascending, apply the period window."""
    if not points:
        return []

    frame = pd.DataFrame(
        {"timestamp": [p.timestamp for p in points], "position": range(len(points))}
    )
    frame = frame.drop_duplicates(subset="timestamp", keep="last").sort_values("timestamp")

    window_days = PERIOD_FILTER_DAYS.get(period)
    if window_days is not None:
        cutoff = frame["timestamp"].max() - window_days * DAY_SECONDS
        frame = frame[frame["timestamp"] >= cutoff]

    return [points[i] for i in frame["position"].tolist()]


class HistoricalBackfillEngine:
    """Fetches a price series for a period, walking back in chunks for MAX.

    With a session, candles are kept in the historical_price_cache table and
    only the ranges the cache does not cover are requested from the source.
    """

    def __init__(
        self,
        source: CandleSource,
        max_iterations: int = 200,
        chunk_days: int = 365 * 5,
        clock: Callable[[], float] = time.time,
        db: Optional[Session] = None,
    ):
        self.source = source
        self.max_iterations = max_iterations
        self.chunk_seconds = chunk_days * DAY_SECONDS
        self.clock = clock
        self.db = db

    def backfill(self, ticker: str, period: Union[str, Period]) -> BackfillResult:
        """Fetch the series for a ticker and period.

        Args:
            ticker: Ticker symbol
            period: One of 1D, 1M, 3M, 1Y, 5Y, MAX

        Returns:
            BackfillResult with ascending, deduplicated points

        Raises:
            InvalidRequestError: On an empty ticker or unsupported period
            NoDataError: If neither the cache nor the source had data
        """
        symbol = normalize_ticker(ticker)
        if not symbol:
            raise InvalidRequestError("Ticker symbol is required")
        period = parse_period(period)
        config = RANGE_CONFIG[period]
        now = int(self.clock())

        cached = self._read_cache(symbol, config.resolution)
        padding = RESOLUTION_SECONDS.get(config.resolution, 60)

        if config.days_back is None:
            fetched = self._fetch_max(symbol, config.resolution, now, cached, padding)
        else:
            start = max(0, now - config.days_back * DAY_SECONDS)
            fetched = self._fetch_gaps(symbol, period, start, now, cached, padding)

        self._write_cache(symbol, config.resolution, fetched, cached)

        # Fresh candles come last so they replace cached ones with the same timestamp
        data = dedupe_and_filter(cached + fetched, period)
        if not data:
            raise NoDataError(f"No historical data available for {symbol}")

        logger.info(
            f"Backfilled {len(data)} point(s) for {symbol} ({period.value}), "
            f"{len(fetched)} fetched from {self.source.name}"
        )
        return BackfillResult(
            symbol=symbol,
            period=period.value,
            resolution=config.resolution,
            data=data,
        )

    def _fetch_gaps(
        self,
        symbol: str,
        period: Period,
        start: int,
        now: int,
        cached: List[HistoricalPoint],
        padding: int,
    ) -> List[HistoricalPoint]:
        """Fetch the parts of [start, now] not covered by cached points."""
        resolution = RANGE_CONFIG[period].resolution
        if not cached:
            ranges = [(start, now)]
        else:
            earliest, latest = cached[0].timestamp, cached[-1].timestamp
            ranges = []
            if start < earliest - padding:
                ranges.append((start, earliest - 1))
            if now - latest > padding:
                ranges.append((latest, now))

        if not ranges:
            logger.info(f"Serving {period.value} history for {symbol} from cache")
            return []

        points: List[HistoricalPoint] = []
        for range_start, range_end in ranges:
            if range_end <= range_start:
                continue
            logger.info(
                f"Fetching {period.value} history for {symbol} from {self.source.name} "
                f"({_iso_date(range_start)} - {_iso_date(range_end)})"
            )
            points.extend(self.source.fetch_candles(symbol, resolution, range_start, range_end))
        return points

    def _fetch_max(
        self,
        symbol: str,
        resolution: str,
        now: int,
        cached: List[HistoricalPoint],
        padding: int,
    ) -> List[HistoricalPoint]:
        """Refresh the recent end of the cache, then walk back from its earliest point."""
        if not cached:
            return self._walk_back(symbol, resolution, now)

        points: List[HistoricalPoint] = []
        latest = cached[-1].timestamp
        if now - latest > padding:
            logger.info(f"Fetching recent history for {symbol} since {_iso_date(latest)}")
            points.extend(self.source.fetch_candles(symbol, resolution, latest, now))
        points.extend(self._walk_back(symbol, resolution, cached[0].timestamp - 1))
        return points

    def _walk_back(self, symbol: str, resolution: str, end: int) -> List[HistoricalPoint]:
        """Request consecutive chunks backwards from end until history runs out.

        Stops on an empty chunk, on a chunk that does not reach further back
        than the previous one, when the window collapses, or at the iteration cap.
        """
        points: List[HistoricalPoint] = []
        previous_earliest: Optional[int] = None
        iterations = 0

        while end > 0 and iterations < self.max_iterations:
            iterations += 1
            start = max(0, end - self.chunk_seconds)
            if start >= end:
                break

            logger.debug(f"Fetching {symbol} history chunk {start}-{end}")
            chunk = self.source.fetch_candles(symbol, resolution, start, end)
            if not chunk:
                break

            points.extend(chunk)
            earliest = min(p.timestamp for p in chunk)
            if previous_earliest is not None and earliest >= previous_earliest:
                break
            previous_earliest = earliest
            end = earliest - 1

        if iterations >= self.max_iterations:
            logger.warning(f"History walk for {symbol} hit the {self.max_iterations} iteration cap")
        return points

    def _read_cache(self, symbol: str, resolution: str) -> List[HistoricalPoint]:
        if self.db is None:
            return []
        rows = (
            self.db.query(HistoricalPriceCache)
            .filter_by(symbol=symbol, resolution=resolution)
            .order_by(HistoricalPriceCache.timestamp)
            .all()
        )
        return [
            HistoricalPoint(
                timestamp=row.timestamp,
                date=row.date,
                open=row.open,
                high=row.high,
                low=row.low,
                close=row.close,
                volume=row.volume,
            )
            for row in rows
        ]

    def _write_cache(
        self,
        symbol: str,
        resolution: str,
        points: List[HistoricalPoint],
        cached: List[HistoricalPoint],
    ) -> None:
        if self.db is None or not points:
            return

        cached_timestamps = {p.timestamp for p in cached}
        try:
            for point in dedupe_and_filter(points, Period.MAX):
                row = HistoricalPriceCache(
                    symbol=symbol,
                    resolution=resolution,
                    timestamp=point.timestamp,
                    date=point.date,
                    open=point.open,
                    high=point.high,
                    low=point.low,
                    close=point.close,
                    volume=point.volume,
                    source=self.source.name,
                    updated_at=utcnow(),
                )
                # merge upserts rows already in the cache; new ones are plain inserts
                if point.timestamp in cached_timestamps:
                    self.db.merge(row)
                else:
                    self.db.add(row)
            self.db.flush()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error updating historical cache for {symbol}: {e}")
