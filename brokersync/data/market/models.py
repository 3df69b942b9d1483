"""Market data Pydantic models."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class Quote(BaseModel):
    """Latest quote for a symbol, tagged with the provider that produced it."""

    symbol: str
    price: float
    change: Optional[float] = None
    change_percent: Optional[float] = None
    volume: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    trading_day: Optional[str] = None
    timestamp: datetime
    provider: str

    class Config:
        from_attributes = True


class HistoricalPoint(BaseModel):
    """One candle of a historical price series."""

    timestamp: int  # Epoch seconds
    date: str
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None


class BackfillResult(BaseModel):
    """A deduplicated, ascending price series for one period."""

    symbol: str
    period: str
    resolution: str
    data: List[HistoricalPoint]
