"""Market data API routes."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from brokersync.api.deps import get_db, limiter
from brokersync.api.routes.brokerage import CamelModel
from brokersync.config import Settings, get_settings
from brokersync.data.market import HistoricalBackfillEngine, QuoteService, get_candle_source

router = APIRouter(prefix="/market", tags=["market"])


class QuoteRequest(CamelModel):
    ticker: str
    provider: Optional[str] = None


class QuoteResponse(CamelModel):
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


class HistoryRequest(CamelModel):
    ticker: str
    period: str = "1M"
    source: str = "finnhub"


class HistoryPointResponse(CamelModel):
    timestamp: int
    date: str
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None


class HistoryResponse(CamelModel):
    symbol: str
    period: str
    resolution: str
    data: List[HistoryPointResponse]


@router.post("/quote", response_model=QuoteResponse)
@limiter.limit("30/minute")
def get_quote(
    request: Request,
    body: QuoteRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Latest quote, falling back across providers."""
    quote = QuoteService(db, settings=settings).get_quote(body.ticker, provider=body.provider)
    return QuoteResponse(**quote.model_dump())


@router.post("/history", response_model=HistoryResponse)
@limiter.limit("30/minute")
def get_history(
    request: Request,
    body: HistoryRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Historical series for a period (1D, 1M, 3M, 1Y, 5Y, MAX)."""
    engine = HistoricalBackfillEngine(
        get_candle_source(body.source, settings),
        max_iterations=settings.backfill_max_iterations,
        chunk_days=settings.backfill_chunk_days,
        db=db,
    )
    result = engine.backfill(body.ticker, body.period)
    return HistoryResponse(**result.model_dump())
