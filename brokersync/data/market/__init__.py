"""Market data feeds (quotes, historical series)."""

from .models import BackfillResult, HistoricalPoint, Quote
from .quotes import QuoteProviderChain, QuoteService, build_default_chain
from .history import HistoricalBackfillEngine, Period, get_candle_source

__all__ = [
    "BackfillResult",
    "HistoricalPoint",
    "Quote",
    "QuoteProviderChain",
    "QuoteService",
    "build_default_chain",
    "HistoricalBackfillEngine",
    "Period",
    "get_candle_source",
]
