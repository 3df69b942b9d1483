"""Database module."""

from .database import SessionLocal, build_engine, engine, get_db, init_db
from .models import (
    Base,
    BrokerageAccount,
    BrokerageConnection,
    BrokeragePosition,
    ConnectionStatus,
    HistoricalPriceCache,
    PriceCache,
    Symbol,
    User,
)

__all__ = [
    "get_db",
    "init_db",
    "engine",
    "SessionLocal",
    "build_engine",
    "Base",
    "User",
    "BrokerageConnection",
    "BrokerageAccount",
    "BrokeragePosition",
    "ConnectionStatus",
    "Symbol",
    "PriceCache",
    "HistoricalPriceCache",
]
