"""SQLAlchemy ORM models."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Get current UTC timestamp as a naive datetime for database compatibility."""
    return datetime.utcnow()


class ConnectionStatus(str, enum.Enum):
    """Lifecycle states of a brokerage connection."""

    PENDING = "pending"
    ACTIVE = "active"
    REQUIRES_AUTH = "requires_auth"


class User(Base):
    """Owner of connections and symbols."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_uuid)
    email = Column(String(255), unique=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    connections = relationship(
        "BrokerageConnection", back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"


class BrokerageConnection(Base):
    """A stored brokerage integration: credentials, status and provider metadata."""

    __tablename__ = "brokerage_connections"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    provider = Column(String(50), nullable=False)
    status = Column(String(20), default=ConnectionStatus.PENDING.value, nullable=False)
    access_token_encrypted = Column(LargeBinary, nullable=True)
    refresh_token_encrypted = Column(LargeBinary, nullable=True)
    access_token_expires_at = Column(DateTime, nullable=True)
    # OAuth state, redirect URI and provider-specific fields
    metadata_ = Column("metadata", JSON, default=dict, nullable=False)
    last_synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="connections")
    accounts = relationship("BrokerageAccount", back_populates="connection")

    def __repr__(self) -> str:
        # Tokens are deliberately left out
        return (
            f"<BrokerageConnection(id={self.id}, provider={self.provider}, "
            f"status={self.status})>"
        )


class BrokerageAccount(Base):
    """An account reported by a brokerage connection."""

    __tablename__ = "brokerage_accounts"
    __table_args__ = (UniqueConstraint("connection_id", "external_id"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    connection_id = Column(
        String, ForeignKey("brokerage_connections.id"), nullable=False, index=True
    )
    external_id = Column(String(255), nullable=False)
    name = Column(String(255), nullable=True)
    account_type = Column(String(50), nullable=True)
    currency = Column(String(10), nullable=True)
    metadata_ = Column("metadata", JSON, default=dict, nullable=False)  # Last fetched snapshot
    last_synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    connection = relationship("BrokerageConnection", back_populates="accounts")
    positions = relationship("BrokeragePosition", back_populates="account")

    def __repr__(self) -> str:
        return f"<BrokerageAccount(id={self.id}, external_id={self.external_id})>"


class BrokeragePosition(Base):
    """A position held in a brokerage account."""

    __tablename__ = "brokerage_positions"
    __table_args__ = (UniqueConstraint("account_id", "symbol"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    account_id = Column(
        String, ForeignKey("brokerage_accounts.id"), nullable=False, index=True
    )
    symbol = Column(String(32), nullable=False)
    quantity = Column(Float, nullable=False)
    cost_basis = Column(Float, nullable=True)
    metadata_ = Column("metadata", JSON, default=dict, nullable=False)  # Includes local_symbol_id
    last_synced_at = Column(DateTime, nullable=True)

    # Relationships
    account = relationship("BrokerageAccount", back_populates="positions")

    def __repr__(self) -> str:
        return f"<BrokeragePosition(id={self.id}, symbol={self.symbol}, quantity={self.quantity})>"


class Symbol(Base):
    """A locally known instrument, created lazily on first observation."""

    __tablename__ = "symbols"
    __table_args__ = (UniqueConstraint("owner_id", "ticker"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    owner_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    ticker = Column(String(32), nullable=False)
    name = Column(String(255), nullable=True)
    asset_type = Column(String(20), default="EQUITY", nullable=False)
    quote_currency = Column(String(10), default="USD", nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Symbol(id={self.id}, ticker={self.ticker})>"


class PriceCache(Base):
    """Latest quote per symbol."""

    __tablename__ = "price_cache"

    symbol = Column(String(32), primary_key=True)
    price = Column(Float, nullable=False)
    change = Column(Float, nullable=True)
    change_percent = Column(Float, nullable=True)
    provider = Column(String(20), nullable=True)
    fetched_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<PriceCache(symbol={self.symbol}, price={self.price})>"


class HistoricalPriceCache(Base):
    """Stored candles per symbol and resolution, reused across history requests."""

    __tablename__ = "historical_price_cache"

    symbol = Column(String(32), primary_key=True)
    resolution = Column(String(4), primary_key=True)
    timestamp = Column(Integer, primary_key=True)  # Epoch seconds
    date = Column(String(32), nullable=False)
    open = Column(Float, nullable=False)
    high = Column(Float, nullable=False)
    low = Column(Float, nullable=False)
    close = Column(Float, nullable=False)
    volume = Column(Float, nullable=True)
    source = Column(String(20), nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<HistoricalPriceCache(symbol={self.symbol}, timestamp={self.timestamp})>"
