"""Shared fixtures: in-memory database, settings and HTTP response stubs."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy.pool import StaticPool

from brokersync.config import Settings
from brokersync.core.credentials import encode_token
from brokersync.db.database import build_engine, build_session_factory, init_db
from brokersync.db.models import BrokerageConnection, User


@pytest.fixture
def db_session():
    """Fresh in-memory SQLite session per test."""
    engine = build_engine("sqlite://", poolclass=StaticPool)
    init_db(bind=engine)
    session = build_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def settings():
    """Settings with every outbound integration configured."""
    return Settings(
        database_url="sqlite://",
        broker_api_base_url="https://broker.example.com/v1",
        broker_oauth_authorize_url="https://broker.example.com/oauth/authorize",
        broker_oauth_token_url="https://broker.example.com/oauth/token",
        broker_client_id="client-123",
        broker_client_secret="secret-xyz",
        broker_redirect_uri="https://app.example.com/callback",
        trading212_api_base_url="https://t212.example.com/api/v0",
        alpha_vantage_api_key="av-key",
        finnhub_api_key="fh-key",
        quote_provider_order=["alphavantage", "yfinance"],
        refresh_batch_size=10,
        refresh_delay_ms=500,
        refresh_expiry_buffer_seconds=300,
        cron_secret="",
        jwt_secret="jwt-test-secret",
    )


@pytest.fixture
def user(db_session):
    owner = User(email="owner@example.com")
    db_session.add(owner)
    db_session.commit()
    return owner


@pytest.fixture
def make_connection(db_session, user):
    """Factory for stored connections."""

    def _make(
        provider="oauth",
        status="active",
        access_token="access-token",
        refresh_token=None,
        expires_at=None,
        metadata=None,
        last_synced_at=None,
        user_id=None,
    ) -> BrokerageConnection:
        connection = BrokerageConnection(
            user_id=user_id or user.id,
            provider=provider,
            status=status,
            access_token_encrypted=encode_token(access_token),
            refresh_token_encrypted=encode_token(refresh_token),
            access_token_expires_at=expires_at,
            metadata_=dict(metadata or {}),
            last_synced_at=last_synced_at,
        )
        db_session.add(connection)
        db_session.commit()
        return connection

    return _make


@pytest.fixture
def make_response():
    """Factory for stubbed ``requests`` responses."""

    def _make(status_code=200, payload=None, invalid_json=False):
        response = MagicMock()
        response.status_code = status_code
        response.ok = 200 <= status_code < 300
        if invalid_json:
            response.json.side_effect = ValueError("No JSON object could be decoded")
        else:
            response.json.return_value = payload if payload is not None else {}
        return response

    return _make


@pytest.fixture
def fixed_now():
    return datetime(2024, 5, 1, 12, 0, 0)
