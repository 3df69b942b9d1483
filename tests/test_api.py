"""Tests for the HTTP API."""

import time
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from brokersync.api.app import app
from brokersync.api.deps import get_db, limiter
from brokersync.config import get_settings
from brokersync.core.auth import create_access_token
from brokersync.core.credentials import decode_token
from brokersync.data.market.models import Quote

REQUEST = "brokersync.core.http.requests.request"


@pytest.fixture
def client(db_session, settings):
    """Test client bound to the in-memory session and test settings."""

    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_settings] = lambda: settings
    limiter.enabled = False
    try:
        yield TestClient(app)
    finally:
        limiter.enabled = True
        app.dependency_overrides.clear()


def _auth(user_id, settings):
    token = create_access_token({"sub": user_id}, secret_key=settings.jwt_secret)
    return {"Authorization": f"Bearer {token}"}


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestOAuthRoutes:
    """Tests for /api/brokerage/oauth endpoints."""

    def test_initiate_returns_camel_case(self, client, make_connection):
        connection = make_connection(status="pending")

        response = client.post("/api/brokerage/oauth/initiate", json={"connectionId": connection.id})

        assert response.status_code == 200
        body = response.json()
        assert body["authorizationUrl"].startswith("https://broker.example.com/oauth/authorize?")
        assert body["state"] == connection.metadata_["oauth_state"]

    def test_unknown_connection_is_404_error_body(self, client):
        response = client.post("/api/brokerage/oauth/initiate", json={"connectionId": "missing"})

        assert response.status_code == 404
        assert set(response.json()) == {"error"}

    def test_static_token_provider_is_501(self, client, make_connection):
        connection = make_connection(provider="trading212", status="pending")

        response = client.post("/api/brokerage/oauth/initiate", json={"connectionId": connection.id})

        assert response.status_code == 501

    def test_exchange_state_mismatch_is_400(self, client, make_connection):
        connection = make_connection(status="pending", metadata={"oauth_state": "expected"})

        response = client.post(
            "/api/brokerage/oauth/token",
            json={"connectionId": connection.id, "code": "abc", "state": "other"},
        )

        assert response.status_code == 400
        assert "error" in response.json()

    def test_exchange_success(self, client, make_connection, make_response):
        connection = make_connection(status="pending", metadata={"oauth_state": "s1"})
        response_stub = make_response(200, {"access_token": "a1", "refresh_token": "r1", "expires_in": 3600})

        with patch(REQUEST, return_value=response_stub):
            response = client.post(
                "/api/brokerage/oauth/token",
                json={"connectionId": connection.id, "code": "abc", "state": "s1"},
            )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "active"
        assert body["accessTokenExpiresAt"] is not None

    def test_provider_client_error_status_passes_through(self, client, make_connection, make_response):
        connection = make_connection(status="pending")

        with patch(REQUEST, return_value=make_response(401)):
            response = client.post(
                "/api/brokerage/oauth/token", json={"connectionId": connection.id, "code": "abc"}
            )

        assert response.status_code == 401


class TestTokenSubmit:
    """Tests for /api/brokerage/token/submit."""

    def test_requires_bearer_token(self, client, make_connection):
        connection = make_connection(provider="trading212", status="pending")

        response = client.post(
            "/api/brokerage/token/submit", json={"connectionId": connection.id, "apiToken": "t212"}
        )

        assert response.status_code == 401

    def test_stores_token_for_owner(self, client, make_connection, user, settings):
        connection = make_connection(provider="trading212", status="pending", access_token=None)

        response = client.post(
            "/api/brokerage/token/submit",
            json={"connectionId": connection.id, "apiToken": "t212-key"},
            headers=_auth(user.id, settings),
        )

        assert response.status_code == 200
        assert response.json() == {"status": "active"}
        assert decode_token(connection.access_token_encrypted) == "t212-key"

    def test_other_users_connection_is_forbidden(self, client, make_connection, settings):
        connection = make_connection(provider="trading212", status="pending")

        response = client.post(
            "/api/brokerage/token/submit",
            json={"connectionId": connection.id, "apiToken": "t212-key"},
            headers=_auth("intruder", settings),
        )

        assert response.status_code == 403


class TestSyncAndRefresh:
    def test_sync(self, client, make_connection, make_response):
        connection = make_connection(provider="trading212", access_token="t212-key")
        responses = {
            "https://t212.example.com/api/v0/equity/account/info": make_response(200, {"accountId": 1}),
            "https://t212.example.com/api/v0/equity/portfolio": make_response(
                200, [{"ticker": "AAPL", "quantity": 1}, {"ticker": "MSFT", "quantity": 2}]
            ),
        }

        with patch(REQUEST, side_effect=lambda method, url, **kwargs: responses[url]):
            response = client.post("/api/brokerage/sync", json={"connectionId": connection.id})

        assert response.status_code == 200
        assert response.json() == {"accounts": 1, "positions": 2, "status": "synced", "warnings": []}

    def test_sync_reports_skipped_rows(self, client, make_connection, make_response):
        """Positions that cannot be stored are left out of the count and listed as warnings."""
        connection = make_connection()
        responses = {
            "https://broker.example.com/v1/accounts": make_response(200, [{"id": "A1"}]),
            "https://broker.example.com/v1/accounts/A1/positions": make_response(
                200, [{"symbol": "AAPL", "quantity": 1}, {"symbol": "", "quantity": 2}]
            ),
        }

        with patch(REQUEST, side_effect=lambda method, url, **kwargs: responses[url]):
            response = client.post("/api/brokerage/sync", json={"connectionId": connection.id})

        body = response.json()
        assert response.status_code == 200
        assert body["positions"] == 1
        assert len(body["warnings"]) == 1

    def test_sync_upstream_failure_is_502(self, client, make_connection, make_response):
        connection = make_connection()

        with patch(REQUEST, return_value=make_response(500)):
            response = client.post("/api/brokerage/sync", json={"connectionId": connection.id})

        assert response.status_code == 502
        assert "error" in response.json()

    def test_refresh_requires_cron_secret_when_set(self, client, settings):
        settings.cron_secret = "cron-s3cret"

        assert client.post("/api/brokerage/refresh").status_code == 401
        assert (
            client.post("/api/brokerage/refresh", headers={"Authorization": "Bearer wrong"}).status_code
            == 401
        )

        response = client.post("/api/brokerage/refresh", headers={"Authorization": "Bearer cron-s3cret"})
        assert response.status_code == 200
        assert response.json() == {"connections": 0, "refreshed": 0, "synced": 0, "failures": []}

    def test_refresh_reports_failures(self, client, make_connection, make_response, settings):
        settings.refresh_delay_ms = 0
        connection = make_connection()

        with patch(REQUEST, return_value=make_response(503)):
            response = client.post("/api/brokerage/refresh?limit=5")

        body = response.json()
        assert response.status_code == 200
        assert body["connections"] == 1
        assert body["synced"] == 0
        assert body["failures"][0]["id"] == connection.id


class TestMarketRoutes:
    def test_quote_uses_camel_case(self, client):
        service = MagicMock()
        service.get_quote.return_value = Quote(
            symbol="AAPL",
            price=189.84,
            change=1.25,
            change_percent=0.66,
            trading_day="2024-05-01",
            timestamp=datetime(2024, 5, 1),
            provider="alphavantage",
        )

        with patch("brokersync.api.routes.market.QuoteService", return_value=service):
            response = client.post("/api/market/quote", json={"ticker": "aapl", "provider": "alphavantage"})

        assert response.status_code == 200
        body = response.json()
        assert body["changePercent"] == 0.66
        assert body["tradingDay"] == "2024-05-01"
        assert body["provider"] == "alphavantage"
        service.get_quote.assert_called_once_with("aapl", provider="alphavantage")

    def test_history_invalid_period(self, client):
        response = client.post("/api/market/history", json={"ticker": "AAPL", "period": "7Y"})

        assert response.status_code == 400
        assert response.json() == {"error": "Unsupported period"}

    def test_history_from_finnhub(self, client, make_response):
        now = int(time.time())
        payload = {"s": "ok", "t": [now], "o": [1], "h": [2], "l": [0.5], "c": [1.5], "v": [10]}

        with patch(REQUEST, return_value=make_response(200, payload)):
            response = client.post("/api/market/history", json={"ticker": "aapl", "period": "1M"})

        assert response.status_code == 200
        body = response.json()
        assert body["symbol"] == "AAPL"
        assert body["resolution"] == "D"
        assert body["data"][0]["close"] == 1.5
