"""Generic OAuth broker reached over a JSON REST API.

Expected endpoints, relative to BROKER_API_BASE_URL:
- GET /accounts                  -> [account, ...] or {"accounts": [...]}
- GET /accounts/{id}/positions   -> [position, ...] or {"positions": [...]}
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional
from urllib.parse import quote

from pydantic import SecretStr

from brokersync.config import Settings, get_settings
from brokersync.core.brokers.base import BrokerProvider
from brokersync.core.brokers.models import BrokerType, FetchedAccount, FetchedPosition
from brokersync.core.http import request_json
from brokersync.exceptions import ConfigError, UpstreamError

logger = logging.getLogger(__name__)


def unwrap_list(payload: Any, key: str, label: str) -> List[dict]:
    """Accept either a bare list or an object wrapping it under ``key``."""
    items = payload if isinstance(payload, list) else None
    if items is None and isinstance(payload, dict):
        items = payload.get(key)
    if not isinstance(items, list):
        logger.error(f"{label} response is invalid")
        raise UpstreamError(f"{label} response is invalid")
    return items


class RestBrokerProvider(BrokerProvider):
    """Broker that authenticates through the OAuth code exchange."""

    def __init__(self, name: str = "oauth", settings: Optional[Settings] = None):
        self.name = name
        self.settings = settings or get_settings()

    @property
    def broker_type(self) -> BrokerType:
        return BrokerType.OAUTH

    @property
    def display_name(self) -> str:
        return self.name.replace("_", " ").title()

    def _url(self, path: str) -> str:
        base = self.settings.broker_api_base_url
        if not base:
            raise ConfigError("Missing required configuration: BROKER_API_BASE_URL")
        return f"{base.rstrip('/')}{path}"

    def fetch_accounts(self, access_token: SecretStr) -> List[FetchedAccount]:
        payload = request_json(
            "GET",
            self._url("/accounts"),
            label="Broker accounts request",
            headers={"Authorization": self.authorization_header(access_token)},
        )
        return unwrap_list(payload, "accounts", "Broker accounts")

    def fetch_positions(self, access_token: SecretStr, account_id: str) -> List[FetchedPosition]:
        payload = request_json(
            "GET",
            self._url(f"/accounts/{quote(account_id, safe='')}/positions"),
            label="Broker positions request",
            headers={"Authorization": self.authorization_header(access_token)},
        )
        return unwrap_list(payload, "positions", "Broker positions")
