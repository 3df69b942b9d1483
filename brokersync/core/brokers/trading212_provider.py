"""Trading212 broker integration provider.

Trading212 does not use OAuth. Users generate an API key in the app and
submit it directly; the key is sent as the raw Authorization header value.

Monetary fields arrive as money objects which may carry a nested
``converted`` amount in another currency, e.g.::

    {"value": 98.23, "currencyCode": "GBP",
     "converted": {"value": 120.12, "currencyCode": "USD"}}

Positions are stored with USD cost basis where one can be found.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from pydantic import SecretStr

from brokersync.config import Settings, get_settings
from brokersync.core.brokers.base import BrokerProvider
from brokersync.core.brokers.models import BrokerType, FetchedAccount, FetchedPosition
from brokersync.core.http import request_json
from brokersync.core.parsing import to_finite_number
from brokersync.exceptions import UpstreamError

logger = logging.getLogger(__name__)

PROVIDER_NAME = "trading212"

# Bound on nested "converted" money objects
MAX_MONEY_DEPTH = 5


def extract_usd_amount(money: Any, depth: int = 0) -> Optional[float]:
    """Find the USD value in a (possibly nested) money object.

    Args:
        money: Mapping with value/currencyCode and optional converted
        depth: Current nesting level

    Returns:
        USD amount, or None if no USD figure is present
    """
    if depth > MAX_MONEY_DEPTH or not isinstance(money, dict):
        return None

    currency = money.get("currencyCode") or money.get("currency")
    value = to_finite_number(money.get("value"))
    if isinstance(currency, str) and currency.upper() == "USD" and value is not None:
        return value

    return extract_usd_amount(money.get("converted"), depth + 1)


def map_trading212_account(account: Any) -> Optional[FetchedAccount]:
    """Normalize a Trading212 account payload into the common account shape."""
    if not isinstance(account, dict):
        return None

    raw_id = account.get("accountId", account.get("id"))
    if raw_id is None or isinstance(raw_id, bool) or str(raw_id).strip() == "":
        return None

    account_type = account.get("accountType") or "INVEST"
    currency = account.get("baseCurrency") or account.get("currencyCode")
    name = account.get("accountAlias") or account.get("name") or f"Trading212 {account_type}"

    return {
        **account,
        "id": str(raw_id).strip(),
        "name": name,
        "type": account_type,
        "currency": currency,
        "provider": PROVIDER_NAME,
        "baseCurrency": currency,
        "instrumentType": account_type,
    }


def map_trading212_position(position: Any, account_id: str) -> Optional[FetchedPosition]:
    """Normalize a Trading212 position payload into the common position shape."""
    if not isinstance(position, dict):
        return None

    ticker = position.get("ticker")
    if not isinstance(ticker, str) or not ticker.strip():
        return None

    quantity = to_finite_number(position.get("quantity"))
    if quantity is None:
        return None

    currency = position.get("currencyCode")
    average_price = position.get("averagePrice")

    cost_basis = extract_usd_amount(average_price)
    if cost_basis is None and (currency is None or currency == "USD"):
        # Plain number without a money wrapper
        cost_basis = to_finite_number(average_price)

    return {
        **position,
        "symbol": ticker.strip(),
        "quantity": quantity,
        "cost_basis": cost_basis,
        "instrumentType": position.get("instrumentType") or "EQUITY",
        "currency": currency,
        "provider": PROVIDER_NAME,
        "accountId": account_id,
        "totalValueUsd": extract_usd_amount(position.get("totalValue")),
    }


class Trading212Provider(BrokerProvider):
    """Trading212 integration using a user-supplied API key."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    @property
    def broker_type(self) -> BrokerType:
        return BrokerType.TRADING212

    @property
    def display_name(self) -> str:
        return "Trading212"

    def authorization_header(self, access_token: SecretStr) -> str:
        return access_token.get_secret_value()

    def _get(self, path: str, label: str, access_token: SecretStr) -> Any:
        return request_json(
            "GET",
            f"{self.settings.trading212_api_base_url.rstrip('/')}{path}",
            label=label,
            headers={"Authorization": self.authorization_header(access_token)},
        )

    def fetch_accounts(self, access_token: SecretStr) -> List[FetchedAccount]:
        payload = self._get("/equity/account/info", "Trading212 account request", access_token)
        account = map_trading212_account(payload)
        if account is None:
            logger.error("Trading212 account response is invalid")
            raise UpstreamError("Trading212 account response is invalid")
        return [account]

    def fetch_positions(self, access_token: SecretStr, account_id: str) -> List[FetchedPosition]:
        payload = self._get("/equity/portfolio", "Trading212 portfolio request", access_token)
        if not isinstance(payload, list):
            logger.error("Trading212 portfolio response is invalid")
            raise UpstreamError("Trading212 portfolio response is invalid")

        positions = []
        for raw in payload:
            mapped = map_trading212_position(raw, account_id)
            if mapped is None:
                logger.warning(f"Skipping unmappable Trading212 position in account {account_id}")
                continue
            positions.append(mapped)
        return positions
