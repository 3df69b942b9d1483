"""Base broker provider abstraction."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from pydantic import SecretStr

from brokersync.core.brokers.models import BrokerType, FetchedAccount, FetchedPosition


class BrokerProvider(ABC):
    """Abstract base class for broker integrations.

    Each broker provider implements methods to:
    1. Build the Authorization header for its API
    2. Fetch accounts and the positions of one account
    """

    @property
    @abstractmethod
    def broker_type(self) -> BrokerType:
        """Return the broker type identifier."""
        pass

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Return human-readable broker name."""
        pass

    def authorization_header(self, access_token: SecretStr) -> str:
        """Value of the Authorization header for API calls."""
        return f"Bearer {access_token.get_secret_value()}"

    @abstractmethod
    def fetch_accounts(self, access_token: SecretStr) -> List[FetchedAccount]:
        """Fetch accounts for a linked connection.

        Args:
            access_token: Decoded access token

        Returns:
            Account payloads, each with a string "id"
        """
        pass

    @abstractmethod
    def fetch_positions(self, access_token: SecretStr, account_id: str) -> List[FetchedPosition]:
        """Fetch positions for one account.

        Args:
            access_token: Decoded access token
            account_id: Provider-assigned account ID

        Returns:
            Position payloads, each with "symbol", "quantity" and optional "cost_basis"
        """
        pass
