"""Broker position sync service."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from pydantic import SecretStr
from sqlalchemy.orm import Session

from brokersync.config import Settings
from brokersync.core.brokers.base import BrokerProvider
from brokersync.core.brokers.models import FetchedPosition, SyncResult
from brokersync.core.brokers.reconciler import AccountReconciler, account_external_id
from brokersync.core.brokers.registry import get_broker_provider
from brokersync.core.connections.store import ConnectionStore
from brokersync.core.credentials import decode_secret
from brokersync.db.models import BrokerageConnection
from brokersync.exceptions import InvalidRequestError

logger = logging.getLogger(__name__)


class BrokerSyncService:
    """Service for syncing accounts and positions from brokerage connections."""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings
        self.store = ConnectionStore(db)
        self.reconciler = AccountReconciler(db)

    def get_provider(self, provider: str) -> BrokerProvider:
        """Get the provider client for a connection's provider name."""
        return get_broker_provider(provider, settings=self.settings)

    def sync_connection(
        self,
        connection_id: str,
        access_token: Optional[SecretStr] = None,
    ) -> SyncResult:
        """Fetch accounts and positions for a connection and reconcile them.

        Args:
            connection_id: Connection to sync
            access_token: Token to use instead of the stored one (e.g. just refreshed)

        Returns:
            SyncResult with account and position counts
        """
        connection = self.store.get(connection_id)
        return self.sync(connection, access_token=access_token)

    def sync(
        self,
        connection: BrokerageConnection,
        access_token: Optional[SecretStr] = None,
    ) -> SyncResult:
        """Sync an already-loaded connection."""
        token = access_token or decode_secret(connection.access_token_encrypted)
        if token is None:
            raise InvalidRequestError("Connection is missing an access token")

        provider = self.get_provider(connection.provider)
        logger.info(f"Syncing connection {connection.id} via {provider.display_name}")

        fetched_accounts = provider.fetch_accounts(token)

        positions_by_account: Dict[str, List[FetchedPosition]] = {}
        for account in fetched_accounts:
            external_id = account_external_id(account)
            if external_id is None or external_id in positions_by_account:
                continue
            positions_by_account[external_id] = provider.fetch_positions(token, external_id)

        result = self.reconciler.reconcile(connection, fetched_accounts, positions_by_account)

        return SyncResult(
            connection_id=connection.id,
            accounts=result.accounts,
            positions=result.positions,
            status="synced",
            synced_at=connection.last_synced_at,
            warnings=result.warnings,
        )