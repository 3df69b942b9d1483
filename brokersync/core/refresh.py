"""Refresh batch - token refresh and sync for the stalest connections."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from brokersync.config import Settings, get_settings
from brokersync.core.brokers.oauth import OAuthNegotiator
from brokersync.core.brokers.sync import BrokerSyncService
from brokersync.core.connections.store import ConnectionStore
from brokersync.core.credentials import decode_token
from brokersync.db.database import get_db
from brokersync.db.models import BrokerageConnection, utcnow
from brokersync.exceptions import DecodeError

logger = logging.getLogger(__name__)


@dataclass
class RefreshSummary:
    """Outcome of one refresh batch."""

    connections: int = 0
    refreshed: int = 0
    synced: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "connections": self.connections,
            "refreshed": self.refreshed,
            "synced": self.synced,
            "failures": list(self.failures),
        }


def needs_refresh(
    connection: BrokerageConnection,
    buffer_seconds: int,
    now: Optional[datetime] = None,
) -> bool:
    """Whether a connection's token should be refreshed before syncing.

    True when the token expires within the buffer, or when there is no
    usable access token at all.
    """
    try:
        has_token = decode_token(connection.access_token_encrypted) is not None
    except DecodeError:
        has_token = False
    if not has_token:
        return True

    expires_at = connection.access_token_expires_at
    if expires_at is None:
        return False
    return expires_at <= (now or utcnow()) + timedelta(seconds=buffer_seconds)


class RefreshScheduler:
    """Runs token refresh and sync over a bounded batch of connections."""

    def __init__(
        self,
        db: Session,
        negotiator: Optional[OAuthNegotiator] = None,
        sync_service: Optional[BrokerSyncService] = None,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.store = ConnectionStore(db)
        self.negotiator = negotiator or OAuthNegotiator(self.store, settings=self.settings)
        self.sync_service = sync_service or BrokerSyncService(db, settings=self.settings)
        self.sleep = sleep

    def batch_size(self, limit: Optional[int] = None) -> int:
        default = self.settings.refresh_batch_size
        if limit is not None and limit > 0:
            return min(limit, default)
        return default

    def run_batch(self, limit: Optional[int] = None) -> RefreshSummary:
        """Refresh and sync the least recently synced active connections.

        A failing connection is rolled back and recorded; the rest of the
        batch still runs.

        Args:
            limit: Requested batch size, capped at REFRESH_BATCH_SIZE

        Returns:
            RefreshSummary with counts and per-connection failures
        """
        candidates = self.store.list_refresh_candidates(self.batch_size(limit))
        # Ids captured up front; a rollback expires the loaded rows
        connection_ids = [connection.id for connection in candidates]
        summary = RefreshSummary(connections=len(connection_ids))
        delay = self.settings.refresh_delay_ms / 1000.0

        logger.info(f"Refresh batch starting for {len(connection_ids)} connection(s)")

        for index, connection_id in enumerate(connection_ids):
            try:
                connection = self.store.get(connection_id)
                access_token = None
                if needs_refresh(connection, self.settings.refresh_expiry_buffer_seconds):
                    refresh = self.negotiator.refresh(connection)
                    if refresh.refreshed:
                        summary.refreshed += 1
                    access_token = refresh.access_token

                self.sync_service.sync(connection, access_token=access_token)
                summary.synced += 1
            except Exception as e:
                self.db.rollback()
                logger.error(f"Refresh failed for connection {connection_id}: {e}")
                summary.failures.append({"id": connection_id, "error": str(e)})

            if index < len(connection_ids) - 1 and delay > 0:
                self.sleep(delay)

        logger.info(
            f"Refresh batch complete: {summary.synced}/{summary.connections} synced, "
            f"{summary.refreshed} refreshed, {len(summary.failures)} failed"
        )
        return summary


def run_refresh_cycle(limit: Optional[int] = None) -> RefreshSummary:
    """Run one refresh batch in its own database session."""
    with get_db() as db:
        return RefreshScheduler(db).run_batch(limit=limit)
