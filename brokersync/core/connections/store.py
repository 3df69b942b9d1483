"""Connection repository for reads and partial-field updates."""

from __future__ import annotations

import logging
from typing import Any, List

from sqlalchemy.orm import Session

from brokersync.db.models import BrokerageConnection, ConnectionStatus
from brokersync.exceptions import NotFoundError

logger = logging.getLogger(__name__)

# Columns callers may write through update(); "metadata" maps to metadata_
UPDATABLE_FIELDS = frozenset(
    {
        "status",
        "access_token_encrypted",
        "refresh_token_encrypted",
        "access_token_expires_at",
        "metadata",
        "last_synced_at",
    }
)


class ConnectionStore:
    """Repository for BrokerageConnection rows.

    Every update writes only the fields it is given and commits immediately,
    so concurrent writers resolve last-write-wins per field. No row locks are
    taken.
    """

    def __init__(self, db: Session):
        """Initialize store with database session."""
        self.db = db

    def get(self, connection_id: str) -> BrokerageConnection:
        """Get a connection by ID.

        Raises:
            NotFoundError: If the connection does not exist
        """
        connection = self.db.query(BrokerageConnection).filter_by(id=connection_id).first()
        if connection is None:
            raise NotFoundError("Brokerage connection not found")
        return connection

    def update(self, connection_id: str, **fields: Any) -> BrokerageConnection:
        """Write the given fields and nothing else.

        Args:
            connection_id: Connection ID
            **fields: Column values to write (use ``metadata`` for the metadata document)

        Returns:
            Updated connection
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update connection fields: {', '.join(sorted(unknown))}")

        connection = self.get(connection_id)
        for name, value in fields.items():
            if name == "metadata":
                # Fresh dict so the JSON column registers the change
                connection.metadata_ = dict(value or {})
            elif name == "status" and isinstance(value, ConnectionStatus):
                connection.status = value.value
            else:
                setattr(connection, name, value)

        self.db.commit()
        logger.debug(f"Updated connection {connection_id}: {', '.join(sorted(fields))}")
        return connection

    def list_refresh_candidates(self, limit: int) -> List[BrokerageConnection]:
        """Active connections, least recently synced first (never-synced lead)."""
        return (
            self.db.query(BrokerageConnection)
            .filter(BrokerageConnection.status == ConnectionStatus.ACTIVE.value)
            .order_by(BrokerageConnection.last_synced_at.asc().nulls_first())
            .limit(limit)
            .all()
        )

    def list_for_user(self, user_id: str) -> List[BrokerageConnection]:
        """All connections owned by a user."""
        return (
            self.db.query(BrokerageConnection)
            .filter_by(user_id=user_id)
            .order_by(BrokerageConnection.created_at.asc())
            .all()
        )
