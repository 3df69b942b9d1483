"""Tests for ConnectionStore."""

from datetime import datetime

import pytest

from brokersync.core.connections import ConnectionStore
from brokersync.db.models import ConnectionStatus
from brokersync.exceptions import NotFoundError


class TestConnectionStore:
    """Tests for connection reads and partial updates."""

    def test_get_missing_raises_not_found(self, db_session):
        """Unknown IDs raise NotFoundError."""
        with pytest.raises(NotFoundError):
            ConnectionStore(db_session).get("missing")

    def test_update_writes_only_given_fields(self, db_session, make_connection):
        """Fields not passed are left untouched."""
        connection = make_connection(metadata={"keep": "me"}, refresh_token="r1")
        store = ConnectionStore(db_session)

        store.update(connection.id, status=ConnectionStatus.REQUIRES_AUTH)

        reloaded = store.get(connection.id)
        assert reloaded.status == "requires_auth"
        assert reloaded.metadata_ == {"keep": "me"}
        assert reloaded.refresh_token_encrypted == b"r1"

    def test_update_maps_metadata_key(self, db_session, make_connection):
        """The metadata keyword writes the metadata document."""
        connection = make_connection()
        store = ConnectionStore(db_session)

        store.update(connection.id, metadata={"oauth_state": "abc"})

        assert store.get(connection.id).metadata_ == {"oauth_state": "abc"}

    def test_update_rejects_unknown_fields(self, db_session, make_connection):
        """Only known columns can be written."""
        connection = make_connection()
        with pytest.raises(ValueError):
            ConnectionStore(db_session).update(connection.id, provider="other")

    def test_refresh_candidates_order_never_synced_first(self, db_session, make_connection):
        """Never-synced connections lead, then oldest sync first."""
        recent = make_connection(last_synced_at=datetime(2024, 5, 1))
        never = make_connection(last_synced_at=None)
        oldest = make_connection(last_synced_at=datetime(2024, 1, 1))
        make_connection(status="requires_auth")
        make_connection(status="pending")

        candidates = ConnectionStore(db_session).list_refresh_candidates(limit=10)

        assert [c.id for c in candidates] == [never.id, oldest.id, recent.id]

    def test_refresh_candidates_respects_limit(self, db_session, make_connection):
        for _ in range(3):
            make_connection()

        assert len(ConnectionStore(db_session).list_refresh_candidates(limit=2)) == 2

    def test_list_for_user(self, db_session, make_connection, user):
        make_connection()
        make_connection(provider="trading212")

        connections = ConnectionStore(db_session).list_for_user(user.id)

        assert {c.provider for c in connections} == {"oauth", "trading212"}
