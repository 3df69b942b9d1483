"""Tests for the refresh batch."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from pydantic import SecretStr

from brokersync.core.brokers.models import RefreshResult
from brokersync.core.refresh import RefreshScheduler, needs_refresh
from brokersync.exceptions import ReauthRequiredError, UpstreamError


@pytest.fixture
def negotiator():
    mock = MagicMock()
    mock.refresh.return_value = RefreshResult(
        refreshed=True, access_token=SecretStr("fresh"), expires_at=datetime(2030, 1, 1)
    )
    return mock


@pytest.fixture
def sync_service():
    return MagicMock()


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def scheduler(db_session, settings, negotiator, sync_service, sleep):
    return RefreshScheduler(
        db_session,
        negotiator=negotiator,
        sync_service=sync_service,
        settings=settings,
        sleep=sleep,
    )


class TestNeedsRefresh:
    """Tests for refresh eligibility."""

    def test_expiring_within_buffer(self, make_connection, fixed_now):
        connection = make_connection(expires_at=fixed_now + timedelta(seconds=120))
        assert needs_refresh(connection, 300, now=fixed_now)

    def test_expiry_beyond_buffer(self, make_connection, fixed_now):
        connection = make_connection(expires_at=fixed_now + timedelta(hours=1))
        assert not needs_refresh(connection, 300, now=fixed_now)

    def test_no_expiry_with_token(self, make_connection, fixed_now):
        assert not needs_refresh(make_connection(expires_at=None), 300, now=fixed_now)

    def test_missing_token(self, make_connection, fixed_now):
        assert needs_refresh(make_connection(access_token=None), 300, now=fixed_now)

    def test_undecodable_token(self, make_connection, fixed_now):
        connection = make_connection()
        connection.access_token_encrypted = b"\xff\xfe"
        assert needs_refresh(connection, 300, now=fixed_now)


class TestRunBatch:
    """Tests for RefreshScheduler.run_batch."""

    def test_one_failure_does_not_stop_the_batch(self, scheduler, make_connection, sync_service, sleep):
        """The failing connection is recorded; the others still sync."""
        first = make_connection(last_synced_at=datetime(2024, 1, 1))
        second = make_connection(last_synced_at=datetime(2024, 1, 2))
        third = make_connection(last_synced_at=datetime(2024, 1, 3))

        def _sync(connection, access_token=None):
            if connection.id == second.id:
                raise UpstreamError("Broker accounts request failed with status 503")

        sync_service.sync.side_effect = _sync

        summary = scheduler.run_batch()

        assert summary.connections == 3
        assert summary.synced == 2
        assert summary.failures == [
            {"id": second.id, "error": "Broker accounts request failed with status 503"}
        ]
        synced_ids = [call.args[0].id for call in sync_service.sync.call_args_list]
        assert synced_ids == [first.id, second.id, third.id]
        assert sleep.call_count == 2
        sleep.assert_called_with(0.5)

    def test_refreshes_expiring_tokens_before_sync(
        self, scheduler, make_connection, negotiator, sync_service
    ):
        expiring = make_connection(expires_at=datetime.utcnow() + timedelta(seconds=10), refresh_token="r1")
        make_connection(expires_at=datetime.utcnow() + timedelta(days=1))

        summary = scheduler.run_batch()

        negotiator.refresh.assert_called_once()
        assert negotiator.refresh.call_args.args[0].id == expiring.id
        assert summary.refreshed == 1
        tokens = {
            call.args[0].id: call.kwargs["access_token"] for call in sync_service.sync.call_args_list
        }
        assert tokens[expiring.id].get_secret_value() == "fresh"
        assert list(tokens.values()).count(None) == 1

    def test_reauth_failure_is_recorded(self, scheduler, make_connection, negotiator, sync_service):
        connection = make_connection(access_token=None, refresh_token="revoked")
        negotiator.refresh.side_effect = ReauthRequiredError("Token refresh failed with status 401", status_code=401)

        summary = scheduler.run_batch()

        sync_service.sync.assert_not_called()
        assert summary.synced == 0
        assert summary.failures[0]["id"] == connection.id

    def test_limit_is_capped_by_batch_size(self, scheduler, make_connection, settings):
        settings.refresh_batch_size = 2
        for _ in range(4):
            make_connection()

        assert scheduler.run_batch(limit=50).connections == 2
        assert scheduler.run_batch(limit=1).connections == 1
        assert scheduler.batch_size(None) == 2
        assert scheduler.batch_size(0) == 2

    def test_inactive_connections_are_skipped(self, scheduler, make_connection, sleep):
        make_connection(status="requires_auth")
        make_connection(status="pending")

        summary = scheduler.run_batch()

        assert summary.to_dict() == {"connections": 0, "refreshed": 0, "synced": 0, "failures": []}
        sleep.assert_not_called()


class TestRefreshDaemon:
    """Tests for the periodic daemon."""

    def test_batch_errors_do_not_stop_the_daemon(self):
        from brokersync.core.scheduler import RefreshDaemon

        daemon = RefreshDaemon(interval_seconds=60, limit=3)
        with patch("brokersync.core.scheduler.run_refresh_cycle", side_effect=RuntimeError("db down")) as run:
            assert daemon.run_once() is None
            assert daemon.run_once() is None

        assert run.call_count == 2
        run.assert_called_with(limit=3)
        assert daemon.batches_run == 2
        assert daemon.last_summary is None

    def test_keeps_last_summary(self):
        from brokersync.core.refresh import RefreshSummary
        from brokersync.core.scheduler import RefreshDaemon

        summary = RefreshSummary(connections=2, synced=2)
        daemon = RefreshDaemon(interval_seconds=60)
        with patch("brokersync.core.scheduler.run_refresh_cycle", return_value=summary):
            assert daemon.run_once() is summary

        assert daemon.last_summary is summary
