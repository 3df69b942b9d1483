"""Tests for the command line."""

from contextlib import contextmanager
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from brokersync.cli.main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def no_init_db():
    with patch("brokersync.cli.main.init_db"):
        yield


@pytest.fixture
def cli_db(db_session):
    """Point the CLI's sessions at the test database."""

    @contextmanager
    def _get_db():
        yield db_session

    with patch("brokersync.cli.brokers.get_db", _get_db), patch("brokersync.cli.market.get_db", _get_db):
        yield db_session


class TestCli:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "1.0.0" in result.output

    def test_history_rejects_unknown_period(self, cli_db):
        result = runner.invoke(app, ["market", "history", "AAPL", "--period", "7Y"])
        assert result.exit_code == 1
        assert "Unsupported period" in result.output

    def test_sync_unknown_connection(self, cli_db):
        result = runner.invoke(app, ["brokers", "sync", "missing"])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_status_lists_connections(self, cli_db, make_connection):
        make_connection(provider="trading212")

        result = runner.invoke(app, ["brokers", "status"])

        assert result.exit_code == 0
        assert "Brokerage Connections" in result.output

    def test_status_without_connections(self, cli_db):
        result = runner.invoke(app, ["brokers", "status"])
        assert result.exit_code == 0
        assert "No brokerage connections" in result.output


class TestParsePort:
    @pytest.mark.parametrize("value", ["0", "65536", "http"])
    def test_rejects_invalid_ports(self, value):
        from brokersync.main import parse_port

        with pytest.raises(ValueError):
            parse_port(value)

    def test_accepts_valid_port(self):
        from brokersync.main import parse_port

        assert parse_port("8000") == 8000
