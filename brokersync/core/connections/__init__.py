"""Connection storage."""

from brokersync.core.connections.store import ConnectionStore

__all__ = ["ConnectionStore"]
