"""Brokerage integrations: authentication, fetching and reconciliation.

Supports:
- Generic OAuth brokers behind a JSON REST API (authorization-code flow)
- Trading212 (user-supplied API token)

Usage:
    from brokersync.core.brokers import BrokerSyncService, OAuthNegotiator

    negotiator = OAuthNegotiator(ConnectionStore(db))
    request = negotiator.initiate(connection_id, redirect_uri)

    result = BrokerSyncService(db).sync_connection(connection_id)
"""

from brokersync.core.brokers.models import (
    AuthorizationRequest,
    BrokerType,
    ReconcileResult,
    RefreshResult,
    SyncResult,
    TokenExchangeResult,
)
from brokersync.core.brokers.base import BrokerProvider
from brokersync.core.brokers.rest_provider import RestBrokerProvider
from brokersync.core.brokers.trading212_provider import Trading212Provider
from brokersync.core.brokers.registry import (
    get_authorization_header,
    get_broker_provider,
    uses_static_token,
)
from brokersync.core.brokers.oauth import OAuthNegotiator
from brokersync.core.brokers.reconciler import AccountReconciler
from brokersync.core.brokers.sync import BrokerSyncService

__all__ = [
    # Models
    "AuthorizationRequest",
    "BrokerType",
    "ReconcileResult",
    "RefreshResult",
    "SyncResult",
    "TokenExchangeResult",
    # Providers
    "BrokerProvider",
    "RestBrokerProvider",
    "Trading212Provider",
    "get_authorization_header",
    "get_broker_provider",
    "uses_static_token",
    # Services
    "AccountReconciler",
    "BrokerSyncService",
    "OAuthNegotiator",
]
