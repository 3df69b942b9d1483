"""Lookup of broker providers by the provider name stored on a connection."""

from __future__ import annotations

from typing import Optional

from pydantic import SecretStr

from brokersync.config import STATIC_TOKEN_PROVIDERS, Settings
from brokersync.core.brokers.base import BrokerProvider
from brokersync.core.brokers.rest_provider import RestBrokerProvider
from brokersync.core.brokers.trading212_provider import Trading212Provider


def get_broker_provider(provider: str, settings: Optional[Settings] = None) -> BrokerProvider:
    """Get the provider implementation for a connection's provider name.

    Static-token providers have dedicated clients; every other name is
    treated as an OAuth broker behind the generic REST API.
    """
    name = (provider or "").strip().lower()
    if name == "trading212":
        return Trading212Provider(settings=settings)
    return RestBrokerProvider(name=name or "oauth", settings=settings)


def uses_static_token(provider: str) -> bool:
    """Whether a provider authenticates with a directly submitted token."""
    return (provider or "").strip().lower() in STATIC_TOKEN_PROVIDERS


def get_authorization_header(provider: str, token: str) -> str:
    """Authorization header value for a provider: raw token or Bearer."""
    return get_broker_provider(provider).authorization_header(SecretStr(token))
