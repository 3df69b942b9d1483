"""Broker integration data models."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import SecretStr

logger = logging.getLogger(__name__)

# Raw provider payloads: accounts carry "id", positions carry "symbol"
FetchedAccount = Dict[str, Any]
FetchedPosition = Dict[str, Any]


class BrokerType(str, Enum):
    """Broker families with distinct authentication conventions."""

    OAUTH = "oauth"  # Authorization-code flow, bearer tokens
    TRADING212 = "trading212"  # Static API token sent raw


@dataclass
class AuthorizationRequest:
    """Result of initiating an OAuth flow."""

    authorization_url: str
    state: str


@dataclass
class TokenExchangeResult:
    """Result of exchanging an authorization code."""

    status: str
    access_token_expires_at: Optional[datetime]


@dataclass
class RefreshResult:
    """Result of a token refresh attempt."""

    refreshed: bool
    access_token: Optional[SecretStr]
    expires_at: Optional[datetime]


@dataclass
class ReconcileResult:
    """Counts and warnings from one reconciliation pass."""

    accounts: int = 0
    positions: int = 0
    accounts_created: int = 0
    accounts_updated: int = 0
    positions_created: int = 0
    positions_updated: int = 0
    skipped: int = 0
    warnings: List[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.skipped += 1
        self.warnings.append(message)


@dataclass
class SyncResult:
    """Result of syncing one connection."""

    connection_id: str
    accounts: int
    positions: int
    status: str
    synced_at: datetime
    warnings: List[str] = field(default_factory=list)
