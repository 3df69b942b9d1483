"""OAuth negotiation and token lifecycle for brokerage connections.

Connection states driven here::

    pending --initiate--> (awaiting redirect) --exchange--> active
    pending --submit_direct_token--> active          (static-token providers)
    active  --refresh rejected (400/401)--> requires_auth

The OAuth state and redirect URI live in the connection metadata only while a
flow is in progress; a completed exchange or token submission removes them.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

from pydantic import SecretStr

from brokersync.config import Settings, get_settings
from brokersync.core.brokers.models import (
    AuthorizationRequest,
    RefreshResult,
    TokenExchangeResult,
)
from brokersync.core.brokers.registry import uses_static_token
from brokersync.core.connections.store import ConnectionStore
from brokersync.core.credentials import decode_secret, decode_token, encode_token
from brokersync.core.http import request_json
from brokersync.db.models import BrokerageConnection, ConnectionStatus, utcnow
from brokersync.exceptions import (
    ConfigError,
    ForbiddenError,
    InvalidRequestError,
    ProviderClientError,
    ReauthRequiredError,
    StateMismatchError,
    UnsupportedError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

OAUTH_METADATA_KEYS = ("oauth_state", "oauth_redirect_uri")


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _without_oauth_keys(metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    cleaned = dict(metadata or {})
    for key in OAUTH_METADATA_KEYS:
        cleaned.pop(key, None)
    return cleaned


def expiry_from_lifetime(expires_in: Any, now: Optional[datetime] = None) -> Optional[datetime]:
    """Absolute expiry for a provider-reported lifetime in seconds.

    Accepts an int or a numeric string; anything else (or zero) means no expiry.
    """
    if isinstance(expires_in, bool):
        return None
    if isinstance(expires_in, str):
        try:
            expires_in = int(expires_in.strip())
        except ValueError:
            return None
    if not isinstance(expires_in, (int, float)) or expires_in != expires_in or expires_in <= 0:
        return None
    return (now or utcnow()) + timedelta(seconds=expires_in)


def _with_query(url: str, params: Dict[str, str]) -> str:
    parts = urlsplit(url)
    query = f"{parts.query}&{urlencode(params)}" if parts.query else urlencode(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


class OAuthNegotiator:
    """Drives authorization, token exchange and token refresh for connections."""

    def __init__(self, store: ConnectionStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Authorization-code flow
    # ------------------------------------------------------------------

    def initiate(
        self,
        connection_id: str,
        redirect_uri: Optional[str] = None,
        scope: Optional[str] = None,
    ) -> AuthorizationRequest:
        """Start the authorization-code flow.

        Args:
            connection_id: Connection to authorize
            redirect_uri: Callback URL (defaults to BROKER_REDIRECT_URI)
            scope: Requested scope (defaults to BROKER_DEFAULT_SCOPE)

        Returns:
            Provider authorization URL and the generated state
        """
        connection = self.store.get(connection_id)
        if uses_static_token(connection.provider):
            raise UnsupportedError(
                f"{connection.provider} connections require direct token submission"
            )

        redirect_uri = _clean(redirect_uri) or _clean(self.settings.broker_redirect_uri)
        if not redirect_uri:
            raise InvalidRequestError("redirectUri is required")
        scope = _clean(scope) or self.settings.broker_default_scope

        authorize_url = _clean(self.settings.broker_oauth_authorize_url)
        client_id = _clean(self.settings.broker_client_id)
        if not authorize_url or not client_id:
            raise ConfigError("Broker OAuth configuration is incomplete")

        state = str(uuid.uuid4())
        url = _with_query(
            authorize_url,
            {
                "response_type": "code",
                "client_id": client_id,
                "redirect_uri": redirect_uri,
                "scope": scope,
                "state": state,
            },
        )

        metadata = dict(connection.metadata_ or {})
        metadata.update({"oauth_state": state, "oauth_redirect_uri": redirect_uri})
        self.store.update(connection_id, metadata=metadata)

        logger.info(f"Initiated OAuth flow for connection {connection_id}")
        return AuthorizationRequest(authorization_url=url, state=state)

    def exchange(
        self,
        connection_id: str,
        code: str,
        state: Optional[str] = None,
        redirect_uri: Optional[str] = None,
    ) -> TokenExchangeResult:
        """Exchange an authorization code for tokens and activate the connection.

        Raises:
            StateMismatchError: If the returned state differs from the persisted one
        """
        code = _clean(code)
        if not code:
            raise InvalidRequestError("authorization code is required")

        connection = self.store.get(connection_id)
        metadata = connection.metadata_ or {}
        redirect_uri = (
            _clean(redirect_uri)
            or _clean(metadata.get("oauth_redirect_uri"))
            or _clean(self.settings.broker_redirect_uri)
        )
        if not redirect_uri:
            raise InvalidRequestError("redirectUri is required")

        if uses_static_token(connection.provider):
            raise UnsupportedError(
                f"{connection.provider} connections require direct token submission"
            )

        expected_state = metadata.get("oauth_state")
        supplied_state = _clean(state)
        if isinstance(expected_state, str) and expected_state and supplied_state:
            if expected_state != supplied_state:
                logger.warning(f"OAuth state mismatch for connection {connection_id}")
                raise StateMismatchError("OAuth state mismatch")

        payload = self._post_token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
            label="Broker token exchange",
        )

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            logger.error("Broker token response missing access_token")
            raise UpstreamError("Broker token response missing access_token")

        refresh_token = payload.get("refresh_token")
        expires_at = expiry_from_lifetime(payload.get("expires_in"))

        self.store.update(
            connection_id,
            status=ConnectionStatus.ACTIVE,
            access_token_encrypted=encode_token(access_token),
            refresh_token_encrypted=encode_token(refresh_token if isinstance(refresh_token, str) else None),
            access_token_expires_at=expires_at,
            metadata=_without_oauth_keys(metadata),
        )

        logger.info(f"Connection {connection_id} activated via code exchange")
        return TokenExchangeResult(
            status=ConnectionStatus.ACTIVE.value,
            access_token_expires_at=expires_at,
        )

    # ------------------------------------------------------------------
    # Static token submission
    # ------------------------------------------------------------------

    def submit_direct_token(
        self,
        connection_id: str,
        token: str,
        caller_user_id: str,
    ) -> TokenExchangeResult:
        """Store a user-supplied API token for a static-token provider.

        Raises:
            ForbiddenError: If the caller does not own the connection
            UnsupportedError: If the provider uses the code exchange
        """
        token = _clean(token)
        if not token:
            raise InvalidRequestError("apiToken is required")

        connection = self.store.get(connection_id)
        if not uses_static_token(connection.provider):
            raise UnsupportedError(
                "Token submissions are only supported for static-token providers"
            )
        if connection.user_id != caller_user_id:
            logger.warning(f"Rejected token submission for connection {connection_id}: not owner")
            raise ForbiddenError("Connection does not belong to the caller")

        self.store.update(
            connection_id,
            status=ConnectionStatus.ACTIVE,
            access_token_encrypted=encode_token(token),
            refresh_token_encrypted=None,
            access_token_expires_at=None,
            metadata=_without_oauth_keys(connection.metadata_),
        )

        logger.info(f"Connection {connection_id} activated via direct token")
        return TokenExchangeResult(status=ConnectionStatus.ACTIVE.value, access_token_expires_at=None)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, connection: BrokerageConnection) -> RefreshResult:
        """Refresh the access token if possible.

        Without a refresh token or token endpoint this is a no-op that hands
        back the current access token. A 400/401 from the provider moves the
        connection to requires_auth before raising.

        Raises:
            ReauthRequiredError: If the provider rejected the refresh token
        """
        existing_token = decode_secret(connection.access_token_encrypted)
        refresh_token = decode_token(connection.refresh_token_encrypted)
        token_url = _clean(self.settings.broker_oauth_token_url)
        client_id = _clean(self.settings.broker_client_id)

        if not refresh_token or not token_url or not client_id:
            if not refresh_token:
                logger.warning(f"Connection {connection.id} does not have a refresh token")
            else:
                logger.warning("Broker OAuth configuration is incomplete; reusing existing access token")
            return RefreshResult(
                refreshed=False,
                access_token=existing_token,
                expires_at=connection.access_token_expires_at,
            )

        try:
            payload = self._post_token_request(
                {"grant_type": "refresh_token", "refresh_token": refresh_token},
                label="Broker refresh token request",
            )
        except ProviderClientError as e:
            if e.status_code in (400, 401):
                self.store.update(connection.id, status=ConnectionStatus.REQUIRES_AUTH)
                logger.warning(f"Connection {connection.id} requires re-authentication")
                raise ReauthRequiredError(e.message, status_code=e.status_code) from e
            raise

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            logger.error("Broker refresh response missing access_token")
            raise UpstreamError("Broker refresh response missing access_token")

        new_refresh_token = payload.get("refresh_token")
        if not isinstance(new_refresh_token, str) or not new_refresh_token:
            new_refresh_token = refresh_token
        expires_at = expiry_from_lifetime(payload.get("expires_in"))

        self.store.update(
            connection.id,
            status=ConnectionStatus.ACTIVE,
            access_token_encrypted=encode_token(access_token),
            refresh_token_encrypted=encode_token(new_refresh_token),
            access_token_expires_at=expires_at,
        )

        logger.info(f"Refreshed access token for connection {connection.id}")
        return RefreshResult(
            refreshed=True,
            access_token=SecretStr(access_token),
            expires_at=expires_at,
        )

    def _post_token_request(self, fields: Dict[str, str], label: str) -> Dict[str, Any]:
        token_url = _clean(self.settings.broker_oauth_token_url)
        client_id = _clean(self.settings.broker_client_id)
        if not token_url or not client_id:
            raise ConfigError("Broker OAuth configuration is incomplete")

        form = dict(fields)
        form["client_id"] = client_id
        if self.settings.broker_client_secret:
            form["client_secret"] = self.settings.broker_client_secret

        payload = request_json(
            "POST",
            token_url,
            label=label,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            data=form,
        )
        if not isinstance(payload, dict):
            raise UpstreamError(f"{label} returned an invalid payload")
        return payload
