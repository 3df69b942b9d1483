"""Brokerage connection API routes."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from brokersync.api.deps import get_current_user_id, get_db, limiter, require_cron_secret
from brokersync.config import Settings, get_settings
from brokersync.core.brokers import BrokerSyncService, OAuthNegotiator
from brokersync.core.connections import ConnectionStore
from brokersync.core.refresh import RefreshScheduler

router = APIRouter(prefix="/brokerage", tags=["brokerage"])


class CamelModel(BaseModel):
    """Base model with camelCase JSON field names."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


# Request/Response Models

class InitiateRequest(CamelModel):
    """Request to start the OAuth flow."""

    connection_id: str
    redirect_uri: Optional[str] = None
    scope: Optional[str] = None


class InitiateResponse(CamelModel):
    authorization_url: str
    state: str


class ExchangeRequest(CamelModel):
    """Authorization code returned by the broker redirect."""

    connection_id: str
    code: str
    state: Optional[str] = None
    redirect_uri: Optional[str] = None


class ExchangeResponse(CamelModel):
    status: str
    access_token_expires_at: Optional[datetime] = None


class SubmitTokenRequest(CamelModel):
    """API token for a static-token provider."""

    connection_id: str
    api_token: str


class StatusResponse(CamelModel):
    status: str


class SyncRequest(CamelModel):
    connection_id: str


class SyncResponse(CamelModel):
    accounts: int
    positions: int
    status: str
    warnings: List[str] = []


class RefreshFailure(CamelModel):
    id: str
    error: str


class RefreshResponse(CamelModel):
    connections: int
    refreshed: int
    synced: int
    failures: List[RefreshFailure]


# Routes

@router.post("/oauth/initiate", response_model=InitiateResponse)
@limiter.limit("20/minute")
def initiate_oauth(
    request: Request,
    body: InitiateRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Start the authorization-code flow for a connection."""
    negotiator = OAuthNegotiator(ConnectionStore(db), settings=settings)
    result = negotiator.initiate(body.connection_id, body.redirect_uri, body.scope)
    return InitiateResponse(authorization_url=result.authorization_url, state=result.state)


@router.post("/oauth/token", response_model=ExchangeResponse)
@limiter.limit("10/minute")  # Token exchanges per minute per IP
def exchange_oauth_code(
    request: Request,
    body: ExchangeRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Exchange an authorization code and activate the connection."""
    negotiator = OAuthNegotiator(ConnectionStore(db), settings=settings)
    result = negotiator.exchange(body.connection_id, body.code, body.state, body.redirect_uri)
    return ExchangeResponse(
        status=result.status,
        access_token_expires_at=result.access_token_expires_at,
    )


@router.post("/token/submit", response_model=StatusResponse)
@limiter.limit("10/minute")  # Token submissions per minute per IP
def submit_token(
    request: Request,
    body: SubmitTokenRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    settings: Settings = Depends(get_settings),
):
    """Store a user-supplied API token (Trading212)."""
    negotiator = OAuthNegotiator(ConnectionStore(db), settings=settings)
    result = negotiator.submit_direct_token(body.connection_id, body.api_token, user_id)
    return StatusResponse(status=result.status)


@router.post("/sync", response_model=SyncResponse)
def sync_connection(
    body: SyncRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Fetch and reconcile accounts and positions for one connection."""
    result = BrokerSyncService(db, settings=settings).sync_connection(body.connection_id)
    return SyncResponse(
        accounts=result.accounts,
        positions=result.positions,
        status=result.status,
        warnings=result.warnings,
    )


@router.post("/refresh", response_model=RefreshResponse, dependencies=[Depends(require_cron_secret)])
def refresh_connections(
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Refresh tokens and sync the least recently synced connections."""
    summary = RefreshScheduler(db, settings=settings).run_batch(limit=limit)
    return RefreshResponse(**summary.to_dict())
