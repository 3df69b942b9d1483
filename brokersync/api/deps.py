"""FastAPI dependencies."""

from __future__ import annotations

import hmac
from typing import Generator, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from brokersync.config import Settings, get_settings
from brokersync.core.auth.security import get_subject
from brokersync.db.database import get_db as db_context

# Rate limiter - key by IP address
limiter = Limiter(key_func=get_remote_address)

# HTTP Bearer for JWT tokens and the cron secret
http_bearer = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    """Yield a database session."""
    with db_context() as db:
        yield db


def get_current_user_id(
    bearer: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    settings: Settings = Depends(get_settings),
) -> str:
    """Caller's user ID from the bearer JWT 'sub' claim."""
    user_id = get_subject(bearer.credentials, settings.jwt_secret) if bearer else None
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


def require_cron_secret(
    bearer: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    settings: Settings = Depends(get_settings),
) -> None:
    """Guard scheduled endpoints with CRON_SECRET when one is configured."""
    if not settings.cron_secret:
        return

    supplied = bearer.credentials if bearer else ""
    if not hmac.compare_digest(supplied.encode(), settings.cron_secret.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing authentication",
            headers={"WWW-Authenticate": "Bearer"},
        )
