"""Caller identity from bearer JWTs.

Tokens are issued elsewhere; this module only verifies them against
JWT_SECRET and reads the subject claim.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from brokersync.config import get_settings

# JWT settings
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None,
    secret_key: Optional[str] = None,
) -> str:
    """Create a JWT access token.

    Used by tooling and tests that need a caller identity.

    Args:
        data: Data to encode in the token (should include 'sub' for user ID)
        expires_delta: Optional custom expiration time
        secret_key: Signing secret (defaults to JWT_SECRET)

    Returns:
        Encoded JWT token
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret_key or get_settings().jwt_secret, algorithm=ALGORITHM)


def decode_access_token(token: str, secret_key: Optional[str] = None) -> Optional[dict]:
    """Decode and validate a JWT access token.

    Returns:
        Decoded token data, or None if the token is invalid or no secret is configured
    """
    secret_key = secret_key or get_settings().jwt_secret
    if not secret_key:
        return None
    try:
        return jwt.decode(token, secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None


def get_subject(token: str, secret_key: Optional[str] = None) -> Optional[str]:
    """User ID ('sub' claim) of a valid token."""
    payload = decode_access_token(token, secret_key)
    if not payload:
        return None
    subject = payload.get("sub")
    return subject if isinstance(subject, str) and subject else None
