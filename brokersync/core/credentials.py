"""Reversible encoding of brokerage access and refresh tokens for storage.

Tokens are written as UTF-8 bytes. Reading accepts every format that has
been stored over time:

- raw bytes (the current format)
- ``\\x``-prefixed hex strings, as returned by Postgres for bytea columns
- plain base64 strings
- anything else is returned as-is, since some tokens were never encoded

Callers that pass tokens around should prefer :func:`decode_secret`, which
wraps the plaintext in a ``SecretStr`` so it never shows up in reprs or logs.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Optional, Union

from pydantic import SecretStr

from brokersync.exceptions import DecodeError

logger = logging.getLogger(__name__)

HEX_PREFIX = "\\x"

StoredToken = Union[bytes, bytearray, memoryview, str]


def encode_token(token: Optional[Union[str, SecretStr]]) -> Optional[bytes]:
    """Encode a token for storage.

    Args:
        token: Plain token or SecretStr

    Returns:
        Opaque bytes, or None for an empty token
    """
    if isinstance(token, SecretStr):
        token = token.get_secret_value()
    if not token:
        return None
    return token.encode("utf-8")


def _decode_hex(value: str) -> str:
    hex_body = value[len(HEX_PREFIX):]
    if len(hex_body) % 2 != 0:
        raise DecodeError("Hex token has invalid length")
    try:
        return bytes.fromhex(hex_body).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        raise DecodeError("Stored token could not be decoded") from e


def decode_token(value: Optional[StoredToken]) -> Optional[str]:
    """Decode a stored token back to plaintext.

    Args:
        value: Stored token in any supported format

    Returns:
        Plain token, or None if nothing is stored

    Raises:
        DecodeError: If a binary or hex payload is corrupted
    """
    if value is None:
        return None

    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        if not raw:
            return None
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.error("Failed to decode stored token bytes")
            raise DecodeError("Stored token could not be decoded") from e

    if value.startswith(HEX_PREFIX):
        return _decode_hex(value)

    normalized = value.strip()
    if not normalized:
        return None

    try:
        decoded = base64.b64decode(normalized, validate=True).decode("utf-8")
    except (binascii.Error, ValueError, UnicodeDecodeError):
        # Never encoded in the first place
        return normalized

    return decoded or normalized


def decode_secret(value: Optional[StoredToken]) -> Optional[SecretStr]:
    """Decode a stored token into a SecretStr."""
    token = decode_token(value)
    return SecretStr(token) if token else None
