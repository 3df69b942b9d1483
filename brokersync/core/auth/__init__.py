"""Authentication module."""

from .security import create_access_token, decode_access_token, get_subject

__all__ = [
    "create_access_token",
    "decode_access_token",
    "get_subject",
]
