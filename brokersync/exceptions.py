"""Error taxonomy for the sync engine.

Every error carries the HTTP status the API layer answers with, and whether
the caller may retry the same operation later without user action.
"""

from __future__ import annotations

from typing import Any, Optional


class SyncError(Exception):
    """Base exception for all sync engine errors."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ConfigError(SyncError):
    """Raised when required deployment configuration is missing."""

    status_code = 500


class NotFoundError(SyncError):
    """Raised when a referenced connection or account does not exist."""

    status_code = 404


class ForbiddenError(SyncError):
    """Raised when the caller does not own the connection."""

    status_code = 403


class StateMismatchError(SyncError):
    """Raised when the OAuth state does not match the persisted value."""

    status_code = 400


class UnsupportedError(SyncError):
    """Raised when an operation is not valid for the connection's provider."""

    status_code = 501


class InvalidRequestError(SyncError):
    """Raised when caller input is missing or malformed."""

    status_code = 400


class UpstreamError(SyncError):
    """Raised on a non-auth provider failure. Safe to retry later."""

    status_code = 502
    retryable = True


class ProviderRateLimitedError(UpstreamError):
    """Raised when a provider answers with a rate-limit or informational notice."""


class ProviderClientError(SyncError):
    """Raised when a provider rejects a request with a 4xx status."""

    def __init__(self, message: str, status_code: int = 400, details: Optional[Any] = None):
        super().__init__(message, details)
        self.status_code = status_code


class ReauthRequiredError(ProviderClientError):
    """Raised when a token refresh is rejected and the user must re-authenticate."""


class DecodeError(SyncError):
    """Raised when a stored credential cannot be decoded."""

    status_code = 500


class NoDataError(SyncError):
    """Raised when a provider has nothing to return."""

    status_code = 404
