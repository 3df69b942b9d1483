"""Outbound JSON requests to brokers and data providers."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from brokersync.config import get_settings
from brokersync.exceptions import ProviderClientError, UpstreamError

logger = logging.getLogger(__name__)


def raise_for_upstream_status(status_code: int, label: str) -> None:
    """Map a non-2xx provider status onto the error taxonomy.

    4xx is the caller's problem and surfaces with the same status; anything
    else is reported as a retryable upstream failure.
    """
    message = f"{label} failed with status {status_code}"
    if 400 <= status_code < 500:
        raise ProviderClientError(message, status_code=status_code)
    raise UpstreamError(message)


def request_json(
    method: str,
    url: str,
    *,
    label: str,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    data: Optional[Dict[str, Any]] = None,
    timeout: Optional[int] = None,
) -> Any:
    """Send a request and return the decoded JSON body.

    Args:
        method: HTTP method
        url: Absolute URL
        label: Human-readable request name for logs and errors
        headers: Request headers
        params: Query parameters
        data: Form fields (sent form-encoded)
        timeout: Seconds before giving up (defaults to settings)

    Returns:
        Parsed JSON payload

    Raises:
        ProviderClientError: On a 4xx response
        UpstreamError: On network failure, other non-2xx or invalid JSON
    """
    request_headers = {"Accept": "application/json"}
    request_headers.update(headers or {})

    try:
        response = requests.request(
            method,
            url,
            headers=request_headers,
            params=params,
            data=data,
            timeout=timeout or get_settings().http_timeout_seconds,
        )
    except requests.RequestException as e:
        # Exception text can echo the URL, and with it query-string API keys
        logger.error(f"{label} request error: {type(e).__name__}")
        raise UpstreamError(f"{label} request failed ({type(e).__name__})") from e

    if not response.ok:
        logger.error(f"{label} returned status {response.status_code}")
        raise_for_upstream_status(response.status_code, label)

    try:
        return response.json()
    except ValueError as e:
        logger.error(f"{label} returned invalid JSON")
        raise UpstreamError(f"{label} returned invalid JSON") from e
