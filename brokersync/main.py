"""Main entry point for the API server."""

import os
import sys

import uvicorn

from brokersync.api.app import app
from brokersync.config import get_settings


def parse_port(value: str) -> int:
    """Parse a TCP port, rejecting anything outside 1-65535."""
    port = int(value)
    if not (1 <= port <= 65535):
        raise ValueError("Port out of range")
    return port


def run() -> None:
    """Serve the API with uvicorn (HOST/PORT from the environment)."""
    host = os.environ.get("HOST", "0.0.0.0")
    port_str = os.environ.get("PORT", "8000")
    try:
        port = parse_port(port_str)
    except ValueError:
        print(f"Error: Invalid PORT value '{port_str}'. Must be an integer between 1-65535.")
        sys.exit(1)

    uvicorn.run(app, host=host, port=port, log_level=get_settings().log_level.lower())


if __name__ == "__main__":
    run()
