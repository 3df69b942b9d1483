"""FastAPI application setup."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from brokersync.api.deps import limiter
from brokersync.api.routes import brokerage, market
from brokersync.config import PRODUCT_DESCRIPTION, PRODUCT_NAME, PRODUCT_TAGLINE, PRODUCT_VERSION, get_settings
from brokersync.db.database import init_db
from brokersync.exceptions import SyncError

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=f"{PRODUCT_NAME} API",
    description=PRODUCT_DESCRIPTION,
    version=PRODUCT_VERSION,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(SyncError)
def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    """Render engine errors as {"error": message} with their status."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.on_event("startup")
def startup():
    """Initialize database on startup."""
    init_db()


@app.get("/api/health")
def health():
    """Health check endpoint."""
    return {
        "name": PRODUCT_NAME,
        "version": PRODUCT_VERSION,
        "status": "ok",
        "tagline": PRODUCT_TAGLINE,
    }


# Mount API routers
app.include_router(brokerage.router, prefix="/api", tags=["brokerage"])
app.include_router(market.router, prefix="/api", tags=["market"])
