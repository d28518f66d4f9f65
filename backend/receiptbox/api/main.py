"""Entry point for the FastAPI application.

This module constructs the FastAPI app, includes the bulk router,
registers exception handlers and sets up startup and shutdown events.
When run with uvicorn it initialises the database and loads
configuration from ``receiptbox.core.config``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from receiptbox.api.error_handlers import (
    bulk_operation_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from receiptbox.api.routes.bulk import router as bulk_router
from receiptbox.core.config import settings
from receiptbox.core.database import get_db_debug_info, init_db
from receiptbox.core.exceptions import BulkOperationError
from receiptbox.core.observability import init_sentry
from receiptbox.services.cache import build_filter_cache

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    # Startup
    logger.info("Starting up...")
    if init_sentry("api"):
        logger.info("Sentry SDK initialized (api)")
    await init_db()
    app.state.filter_cache = build_filter_cache()
    yield
    # Shutdown
    logger.info("Shutting down...")
    redis_client = getattr(app.state, "redis", None)
    if redis_client is not None:
        await redis_client.aclose()


# Create FastAPI app
app = FastAPI(
    title=f"{settings.PROJECT_NAME} API",
    version="1.0.0",
    lifespan=lifespan,
)

# In development allow all origins; otherwise only the configured ones
env_is_dev = (settings.ENVIRONMENT or "development").lower() == "development"
allow_origins = ["*"] if env_is_dev else list(settings.BACKEND_CORS_ORIGINS or [])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Receipt-Count"],
)

# Register custom exception handlers
app.add_exception_handler(BulkOperationError, bulk_operation_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Include routers
app.include_router(bulk_router)


@app.api_route("/health", methods=["GET", "HEAD"])
async def health_check():
    """Health check endpoint (supports GET & HEAD)."""
    return {"status": "healthy"}


@app.get("/debug/db")
async def db_debug():
    """Return DB diagnostics; development only since it exposes host and database name."""
    if (settings.ENVIRONMENT or "development").lower() != "development":
        raise HTTPException(status_code=404, detail="Not Found")
    return get_db_debug_info()
