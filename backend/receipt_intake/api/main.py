"""Entry point for the FastAPI application.

This module constructs the FastAPI app, includes all routers and sets up
startup and shutdown. On startup it initialises the database, builds the
email pipeline (stored on ``app.state.pipeline``) and fails any ledger
entries a previous process left unfinished.  Configuration is loaded from
``receipt_intake.core.config``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from receipt_intake.api.error_handlers import register_exception_handlers
from receipt_intake.api.routes.email_processing import router as email_processing_router
from receipt_intake.api.routes.email_webhooks import router as email_webhooks_router
from receipt_intake.core.config import settings
from receipt_intake.core.database import dispose_engine, get_db_debug_info, get_session_factory, init_db
from receipt_intake.core.observability import init_sentry
from receipt_intake.services.pipeline import build_pipeline

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
    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is None:
        pipeline = build_pipeline(settings, get_session_factory())
        app.state.pipeline = pipeline
    recovered = await pipeline.start(recover=settings.LEDGER_RECOVER_ON_STARTUP)
    if recovered:
        logger.warning("Marked %d abandoned ledger entries as FAILED; retry them via the API", recovered)
    yield
    # Shutdown
    logger.info("Shutting down...")
    await pipeline.shutdown()
    await dispose_engine()


# Create FastAPI app
app = FastAPI(
    title=f"{settings.PROJECT_NAME} API",
    version="1.0.0",
    lifespan=lifespan,
)

# In development allow all origins; otherwise use BACKEND_CORS_ORIGINS.
env_is_dev = (settings.ENVIRONMENT or "development").lower() == "development"
allow_origins = ["*"] if env_is_dev else list(dict.fromkeys(settings.BACKEND_CORS_ORIGINS or []))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=not env_is_dev,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register custom exception handlers
register_exception_handlers(app)

# Include routers
app.include_router(email_webhooks_router)
app.include_router(email_processing_router, prefix="/email-processing", tags=["email-processing"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": f"Welcome to the {settings.PROJECT_NAME} API"}


@app.api_route("/health", methods=["GET", "HEAD"])
async def health_check():
    """Health check endpoint (supports GET & HEAD)."""
    return {"status": "healthy", "environment": settings.ENVIRONMENT}


@app.get("/debug/db")
async def db_debug():
    """Return non-sensitive DB diagnostics (development only)."""
    if not env_is_dev:
        return {"ok": False, "message": "disabled in non-development env"}
    return get_db_debug_info()
