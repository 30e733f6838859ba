"""Main FastAPI application."""

import logging
import re
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from .api import (
    content_router,
    integrations_router,
    organizations_router,
    schedule_router,
    triggers_router,
    webhooks_router,
    workflows_router,
)
from .core.config import ConfigurationError, Environment, settings
from .core.context import build_services
from .core.logging_config import setup_logging
from .database import DATABASE_URL, get_db, init_db
from .exceptions import ShipnotesError, VaultKeyError
from .middleware.exception_handler import (
    shipnotes_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from .middleware.request_context import RequestContextMiddleware

# Setup logging first
setup_logging(log_level=settings.log_level, log_format=settings.log_format)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def _mask_url(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r'://([^:]+):([^@]+)@', r'://\1:***@', url)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle for the Shipnotes API."""
    logger.info(f"Environment: {settings.environment.value}")
    try:
        settings.validate_production_config()
    except ConfigurationError as e:
        logger.critical(f"STARTUP BLOCKED: {e}")
        raise SystemExit(1) from e

    if settings.environment == Environment.DEVELOPMENT:
        if not settings.auth_enabled:
            logger.warning(
                "SECURITY: Authentication is disabled (AUTH_ENABLED=false). "
                "Every caller acts as a member of every organization."
            )
        if not settings.redis_url:
            logger.warning(
                "REDIS_URL is empty. Workflow locks fall back to the run table "
                "and webhook logs are not recorded."
            )

    try:
        app.state.services = build_services(settings)
    except VaultKeyError as e:
        logger.critical(f"STARTUP BLOCKED: {e}")
        raise SystemExit(1) from e

    logger.info(f"Connecting to database: {_mask_url(DATABASE_URL)}")
    init_db()

    yield  # App runs here


app = FastAPI(
    title="Shipnotes API",
    description=(
        "Turns repository activity into release notes. Connect GitHub repositories, "
        "define webhook or cron triggers, and follow generation workflows.\n\n"
        "**Authentication:** When `AUTH_ENABLED=true`, every organization route requires a "
        "`Bearer` token of a member of that organization. Provider webhooks authenticate by "
        "signature; schedule callbacks by the shared callback token."
    ),
    version=VERSION,
    lifespan=lifespan,
)

# Middleware stack (outermost first: CORS wraps request context).
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)
app.add_middleware(RequestContextMiddleware)

app.add_exception_handler(ShipnotesError, shipnotes_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(organizations_router)
app.include_router(integrations_router)
app.include_router(triggers_router)
app.include_router(schedule_router)
app.include_router(workflows_router)
app.include_router(content_router)
app.include_router(webhooks_router)


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "name": "Shipnotes API",
        "version": VERSION,
        "status": "running"
    }


_startup_time = time.monotonic()


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Health check returning database status and uptime.

    Never raises; returns degraded status on DB failure so load balancers
    can still probe without receiving 5xx.
    """
    db_status = "ok"
    try:
        db.execute(text("SELECT 1"))
    except Exception:
        db_status = "error"

    return {
        "status": "healthy" if db_status == "ok" else "degraded",
        "db": db_status,
        "uptime_seconds": round(time.monotonic() - _startup_time),
        "version": VERSION,
    }
