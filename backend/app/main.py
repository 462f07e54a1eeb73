"""
Beacon Telemetry - FastAPI Backend

Main application entry point.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import ValidationError
from app.db.postgres import init_db, close_db
from app.db.redis import redis_client
from app.middleware.rate_limit import setup_rate_limiting
from app.services.geo_service import geo_service

# Import routers
from app.api.v1 import conversions, health, sessions, tracking, utm

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)
    logger.info("Environment: %s", settings.environment)
    logger.info("Tracking base URL: %s", settings.tracking_base_url)

    # Validate production settings
    try:
        settings.validate_production_settings()
        logger.info("Production settings validated successfully")
    except ValueError as e:
        if settings.environment == "production":
            logger.error("CRITICAL: %s", e)
            raise  # Stop startup in production with invalid config
        else:
            logger.warning("Production settings validation: %s", e)

    try:
        await init_db()
        logger.info("Database connected and tables created")
    except Exception as e:
        logger.error("Database initialization failed: %s", e)
        logger.error("Telemetry writes will fail until the database is reachable")

    yield

    # Shutdown
    await geo_service.close()
    await redis_client.close()
    logger.info("Redis disconnected")
    await close_db()
    logger.info("Database disconnected")
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    Beacon Telemetry API

    Email engagement tracking and visitor attribution.

    ## Features

    - **Tracking**: Open pixel, click redirect and unsubscribe links embedded in emails
    - **Sessions**: Heartbeats and geo enrichment for site visitors
    - **UTM**: Last-touch campaign attribution per session
    - **Conversions**: Storefront funnel events and first-purchase marking

    All endpoints are public. Tracking endpoints never fail visibly; telemetry
    endpoints report failures in-band as `{"success": false, "reason": ...}`.
    """,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
# Telemetry beacons come from the hosted site; in development allow localhost variants
allowed_origins = [settings.frontend_url, settings.site_url]
if settings.environment == "development":
    allowed_origins.extend([
        "http://localhost:3000",
        "http://localhost:5173",  # Vite default
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Requested-With", "Accept"],
)

# Rate limiting
setup_rate_limiting(app)


def _identifier_field(path: str) -> str:
    """The body field whose absence is the only client error surfaced as a 4xx."""
    return "anonymous_id" if "/conversions/" in path else "session_id"


def _missing_identifier(errors, field: str) -> bool:
    for error in errors:
        loc = tuple(error.get("loc", ()))
        if field in loc or (loc == ("body",) and error.get("type") == "missing"):
            return True
    return False


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """
    Map body validation failures to the telemetry error shape.

    Only a missing or unusable identifier is a 400; any other malformed
    field is reported in-band so beacons never see an error status.
    """
    field = _identifier_field(request.url.path)
    if _missing_identifier(exc.errors(), field):
        reason = f"{field}_required"
        logger.debug("Rejected %s %s: %s", request.method, request.url.path, reason)
        return JSONResponse(status_code=400, content={"success": False, "reason": reason})

    logger.debug("Malformed body on %s %s: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(status_code=200, content={"success": False, "reason": "bad_request"})


@app.exception_handler(ValidationError)
async def telemetry_validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"success": False, "reason": exc.reason})


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """API root - returns basic info."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health",
    }


# Include routers
app.include_router(health.router)  # Health check at /health (no /api/v1 prefix)
app.include_router(tracking.router, prefix=settings.api_v1_prefix)
app.include_router(sessions.router, prefix=settings.api_v1_prefix)
app.include_router(utm.router, prefix=settings.api_v1_prefix)
app.include_router(conversions.router, prefix=settings.api_v1_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
