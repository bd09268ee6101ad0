"""Spinwheel API - Main FastAPI application."""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy import text

from spinwheel_api import __version__
from spinwheel_api.errors import EngineError, InternalError
from spinwheel_api.middleware.actor import ActorMiddleware
from spinwheel_api.middleware.correlation import CorrelationIDMiddleware
from spinwheel_api.routes import admin, audit, managers, spins
from spinwheel_api.routes.errors import engine_error_handler, internal_error_handler
from spinwheel_api.settings import get_settings

# Configure logging
logging.basicConfig(
    level=get_settings().log_level,
    format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s", "module": "%(name)s"}',
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting Spinwheel API...")
    try:
        settings.validate_production_settings()
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise
    yield
    logger.info("Shutting down Spinwheel API...")


app = FastAPI(
    title="Spinwheel API",
    description="Quota, accounting and audit engine for multi-tenant spin-the-wheel campaigns",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Last added runs first: correlation id is set before the actor is resolved
app.add_middleware(ActorMiddleware)
app.add_middleware(CorrelationIDMiddleware)

app.add_exception_handler(EngineError, engine_error_handler)
app.add_exception_handler(InternalError, internal_error_handler)

# Prometheus metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

app.include_router(spins.router)
app.include_router(managers.router)
app.include_router(audit.router)
app.include_router(admin.router)


@app.get("/health")
async def health_check():
    """Health check endpoint (basic liveness)."""
    return {"status": "healthy", "service": "spinwheel-api", "version": __version__}


@app.get("/ready")
async def readiness_check():
    """Readiness check endpoint (verifies dependencies)."""
    import redis
    from sqlalchemy.exc import SQLAlchemyError

    from spinwheel_api.db.session import SessionLocal

    checks = {"database": False, "redis": False}

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True
    except SQLAlchemyError as e:
        logger.error(f"Database check failed: {e}")
    finally:
        db.close()

    if settings.notifications_enabled:
        try:
            redis.from_url(settings.redis_url).ping()
            checks["redis"] = True
        except redis.RedisError as e:
            logger.error(f"Redis check failed: {e}")
    else:
        checks["redis"] = None

    all_ready = all(value is not False for value in checks.values())
    return JSONResponse(
        content={"status": "ready" if all_ready else "not_ready", "checks": checks},
        status_code=200 if all_ready else 503,
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Spinwheel API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }
