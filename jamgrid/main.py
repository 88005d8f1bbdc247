"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from jamgrid import __version__
from jamgrid.config import get_settings
from jamgrid.database import close_db, init_local_db, init_remote_db
from jamgrid.routers import health_router, metrics_router, observations_router
from jamgrid.services.pipeline import capture_pipeline, capture_service
from jamgrid.services.replication import replication_service

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting JamGrid...")

    capture_pipeline.create_folders()

    # Initialize databases
    await init_local_db()
    await init_remote_db()
    logger.info("Databases initialized")

    # Start replication before capture so the first batch is picked up
    if replication_service is not None:
        await replication_service.start()
        logger.info("Replication service started")

    await capture_service.start()
    logger.info("Periodic capture service started")

    yield

    # Shutdown
    logger.info("Shutting down JamGrid...")

    await capture_service.stop()
    if replication_service is not None:
        await replication_service.stop()
    await close_db()

    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="JamGrid",
    description="Traffic map capture, congestion classification and replication",
    version=__version__,
    lifespan=lifespan,
)

# Include routers
app.include_router(health_router)
app.include_router(metrics_router)
app.include_router(observations_router)


@app.get("/")
async def root():
    """Root endpoint - shows API info."""
    return {
        "name": "JamGrid",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }
