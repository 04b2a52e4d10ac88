"""
Main FastAPI application.

Serves the normalized listing feed and operator controls for the refresh
scheduler. Services are built by the lifespan and live on app.state.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from propfeed.api.v1 import feed, properties
from propfeed.core.config import Settings, get_settings
from propfeed.core.container import ServiceContainer, build_container

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings to use (process settings when omitted)
        container: Prebuilt services (tests); built at startup when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan context manager.

        Builds the services, starts the refresh timer and stops it on shutdown.
        """
        services = container or build_container(settings or get_settings())
        logging.getLogger().setLevel(services.settings.log_level)
        app.state.container = services

        logger.info("Starting listing feed service")
        logger.info(f"Log level: {services.settings.log_level}")

        if services.settings.feed_scheduler_enabled:
            services.scheduler.start()
        else:
            logger.info("Refresh timer disabled; manual refresh only")

        yield

        # Shutdown
        logger.info("Shutting down")
        await services.aclose()

    app = FastAPI(
        title="Listing Feed Service",
        description="Scheduled ingestion and cached lookup of the Idealista listing feed",
        version="0.1.0",
        lifespan=lifespan
    )

    app.include_router(properties.router, prefix="/api/v1")
    app.include_router(feed.router, prefix="/api/v1")

    @app.get("/")
    def root():
        """Root endpoint with service info."""
        return {
            "service": "Listing Feed Service",
            "version": "0.1.0",
            "sources": ["idealista"],
            "docs": "/docs"
        }

    @app.get("/health")
    def health_check():
        """
        Health check endpoint.

        Reports whether the refresh timer is active and the last refresh outcome.
        """
        services: ServiceContainer = app.state.container
        status = services.scheduler.get_status()
        last_outcome = status["last_outcome"]

        health_status = {
            "status": "healthy",
            "service": "running",
            "scheduler": "active" if status["timer_active"] else "inactive",
            "last_refresh": last_outcome,
        }
        if last_outcome is not None and not last_outcome["success"]:
            health_status["status"] = "degraded"
        return health_status

    return app


app = create_app()
