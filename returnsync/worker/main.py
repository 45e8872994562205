"""
returnsync Worker API - Main FastAPI Application.

Receives execution grants from Cloud Tasks and runs the sync engine.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Callable

from dotenv import load_dotenv
from fastapi import FastAPI

from returnsync.utils.logging import setup_logging

# Load environment variables
load_dotenv()

# Configure logging early
setup_logging("returnsync-worker")

from returnsync.worker.routes import oauth, tasks  # noqa: E402
from returnsync.worker.services import Services, build_services  # noqa: E402

logger = logging.getLogger(__name__)


def create_app(services_factory: Callable[[], Services] | None = None) -> FastAPI:
    """
    Build the worker application.

    Args:
        services_factory: Builds the services at startup; configured defaults if omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown events."""
        logger.info(
            "Starting returnsync worker",
            extra={
                "json_fields": {
                    "environment": os.getenv("GOOGLE_CLOUD_PROJECT", "local")
                }
            },
        )
        services = (services_factory or build_services)()
        services.start()
        app.state.services = services

        yield

        services.stop()
        logger.info("Shutting down returnsync worker")

    app = FastAPI(
        title="returnsync Worker API",
        description="Background worker that keeps tracked returns in sync",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.get("/")
    async def root():
        """Root endpoint - service information."""
        return {
            "service": "returnsync Worker API",
            "version": "0.1.0",
            "status": "operational",
            "description": "Tracking refresh and inbox scan worker",
        }

    @app.get("/health")
    async def health_check():
        """
        Health check endpoint for Cloud Run.

        Returns:
            dict: Health status
        """
        return {
            "status": "healthy",
            "service": "returnsync-worker",
            "environment": os.getenv("GOOGLE_CLOUD_PROJECT", "local"),
        }

    app.include_router(tasks.router, prefix="/tasks", tags=["tasks"])
    app.include_router(oauth.router, prefix="/oauth", tags=["oauth"])
    return app


app = create_app()
