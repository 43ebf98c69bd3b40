"""
FastAPI Production Application

Main entry point for the Inventory Sync API.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from prometheus_client import make_asgi_app

from inventory_sync.config import Settings, get_settings
from inventory_sync.config.logging import configure_logging
from inventory_sync.database.connection import close_database, init_database
from inventory_sync.serving.api.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from inventory_sync.serving.api.routes import (
    health_router,
    metrics_router,
    sessions_router,
    sync_router,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    configure_logging()
    settings = get_settings()
    logger.info("Starting Inventory Sync API", environment=settings.app_env, version=settings.version)

    await init_database()

    yield

    logger.info("Shutting down...")
    await close_database()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI app instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Inventory Sync API",
        description="Inventory variant ingestion with resumable chunked transfers and forecast-accuracy metrics",
        version=settings.version,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(sync_router, prefix="/api/v1/sync", tags=["Sync"])
    app.include_router(sessions_router, prefix="/api/v1/sync/sessions", tags=["Sync Sessions"])
    app.include_router(metrics_router, prefix="/api/v1/metrics", tags=["Metrics"])

    if settings.monitoring.enable_prometheus:
        app.mount("/metrics", make_asgi_app())

    @app.get("/api/v1/info")
    async def api_info():
        """API information endpoint."""
        return {
            "name": "Inventory Sync API",
            "version": settings.version,
            "environment": settings.app_env,
            "documentation": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
