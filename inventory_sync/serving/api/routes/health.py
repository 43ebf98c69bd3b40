"""
Health Check Endpoints

Provides health and readiness checks for orchestration systems.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inventory_sync.config.settings import Settings
from inventory_sync.database.connection import check_database_health
from inventory_sync.serving.api.dependencies import get_app_settings, get_db_factory

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(
    settings: Settings = Depends(get_app_settings),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_factory),
) -> HealthResponse:
    """
    Health check endpoint.

    Reports database connectivity and latency.
    """
    db_health = await check_database_health(session_factory)
    overall_status = "healthy" if db_health.get("status") == "healthy" else "degraded"

    return HealthResponse(
        status=overall_status,
        version=settings.version,
        environment=settings.app_env,
        timestamp=datetime.now(timezone.utc),
        checks={"database": db_health},
    )


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    """
    Kubernetes liveness probe endpoint.

    Returns 200 if the application is running.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(
    response: Response,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_factory),
) -> Dict[str, str]:
    """
    Kubernetes readiness probe endpoint.

    Returns 503 while the database is unreachable.
    """
    db_health = await check_database_health(session_factory)
    if db_health.get("status") != "healthy":
        response.status_code = 503
        return {"status": "not_ready", "reason": "database_unavailable"}
    return {"status": "ready"}
