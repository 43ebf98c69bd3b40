"""
API Dependencies

Request-scoped wiring of settings, the session factory and the service
objects built on them. Tests replace ``get_app_settings`` and
``get_db_factory`` through ``app.dependency_overrides``.
"""

import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inventory_sync.config.settings import Settings, get_settings
from inventory_sync.database.connection import get_session_factory
from inventory_sync.forecasting.recalculation import MetricsRecalculator
from inventory_sync.ingestion.orchestrator import IngestionOrchestrator
from inventory_sync.ingestion.session_manager import SyncSessionManager


def get_app_settings() -> Settings:
    return get_settings()


def get_db_factory() -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


async def verify_webhook_secret(
    x_webhook_secret: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Reject the request unless X-Webhook-Secret matches the configured secret."""
    expected = settings.security.webhook_secret.get_secret_value()
    if not x_webhook_secret or not secrets.compare_digest(x_webhook_secret.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Unauthorized", "details": "Missing or invalid X-Webhook-Secret header"},
        )


def get_session_manager(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_factory),
    settings: Settings = Depends(get_app_settings),
) -> SyncSessionManager:
    return SyncSessionManager(session_factory, settings)


def get_recalculator(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_factory),
    settings: Settings = Depends(get_app_settings),
) -> MetricsRecalculator:
    return MetricsRecalculator(session_factory, settings)


def get_orchestrator(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_factory),
    settings: Settings = Depends(get_app_settings),
    session_manager: SyncSessionManager = Depends(get_session_manager),
    recalculator: MetricsRecalculator = Depends(get_recalculator),
) -> IngestionOrchestrator:
    return IngestionOrchestrator(session_factory, settings, session_manager, recalculator)
