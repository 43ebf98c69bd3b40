"""
API Routes Module
"""
from .health import router as health_router
from .metrics import router as metrics_router
from .sessions import router as sessions_router
from .sync import router as sync_router

__all__ = [
    "health_router",
    "metrics_router",
    "sessions_router",
    "sync_router",
]
