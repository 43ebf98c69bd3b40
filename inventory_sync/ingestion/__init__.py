"""
Ingestion Module

Webhook and upload ingestion of inventory variants: payload extraction,
session and chunk bookkeeping, error logging and progress publication.
"""
from .exceptions import (
    IngestionError,
    InvalidSessionStateError,
    PayloadError,
    SessionNotFoundError,
)
from .error_logger import SyncErrorLogger, get_error_summary, list_session_errors
from .extractors import extract_variants
from .file_loader import parse_upload
from .orchestrator import ChunkContext, IngestionOrchestrator, IngestionResult
from .progress_tracker import SyncProgressTracker, get_current_progress, progress_snapshot
from .session_manager import SyncSessionManager

__all__ = [
    "IngestionError",
    "InvalidSessionStateError",
    "PayloadError",
    "SessionNotFoundError",
    "SyncErrorLogger",
    "get_error_summary",
    "list_session_errors",
    "extract_variants",
    "parse_upload",
    "ChunkContext",
    "IngestionOrchestrator",
    "IngestionResult",
    "SyncProgressTracker",
    "get_current_progress",
    "progress_snapshot",
    "SyncSessionManager",
]
