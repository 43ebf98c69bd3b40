"""
Sync Ingestion Endpoints

Webhook and file-upload entrypoints for variant data, plus the live
progress of the running ingestion.

Chunked deliveries identify themselves with headers:
    X-Sync-Session-Id   session created via POST /api/v1/sync/sessions
    X-Chunk-Index       zero-based chunk position
    X-Total-Chunks      declared chunk count (optional)
"""

from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, File, Header, HTTPException, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inventory_sync.config.settings import Settings
from inventory_sync.ingestion.exceptions import IngestionError, PayloadError
from inventory_sync.ingestion.file_loader import parse_upload
from inventory_sync.ingestion.orchestrator import ChunkContext, IngestionOrchestrator
from inventory_sync.ingestion.progress_tracker import get_current_progress, progress_snapshot
from inventory_sync.serving.api.dependencies import (
    get_app_settings,
    get_db_factory,
    get_orchestrator,
    verify_webhook_secret,
)
from inventory_sync.serving.api.errors import http_error, server_error

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post("/webhook", dependencies=[Depends(verify_webhook_secret)])
async def receive_webhook(
    request: Request,
    x_sync_session_id: Optional[str] = Header(default=None),
    x_chunk_index: Optional[int] = Header(default=None, ge=0),
    x_total_chunks: Optional[int] = Header(default=None, ge=1),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Ingest variants pushed by the planning source.

    Without X-Sync-Session-Id the body is a single-shot delivery, optionally
    a lifecycle event. With it, the body is one chunk of that session.
    """
    try:
        body = await request.json()
    except ValueError as e:
        raise http_error(PayloadError(f"Invalid JSON body: {e}")) from e

    if x_sync_session_id and x_chunk_index is None:
        raise http_error(PayloadError("X-Chunk-Index is required with X-Sync-Session-Id"))

    try:
        if x_sync_session_id:
            chunk = ChunkContext(x_sync_session_id, x_chunk_index, x_total_chunks)
            result = await orchestrator.ingest(body, chunk)
            return result.to_dict()
        return await orchestrator.handle_event(body)
    except IngestionError as e:
        raise http_error(e) from e
    except Exception as e:
        return server_error(e)


@router.post("/upload", dependencies=[Depends(verify_webhook_secret)])
async def upload_file(
    file: UploadFile = File(...),
    settings: Settings = Depends(get_app_settings),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Ingest a .json, .ndjson/.jsonl or .csv file of variants in one shot."""
    max_bytes = settings.ingestion.max_upload_bytes
    content = await file.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={"error": "File too large", "details": {"max_bytes": max_bytes}},
        )

    try:
        records = parse_upload(file.filename, content)
        result = await orchestrator.ingest_records(records, source="upload")
    except IngestionError as e:
        raise http_error(e) from e
    except Exception as e:
        return server_error(e)

    body = result.to_dict()
    body["filename"] = file.filename
    return body


@router.get("/progress")
async def get_progress(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_factory),
) -> Dict[str, Any]:
    """Current state of the running (or last) ingestion"""
    row = await get_current_progress(session_factory)
    return progress_snapshot(row)
