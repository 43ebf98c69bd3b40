"""
Sync Session Endpoints

Lifecycle of chunked transfers, used by the sender that drives delivery:
create, inspect, pause or cancel, resume, delete, and query logged errors.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inventory_sync.database.models import ChunkStatus, ErrorType, SessionStatus
from inventory_sync.ingestion.error_logger import get_error_summary, list_session_errors
from inventory_sync.ingestion.exceptions import IngestionError, SessionNotFoundError
from inventory_sync.ingestion.session_manager import SyncSessionManager
from inventory_sync.serving.api.dependencies import (
    get_db_factory,
    get_session_manager,
    verify_webhook_secret,
)
from inventory_sync.serving.api.errors import http_error

router = APIRouter()


class SessionCreateRequest(BaseModel):
    """Declared shape of an upcoming chunked transfer"""
    total_chunks: Optional[int] = Field(default=None, ge=1)
    total_records: Optional[int] = Field(default=None, ge=0)
    source: str = "webhook"
    metadata: Optional[Dict[str, Any]] = None


class SessionCreateResponse(BaseModel):
    session_id: str
    session_token: str
    status: SessionStatus


class SessionSummary(BaseModel):
    """Session row as returned by the API"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    source: str
    status: SessionStatus
    total_expected_chunks: Optional[int]
    total_expected_records: Optional[int]
    chunks_received: int
    records_processed: int
    records_failed: int
    records_skipped: int
    error_message: Optional[str]
    metadata: Optional[Dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("metadata_", "metadata"),
    )
    created_at: datetime
    started_at: Optional[datetime]
    last_activity_at: Optional[datetime]
    completed_at: Optional[datetime]


class ChunkSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    chunk_index: int
    status: ChunkStatus
    record_count: int
    records_processed: int
    records_failed: int
    error_message: Optional[str]
    processing_time_ms: Optional[int]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]


class SessionDetail(SessionSummary):
    chunks: List[ChunkSummary] = []
    missing_chunks: List[int] = []
    error_summary: Dict[str, int] = {}
    progress: Optional[float] = None


class SessionListResponse(BaseModel):
    """Paginated session list"""
    items: List[SessionSummary]
    total: int
    limit: int
    offset: int


class SessionActionRequest(BaseModel):
    action: Literal["pause", "cancel"]


class ResumeResponse(BaseModel):
    session: SessionSummary
    missing_chunks: List[int]
    message: str


class SyncErrorItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    chunk_index: Optional[int]
    record_index: Optional[int]
    sku: Optional[str]
    variant_id: Optional[str]
    error_type: ErrorType
    error_code: Optional[str]
    error_message: str
    field_name: Optional[str]
    raw_value: Optional[str]
    raw_record: Optional[Any]
    created_at: datetime


class SyncErrorListResponse(BaseModel):
    items: List[SyncErrorItem]
    total: int
    limit: int
    offset: int
    summary: Dict[str, int]


@router.post(
    "",
    response_model=SessionCreateResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(verify_webhook_secret)],
)
async def create_session(
    request: SessionCreateRequest,
    manager: SyncSessionManager = Depends(get_session_manager),
) -> SessionCreateResponse:
    """Open a session; chunks are then posted to the webhook with its id."""
    session, token = await manager.create_session(
        total_chunks=request.total_chunks,
        total_records=request.total_records,
        source=request.source,
        metadata=request.metadata,
    )
    return SessionCreateResponse(session_id=session.id, session_token=token, status=session.status)


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    status_filter: Optional[SessionStatus] = Query(default=None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    manager: SyncSessionManager = Depends(get_session_manager),
) -> SessionListResponse:
    """Recent sessions, newest first."""
    sessions, total = await manager.list_sessions(
        status=status_filter.value if status_filter else None,
        limit=limit,
        offset=offset,
    )
    return SessionListResponse(
        items=[SessionSummary.model_validate(s) for s in sessions],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{session_id}", response_model=SessionDetail)
async def get_session(
    session_id: str,
    manager: SyncSessionManager = Depends(get_session_manager),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_factory),
) -> SessionDetail:
    """Session with its chunks, missing chunk indexes and error counts by type."""
    detail = await manager.get_session_with_chunks(session_id)
    if detail is None:
        raise http_error(SessionNotFoundError(session_id))

    summary = SessionSummary.model_validate(detail["session"])
    return SessionDetail(
        **summary.model_dump(),
        chunks=[ChunkSummary.model_validate(c) for c in detail["chunks"]],
        missing_chunks=await manager.get_missing_chunks(session_id),
        error_summary=await get_error_summary(session_factory, session_id),
        progress=detail["progress"],
    )


@router.patch(
    "/{session_id}",
    response_model=SessionSummary,
    dependencies=[Depends(verify_webhook_secret)],
)
async def update_session(
    session_id: str,
    request: SessionActionRequest,
    manager: SyncSessionManager = Depends(get_session_manager),
) -> SessionSummary:
    """Pause or cancel a session."""
    try:
        if request.action == "pause":
            session = await manager.pause_session(session_id)
        else:
            session = await manager.cancel_session(session_id)
    except IngestionError as e:
        raise http_error(e) from e
    return SessionSummary.model_validate(session)


@router.delete(
    "/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(verify_webhook_secret)],
)
async def delete_session(
    session_id: str,
    manager: SyncSessionManager = Depends(get_session_manager),
) -> None:
    """Cancel if active, then delete the session with its chunks and errors."""
    try:
        await manager.delete_session(session_id)
    except IngestionError as e:
        raise http_error(e) from e


@router.post(
    "/{session_id}/resume",
    response_model=ResumeResponse,
    dependencies=[Depends(verify_webhook_secret)],
)
async def resume_session(
    session_id: str,
    manager: SyncSessionManager = Depends(get_session_manager),
) -> ResumeResponse:
    """Resume a failed or paused session and list the chunks to re-send."""
    try:
        session, missing = await manager.resume_session(session_id)
    except IngestionError as e:
        raise http_error(e) from e

    if missing:
        message = f"Resume by re-sending {len(missing)} chunk(s)"
    else:
        message = "No chunks missing"
    return ResumeResponse(
        session=SessionSummary.model_validate(session),
        missing_chunks=missing,
        message=message,
    )


@router.get("/{session_id}/errors", response_model=SyncErrorListResponse)
async def get_session_errors(
    session_id: str,
    error_type: Optional[ErrorType] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    manager: SyncSessionManager = Depends(get_session_manager),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_factory),
) -> SyncErrorListResponse:
    """Page of the session's logged errors plus counts by type."""
    try:
        await manager.require_session(session_id)
    except IngestionError as e:
        raise http_error(e) from e

    errors, total = await list_session_errors(
        session_factory,
        session_id,
        limit=limit,
        offset=offset,
        error_type=error_type.value if error_type else None,
    )
    return SyncErrorListResponse(
        items=[SyncErrorItem.model_validate(e) for e in errors],
        total=total,
        limit=limit,
        offset=offset,
        summary=await get_error_summary(session_factory, session_id),
    )
