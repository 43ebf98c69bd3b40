"""
Sync Session Manager

Owns the lifecycle of sync sessions and their chunks.

Session states: pending -> in_progress -> {completed | failed | cancelled},
with paused reachable from in_progress and resumable. Chunk states:
pending -> processing -> {completed | failed}; chunk identity is
(session_id, chunk_index), so re-delivery overwrites in place.

All coordination happens through row state. Counter increments are applied
as ``col = col + n`` in SQL and state transitions are conditional UPDATEs,
so two concurrent requests can never both win the same transition.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inventory_sync.config.settings import Settings, get_settings
from inventory_sync.database.connection import session_scope
from inventory_sync.database.models import (
    ACTIVE_SESSION_STATUSES,
    TERMINAL_SESSION_STATUSES,
    ChunkStatus,
    SessionStatus,
    SyncChunk,
    SyncError,
    SyncSession,
)
from inventory_sync.database.upsert import build_upsert, session_dialect
from inventory_sync.ingestion.exceptions import InvalidSessionStateError, SessionNotFoundError

logger = structlog.get_logger(__name__)

RESUMABLE_STATUSES = frozenset({SessionStatus.FAILED, SessionStatus.PAUSED})


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SyncSessionManager:
    """
    Session and chunk bookkeeping over the shared datastore.

    Example:
        manager = SyncSessionManager(session_factory)
        session, token = await manager.create_session(total_chunks=5)
        await manager.upsert_chunk(session.id, 0, record_count=500)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    # =========================================================================
    # Sessions
    # =========================================================================

    async def create_session(
        self,
        total_chunks: Optional[int] = None,
        total_records: Optional[int] = None,
        source: str = "webhook",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[SyncSession, str]:
        """Create a pending session and return it with its opaque token."""
        token = uuid.uuid4().hex
        session = SyncSession(
            id=str(uuid.uuid4()),
            session_token=token,
            source=source,
            total_expected_chunks=total_chunks,
            total_expected_records=total_records,
            status=SessionStatus.PENDING,
            metadata_=metadata or {},
        )
        async with session_scope(self.session_factory) as db:
            db.add(session)
            await db.flush()
            await db.refresh(session)

        logger.info(
            "Sync session created",
            session_id=session.id,
            source=source,
            total_chunks=total_chunks,
            total_records=total_records,
        )
        return session, token

    async def get_session(self, session_id: str) -> Optional[SyncSession]:
        async with session_scope(self.session_factory) as db:
            return await db.get(SyncSession, session_id)

    async def get_session_by_token(self, token: str) -> Optional[SyncSession]:
        async with session_scope(self.session_factory) as db:
            result = await db.execute(select(SyncSession).where(SyncSession.session_token == token))
            return result.scalar_one_or_none()

    async def require_session(self, session_id: str) -> SyncSession:
        """Get a session or raise SessionNotFoundError."""
        session = await self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def _transition(
        self,
        session_id: str,
        from_statuses,
        **values: Any,
    ) -> bool:
        """Conditional status UPDATE. True only for the caller that changed the row."""
        async with session_scope(self.session_factory) as db:
            result = await db.execute(
                update(SyncSession)
                .where(SyncSession.id == session_id, SyncSession.status.in_(list(from_statuses)))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def start_session(self, session_id: str) -> bool:
        """Move a pending, paused or failed session to in_progress."""
        now = _now()
        started = await self._transition(
            session_id,
            {SessionStatus.PENDING, SessionStatus.PAUSED, SessionStatus.FAILED},
            status=SessionStatus.IN_PROGRESS,
            started_at=func.coalesce(SyncSession.started_at, now),
            last_activity_at=now,
            error_message=None,
        )
        if started:
            logger.info("Sync session started", session_id=session_id)
        return started

    async def set_expected_chunks(self, session_id: str, total_chunks: int) -> None:
        """Record the declared chunk count when the session does not have one yet."""
        async with session_scope(self.session_factory) as db:
            await db.execute(
                update(SyncSession)
                .where(SyncSession.id == session_id, SyncSession.total_expected_chunks.is_(None))
                .values(total_expected_chunks=total_chunks)
                .execution_options(synchronize_session=False)
            )

    async def record_chunk_result(
        self,
        session_id: str,
        records_processed: int,
        records_failed: int,
        records_skipped: int = 0,
    ) -> None:
        """Add one completed chunk's counts to the session totals."""
        async with session_scope(self.session_factory) as db:
            await db.execute(
                update(SyncSession)
                .where(SyncSession.id == session_id)
                .values(
                    chunks_received=SyncSession.chunks_received + 1,
                    records_processed=SyncSession.records_processed + records_processed,
                    records_failed=SyncSession.records_failed + records_failed,
                    records_skipped=SyncSession.records_skipped + records_skipped,
                    last_activity_at=_now(),
                )
                .execution_options(synchronize_session=False)
            )

    async def try_complete_session(self, session_id: str) -> bool:
        """
        Mark the session completed.

        Returns True for exactly one caller, which then owns the follow-up
        metric recomputation.
        """
        now = _now()
        completed = await self._transition(
            session_id,
            {SessionStatus.PENDING, SessionStatus.IN_PROGRESS},
            status=SessionStatus.COMPLETED,
            completed_at=now,
            last_activity_at=now,
        )
        if completed:
            logger.info("Sync session completed", session_id=session_id)
        return completed

    async def fail_session(self, session_id: str, error_message: str) -> bool:
        now = _now()
        failed = await self._transition(
            session_id,
            ACTIVE_SESSION_STATUSES,
            status=SessionStatus.FAILED,
            error_message=error_message,
            completed_at=now,
            last_activity_at=now,
        )
        if failed:
            logger.warning("Sync session failed", session_id=session_id, error=error_message)
        return failed

    async def pause_session(self, session_id: str) -> SyncSession:
        session = await self.require_session(session_id)
        paused = await self._transition(
            session_id,
            {SessionStatus.IN_PROGRESS},
            status=SessionStatus.PAUSED,
            last_activity_at=_now(),
        )
        if not paused:
            raise InvalidSessionStateError(session_id, session.status.value, "pause")
        logger.info("Sync session paused", session_id=session_id)
        return await self.require_session(session_id)

    async def cancel_session(self, session_id: str) -> SyncSession:
        """Mark a non-terminal session cancelled. In-flight chunks are not interrupted."""
        session = await self.require_session(session_id)
        now = _now()
        cancelled = await self._transition(
            session_id,
            ACTIVE_SESSION_STATUSES,
            status=SessionStatus.CANCELLED,
            completed_at=now,
            last_activity_at=now,
        )
        if not cancelled:
            raise InvalidSessionStateError(session_id, session.status.value, "cancel")
        logger.info("Sync session cancelled", session_id=session_id)
        return await self.require_session(session_id)

    async def delete_session(self, session_id: str) -> None:
        """Cancel the session if still active, then remove it with its chunks and errors."""
        session = await self.require_session(session_id)
        if not session.status.is_terminal:
            await self._transition(
                session_id,
                ACTIVE_SESSION_STATUSES,
                status=SessionStatus.CANCELLED,
                completed_at=_now(),
            )
        await self._purge([session_id])
        logger.info("Sync session deleted", session_id=session_id)

    async def resume_session(self, session_id: str) -> Tuple[SyncSession, List[int]]:
        """
        Resume a failed or paused session.

        Returns the refreshed session and the chunk indexes that must be re-sent.
        """
        session = await self.require_session(session_id)
        if session.status not in RESUMABLE_STATUSES:
            raise InvalidSessionStateError(session_id, session.status.value, "resume")

        missing = await self.get_missing_chunks(session_id)
        resumed = await self._transition(
            session_id,
            RESUMABLE_STATUSES,
            status=SessionStatus.IN_PROGRESS,
            error_message=None,
            completed_at=None,
            last_activity_at=_now(),
        )
        if not resumed:
            current = await self.require_session(session_id)
            raise InvalidSessionStateError(session_id, current.status.value, "resume")

        logger.info("Sync session resumed", session_id=session_id, missing_chunks=len(missing))
        return await self.require_session(session_id), missing

    async def list_sessions(
        self,
        status: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[SyncSession], int]:
        """Sessions newest first, optionally filtered by status, with the total count"""
        filters = []
        if status:
            filters.append(SyncSession.status == SessionStatus(status))

        async with session_scope(self.session_factory) as db:
            total = (await db.execute(select(func.count(SyncSession.id)).where(*filters))).scalar_one()
            rows = (
                await db.execute(
                    select(SyncSession)
                    .where(*filters)
                    .order_by(SyncSession.created_at.desc(), SyncSession.id)
                    .limit(limit)
                    .offset(offset)
                )
            ).scalars().all()
        return list(rows), int(total)

    async def get_session_with_chunks(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Session, its chunks in index order and the record-level progress percentage"""
        session = await self.get_session(session_id)
        if session is None:
            return None
        chunks = await self.get_session_chunks(session_id)

        progress = None
        if session.total_expected_records:
            progress = round(min(session.records_processed / session.total_expected_records, 1.0) * 100, 1)
        return {"session": session, "chunks": chunks, "progress": progress}

    async def cleanup_old_sessions(self, days: Optional[int] = None) -> int:
        """Physically delete terminal sessions older than the retention window."""
        days = days if days is not None else self.settings.ingestion.session_retention_days
        cutoff = _now() - timedelta(days=days)

        async with session_scope(self.session_factory) as db:
            session_ids = (
                await db.execute(
                    select(SyncSession.id).where(
                        SyncSession.status.in_(list(TERMINAL_SESSION_STATUSES)),
                        SyncSession.created_at < cutoff,
                    )
                )
            ).scalars().all()

        if session_ids:
            await self._purge(list(session_ids))
        logger.info("Old sync sessions cleaned up", deleted=len(session_ids), retention_days=days)
        return len(session_ids)

    async def _purge(self, session_ids: List[str]) -> None:
        async with session_scope(self.session_factory) as db:
            await db.execute(delete(SyncError).where(SyncError.session_id.in_(session_ids)))
            await db.execute(delete(SyncChunk).where(SyncChunk.session_id.in_(session_ids)))
            await db.execute(delete(SyncSession).where(SyncSession.id.in_(session_ids)))

    # =========================================================================
    # Chunks
    # =========================================================================

    async def upsert_chunk(self, session_id: str, chunk_index: int, record_count: int) -> SyncChunk:
        """
        Create the chunk, or reset an existing one, in ``processing`` state.

        A completed chunk is never reset: the returned row then still shows
        ``completed`` and the caller must treat the delivery as a duplicate.
        """
        now = _now()
        values = {
            "id": str(uuid.uuid4()),
            "session_id": session_id,
            "chunk_index": chunk_index,
            "record_count": record_count,
            "records_processed": 0,
            "records_failed": 0,
            "status": ChunkStatus.PROCESSING,
            "error_message": None,
            "processing_time_ms": None,
            "started_at": now,
            "completed_at": None,
        }
        async with session_scope(self.session_factory) as db:
            stmt = build_upsert(
                session_dialect(db),
                SyncChunk.__table__,
                values,
                conflict_columns=["session_id", "chunk_index"],
                update_columns=[
                    "record_count",
                    "records_processed",
                    "records_failed",
                    "status",
                    "error_message",
                    "processing_time_ms",
                    "started_at",
                    "completed_at",
                ],
                where=SyncChunk.status != ChunkStatus.COMPLETED,
            )
            await db.execute(stmt)
            chunk = (
                await db.execute(
                    select(SyncChunk).where(
                        SyncChunk.session_id == session_id, SyncChunk.chunk_index == chunk_index
                    )
                )
            ).scalar_one()
        return chunk

    async def complete_chunk(
        self,
        session_id: str,
        chunk_index: int,
        records_processed: int,
        records_failed: int,
        processing_time_ms: int,
    ) -> bool:
        """
        Mark a processing chunk completed.

        Returns False when the chunk was not in ``processing`` (already completed
        by a concurrent delivery), in which case the caller must not add its
        counts to the session.
        """
        async with session_scope(self.session_factory) as db:
            result = await db.execute(
                update(SyncChunk)
                .where(
                    SyncChunk.session_id == session_id,
                    SyncChunk.chunk_index == chunk_index,
                    SyncChunk.status == ChunkStatus.PROCESSING,
                )
                .values(
                    status=ChunkStatus.COMPLETED,
                    records_processed=records_processed,
                    records_failed=records_failed,
                    processing_time_ms=processing_time_ms,
                    completed_at=_now(),
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def fail_chunk(self, session_id: str, chunk_index: int, error_message: str) -> None:
        async with session_scope(self.session_factory) as db:
            await db.execute(
                update(SyncChunk)
                .where(
                    SyncChunk.session_id == session_id,
                    SyncChunk.chunk_index == chunk_index,
                    SyncChunk.status != ChunkStatus.COMPLETED,
                )
                .values(status=ChunkStatus.FAILED, error_message=error_message, completed_at=_now())
                .execution_options(synchronize_session=False)
            )
        logger.warning("Sync chunk failed", session_id=session_id, chunk_index=chunk_index, error=error_message)

    async def get_chunk(self, session_id: str, chunk_index: int) -> Optional[SyncChunk]:
        async with session_scope(self.session_factory) as db:
            result = await db.execute(
                select(SyncChunk).where(
                    SyncChunk.session_id == session_id, SyncChunk.chunk_index == chunk_index
                )
            )
            return result.scalar_one_or_none()

    async def get_session_chunks(self, session_id: str) -> List[SyncChunk]:
        async with session_scope(self.session_factory) as db:
            result = await db.execute(
                select(SyncChunk).where(SyncChunk.session_id == session_id).order_by(SyncChunk.chunk_index)
            )
            return list(result.scalars().all())

    async def get_missing_chunks(self, session_id: str) -> List[int]:
        """
        Indexes in ``[0, total_expected_chunks)`` without a completed chunk.

        Empty when the session does not declare its chunk count.
        """
        session = await self.get_session(session_id)
        if session is None or not session.total_expected_chunks:
            return []

        async with session_scope(self.session_factory) as db:
            completed = set(
                (
                    await db.execute(
                        select(SyncChunk.chunk_index).where(
                            SyncChunk.session_id == session_id,
                            SyncChunk.status == ChunkStatus.COMPLETED,
                        )
                    )
                ).scalars().all()
            )
        return [index for index in range(session.total_expected_chunks) if index not in completed]
