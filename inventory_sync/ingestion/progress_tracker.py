"""
Sync Progress Tracker

Publishes the live state of the running ingestion into the single
``sync_progress`` row (id="current") that pollers read. Writes from tight
loops are rate limited: an update inside the throttle window is dropped.
Publication failures are logged and swallowed.
"""

import asyncio
import math
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inventory_sync.config.settings import Settings, get_settings
from inventory_sync.database.connection import session_scope
from inventory_sync.database.models import ProgressStatus, SyncProgress
from inventory_sync.database.upsert import build_upsert, session_dialect

logger = structlog.get_logger(__name__)

PROGRESS_ROW_ID = "current"

# Strong references to scheduled resets until they finish
_pending_resets: Set[asyncio.Task] = set()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SyncProgressTracker:
    """
    Rate-limited writer of the current progress row.

    Example:
        tracker = SyncProgressTracker(session_factory, session_id, total_records=1200)
        await tracker.start()
        await tracker.update_progress(500, current_batch=1)
        await tracker.complete(1200)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        session_id: Optional[str],
        total_records: int,
        settings: Optional[Settings] = None,
    ):
        cfg = (settings or get_settings()).ingestion
        self.session_factory = session_factory
        self.session_id = session_id
        self.total_records = total_records
        self.batch_size = cfg.upsert_batch_size
        self.throttle_seconds = cfg.progress_throttle_ms / 1000
        self.reset_delay = cfg.progress_reset_delay_seconds

        self._started = time.monotonic()
        self._last_write: Optional[float] = None
        self._reset_task: Optional[asyncio.Task] = None

    @property
    def total_batches(self) -> int:
        return math.ceil(self.total_records / self.batch_size) if self.total_records else 0

    async def _write(self, values: Dict[str, Any]) -> bool:
        values = {"id": PROGRESS_ROW_ID, "updated_at": _now(), **values}
        try:
            async with session_scope(self.session_factory) as db:
                await db.execute(
                    build_upsert(
                        session_dialect(db),
                        SyncProgress.__table__,
                        values,
                        conflict_columns=["id"],
                    )
                )
        except Exception as e:
            logger.warning(
                "Progress update failed", session_id=self.session_id, error=str(e), error_type=type(e).__name__
            )
            return False
        return True

    async def start(
        self,
        message: str = "Starting sync...",
        current_chunk: Optional[int] = None,
        total_chunks: Optional[int] = None,
    ) -> None:
        """Reset the progress row to an active state for this ingestion."""
        self._started = time.monotonic()
        self._last_write = self._started
        await self._write({
            "session_id": self.session_id,
            "status": ProgressStatus.STARTING,
            "total_records": self.total_records,
            "records_processed": 0,
            "current_batch": 0,
            "total_batches": self.total_batches,
            "current_chunk": current_chunk,
            "total_chunks": total_chunks,
            "error_count": 0,
            "current_sku": None,
            "eta_seconds": None,
            "started_at": _now(),
            "message": message,
        })

    def estimate_remaining(self, records_processed: int) -> Optional[float]:
        """Seconds left at the observed throughput, or None before any progress."""
        elapsed = time.monotonic() - self._started
        if records_processed <= 0 or elapsed <= 0:
            return None
        rate = records_processed / elapsed
        remaining = max(self.total_records - records_processed, 0)
        return round(remaining / rate, 1)

    async def update_progress(
        self,
        records_processed: int,
        current_batch: Optional[int] = None,
        current_chunk: Optional[int] = None,
        total_chunks: Optional[int] = None,
        error_count: Optional[int] = None,
        current_sku: Optional[str] = None,
        message: Optional[str] = None,
        status: ProgressStatus = ProgressStatus.PROCESSING,
        force: bool = False,
    ) -> bool:
        """
        Publish progress unless the previous write is inside the throttle window.

        Returns True when the row was written.
        """
        now = time.monotonic()
        if not force and self._last_write is not None and now - self._last_write < self.throttle_seconds:
            return False
        self._last_write = now

        values: Dict[str, Any] = {
            "session_id": self.session_id,
            "status": status,
            "total_records": self.total_records,
            "records_processed": records_processed,
            "eta_seconds": self.estimate_remaining(records_processed),
            "message": message or f"Processing {records_processed} of {self.total_records} records...",
        }
        optional = {
            "current_batch": current_batch,
            "current_chunk": current_chunk,
            "total_chunks": total_chunks,
            "error_count": error_count,
            "current_sku": current_sku,
        }
        values.update({key: value for key, value in optional.items() if value is not None})
        return await self._write(values)

    async def complete(self, records_processed: int, error_count: int = 0, message: Optional[str] = None) -> None:
        """Publish success and schedule the reset to idle."""
        duration = time.monotonic() - self._started
        if message is None:
            message = f"Sync complete: {records_processed} records processed"
            if error_count:
                message += f", {error_count} errors"
            message += f" in {duration:.1f}s"

        await self._write({
            "session_id": self.session_id,
            "status": ProgressStatus.COMPLETED,
            "records_processed": records_processed,
            "error_count": error_count,
            "current_sku": None,
            "eta_seconds": None,
            "message": message,
        })
        task = asyncio.create_task(self._reset_later())
        _pending_resets.add(task)
        task.add_done_callback(_pending_resets.discard)
        self._reset_task = task

    async def fail(self, error: str) -> None:
        """Publish failure. The row stays failed until the next ingestion starts."""
        await self._write({
            "session_id": self.session_id,
            "status": ProgressStatus.FAILED,
            "current_sku": None,
            "eta_seconds": None,
            "message": f"Sync failed: {error}",
        })

    async def _reset_later(self) -> None:
        await asyncio.sleep(self.reset_delay)
        await self.reset(only_if_completed=True)

    async def reset(self, only_if_completed: bool = False) -> None:
        """
        Put the row back to idle.

        With ``only_if_completed`` the row is only reset while it still shows
        this tracker's completed ingestion.
        """
        values = {
            "session_id": None,
            "status": ProgressStatus.IDLE,
            "total_records": 0,
            "records_processed": 0,
            "current_batch": 0,
            "total_batches": 0,
            "current_chunk": None,
            "total_chunks": None,
            "error_count": 0,
            "current_sku": None,
            "eta_seconds": None,
            "started_at": None,
            "message": None,
            "updated_at": _now(),
        }
        if not only_if_completed:
            await self._write(values)
            return

        stmt = update(SyncProgress).where(
            SyncProgress.id == PROGRESS_ROW_ID,
            SyncProgress.status == ProgressStatus.COMPLETED,
        )
        if self.session_id is not None:
            stmt = stmt.where(SyncProgress.session_id == self.session_id)
        else:
            stmt = stmt.where(SyncProgress.session_id.is_(None))
        try:
            async with session_scope(self.session_factory) as db:
                await db.execute(stmt.values(**values).execution_options(synchronize_session=False))
        except Exception as e:
            logger.warning(
                "Progress reset failed", session_id=self.session_id, error=str(e), error_type=type(e).__name__
            )

    async def wait_for_reset(self) -> None:
        """Wait for a scheduled reset, if any."""
        if self._reset_task is not None:
            await self._reset_task


async def get_current_progress(
    session_factory: async_sessionmaker[AsyncSession],
) -> Optional[SyncProgress]:
    async with session_scope(session_factory) as db:
        return await db.get(SyncProgress, PROGRESS_ROW_ID)


def format_remaining(seconds: Optional[float]) -> Optional[str]:
    """Human form of a remaining-time estimate"""
    if seconds is None:
        return None
    if seconds < 60:
        return f"{int(seconds)}s remaining"
    if seconds < 3600:
        return f"{int(seconds // 60)}m {int(seconds % 60)}s remaining"
    return f"{int(seconds // 3600)}h {int(seconds % 3600 // 60)}m remaining"


def progress_snapshot(row: Optional[SyncProgress]) -> Dict[str, Any]:
    """Serializable view of the progress row with derived percentage"""
    if row is None:
        return {
            "status": ProgressStatus.IDLE.value,
            "session_id": None,
            "records_processed": 0,
            "total_records": 0,
            "percentage": 0.0,
            "remaining": None,
            "message": None,
        }

    percentage = 0.0
    if row.total_records:
        percentage = round(min(row.records_processed / row.total_records, 1.0) * 100, 1)
    elif row.status == ProgressStatus.COMPLETED:
        percentage = 100.0

    return {
        "status": row.status.value,
        "session_id": row.session_id,
        "records_processed": row.records_processed,
        "total_records": row.total_records,
        "current_batch": row.current_batch,
        "total_batches": row.total_batches,
        "current_chunk": row.current_chunk,
        "total_chunks": row.total_chunks,
        "error_count": row.error_count,
        "current_sku": row.current_sku,
        "eta_seconds": row.eta_seconds,
        "percentage": percentage,
        "remaining": format_remaining(row.eta_seconds),
        "message": row.message,
        "started_at": row.started_at.isoformat() if row.started_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }
