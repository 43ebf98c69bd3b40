"""
Sync Error Logger

Buffers one structured entry per failed record (or failed upsert batch) and
writes them with a single multi-row insert once the buffer fills. A final
``flush()`` is required at the end of every chunk or request.

Writing errors is best-effort: a failed flush is logged, retried a bounded
number of times and then dropped. It never propagates into the ingestion
that produced the errors.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inventory_sync.config.settings import Settings, get_settings
from inventory_sync.database.connection import session_scope
from inventory_sync.database.models import ErrorType, SyncError
from inventory_sync.quality.validators import InvalidRecord

logger = structlog.get_logger(__name__)


@dataclass
class FlushResult:
    """Outcome of one flush, inspected only by the logger itself"""
    written: int = 0
    dropped: int = 0
    attempts: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _identity(record: Any) -> Tuple[Optional[str], Optional[str]]:
    if not isinstance(record, dict):
        return None, None
    sku = record.get("sku")
    variant_id = record.get("id")
    return (
        str(sku) if sku not in (None, "") else None,
        str(variant_id) if variant_id not in (None, "") else None,
    )


class SyncErrorLogger:
    """
    Buffered writer of ``sync_errors`` rows for one processing unit.

    Example:
        error_logger = SyncErrorLogger(session_factory, session_id, chunk_index=3)
        await error_logger.log_validation_error(invalid_record)
        await error_logger.flush()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        session_id: Optional[str] = None,
        chunk_index: Optional[int] = None,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.session_id = session_id
        self.chunk_index = chunk_index
        cfg = (settings or get_settings()).ingestion
        self.buffer_size = cfg.error_buffer_size
        self.value_max_length = cfg.error_value_max_length
        self.record_max_bytes = cfg.error_record_max_bytes
        self.flush_retries = cfg.error_flush_retries

        self._buffer: List[Dict[str, Any]] = []
        self.total_logged = 0
        self.total_written = 0
        self.total_dropped = 0

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def truncate_value(self, value: Any) -> Optional[str]:
        """String form of ``value`` cut to the configured length."""
        if value is None:
            return None
        text = value if isinstance(value, str) else json.dumps(value, default=str)
        if len(text) > self.value_max_length:
            return text[: self.value_max_length] + "..."
        return text

    def storable_record(self, record: Any) -> Optional[Any]:
        """The record itself when its serialized size is under the limit."""
        if record is None:
            return None
        try:
            encoded = json.dumps(record, default=str)
        except (TypeError, ValueError):
            return None
        if len(encoded.encode("utf-8")) >= self.record_max_bytes:
            return None
        return json.loads(encoded)

    async def _push(self, entry: Dict[str, Any]) -> None:
        entry.setdefault("session_id", self.session_id)
        entry.setdefault("chunk_index", self.chunk_index)
        self._buffer.append(entry)
        self.total_logged += 1
        if len(self._buffer) >= self.buffer_size:
            await self.flush()

    async def log_validation_error(self, invalid: InvalidRecord) -> None:
        """One entry per field-level issue of a rejected record"""
        sku, variant_id = _identity(invalid.raw)
        raw_record = self.storable_record(invalid.raw)
        for issue in invalid.errors:
            await self._push({
                "record_index": invalid.index,
                "sku": sku,
                "variant_id": variant_id,
                "error_type": ErrorType.VALIDATION,
                "error_code": issue.code,
                "error_message": issue.message,
                "field_name": issue.field,
                "raw_value": self.truncate_value(issue.value),
                "raw_record": raw_record,
            })

    async def log_transform_error(
        self,
        record: Dict[str, Any],
        message: str,
        field_name: Optional[str] = None,
        value: Any = None,
        record_index: Optional[int] = None,
    ) -> None:
        sku, variant_id = _identity(record)
        if value is None and field_name and isinstance(record, dict):
            value = record.get(field_name)
        await self._push({
            "record_index": record_index,
            "sku": sku,
            "variant_id": variant_id,
            "error_type": ErrorType.TRANSFORM,
            "error_code": "transform_failed",
            "error_message": message,
            "field_name": field_name,
            "raw_value": self.truncate_value(value),
            "raw_record": self.storable_record(record),
        })

    async def log_database_error(
        self,
        rows: Sequence[Dict[str, Any]],
        error: Exception,
        record_index: Optional[int] = None,
    ) -> None:
        """One entry for a whole failed upsert batch, keyed by its first record"""
        first = rows[0] if rows else {}
        sku, variant_id = _identity(first)
        code = getattr(getattr(error, "orig", None), "sqlstate", None) or getattr(error, "code", None)
        await self._push({
            "record_index": record_index,
            "sku": sku,
            "variant_id": variant_id,
            "error_type": ErrorType.DATABASE,
            "error_code": str(code) if code else "db_error",
            "error_message": self.truncate_value(str(error)),
            "field_name": None,
            "raw_value": None,
            "raw_record": {
                "batch_size": len(rows),
                "skus": [row.get("sku") for row in rows[:3]],
            },
        })

    async def log_error(
        self,
        message: str,
        error_type: ErrorType = ErrorType.UNKNOWN,
        sku: Optional[str] = None,
        variant_id: Optional[str] = None,
        field_name: Optional[str] = None,
        raw_value: Any = None,
        record_index: Optional[int] = None,
    ) -> None:
        await self._push({
            "record_index": record_index,
            "sku": sku,
            "variant_id": variant_id,
            "error_type": error_type,
            "error_code": f"{ErrorType(error_type).value}_error",
            "error_message": message,
            "field_name": field_name,
            "raw_value": self.truncate_value(raw_value),
            "raw_record": None,
        })

    async def _insert(self, entries: List[Dict[str, Any]]) -> None:
        async with session_scope(self.session_factory) as db:
            await db.execute(insert(SyncError), entries)

    async def flush(self) -> FlushResult:
        """Write buffered entries. Never raises."""
        if not self._buffer:
            return FlushResult()

        entries, self._buffer = self._buffer, []
        result = FlushResult()

        for attempt in range(self.flush_retries + 1):
            result.attempts = attempt + 1
            try:
                await self._insert(entries)
            except Exception as e:
                result.error = str(e)
                logger.warning(
                    "Sync error flush failed",
                    session_id=self.session_id,
                    chunk_index=self.chunk_index,
                    entries=len(entries),
                    attempt=result.attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            result.error = None
            result.written = len(entries)
            break

        if not result.ok:
            result.dropped = len(entries)
            self.total_dropped += result.dropped
        self.total_written += result.written
        return result


async def list_session_errors(
    session_factory: async_sessionmaker[AsyncSession],
    session_id: str,
    limit: int = 50,
    offset: int = 0,
    error_type: Optional[str] = None,
) -> Tuple[List[SyncError], int]:
    """Page of a session's errors, newest first, with the total count"""
    filters = [SyncError.session_id == session_id]
    if error_type:
        filters.append(SyncError.error_type == ErrorType(error_type))

    async with session_scope(session_factory) as db:
        total = (await db.execute(select(func.count(SyncError.id)).where(*filters))).scalar_one()
        rows = (
            await db.execute(
                select(SyncError)
                .where(*filters)
                .order_by(SyncError.created_at.desc(), SyncError.record_index)
                .limit(limit)
                .offset(offset)
            )
        ).scalars().all()
    return list(rows), int(total)


async def get_error_summary(
    session_factory: async_sessionmaker[AsyncSession],
    session_id: str,
) -> Dict[str, int]:
    """Error counts by type for one session"""
    async with session_scope(session_factory) as db:
        rows = (
            await db.execute(
                select(SyncError.error_type, func.count(SyncError.id))
                .where(SyncError.session_id == session_id)
                .group_by(SyncError.error_type)
            )
        ).all()
    return {ErrorType(error_type).value: int(count) for error_type, count in rows}
