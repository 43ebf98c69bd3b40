"""
Ingestion Orchestrator

Entry point called by the webhook and upload handlers. Per request:

    extract -> detect mappings -> validate -> transform -> batch upsert
    -> log errors -> update session/chunk/progress -> (on completion)
    recompute forecast metrics and the business summary

Single-shot requests run as a one-chunk session of their own. Chunked
requests belong to a session created up front; metrics are recomputed once,
by whichever request completes the last expected chunk.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog
from prometheus_client import Counter, Histogram
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inventory_sync.config.logging import bind_sync_context
from inventory_sync.config.settings import Settings, get_settings
from inventory_sync.database.connection import session_scope
from inventory_sync.database.models import ChunkStatus, ProgressStatus, SessionStatus, SyncChunk, SyncSession, Variant
from inventory_sync.database.upsert import build_upsert, session_dialect
from inventory_sync.forecasting.recalculation import MetricsRecalculator
from inventory_sync.ingestion.error_logger import SyncErrorLogger
from inventory_sync.ingestion.exceptions import InvalidSessionStateError, PayloadError
from inventory_sync.ingestion.extractors import extract_variants
from inventory_sync.ingestion.progress_tracker import SyncProgressTracker
from inventory_sync.ingestion.session_manager import SyncSessionManager
from inventory_sync.ingestion.transformers import transform_variants
from inventory_sync.quality.field_detection import FieldMappingDetection, detect_field_mappings, discover_fields
from inventory_sync.quality.validators import (
    VariantValidationResult,
    get_error_summary,
    get_warning_summary,
    validate_variants,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# METRICS
# =============================================================================

RECORDS_INGESTED = Counter(
    "inventory_sync_records_total",
    "Variant records seen by the ingestion pipeline",
    ["mode", "outcome"],
)

CHUNKS_PROCESSED = Counter(
    "inventory_sync_chunks_total",
    "Chunks processed in chunked mode",
    ["status"],
)

INGESTION_TIME = Histogram(
    "inventory_sync_ingestion_seconds",
    "Time spent handling one ingestion request",
    ["mode"],
)

VARIANT_UPDATE_COLUMNS = [
    column.name for column in Variant.__table__.columns if column.name not in ("id", "created_at")
]

SAMPLE_SIZE = 3
DISCOVERED_FIELDS_LIMIT = 25
LIFECYCLE_EVENTS = ("sync_started", "sync_completed", "sync_failed")


@dataclass
class ChunkContext:
    """Request metadata selecting chunked mode"""
    session_id: str
    chunk_index: int
    total_chunks: Optional[int] = None


@dataclass
class BatchOutcome:
    """Counts of one pass over a list of records"""
    received: int = 0
    imported: int = 0
    rejected: int = 0
    warned: int = 0
    transform_failed: int = 0
    database_failed: int = 0
    skipped: int = 0
    validation: Optional[VariantValidationResult] = None
    mappings: Optional[FieldMappingDetection] = None
    discovered_fields: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def errors(self) -> int:
        return self.transform_failed + self.database_failed

    @property
    def failed(self) -> int:
        return self.rejected + self.errors


@dataclass
class IngestionResult:
    """Everything an ingestion response reports"""
    mode: str
    session_id: Optional[str]
    outcome: BatchOutcome
    duration_ms: float = 0.0
    chunk_index: Optional[int] = None
    metrics_calculated: Optional[int] = None
    session_completed: bool = False
    duplicate: bool = False
    message: str = "Import completed"
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        outcome = self.outcome
        body: Dict[str, Any] = {
            "success": True,
            "message": self.message,
            "mode": self.mode,
            "session_id": self.session_id,
            "stats": {
                "received": outcome.received,
                "imported": outcome.imported,
                "rejected": outcome.rejected,
                "warnings": outcome.warned,
                "errors": outcome.errors,
                "skipped": outcome.skipped,
                "metrics_calculated": self.metrics_calculated,
                "duration_ms": round(self.duration_ms, 2),
            },
        }
        if self.chunk_index is not None:
            body["chunk_index"] = self.chunk_index
            body["duplicate"] = self.duplicate
            body["session_completed"] = self.session_completed

        if outcome.validation is not None:
            validation = outcome.validation
            body["validation"] = {
                "passed": validation.summary.passed,
                "failed": validation.summary.failed,
                "with_warnings": validation.summary.with_warnings,
                "error_summary": get_error_summary(validation),
                "warning_summary": get_warning_summary(validation),
                "sample_errors": [r.to_dict() for r in validation.invalid[:SAMPLE_SIZE]],
                "sample_warnings": [r.to_dict() for r in validation.warnings[:SAMPLE_SIZE]],
            }
        if outcome.mappings is not None:
            mappings = outcome.mappings
            body["field_detection"] = {
                "cost": {
                    "detected": mappings.cost.detected_field,
                    "coverage": round(mappings.cost.coverage * 100),
                    "alternatives": [
                        f"{alt.field} ({round(alt.coverage * 100)}%)"
                        for alt in mappings.cost.alternatives[:SAMPLE_SIZE]
                    ],
                },
                "lost_revenue": {
                    "detected": mappings.lost_revenue.detected_field,
                    "coverage": round(mappings.lost_revenue.coverage * 100),
                },
                "needs_confirmation": mappings.needs_confirmation,
                "summary": mappings.summary,
            }
            if mappings.needs_confirmation:
                body["field_detection"]["discovered_fields"] = outcome.discovered_fields
        body.update(self.extra)
        return body


def _dedupe_last(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep the last row per variant id; one statement cannot upsert an id twice."""
    by_id: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        by_id.pop(row["id"], None)
        by_id[row["id"]] = row
    return list(by_id.values())


class IngestionOrchestrator:
    """
    Wires validation, detection, persistence and bookkeeping per request.

    Collaborators are injected so tests can run against any session factory.

    Example:
        orchestrator = IngestionOrchestrator(session_factory)
        result = await orchestrator.ingest(body)
        result = await orchestrator.ingest(body, ChunkContext(session_id, 0, total_chunks=4))
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        session_manager: Optional[SyncSessionManager] = None,
        recalculator: Optional[MetricsRecalculator] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.sessions = session_manager or SyncSessionManager(session_factory, self.settings)
        self.recalculator = recalculator or MetricsRecalculator(session_factory, self.settings)

    # =========================================================================
    # Entry points
    # =========================================================================

    async def ingest(self, payload: Any, chunk: Optional[ChunkContext] = None) -> IngestionResult:
        """Ingest a request body in single-shot or chunked mode."""
        if chunk is not None:
            return await self.ingest_chunk(payload, chunk)
        records = extract_variants(payload)
        return await self.ingest_records(records, source="webhook")

    async def handle_event(self, body: Any) -> Dict[str, Any]:
        """
        Dispatch a single-shot webhook body by its ``event`` field.

        ``import_variants`` (the default) runs ingestion; lifecycle events are
        acknowledged and applied to the referenced session when one is given.
        """
        event = body.get("event", "import_variants") if isinstance(body, dict) else "import_variants"
        if event == "import_variants":
            return (await self.ingest(body)).to_dict()
        if event not in LIFECYCLE_EVENTS:
            raise PayloadError(f"Unknown event type: {event}")

        session_id = body.get("session_id") or body.get("sync_id")
        logger.info("Sync lifecycle event", sync_event=event, session_id=session_id)
        response: Dict[str, Any] = {"success": True, "event": event, "session_id": session_id}
        if not session_id:
            return response

        await self.sessions.require_session(session_id)
        if event == "sync_started":
            response["updated"] = await self.sessions.start_session(session_id)
        elif event == "sync_completed":
            claimed = await self.sessions.try_complete_session(session_id)
            response["updated"] = claimed
            if claimed:
                result = await self.recalculator.run()
                response["metrics_calculated"] = result.metrics_calculated
        else:
            message = body.get("error_message") or "Reported failed by sender"
            response["updated"] = await self.sessions.fail_session(session_id, message)
        return response

    async def ingest_records(self, records: List[Any], source: str = "webhook") -> IngestionResult:
        """
        Single-shot ingestion of already extracted records.

        The request gets a one-chunk session for its error log and audit trail.
        """
        if not records:
            raise PayloadError("No variants found in payload")

        start = time.perf_counter()
        session, _ = await self.sessions.create_session(
            total_chunks=1,
            total_records=len(records),
            source=source,
            metadata={"mode": "single"},
        )
        await self.sessions.start_session(session.id)
        bind_sync_context(sync_session_id=session.id)

        progress = SyncProgressTracker(self.session_factory, session.id, len(records), self.settings)
        await progress.start("Processing import...")
        error_logger = SyncErrorLogger(self.session_factory, session.id, settings=self.settings)

        with INGESTION_TIME.labels(mode="single").time():
            try:
                outcome = await self._process_records(records, error_logger, progress)
                await error_logger.flush()
                await self.sessions.record_chunk_result(
                    session.id, outcome.imported, outcome.failed, outcome.skipped
                )

                await progress.update_progress(
                    outcome.imported,
                    status=ProgressStatus.CALCULATING_METRICS,
                    message="Calculating forecast metrics...",
                    force=True,
                )
                metrics = await self.recalculator.run()
                await self.sessions.try_complete_session(session.id)
                await progress.complete(outcome.imported, outcome.failed)
            except Exception as e:
                await self._fail(session.id, None, error_logger, progress, e)
                raise

        self._count(outcome, "single")
        result = IngestionResult(
            mode="single",
            session_id=session.id,
            outcome=outcome,
            duration_ms=(time.perf_counter() - start) * 1000,
            metrics_calculated=metrics.metrics_calculated,
            session_completed=True,
        )
        logger.info("Single-shot import completed", **result.to_dict()["stats"])
        return result

    async def ingest_chunk(self, payload: Any, chunk: ChunkContext) -> IngestionResult:
        """
        Ingest one chunk of a session.

        Re-delivery of an already completed chunk index is acknowledged without
        reprocessing. Paused and terminal sessions refuse new chunk work. The
        session completes once no index below its declared total is missing.
        """
        start = time.perf_counter()
        session_id, chunk_index = chunk.session_id, chunk.chunk_index
        bind_sync_context(sync_session_id=session_id, chunk_index=chunk_index)

        session = await self.sessions.require_session(session_id)
        existing = await self.sessions.get_chunk(session_id, chunk_index)
        if existing is not None and existing.status == ChunkStatus.COMPLETED:
            return self._duplicate_result(session, existing, start)

        if session.status == SessionStatus.PAUSED or session.status.is_terminal:
            raise InvalidSessionStateError(session_id, session.status.value, "accept chunks for")

        total_chunks = await self._resolve_total_chunks(session, chunk)

        records = extract_variants(payload)
        if not records:
            raise PayloadError("No variants found in payload")

        chunk_row = await self.sessions.upsert_chunk(session_id, chunk_index, len(records))
        if chunk_row.status == ChunkStatus.COMPLETED:
            return self._duplicate_result(session, chunk_row, start)
        if session.status == SessionStatus.PENDING:
            await self.sessions.start_session(session_id)

        progress = SyncProgressTracker(self.session_factory, session_id, len(records), self.settings)
        await progress.start(
            f"Processing chunk {chunk_index}...",
            current_chunk=chunk_index,
            total_chunks=total_chunks,
        )
        error_logger = SyncErrorLogger(self.session_factory, session_id, chunk_index, self.settings)

        metrics_calculated = None
        session_completed = False
        with INGESTION_TIME.labels(mode="chunked").time():
            try:
                outcome = await self._process_records(records, error_logger, progress, chunk_index, total_chunks)
                await error_logger.flush()

                processing_ms = int((time.perf_counter() - start) * 1000)
                first_completion = await self.sessions.complete_chunk(
                    session_id, chunk_index, outcome.imported, outcome.failed, processing_ms
                )
                if first_completion:
                    await self.sessions.record_chunk_result(
                        session_id, outcome.imported, outcome.failed, outcome.skipped
                    )
                    CHUNKS_PROCESSED.labels(status="completed").inc()

                if first_completion and total_chunks:
                    missing = await self.sessions.get_missing_chunks(session_id)
                    if not missing and await self.sessions.try_complete_session(session_id):
                        await progress.update_progress(
                            outcome.imported,
                            status=ProgressStatus.CALCULATING_METRICS,
                            message="All chunks received, calculating forecast metrics...",
                            force=True,
                        )
                        metrics_calculated = (await self.recalculator.run()).metrics_calculated
                        session_completed = True

                await progress.complete(outcome.imported, outcome.failed)
            except Exception as e:
                await self._fail(session_id, chunk_index, error_logger, progress, e)
                CHUNKS_PROCESSED.labels(status="failed").inc()
                raise

        self._count(outcome, "chunked")
        result = IngestionResult(
            mode="chunked",
            session_id=session_id,
            chunk_index=chunk_index,
            outcome=outcome,
            duration_ms=(time.perf_counter() - start) * 1000,
            metrics_calculated=metrics_calculated,
            session_completed=session_completed,
            duplicate=not first_completion,
            message="Chunk processed",
        )
        logger.info(
            "Chunk processed",
            session_id=session_id,
            chunk_index=chunk_index,
            total_chunks=total_chunks,
            session_completed=session_completed,
            **result.to_dict()["stats"],
        )
        return result

    async def _resolve_total_chunks(self, session: SyncSession, chunk: ChunkContext) -> Optional[int]:
        """
        Settle the session's chunk count and check the index against it.

        A declared total is recorded once; a later header that disagrees with
        the stored total is refused, as is an index outside ``[0, total)``.
        """
        stored = session.total_expected_chunks
        if chunk.total_chunks and not stored:
            await self.sessions.set_expected_chunks(session.id, chunk.total_chunks)
            stored = (await self.sessions.require_session(session.id)).total_expected_chunks
        if chunk.total_chunks and chunk.total_chunks != stored:
            raise PayloadError(
                f"X-Total-Chunks {chunk.total_chunks} conflicts with the session's {stored} chunks",
                {"session_id": session.id, "total_chunks": stored, "declared": chunk.total_chunks},
            )

        if stored and chunk.chunk_index >= stored:
            raise PayloadError(
                f"Chunk index {chunk.chunk_index} is outside the session's {stored} chunks",
                {"session_id": session.id, "chunk_index": chunk.chunk_index, "total_chunks": stored},
            )
        return stored

    def _duplicate_result(self, session: SyncSession, existing: SyncChunk, start: float) -> IngestionResult:
        logger.info("Completed chunk re-delivered, skipping", session_id=session.id, chunk_index=existing.chunk_index)
        CHUNKS_PROCESSED.labels(status="duplicate").inc()
        return IngestionResult(
            mode="chunked",
            session_id=session.id,
            chunk_index=existing.chunk_index,
            outcome=BatchOutcome(
                received=existing.record_count,
                imported=existing.records_processed,
                rejected=existing.records_failed,
            ),
            duplicate=True,
            session_completed=session.status == SessionStatus.COMPLETED,
            message="Chunk already processed",
            duration_ms=(time.perf_counter() - start) * 1000,
        )

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _process_records(
        self,
        records: List[Any],
        error_logger: SyncErrorLogger,
        progress: SyncProgressTracker,
        chunk_index: Optional[int] = None,
        total_chunks: Optional[int] = None,
    ) -> BatchOutcome:
        cfg = self.settings.ingestion
        outcome = BatchOutcome(received=len(records))

        dict_records = [r for r in records if isinstance(r, dict)]
        mappings = detect_field_mappings(dict_records, coverage_threshold=cfg.mapping_coverage_threshold)
        if mappings.needs_confirmation:
            outcome.discovered_fields = discover_fields(dict_records)[:DISCOVERED_FIELDS_LIMIT]
        validation = validate_variants(
            records,
            stock_ceiling=cfg.stock_sanity_ceiling,
            cost_field=mappings.cost.detected_field,
        )
        outcome.mappings = mappings
        outcome.validation = validation
        outcome.rejected = validation.summary.failed
        outcome.warned = validation.summary.with_warnings

        for invalid in validation.invalid:
            await error_logger.log_validation_error(invalid)

        transformed = transform_variants(validation.valid, mappings)
        for failure in transformed.failures:
            await error_logger.log_transform_error(
                failure.record.raw,
                failure.message,
                field_name=failure.field_name,
                value=failure.value,
                record_index=failure.record.index,
            )
        outcome.transform_failed = len(transformed.failures)

        rows = _dedupe_last(transformed.rows)
        outcome.skipped = len(transformed.rows) - len(rows)

        batch_size = cfg.upsert_batch_size
        for batch_number, offset in enumerate(range(0, len(rows), batch_size), start=1):
            batch = rows[offset:offset + batch_size]
            try:
                async with session_scope(self.session_factory) as db:
                    await db.execute(
                        build_upsert(
                            session_dialect(db),
                            Variant.__table__,
                            batch,
                            conflict_columns=["id"],
                            update_columns=VARIANT_UPDATE_COLUMNS,
                        )
                    )
                outcome.imported += len(batch)
            except SQLAlchemyError as e:
                logger.error(
                    "Variant batch upsert failed",
                    batch=batch_number,
                    batch_size=len(batch),
                    error=str(e),
                )
                await error_logger.log_database_error(batch, e)
                outcome.database_failed += len(batch)

            await progress.update_progress(
                outcome.imported + outcome.database_failed,
                current_batch=batch_number,
                current_chunk=chunk_index,
                total_chunks=total_chunks,
                error_count=outcome.failed,
                current_sku=batch[-1]["sku"],
                message=f"Processed {outcome.imported + outcome.database_failed} of {len(rows)} records...",
            )

        return outcome

    async def _fail(
        self,
        session_id: str,
        chunk_index: Optional[int],
        error_logger: SyncErrorLogger,
        progress: SyncProgressTracker,
        error: Exception,
    ) -> None:
        message = f"{type(error).__name__}: {error}"
        logger.error(
            "Ingestion failed",
            session_id=session_id,
            chunk_index=chunk_index,
            error=message,
            exc_info=True,
        )
        await error_logger.log_error(message)
        await error_logger.flush()
        if chunk_index is not None:
            await self.sessions.fail_chunk(session_id, chunk_index, message)
        await self.sessions.fail_session(session_id, message)
        await progress.fail(message)

    @staticmethod
    def _count(outcome: BatchOutcome, mode: str) -> None:
        RECORDS_INGESTED.labels(mode=mode, outcome="imported").inc(outcome.imported)
        RECORDS_INGESTED.labels(mode=mode, outcome="rejected").inc(outcome.rejected)
        RECORDS_INGESTED.labels(mode=mode, outcome="error").inc(outcome.errors)
        RECORDS_INGESTED.labels(mode=mode, outcome="skipped").inc(outcome.skipped)
