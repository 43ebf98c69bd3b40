"""
Integration Tests - Ingestion Orchestrator

Runs the full pipeline against an in-memory database.
"""
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from inventory_sync.database.models import ChunkStatus, ForecastMetric, SessionStatus, Variant
from inventory_sync.ingestion.error_logger import get_error_summary, list_session_errors
from inventory_sync.ingestion.exceptions import InvalidSessionStateError, PayloadError
from inventory_sync.ingestion.orchestrator import ChunkContext, IngestionOrchestrator, _dedupe_last
from inventory_sync.ingestion.session_manager import SyncSessionManager


@pytest.fixture
def manager(session_factory, test_settings) -> SyncSessionManager:
    return SyncSessionManager(session_factory, test_settings)


@pytest.fixture
def orchestrator(session_factory, test_settings, manager) -> IngestionOrchestrator:
    return IngestionOrchestrator(session_factory, test_settings, session_manager=manager)


async def count_rows(session_factory, model) -> int:
    async with session_factory() as db:
        return (await db.execute(select(func.count()).select_from(model))).scalar_one()


async def get_variant(session_factory, variant_id: str) -> Variant:
    async with session_factory() as db:
        return await db.get(Variant, variant_id)


class TestSingleShot:
    """Tests for single-shot ingestion"""

    async def test_mixed_batch(self, orchestrator, manager, session_factory, valid_variant, make_variant):
        """Test valid records land while invalid ones are rejected and logged"""
        missing_sku = make_variant(1)
        del missing_sku["sku"]
        negative_cost = make_variant(2, cost_price=-5)

        result = await orchestrator.ingest({"variants": [missing_sku, negative_cost, valid_variant]})
        body = result.to_dict()

        assert body["success"] is True
        assert body["mode"] == "single"
        assert body["stats"]["received"] == 3
        assert body["stats"]["imported"] == 1
        assert body["stats"]["rejected"] == 2
        assert body["stats"]["metrics_calculated"] == 1
        assert body["validation"]["failed"] == 2
        assert len(body["validation"]["sample_errors"]) == 2
        assert body["field_detection"]["cost"]["detected"] == "cost_price"

        assert await count_rows(session_factory, Variant) == 1
        async with session_factory() as db:
            metrics = (await db.execute(select(ForecastMetric))).scalars().all()
        assert len(metrics) == 1
        assert metrics[0].variant_id == "40001"
        assert metrics[0].forecast_source == "external"
        assert metrics[0].data_tier == "full"

        session = await manager.get_session(result.session_id)
        assert session.status == SessionStatus.COMPLETED
        assert session.records_processed == 1
        assert session.records_failed == 2
        assert await get_error_summary(session_factory, result.session_id) == {"validation": 2}

    async def test_latest_values_win(self, orchestrator, session_factory, valid_variant):
        await orchestrator.ingest({"variants": [valid_variant]})
        first_synced = (await get_variant(session_factory, "40001")).synced_at
        await orchestrator.ingest({"variants": [{**valid_variant, "in_stock": 5, "title": "Renamed"}]})

        variant = await get_variant(session_factory, "40001")
        assert await count_rows(session_factory, Variant) == 1
        assert variant.in_stock == 5
        assert variant.title == "Renamed"
        assert variant.synced_at >= first_synced

    async def test_duplicate_ids_in_payload(self, orchestrator, session_factory, valid_variant):
        """Test the last occurrence of a repeated id is kept"""
        result = await orchestrator.ingest([
            {**valid_variant, "price": 20.0},
            {**valid_variant, "price": 30.0},
        ])

        assert result.outcome.imported == 1
        assert result.outcome.skipped == 1
        assert (await get_variant(session_factory, "40001")).price == 30.0

    async def test_cost_alias_is_mapped(self, orchestrator, session_factory, make_variant):
        variants = []
        for i in range(5):
            variant = make_variant(i)
            del variant["cost_price"]
            variant["unit_cost"] = 7.5
            variants.append(variant)

        result = await orchestrator.ingest({"variants": variants})

        assert result.outcome.mappings.cost.detected_field == "unit_cost"
        assert (await get_variant(session_factory, "40001")).cost_price == 7.5

    async def test_unconfirmed_mapping_lists_fields(self, orchestrator, make_variant):
        """Test a batch without a cost field reports the fields it does carry"""
        variants = []
        for i in range(3):
            variant = make_variant(i)
            del variant["cost_price"]
            variants.append(variant)

        detection = (await orchestrator.ingest({"variants": variants})).to_dict()["field_detection"]

        assert detection["needs_confirmation"] is True
        assert detection["cost"]["detected"] is None
        discovered = {entry["field"]: entry for entry in detection["discovered_fields"]}
        assert {"id", "sku", "price"} <= set(discovered)
        assert discovered["sku"]["non_null_count"] == 3

    async def test_confirmed_mapping_omits_discovery(self, orchestrator, valid_variant):
        detection = (await orchestrator.ingest({"variants": [valid_variant]})).to_dict()["field_detection"]

        assert detection["needs_confirmation"] is False
        assert "discovered_fields" not in detection

    async def test_empty_payload(self, orchestrator):
        with pytest.raises(PayloadError):
            await orchestrator.ingest({"variants": []})

    async def test_failed_upsert_batch_is_logged(self, orchestrator, session_factory, make_variant, monkeypatch):
        def failing_upsert(*args, **kwargs):
            raise OperationalError("INSERT INTO variants", {}, Exception("disk I/O error"))

        monkeypatch.setattr("inventory_sync.ingestion.orchestrator.build_upsert", failing_upsert)

        result = await orchestrator.ingest({"variants": [make_variant(0), make_variant(1)]})

        assert result.outcome.imported == 0
        assert result.outcome.database_failed == 2
        assert result.to_dict()["stats"]["errors"] == 2
        errors, total = await list_session_errors(session_factory, result.session_id)
        assert total == 1
        assert errors[0].raw_record["batch_size"] == 2

    async def test_unexpected_failure_fails_session(self, orchestrator, manager, valid_variant, monkeypatch):
        async def broken_run():
            raise RuntimeError("metrics store unavailable")

        monkeypatch.setattr(orchestrator.recalculator, "run", broken_run)

        with pytest.raises(RuntimeError):
            await orchestrator.ingest({"variants": [valid_variant]})

        sessions, total = await manager.list_sessions()
        assert total == 1
        assert sessions[0].status == SessionStatus.FAILED
        assert "RuntimeError" in sessions[0].error_message


class TestChunked:
    """Tests for chunked ingestion"""

    async def test_session_completes_on_last_chunk(self, orchestrator, manager, session_factory, make_variant):
        session, _ = await manager.create_session(total_chunks=2)

        first = await orchestrator.ingest(
            {"variants": [make_variant(0), make_variant(1)]},
            ChunkContext(session.id, 0),
        )
        assert first.session_completed is False
        assert first.metrics_calculated is None
        assert (await manager.get_session(session.id)).status == SessionStatus.IN_PROGRESS

        last = await orchestrator.ingest({"variants": [make_variant(2)]}, ChunkContext(session.id, 1))

        assert last.session_completed is True
        assert last.metrics_calculated == 3
        assert await count_rows(session_factory, ForecastMetric) == 3

        refreshed = await manager.get_session(session.id)
        assert refreshed.status == SessionStatus.COMPLETED
        assert refreshed.chunks_received == 2
        assert refreshed.records_processed == 3

    async def test_redelivered_chunk_is_acknowledged(self, orchestrator, manager, make_variant):
        """Test a completed chunk sent again leaves the counters unchanged"""
        session, _ = await manager.create_session(total_chunks=3)
        payload = {"variants": [make_variant(0), make_variant(1)]}

        await orchestrator.ingest(payload, ChunkContext(session.id, 0))
        again = await orchestrator.ingest(payload, ChunkContext(session.id, 0))

        assert again.duplicate is True
        assert again.to_dict()["duplicate"] is True
        assert again.outcome.imported == 2
        refreshed = await manager.get_session(session.id)
        assert refreshed.chunks_received == 1
        assert refreshed.records_processed == 2
        assert await manager.get_missing_chunks(session.id) == [1, 2]

    async def test_declared_total_from_request(self, orchestrator, manager, make_variant):
        session, _ = await manager.create_session()

        result = await orchestrator.ingest({"variants": [make_variant(0)]}, ChunkContext(session.id, 0, total_chunks=1))

        assert result.session_completed is True
        assert (await manager.get_session(session.id)).total_expected_chunks == 1

    async def test_open_ended_session_stays_in_progress(self, orchestrator, manager, make_variant):
        session, _ = await manager.create_session()

        result = await orchestrator.ingest({"variants": [make_variant(0)]}, ChunkContext(session.id, 0))

        assert result.session_completed is False
        assert (await manager.get_session(session.id)).status == SessionStatus.IN_PROGRESS

    async def test_chunk_errors_carry_index(self, orchestrator, manager, session_factory, make_variant):
        session, _ = await manager.create_session(total_chunks=4)

        await orchestrator.ingest({"variants": [make_variant(0, price=-1)]}, ChunkContext(session.id, 3))

        errors, total = await list_session_errors(session_factory, session.id)
        assert total == 1
        assert errors[0].chunk_index == 3
        assert errors[0].field_name == "price"

    async def test_paused_session_refuses_chunks(self, orchestrator, manager, make_variant):
        session, _ = await manager.create_session(total_chunks=2)
        await manager.start_session(session.id)
        await manager.pause_session(session.id)

        with pytest.raises(InvalidSessionStateError):
            await orchestrator.ingest({"variants": [make_variant(0)]}, ChunkContext(session.id, 0))

    async def test_completed_session_refuses_new_chunks(self, orchestrator, manager, make_variant):
        session, _ = await manager.create_session(total_chunks=1)
        await orchestrator.ingest({"variants": [make_variant(0)]}, ChunkContext(session.id, 0))

        with pytest.raises(InvalidSessionStateError):
            await orchestrator.ingest({"variants": [make_variant(1)]}, ChunkContext(session.id, 1))

    async def test_empty_chunk(self, orchestrator, manager):
        session, _ = await manager.create_session(total_chunks=1)

        with pytest.raises(PayloadError):
            await orchestrator.ingest({"variants": []}, ChunkContext(session.id, 0))

    async def test_out_of_range_index_is_refused(self, orchestrator, manager, make_variant):
        """Test an index past the declared total neither lands nor completes the session"""
        session, _ = await manager.create_session(total_chunks=3)
        await orchestrator.ingest({"variants": [make_variant(0)]}, ChunkContext(session.id, 0))
        await orchestrator.ingest({"variants": [make_variant(1)]}, ChunkContext(session.id, 1))

        with pytest.raises(PayloadError):
            await orchestrator.ingest({"variants": [make_variant(7)]}, ChunkContext(session.id, 7))

        assert await manager.get_chunk(session.id, 7) is None
        assert (await manager.get_session(session.id)).status == SessionStatus.IN_PROGRESS
        assert await manager.get_missing_chunks(session.id) == [2]

        last = await orchestrator.ingest({"variants": [make_variant(2)]}, ChunkContext(session.id, 2))
        assert last.session_completed is True

    async def test_conflicting_total_is_refused(self, orchestrator, manager, make_variant):
        session, _ = await manager.create_session(total_chunks=5)

        with pytest.raises(PayloadError):
            await orchestrator.ingest({"variants": [make_variant(0)]}, ChunkContext(session.id, 0, total_chunks=2))

        assert (await manager.get_session(session.id)).total_expected_chunks == 5
        assert await manager.get_chunk(session.id, 0) is None

    async def test_stale_redelivery_is_not_counted_twice(self, orchestrator, manager, make_variant, monkeypatch):
        """Test a delivery that missed the completed chunk on its first read is still a duplicate"""
        session, _ = await manager.create_session(total_chunks=3)
        payload = {"variants": [make_variant(0), make_variant(1)]}
        await orchestrator.ingest(payload, ChunkContext(session.id, 0))

        async def chunk_not_seen_yet(session_id, chunk_index):
            return None

        monkeypatch.setattr(manager, "get_chunk", chunk_not_seen_yet)
        again = await orchestrator.ingest(payload, ChunkContext(session.id, 0))

        assert again.duplicate is True
        refreshed = await manager.get_session(session.id)
        assert refreshed.chunks_received == 1
        assert refreshed.records_processed == 2

    async def test_failed_chunk_resumes_to_completion(self, orchestrator, manager, make_variant, monkeypatch):
        """Test fail, resume, re-send the failed index, complete"""
        session, _ = await manager.create_session(total_chunks=2)
        await orchestrator.ingest({"variants": [make_variant(0), make_variant(1)]}, ChunkContext(session.id, 0))

        def broken_transform(*args, **kwargs):
            raise RuntimeError("transform worker crashed")

        monkeypatch.setattr("inventory_sync.ingestion.orchestrator.transform_variants", broken_transform)
        with pytest.raises(RuntimeError):
            await orchestrator.ingest({"variants": [make_variant(2)]}, ChunkContext(session.id, 1))
        monkeypatch.undo()

        failed = await manager.get_session(session.id)
        assert failed.status == SessionStatus.FAILED
        assert (await manager.get_chunk(session.id, 1)).status == ChunkStatus.FAILED

        resumed, missing = await manager.resume_session(session.id)
        assert resumed.status == SessionStatus.IN_PROGRESS
        assert missing == [1]

        result = await orchestrator.ingest({"variants": [make_variant(2)]}, ChunkContext(session.id, 1))

        assert result.session_completed is True
        assert result.metrics_calculated == 3
        completed = await manager.get_session(session.id)
        assert completed.status == SessionStatus.COMPLETED
        assert completed.chunks_received == 2
        assert completed.records_processed == 3


class TestLifecycleEvents:
    """Tests for sync_started / sync_completed / sync_failed"""

    async def test_unknown_event(self, orchestrator):
        with pytest.raises(PayloadError):
            await orchestrator.handle_event({"event": "sync_exploded"})

    async def test_event_without_session(self, orchestrator):
        response = await orchestrator.handle_event({"event": "sync_started"})

        assert response == {"success": True, "event": "sync_started", "session_id": None}

    async def test_started_then_completed(self, orchestrator, manager):
        session, _ = await manager.create_session()

        started = await orchestrator.handle_event({"event": "sync_started", "session_id": session.id})
        completed = await orchestrator.handle_event({"event": "sync_completed", "sync_id": session.id})

        assert started["updated"] is True
        assert completed["updated"] is True
        assert completed["metrics_calculated"] == 0
        assert (await manager.get_session(session.id)).status == SessionStatus.COMPLETED

    async def test_failed(self, orchestrator, manager):
        session, _ = await manager.create_session()

        response = await orchestrator.handle_event({
            "event": "sync_failed",
            "session_id": session.id,
            "error_message": "sender crashed",
        })

        refreshed = await manager.get_session(session.id)
        assert response["updated"] is True
        assert refreshed.status == SessionStatus.FAILED
        assert refreshed.error_message == "sender crashed"

    async def test_default_event_imports(self, orchestrator, valid_variant):
        response = await orchestrator.handle_event({"variants": [valid_variant]})

        assert response["stats"]["imported"] == 1


def test_dedupe_keeps_last_position():
    rows = [{"id": "a", "v": 1}, {"id": "b", "v": 2}, {"id": "a", "v": 3}]

    assert _dedupe_last(rows) == [{"id": "b", "v": 2}, {"id": "a", "v": 3}]
