"""
Integration Tests - Sync Error Logger
"""
import pytest
from sqlalchemy.exc import OperationalError

from inventory_sync.database.models import ErrorType
from inventory_sync.ingestion.error_logger import SyncErrorLogger, get_error_summary, list_session_errors
from inventory_sync.ingestion.session_manager import SyncSessionManager
from inventory_sync.quality.validators import validate_variants
from tests.conftest import build_settings


@pytest.fixture
async def session_id(session_factory, test_settings) -> str:
    session, _ = await SyncSessionManager(session_factory, test_settings).create_session()
    return session.id


class TestSyncErrorLogger:
    """Tests for buffered error logging"""

    async def test_validation_errors_one_row_per_issue(self, session_factory, test_settings, session_id):
        """Test each field-level issue becomes its own row"""
        result = validate_variants([{"id": "1", "sku": "A", "price": -1, "oos_last_60_days": 99}])
        error_logger = SyncErrorLogger(session_factory, session_id, chunk_index=2, settings=test_settings)

        await error_logger.log_validation_error(result.invalid[0])
        flushed = await error_logger.flush()

        rows, total = await list_session_errors(session_factory, session_id)
        assert flushed.written == 2
        assert total == 2
        assert {row.field_name for row in rows} == {"price", "oos_last_60_days"}
        assert all(row.chunk_index == 2 and row.sku == "A" for row in rows)
        assert rows[0].raw_record["id"] == "1"

    async def test_flushes_when_buffer_fills(self, session_factory, session_id):
        settings = build_settings(error_buffer_size=2)
        error_logger = SyncErrorLogger(session_factory, session_id, settings=settings)

        for i in range(3):
            await error_logger.log_error(f"problem {i}")

        assert error_logger.total_written == 2
        assert error_logger.buffered == 1

    async def test_truncates_long_values(self, session_factory, session_id):
        settings = build_settings(error_value_max_length=10)
        error_logger = SyncErrorLogger(session_factory, session_id, settings=settings)

        assert error_logger.truncate_value("x" * 50) == "x" * 10 + "..."
        assert error_logger.truncate_value({"a": 1}) == '{"a": 1}'

    async def test_oversized_record_not_attached(self, session_factory, session_id):
        settings = build_settings(error_record_max_bytes=100)
        error_logger = SyncErrorLogger(session_factory, session_id, settings=settings)

        assert error_logger.storable_record({"blob": "y" * 500}) is None
        assert error_logger.storable_record({"id": 1}) == {"id": 1}

    async def test_database_error_one_row_per_batch(self, session_factory, test_settings, session_id):
        error_logger = SyncErrorLogger(session_factory, session_id, settings=test_settings)
        rows = [{"id": str(i), "sku": f"SKU-{i}"} for i in range(5)]

        await error_logger.log_database_error(rows, ValueError("constraint violated"))
        await error_logger.flush()

        logged, total = await list_session_errors(session_factory, session_id, error_type="database")
        assert total == 1
        assert logged[0].raw_record == {"batch_size": 5, "skus": ["SKU-0", "SKU-1", "SKU-2"]}
        assert logged[0].error_code == "db_error"

    async def test_summary_by_type(self, session_factory, test_settings, session_id):
        error_logger = SyncErrorLogger(session_factory, session_id, settings=test_settings)
        await error_logger.log_transform_error({"id": "1", "sku": "A"}, "out of range", field_name="in_stock")
        await error_logger.log_error("odd")
        await error_logger.log_error("odder")
        await error_logger.flush()

        assert await get_error_summary(session_factory, session_id) == {"transform": 1, "unknown": 2}

    async def test_flush_failure_is_swallowed(self, session_factory, test_settings, session_id, monkeypatch):
        """Test a failing insert is retried, then dropped without raising"""
        error_logger = SyncErrorLogger(session_factory, session_id, settings=test_settings)
        calls = []

        async def failing_insert(entries):
            calls.append(len(entries))
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(error_logger, "_insert", failing_insert)
        await error_logger.log_error("lost", error_type=ErrorType.UNKNOWN)

        result = await error_logger.flush()

        assert not result.ok
        assert result.attempts == test_settings.ingestion.error_flush_retries + 1
        assert result.dropped == 1
        assert error_logger.total_dropped == 1
        assert len(calls) == result.attempts

    async def test_connection_error_is_swallowed(self, session_factory, test_settings, session_id, monkeypatch):
        """Test a driver-level connection error is dropped like a database error"""
        error_logger = SyncErrorLogger(session_factory, session_id, settings=test_settings)

        async def reset_connection(entries):
            raise ConnectionResetError("connection reset by peer")

        monkeypatch.setattr(error_logger, "_insert", reset_connection)
        await error_logger.log_error("lost", error_type=ErrorType.UNKNOWN)

        result = await error_logger.flush()

        assert not result.ok
        assert result.dropped == 1
        assert "connection reset" in result.error

    async def test_empty_flush(self, session_factory, test_settings):
        result = await SyncErrorLogger(session_factory, settings=test_settings).flush()

        assert result.ok
        assert result.attempts == 0
