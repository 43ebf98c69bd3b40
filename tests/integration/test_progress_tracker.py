"""
Integration Tests - Sync Progress Tracker
"""
import asyncio

from inventory_sync.database.models import ProgressStatus
from inventory_sync.ingestion.progress_tracker import (
    SyncProgressTracker,
    _pending_resets,
    format_remaining,
    get_current_progress,
    progress_snapshot,
)
from tests.conftest import build_settings


class TestSyncProgressTracker:
    """Tests for the rate-limited progress writer"""

    async def test_start_and_update(self, session_factory, test_settings):
        tracker = SyncProgressTracker(session_factory, "session-1", 1200, test_settings)

        await tracker.start(current_chunk=0, total_chunks=3)
        written = await tracker.update_progress(500, current_batch=1, current_sku="SKU-9")

        row = await get_current_progress(session_factory)
        assert written
        assert row.status == ProgressStatus.PROCESSING
        assert row.records_processed == 500
        assert row.total_batches == 3
        assert row.total_chunks == 3
        assert row.current_sku == "SKU-9"

    async def test_updates_inside_window_are_dropped(self, session_factory):
        """Test the throttle drops writes but force bypasses it"""
        settings = build_settings(progress_throttle_ms=60_000)
        tracker = SyncProgressTracker(session_factory, "session-1", 100, settings)
        await tracker.start()

        assert await tracker.update_progress(10) is False
        assert await tracker.update_progress(20, force=True) is True
        assert await tracker.update_progress(30) is False
        assert (await get_current_progress(session_factory)).records_processed == 20

    async def test_complete(self, session_factory, test_settings):
        tracker = SyncProgressTracker(session_factory, "session-1", 10, test_settings)
        await tracker.start()

        await tracker.complete(10, error_count=1)

        row = await get_current_progress(session_factory)
        assert row.status == ProgressStatus.COMPLETED
        assert row.message.startswith("Sync complete: 10 records processed, 1 errors")

    async def test_completed_row_resets_to_idle(self, session_factory):
        settings = build_settings(progress_reset_delay_seconds=0)
        tracker = SyncProgressTracker(session_factory, "session-1", 10, settings)
        await tracker.start()

        await tracker.complete(10)
        await tracker.wait_for_reset()

        row = await get_current_progress(session_factory)
        assert row.status == ProgressStatus.IDLE
        assert row.session_id is None

    async def test_stale_reset_skips_newer_ingestion(self, session_factory, test_settings):
        """Test a late reset does not clobber the next ingestion's progress"""
        first = SyncProgressTracker(session_factory, "session-1", 10, test_settings)
        await first.start()
        await first.complete(10)

        second = SyncProgressTracker(session_factory, "session-2", 10, test_settings)
        await second.start()
        await first.reset(only_if_completed=True)

        row = await get_current_progress(session_factory)
        assert row.session_id == "session-2"
        assert row.status == ProgressStatus.STARTING

    async def test_fail(self, session_factory, test_settings):
        tracker = SyncProgressTracker(session_factory, "session-1", 10, test_settings)
        await tracker.start()

        await tracker.fail("disk full")

        row = await get_current_progress(session_factory)
        assert row.status == ProgressStatus.FAILED
        assert row.message == "Sync failed: disk full"

    async def test_unreachable_database_is_swallowed(self, test_settings):
        """Test publication failures never reach the ingestion"""
        def unreachable():
            raise ConnectionRefusedError("connection refused")

        tracker = SyncProgressTracker(unreachable, "session-1", 10, test_settings)

        await tracker.start()
        assert await tracker.update_progress(5, force=True) is False
        await tracker.fail("disk full")
        await tracker.reset(only_if_completed=True)

    async def test_scheduled_reset_is_tracked(self, session_factory):
        settings = build_settings(progress_reset_delay_seconds=0)
        tracker = SyncProgressTracker(session_factory, "session-1", 10, settings)
        await tracker.start()

        await tracker.complete(10)
        assert tracker._reset_task in _pending_resets

        await tracker.wait_for_reset()
        await asyncio.sleep(0)
        assert tracker._reset_task not in _pending_resets


class TestProgressSnapshot:
    def test_idle_when_no_row(self):
        snapshot = progress_snapshot(None)

        assert snapshot["status"] == "idle"
        assert snapshot["percentage"] == 0.0

    async def test_percentage(self, session_factory, test_settings):
        tracker = SyncProgressTracker(session_factory, "session-1", 200, test_settings)
        await tracker.start()
        await tracker.update_progress(50, force=True)

        snapshot = progress_snapshot(await get_current_progress(session_factory))

        assert snapshot["percentage"] == 25.0
        assert snapshot["status"] == "processing"

    def test_format_remaining(self):
        assert format_remaining(None) is None
        assert format_remaining(42) == "42s remaining"
        assert format_remaining(125) == "2m 5s remaining"
        assert format_remaining(7260) == "2h 1m remaining"
