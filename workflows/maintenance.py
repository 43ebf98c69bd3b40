"""
Prefect Workflow Orchestration - Sync Maintenance

Scheduled housekeeping for the ingestion service:
- Purge terminal sync sessions past the retention window
- Recompute forecast metrics and the business summary
"""

from typing import Optional

from prefect import flow, get_run_logger, task

from inventory_sync.config import get_settings
from inventory_sync.config.logging import configure_logging
from inventory_sync.database.connection import close_database, get_session_factory, init_database
from inventory_sync.forecasting.recalculation import MetricsRecalculator
from inventory_sync.ingestion.session_manager import SyncSessionManager

settings = get_settings()


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="cleanup_old_sessions",
    description="Delete terminal sync sessions with their chunks and errors",
    retries=2,
    retry_delay_seconds=60,
)
async def cleanup_old_sessions(retention_days: Optional[int] = None) -> dict:
    logger = get_run_logger()

    manager = SyncSessionManager(get_session_factory(), settings)
    deleted = await manager.cleanup_old_sessions(retention_days)

    logger.info(f"Deleted {deleted} sync sessions older than the retention window")
    return {"deleted_sessions": deleted}


@task(
    name="recalculate_metrics",
    description="Recompute forecast accuracy metrics and the business summary",
    retries=1,
    retry_delay_seconds=300,
)
async def recalculate_metrics() -> dict:
    logger = get_run_logger()

    recalculator = MetricsRecalculator(get_session_factory(), settings)
    result = await recalculator.run()

    logger.info(
        f"Metrics recalculated: {result.metrics_calculated} calculated, "
        f"{result.skipped} skipped, {result.failed} failed"
    )
    return result.to_dict()


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="sync_maintenance",
    description="Nightly housekeeping for sync sessions and forecast metrics",
    retries=1,
    retry_delay_seconds=300,
)
async def sync_maintenance(
    retention_days: Optional[int] = None,
    recalculate: bool = True,
) -> dict:
    """
    Nightly maintenance.

    Steps:
    1. Purge old terminal sessions
    2. Recompute metrics (optional)
    """
    logger = get_run_logger()
    results = {"steps": {}}

    await init_database(create_schema=False)
    try:
        results["steps"]["cleanup"] = await cleanup_old_sessions(retention_days)
        if recalculate:
            results["steps"]["metrics"] = await recalculate_metrics()
        results["status"] = "success"
    except Exception as e:
        logger.error(f"Sync maintenance failed: {e}")
        results["status"] = "failed"
        results["error"] = str(e)
        raise
    finally:
        await close_database()

    return results


# =============================================================================
# DEPLOYMENT CONFIGURATION
# =============================================================================

if __name__ == "__main__":
    import asyncio

    configure_logging()
    asyncio.run(sync_maintenance())
