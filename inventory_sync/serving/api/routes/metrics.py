"""
Forecast Metrics Endpoints
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inventory_sync.database.connection import session_scope
from inventory_sync.database.models import BusinessSummary, ForecastMetric
from inventory_sync.forecasting.accuracy import interpret_metrics
from inventory_sync.forecasting.recalculation import MetricsRecalculator
from inventory_sync.serving.api.dependencies import get_db_factory, get_recalculator, verify_webhook_secret
from inventory_sync.serving.api.errors import server_error

router = APIRouter()


async def _load_summary(session_factory: async_sessionmaker[AsyncSession]) -> Optional[Dict[str, Any]]:
    async with session_scope(session_factory) as db:
        row = await db.get(BusinessSummary, "current")
    if row is None:
        return None
    return {
        "total_skus": row.total_skus,
        "total_in_stock": row.total_in_stock,
        "total_value": row.total_value,
        "reorder_count": row.reorder_count,
        "out_of_stock_count": row.out_of_stock_count,
        "overstocked_count": row.overstocked_count,
        "total_lost_revenue": row.total_lost_revenue,
        "avg_forecast_accuracy": row.avg_forecast_accuracy,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


@router.post("/recalculate", dependencies=[Depends(verify_webhook_secret)])
async def recalculate_metrics(
    recalculator: MetricsRecalculator = Depends(get_recalculator),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_factory),
) -> Dict[str, Any]:
    """Recompute every forecast metric and the business summary now."""
    try:
        result = await recalculator.run()
        summary = await _load_summary(session_factory)
    except Exception as e:
        return server_error(e, "Metric recalculation failed")

    return {
        "success": True,
        "processed": result.variants_scanned,
        "calculated": result.metrics_calculated,
        "skipped": result.skipped,
        "failed": result.failed,
        "duration_ms": round(result.duration_ms, 2),
        "summary": summary,
    }


@router.get("/summary")
async def get_business_summary(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_factory),
) -> Optional[Dict[str, Any]]:
    """Last computed business summary, or null before the first import"""
    return await _load_summary(session_factory)


@router.get("/variants/{variant_id}")
async def get_variant_metrics(
    variant_id: str,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_factory),
) -> Dict[str, Any]:
    """Stored accuracy statistics of one variant with their interpretation"""
    async with session_scope(session_factory) as db:
        metric = await db.get(ForecastMetric, variant_id)
    if metric is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "Forecast metrics not found", "details": {"variant_id": variant_id}},
        )

    return {
        "variant_id": metric.variant_id,
        "sku": metric.sku,
        "mape": metric.mape,
        "wape": metric.wape,
        "rmse": metric.rmse,
        "wase": metric.wase,
        "bias": metric.bias,
        "naive_mape": metric.naive_mape,
        "forecast_source": metric.forecast_source,
        "data_tier": metric.data_tier,
        "confidence": metric.confidence,
        "period_count": metric.period_count,
        "zero_periods": metric.zero_periods,
        "primary_metric": metric.primary_metric,
        "mape_method": metric.mape_method,
        "periods": metric.periods,
        "interpretation": interpret_metrics(metric.mape, metric.wase, metric.bias, metric.actuals),
        "calculated_at": metric.calculated_at.isoformat() if metric.calculated_at else None,
    }
