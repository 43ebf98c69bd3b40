"""
Forecast Metric Recalculation

Full re-scan of every variant carrying a sales time series. For each one the
most recent window of monthly actuals is aligned with the externally supplied
forecast (falling back to the naive benchmark) and the tier-gated accuracy
metrics are upserted into ``forecast_metrics``. The aggregate business
summary is recomputed from SQL aggregates afterwards.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog
from prometheus_client import Histogram
from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inventory_sync.config.settings import Settings, get_settings
from inventory_sync.database.connection import session_scope
from inventory_sync.database.models import BusinessSummary, ForecastMetric, Variant
from inventory_sync.database.upsert import build_upsert, session_dialect
from inventory_sync.forecasting.accuracy import (
    ForecastSource,
    calculate_bias,
    calculate_mape,
    calculate_rmse,
    calculate_smoothed_mape,
    calculate_wape,
    calculate_wase,
    get_data_tier,
    naive_forecast,
    select_primary_metric,
)

logger = structlog.get_logger(__name__)


RECALCULATION_TIME = Histogram(
    "inventory_sync_metrics_recalculation_seconds",
    "Time spent recomputing forecast metrics and the business summary",
)


@dataclass
class RecalculationResult:
    """Outcome of a full metric re-scan"""
    variants_scanned: int = 0
    metrics_calculated: int = 0
    skipped: int = 0
    failed: int = 0
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variants_scanned": self.variants_scanned,
            "metrics_calculated": self.metrics_calculated,
            "skipped": self.skipped,
            "failed": self.failed,
            "duration_ms": round(self.duration_ms, 2),
        }


def _to_number(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if number == number else 0.0  # NaN


def flatten_time_series(series: Optional[dict]) -> List[Tuple[str, float]]:
    """
    Flatten a ``{year: {month: value}}`` map into ordered ``("YYYY-MM", value)`` pairs.

    Years sort lexically, months numerically. Non-numeric values count as 0
    and non-map year entries are ignored.
    """
    if not isinstance(series, dict):
        return []

    points: List[Tuple[str, float]] = []
    for year in sorted(series.keys(), key=str):
        months = series[year]
        if not isinstance(months, dict):
            continue
        month_keys = [m for m in months.keys() if str(m).strip().isdigit()]
        for month in sorted(month_keys, key=lambda m: int(m)):
            points.append((f"{year}-{int(month):02d}", _to_number(months[month])))
    return points


def compute_variant_metrics(
    variant_id: str,
    sku: str,
    orders_by_month: Optional[dict],
    forecast_by_period: Optional[dict],
    window: int = 12,
    zero_ratio_threshold: float = 0.3,
) -> Optional[Dict[str, Any]]:
    """
    Compute the forecast_metrics row for one variant.

    Returns None when the variant has fewer periods than the minimal tier.
    """
    actual_points = flatten_time_series(orders_by_month)[-window:]
    tier = get_data_tier(len(actual_points))
    if not tier.is_sufficient:
        return None

    periods = [key for key, _ in actual_points]
    actual = [value for _, value in actual_points]
    baseline = naive_forecast(actual)

    forecast_points = flatten_time_series(forecast_by_period)
    has_external = any(value != 0 for _, value in forecast_points)

    forecast = baseline
    source = ForecastSource.NAIVE_BENCHMARK
    if has_external:
        forecast_map = dict(forecast_points)
        aligned = [forecast_map.get(key, 0.0) for key in periods]
        # Alignment can leave nothing but zeros when forecast periods do not overlap
        if any(value != 0 for value in aligned):
            forecast = aligned
            source = ForecastSource.EXTERNAL

    smoothed = calculate_smoothed_mape(actual, forecast)
    if smoothed.value is None:
        return None

    return {
        "variant_id": variant_id,
        "sku": sku,
        "mape": smoothed.value if tier.allows("mape") else None,
        "wape": calculate_wape(actual, forecast) if tier.allows("wape") else None,
        "rmse": calculate_rmse(actual, forecast) if tier.allows("rmse") else None,
        "wase": calculate_wase(actual, forecast) if tier.allows("wase") else None,
        "bias": calculate_bias(actual, forecast) if tier.allows("bias") else None,
        "naive_mape": calculate_mape(actual, baseline),
        "actuals": actual,
        "forecasts": forecast,
        "periods": periods,
        "forecast_source": source.value,
        "data_tier": tier.tier,
        "confidence": tier.confidence,
        "period_count": len(actual),
        "zero_periods": smoothed.zero_periods,
        "primary_metric": select_primary_metric(actual, zero_ratio_threshold),
        "mape_method": smoothed.method,
    }


class MetricsRecalculator:
    """
    Recomputes ForecastMetric rows and the BusinessSummary snapshot.

    Example:
        recalculator = MetricsRecalculator(session_factory)
        result = await recalculator.recalculate_all()
        await recalculator.update_business_summary()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    async def recalculate_all(self) -> RecalculationResult:
        """Full re-scan of variants with a non-null ``orders_by_month``."""
        start = time.perf_counter()
        result = RecalculationResult()
        cfg = self.settings.ingestion

        async with session_scope(self.session_factory) as db:
            rows = (
                await db.execute(
                    select(
                        Variant.id,
                        Variant.sku,
                        Variant.orders_by_month,
                        Variant.forecast_by_period,
                    ).where(Variant.orders_by_month.is_not(None))
                )
            ).all()

        rows_to_write: List[Dict[str, Any]] = []
        calculated_at = datetime.now(timezone.utc)
        for row in rows:
            result.variants_scanned += 1
            try:
                metric = compute_variant_metrics(
                    row.id,
                    row.sku,
                    row.orders_by_month,
                    row.forecast_by_period,
                    window=cfg.metrics_window,
                    zero_ratio_threshold=cfg.primary_metric_zero_ratio,
                )
            except (TypeError, ValueError) as e:
                logger.warning("Metric calculation failed", variant_id=row.id, sku=row.sku, error=str(e))
                result.failed += 1
                continue
            if metric is None:
                result.skipped += 1
                continue
            metric["calculated_at"] = calculated_at
            rows_to_write.append(metric)

        batch_size = cfg.upsert_batch_size
        for offset in range(0, len(rows_to_write), batch_size):
            batch = rows_to_write[offset:offset + batch_size]
            try:
                async with session_scope(self.session_factory) as db:
                    stmt = build_upsert(
                        session_dialect(db),
                        ForecastMetric.__table__,
                        batch,
                        conflict_columns=["variant_id"],
                    )
                    await db.execute(stmt)
                result.metrics_calculated += len(batch)
            except SQLAlchemyError as e:
                logger.error(
                    "Forecast metric batch upsert failed",
                    batch_offset=offset,
                    batch_size=len(batch),
                    error=str(e),
                )
                result.failed += len(batch)

        result.duration_ms = (time.perf_counter() - start) * 1000
        logger.info("Forecast metrics recalculated", **result.to_dict())
        return result

    async def update_business_summary(self) -> Dict[str, Any]:
        """Recompute the ``current`` BusinessSummary from aggregate state."""
        in_stock = func.coalesce(Variant.in_stock, 0)
        aggregates = select(
            func.count(Variant.id).label("total_skus"),
            func.coalesce(func.sum(in_stock), 0).label("total_in_stock"),
            func.coalesce(
                func.sum(in_stock * func.coalesce(Variant.cost_price, 0)), 0
            ).label("total_value"),
            func.coalesce(
                func.sum(case((func.coalesce(Variant.replenishment, 0) > 0, 1), else_=0)), 0
            ).label("reorder_count"),
            func.coalesce(func.sum(case((in_stock <= 0, 1), else_=0)), 0).label("out_of_stock_count"),
            func.coalesce(
                func.sum(
                    case(
                        ((in_stock > 0) & (in_stock > func.coalesce(Variant.last_180_days_sales, 0)), 1),
                        else_=0,
                    )
                ),
                0,
            ).label("overstocked_count"),
            func.coalesce(
                func.sum(func.coalesce(Variant.forecasted_lost_revenue, 0)), 0
            ).label("total_lost_revenue"),
        )

        async with session_scope(self.session_factory) as db:
            stats = (await db.execute(aggregates)).one()
            avg_mape = (
                await db.execute(select(func.avg(ForecastMetric.mape)).where(ForecastMetric.mape.is_not(None)))
            ).scalar()

            summary = {
                "id": "current",
                "total_skus": int(stats.total_skus or 0),
                "total_in_stock": int(stats.total_in_stock or 0),
                "total_value": float(stats.total_value or 0),
                "reorder_count": int(stats.reorder_count or 0),
                "out_of_stock_count": int(stats.out_of_stock_count or 0),
                "overstocked_count": int(stats.overstocked_count or 0),
                "total_lost_revenue": float(stats.total_lost_revenue or 0),
                "avg_forecast_accuracy": (100 - float(avg_mape)) if avg_mape is not None else None,
                "updated_at": datetime.now(timezone.utc),
            }
            await db.execute(
                build_upsert(
                    session_dialect(db),
                    BusinessSummary.__table__,
                    summary,
                    conflict_columns=["id"],
                )
            )

        logger.info("Business summary updated", total_skus=summary["total_skus"])
        return summary

    async def run(self) -> RecalculationResult:
        """Metric re-scan followed by the summary update"""
        with RECALCULATION_TIME.time():
            result = await self.recalculate_all()
            await self.update_business_summary()
        return result
