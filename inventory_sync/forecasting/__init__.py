"""
Forecasting Module

Forecast-accuracy metrics and their recalculation over stored variants.
"""
from .accuracy import (
    DataTier,
    ForecastSource,
    SmoothedMAPEResult,
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
from .recalculation import MetricsRecalculator, RecalculationResult

__all__ = [
    "DataTier",
    "ForecastSource",
    "SmoothedMAPEResult",
    "calculate_bias",
    "calculate_mape",
    "calculate_rmse",
    "calculate_smoothed_mape",
    "calculate_wape",
    "calculate_wase",
    "get_data_tier",
    "naive_forecast",
    "select_primary_metric",
    "MetricsRecalculator",
    "RecalculationResult",
]
