"""
Forecast Accuracy Metrics

Pure functions over aligned actual/forecast series. All error metrics measure
forecast error, so lower is better. Functions return ``None`` when a metric is
undefined for the given input (empty or mismatched series, division by zero).

Implements:
- MAPE (standard and zero-smoothed)
- WAPE, RMSE, WASE, Bias
- Naive (previous period) benchmark forecast
- Data tiering by period count and primary-metric selection
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

import numpy as np


class ForecastSource(str, Enum):
    """Origin of the forecast series a metric row was computed against"""
    EXTERNAL = "external"
    NAIVE_BENCHMARK = "naive_benchmark"
    INSUFFICIENT_DATA = "insufficient_data"


ALL_METRICS = ("mape", "wape", "rmse", "wase", "bias")


@dataclass(frozen=True)
class DataTier:
    """Reliability classification of a series by its period count"""
    tier: str
    periods: int
    metrics_available: List[str] = field(default_factory=list)
    confidence: str = "none"
    message: str = ""

    def allows(self, metric: str) -> bool:
        return metric in self.metrics_available

    @property
    def is_sufficient(self) -> bool:
        return self.tier != "insufficient"


@dataclass(frozen=True)
class SmoothedMAPEResult:
    """Smoothed MAPE with the bookkeeping of how zero-actual periods were treated"""
    value: Optional[float]
    periods_adjusted: int
    zero_periods: int
    method: str  # "standard" or "smoothed"


def _pair(actual: Sequence[float], forecast: Sequence[float]):
    """Return float arrays or None when the series are empty or mismatched."""
    a = np.asarray(actual, dtype=float)
    f = np.asarray(forecast, dtype=float)
    if a.size == 0 or a.shape != f.shape:
        return None
    return a, f


def get_data_tier(period_count: int) -> DataTier:
    """
    Classify how reliable metrics over ``period_count`` periods are.

    >= 12 full, 6-11 limited (no WASE), 3-5 minimal (MAPE/WAPE/Bias), < 3 insufficient.
    """
    if period_count >= 12:
        return DataTier(
            tier="full",
            periods=period_count,
            metrics_available=list(ALL_METRICS),
            confidence="high",
            message="Full historical data available",
        )
    if period_count >= 6:
        return DataTier(
            tier="limited",
            periods=period_count,
            metrics_available=["mape", "wape", "rmse", "bias"],
            confidence="medium",
            message="Limited history - WASE may be unreliable",
        )
    if period_count >= 3:
        return DataTier(
            tier="minimal",
            periods=period_count,
            metrics_available=["mape", "wape", "bias"],
            confidence="low",
            message="Minimal data - metrics are directional only",
        )
    return DataTier(
        tier="insufficient",
        periods=period_count,
        metrics_available=[],
        confidence="none",
        message="Insufficient data for reliable metrics",
    )


def select_primary_metric(actual: Sequence[float], zero_ratio_threshold: float = 0.3) -> str:
    """WAPE when more than ``zero_ratio_threshold`` of actuals are zero, MAPE otherwise."""
    a = np.asarray(actual, dtype=float)
    if a.size == 0:
        return "mape"
    zero_ratio = np.count_nonzero(a == 0) / a.size
    return "wape" if zero_ratio > zero_ratio_threshold else "mape"


def calculate_mape(actual: Sequence[float], forecast: Sequence[float]) -> Optional[float]:
    """
    Mean Absolute Percentage Error.

    Periods with a zero actual are excluded. Returns None when none remain.

    Formula: mean(|actual - forecast| / actual) * 100
    """
    pair = _pair(actual, forecast)
    if pair is None:
        return None
    a, f = pair
    mask = a != 0
    if not mask.any():
        return None
    return float(np.mean(np.abs((a[mask] - f[mask]) / a[mask])) * 100)


def calculate_smoothed_mape(
    actual: Sequence[float],
    forecast: Sequence[float],
    smoothing_factor: float = 1.0,
) -> SmoothedMAPEResult:
    """
    MAPE that keeps zero-actual periods instead of dropping them.

    A zero forecast for a zero actual counts as 0% error. A non-zero forecast
    for a zero actual contributes ``min(|forecast| / smoothing_factor, 1)``,
    i.e. at most 100% error for that period.
    """
    pair = _pair(actual, forecast)
    if pair is None:
        return SmoothedMAPEResult(value=None, periods_adjusted=0, zero_periods=0, method="standard")
    a, f = pair

    zero = a == 0
    adjusted = zero & (f != 0)
    errors = np.zeros_like(a)
    errors[~zero] = np.abs(a[~zero] - f[~zero]) / a[~zero]
    errors[adjusted] = np.minimum(np.abs(f[adjusted]) / smoothing_factor, 1.0)

    periods_adjusted = int(np.count_nonzero(adjusted))
    return SmoothedMAPEResult(
        value=float(np.mean(errors) * 100),
        periods_adjusted=periods_adjusted,
        zero_periods=int(np.count_nonzero(zero)),
        method="smoothed" if periods_adjusted > 0 else "standard",
    )


def calculate_wape(actual: Sequence[float], forecast: Sequence[float]) -> Optional[float]:
    """
    Weighted Absolute Percentage Error.

    Formula: sum(|actual - forecast|) / sum(actual) * 100
    """
    pair = _pair(actual, forecast)
    if pair is None:
        return None
    a, f = pair
    total_actual = float(np.sum(a))
    if total_actual == 0:
        return None
    return float(np.sum(np.abs(a - f)) / total_actual * 100)


def calculate_rmse(actual: Sequence[float], forecast: Sequence[float]) -> Optional[float]:
    """Root Mean Square Error: sqrt(mean((actual - forecast)^2))"""
    pair = _pair(actual, forecast)
    if pair is None:
        return None
    a, f = pair
    return float(np.sqrt(np.mean((a - f) ** 2)))


def calculate_wase(actual: Sequence[float], forecast: Sequence[float]) -> Optional[float]:
    """
    Weighted Absolute Scaled Error.

    Total forecast error scaled by the error of the naive previous-period
    forecast. Below 1 beats the naive baseline, above 1 is worse.

    Formula: sum(|actual - forecast|) / sum(|actual_t - actual_{t-1}|)
    """
    pair = _pair(actual, forecast)
    if pair is None or pair[0].size < 2:
        return None
    a, f = pair
    naive_error = float(np.sum(np.abs(np.diff(a))))
    if naive_error == 0:
        return None
    return float(np.sum(np.abs(a - f)) / naive_error)


def calculate_bias(actual: Sequence[float], forecast: Sequence[float]) -> Optional[float]:
    """Mean signed error (forecast - actual). Positive means over-forecasting."""
    pair = _pair(actual, forecast)
    if pair is None:
        return None
    a, f = pair
    return float(np.mean(f - a))


def naive_forecast(actual: Sequence[float]) -> List[float]:
    """Previous period repeated forward: [a0, a0, a1, ..., a(n-2)]"""
    a = [float(v) for v in actual]
    if not a:
        return []
    return [a[0]] + a[:-1]


def calculate_all_metrics(actual: Sequence[float], forecast: Sequence[float]) -> dict:
    """Every metric without tier gating, plus the naive-baseline MAPE"""
    return {
        "mape": calculate_mape(actual, forecast),
        "wape": calculate_wape(actual, forecast),
        "rmse": calculate_rmse(actual, forecast),
        "wase": calculate_wase(actual, forecast),
        "bias": calculate_bias(actual, forecast),
        "naive_mape": calculate_mape(actual, naive_forecast(actual)),
    }


# =============================================================================
# Interpretation helpers
# =============================================================================

def get_mape_tier(value: float) -> str:
    if value < 10:
        return "excellent"
    if value < 20:
        return "good"
    if value < 30:
        return "acceptable"
    if value < 50:
        return "poor"
    return "very_poor"


def interpret_mape(value: float) -> str:
    return get_mape_tier(value).replace("_", " ").capitalize()


def interpret_wase(value: float) -> str:
    if value < 0.8:
        return "Much better than naive"
    if value < 1.0:
        return "Better than naive"
    if value == 1.0:
        return "Same as naive"
    if value < 1.2:
        return "Slightly worse than naive"
    return "Worse than naive"


def interpret_bias(value: float, avg_actual: float) -> str:
    """Describe bias as a percentage of the mean actual."""
    if avg_actual == 0:
        return "Cannot interpret (no sales)"
    bias_percent = value / avg_actual * 100
    if abs(bias_percent) < 5:
        return "Well balanced"
    if bias_percent > 0:
        return f"Over-forecasting by {bias_percent:.1f}%"
    return f"Under-forecasting by {abs(bias_percent):.1f}%"


def interpret_metrics(
    mape: Optional[float],
    wase: Optional[float],
    bias: Optional[float],
    actuals: Optional[Sequence[float]] = None,
) -> Dict[str, Optional[str]]:
    """Operator-facing labels for the stored statistics; None where a value is missing."""
    avg_actual = float(np.mean(actuals)) if actuals else 0.0
    return {
        "mape_tier": get_mape_tier(mape) if mape is not None else None,
        "mape": interpret_mape(mape) if mape is not None else None,
        "wase": interpret_wase(wase) if wase is not None else None,
        "bias": interpret_bias(bias, avg_actual) if bias is not None else None,
    }
