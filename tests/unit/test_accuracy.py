"""
Unit Tests - Forecast Accuracy Metrics
"""
import math

import pytest

from inventory_sync.forecasting.accuracy import (
    calculate_all_metrics,
    calculate_bias,
    calculate_mape,
    calculate_rmse,
    calculate_smoothed_mape,
    calculate_wape,
    calculate_wase,
    get_data_tier,
    get_mape_tier,
    interpret_bias,
    interpret_mape,
    interpret_metrics,
    interpret_wase,
    naive_forecast,
    select_primary_metric,
)
from inventory_sync.forecasting.recalculation import compute_variant_metrics, flatten_time_series


class TestMAPE:
    """Tests for standard and smoothed MAPE"""

    def test_perfect_forecast(self):
        """Test identical series give zero error"""
        assert calculate_mape([10, 20, 30], [10, 20, 30]) == 0.0

    def test_known_value(self):
        """Test MAPE against a hand-computed value"""
        # |10-12|/10 = 0.2, |20-15|/20 = 0.25 -> mean 22.5%
        assert calculate_mape([10, 20], [12, 15]) == pytest.approx(22.5)

    def test_zero_actuals_are_excluded(self):
        """Test periods with zero actual do not contribute"""
        assert calculate_mape([0, 10], [5, 12]) == pytest.approx(20.0)

    def test_all_zero_actuals_is_none(self):
        """Test MAPE is undefined when every actual is zero"""
        assert calculate_mape([0, 0, 0], [1, 2, 3]) is None

    def test_empty_or_mismatched_is_none(self):
        """Test empty and mismatched inputs"""
        assert calculate_mape([], []) is None
        assert calculate_mape([1, 2], [1]) is None

    def test_smoothed_all_zero_is_zero(self):
        """Test smoothed MAPE of zero actual and zero forecast is 0, not None"""
        result = calculate_smoothed_mape([0, 0, 0], [0, 0, 0])

        assert result.value == 0.0
        assert result.zero_periods == 3
        assert result.periods_adjusted == 0
        assert result.method == "standard"

    def test_smoothed_caps_zero_actual_error(self):
        """Test a non-zero forecast for a zero actual counts at most 100%"""
        result = calculate_smoothed_mape([0, 10], [50, 10])

        assert result.value == pytest.approx(50.0)
        assert result.periods_adjusted == 1
        assert result.method == "smoothed"

    def test_smoothed_matches_standard_without_zeros(self):
        """Test smoothed and standard MAPE agree when no actual is zero"""
        actual, forecast = [10, 20, 40], [12, 18, 44]

        assert calculate_smoothed_mape(actual, forecast).value == pytest.approx(calculate_mape(actual, forecast))


class TestOtherMetrics:
    """Tests for WAPE, RMSE, WASE and Bias"""

    def test_wape(self):
        """Test WAPE weights errors by total volume"""
        # (2 + 5) / 30
        assert calculate_wape([10, 20], [12, 15]) == pytest.approx(700 / 30)

    def test_wape_zero_total_is_none(self):
        assert calculate_wape([0, 0], [1, 1]) is None

    def test_rmse(self):
        """Test RMSE against a hand-computed value"""
        assert calculate_rmse([1, 2, 3], [2, 2, 5]) == pytest.approx(math.sqrt(5 / 3))

    def test_wase_of_naive_forecast_is_one(self):
        """Test the naive forecast scores exactly 1 against itself"""
        actual = [10, 14, 9, 20, 18, 25]

        assert calculate_wase(actual, naive_forecast(actual)) == pytest.approx(1.0)

    def test_wase_flat_series_is_none(self):
        """Test WASE is undefined when the naive error is zero"""
        assert calculate_wase([5, 5, 5], [4, 5, 6]) is None

    def test_bias_sign(self):
        """Test positive bias means over-forecasting"""
        assert calculate_bias([10, 10], [12, 14]) == pytest.approx(3.0)
        assert calculate_bias([10, 10], [8, 8]) == pytest.approx(-2.0)

    def test_naive_forecast(self):
        """Test the naive forecast repeats the previous period"""
        assert naive_forecast([3, 5, 7]) == [3.0, 3.0, 5.0]
        assert naive_forecast([]) == []

    def test_all_metrics(self):
        metrics = calculate_all_metrics([10, 12, 14], [10, 12, 14])

        assert metrics["mape"] == 0.0
        assert metrics["rmse"] == 0.0
        assert metrics["naive_mape"] is not None


class TestDataTier:
    """Tests for data tiering and primary metric selection"""

    @pytest.mark.parametrize(
        "periods,tier",
        [(12, "full"), (11, "limited"), (6, "limited"), (5, "minimal"), (3, "minimal"), (2, "insufficient")],
    )
    def test_tier_boundaries(self, periods, tier):
        """Test period counts map to the expected tier"""
        assert get_data_tier(periods).tier == tier

    def test_limited_tier_excludes_wase(self):
        tier = get_data_tier(8)

        assert not tier.allows("wase")
        assert tier.allows("rmse")

    def test_minimal_tier_metrics(self):
        tier = get_data_tier(4)

        assert sorted(tier.metrics_available) == ["bias", "mape", "wape"]

    def test_insufficient_tier_allows_nothing(self):
        tier = get_data_tier(0)

        assert tier.metrics_available == []
        assert not tier.is_sufficient

    def test_primary_metric_switches_to_wape(self):
        """Test WAPE becomes primary above the zero-actual ratio"""
        assert select_primary_metric([0, 0, 5, 6]) == "wape"
        assert select_primary_metric([1, 2, 0, 6]) == "mape"


class TestInterpretation:
    """Tests for interpretation helpers"""

    @pytest.mark.parametrize(
        "value,label",
        [(5, "excellent"), (15, "good"), (25, "acceptable"), (40, "poor"), (75, "very_poor")],
    )
    def test_mape_tier(self, value, label):
        assert get_mape_tier(value) == label

    def test_mape_wording(self):
        assert interpret_mape(25) == "Acceptable"
        assert interpret_mape(75) == "Very poor"

    def test_wase_wording(self):
        assert interpret_wase(0.5) == "Much better than naive"
        assert interpret_wase(1.5) == "Worse than naive"

    def test_bias_wording(self):
        assert interpret_bias(1, 100) == "Well balanced"
        assert interpret_bias(20, 100) == "Over-forecasting by 20.0%"
        assert interpret_bias(1, 0) == "Cannot interpret (no sales)"

    def test_interpret_metrics(self):
        labels = interpret_metrics(12.0, 0.9, -10.0, [40, 60])

        assert labels == {
            "mape_tier": "good",
            "mape": "Good",
            "wase": "Better than naive",
            "bias": "Under-forecasting by 20.0%",
        }

    def test_interpret_metrics_without_values(self):
        assert interpret_metrics(None, None, None) == {"mape_tier": None, "mape": None, "wase": None, "bias": None}


class TestVariantMetrics:
    """Tests for per-variant metric computation"""

    def test_flatten_orders_months_numerically(self):
        """Test months sort as numbers and years as keys"""
        series = {"2025": {"10": 3, "2": 1, "1": 2}, "2024": {"12": 9}}

        assert flatten_time_series(series) == [
            ("2024-12", 9.0),
            ("2025-01", 2.0),
            ("2025-02", 1.0),
            ("2025-10", 3.0),
        ]

    def test_flatten_non_numeric_value_is_zero(self):
        assert flatten_time_series({"2025": {"1": "n/a"}}) == [("2025-01", 0.0)]

    def test_external_forecast_full_tier(self):
        """Test twelve months with a real forecast give an external, full-tier row"""
        orders = {"2025": {str(m): 10 + m for m in range(1, 13)}}
        forecast = {"2025": {str(m): 11 + m for m in range(1, 13)}}

        metric = compute_variant_metrics("1", "SKU-1", orders, forecast)

        assert metric["forecast_source"] == "external"
        assert metric["data_tier"] == "full"
        assert metric["period_count"] == 12
        assert metric["wase"] is not None
        assert metric["bias"] == pytest.approx(1.0)

    def test_zero_forecast_falls_back_to_naive(self):
        """Test an all-zero forecast is replaced by the naive benchmark"""
        orders = {"2025": {str(m): m for m in range(1, 7)}}
        forecast = {"2025": {str(m): 0 for m in range(1, 7)}}

        metric = compute_variant_metrics("1", "SKU-1", orders, forecast)

        assert metric["forecast_source"] == "naive_benchmark"
        assert metric["data_tier"] == "limited"
        assert metric["wase"] is None

    def test_non_overlapping_forecast_falls_back_to_naive(self):
        orders = {"2025": {str(m): 5 for m in range(1, 5)}}
        forecast = {"2030": {"1": 7}}

        metric = compute_variant_metrics("1", "SKU-1", orders, forecast)

        assert metric["forecast_source"] == "naive_benchmark"

    def test_insufficient_history_yields_nothing(self):
        """Test fewer than three periods produce no metric row"""
        assert compute_variant_metrics("1", "SKU-1", {"2025": {"1": 4, "2": 5}}, None) is None

    def test_window_keeps_most_recent_periods(self):
        orders = {"2024": {str(m): 1 for m in range(1, 13)}, "2025": {str(m): 2 for m in range(1, 13)}}

        metric = compute_variant_metrics("1", "SKU-1", orders, None, window=12)

        assert metric["periods"][0] == "2025-01"
        assert metric["period_count"] == 12
