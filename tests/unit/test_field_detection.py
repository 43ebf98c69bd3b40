"""
Unit Tests - Field Mapping Detection
"""
from inventory_sync.quality.field_detection import (
    detect_field,
    detect_field_mappings,
    discover_fields,
    get_cost_value,
    get_lost_revenue_value,
)


def _batch(cost_price_count: int, cost_count: int, total: int = 10) -> list:
    records = []
    for i in range(total):
        record = {"id": str(i), "sku": f"SKU-{i}"}
        if i < cost_price_count:
            record["cost_price"] = 10.0 + i
        elif i < cost_price_count + cost_count:
            record["cost"] = 5.0
        records.append(record)
    return records


class TestDetectField:
    """Tests for the ranked candidate detector"""

    def test_highest_coverage_wins(self):
        """Test cost_price at 80% beats cost at 20%"""
        result = detect_field_mappings(_batch(8, 2))

        assert result.cost.detected_field == "cost_price"
        assert result.cost.coverage == 0.8
        assert result.cost.alternatives[0].field == "cost"
        assert result.cost.alternatives[0].coverage == 0.2
        assert not result.needs_confirmation

    def test_zero_and_null_do_not_count(self):
        """Test zero, null and non-numeric values are not coverage"""
        records = [{"cost": 0}, {"cost": None}, {"cost": "abc"}, {"cost": "7.5"}]

        result = detect_field(records, ["cost"])

        assert result.detected_field == "cost"
        assert result.coverage == 0.25

    def test_tie_keeps_candidate_order(self):
        """Test equal coverage goes to the candidate declared first"""
        records = [{"unit_cost": 3, "cost": 4}]

        result = detect_field(records, ["cost", "unit_cost"])

        assert result.detected_field == "cost"
        assert [alt.field for alt in result.alternatives] == ["unit_cost"]

    def test_winner_not_in_alternatives(self):
        result = detect_field_mappings(_batch(8, 2))

        assert "cost_price" not in [alt.field for alt in result.cost.alternatives]

    def test_nothing_detected_needs_confirmation(self):
        """Test a batch without any cost field asks for confirmation"""
        result = detect_field_mappings([{"id": "1", "sku": "A"}])

        assert result.cost.detected_field is None
        assert result.cost.coverage == 0.0
        assert result.needs_confirmation
        assert "Not detected" in result.summary

    def test_low_coverage_needs_confirmation(self):
        """Test coverage under the threshold asks for confirmation"""
        result = detect_field_mappings(_batch(3, 0), coverage_threshold=0.5)

        assert result.cost.detected_field == "cost_price"
        assert result.needs_confirmation

    def test_threshold_is_configurable(self):
        result = detect_field_mappings(_batch(3, 0), coverage_threshold=0.2)

        assert not result.needs_confirmation

    def test_empty_batch(self):
        result = detect_field_mappings([])

        assert result.cost.detected_field is None
        assert result.needs_confirmation

    def test_lost_revenue_detection(self):
        records = [{"lost_revenue": 10}, {"lost_revenue": 20}, {"forecasted_lost_revenue": 5}]

        result = detect_field_mappings(records)

        assert result.lost_revenue.detected_field == "lost_revenue"
        assert "Lost revenue" in result.summary

    def test_to_dict(self):
        data = detect_field_mappings(_batch(8, 2)).to_dict()

        assert data["cost"]["detected_field"] == "cost_price"
        assert data["cost"]["alternatives"][0]["field"] == "cost"


class TestValueLookup:
    """Tests for value lookup through detected mappings"""

    def test_configured_field_first(self):
        assert get_cost_value({"cost_price": 4, "unit_cost": 9}, "unit_cost") == 9.0

    def test_falls_back_to_first_numeric_candidate(self):
        assert get_cost_value({"cost_price": None, "cost": "x", "unit_cost": 3}, "landed_cost") == 3.0

    def test_missing_cost_is_none(self):
        assert get_cost_value({"sku": "A"}) is None

    def test_lost_revenue_value(self):
        assert get_lost_revenue_value({"oos_lost_revenue": 12.5}) == 12.5


class TestDiscoverFields:
    def test_lists_keys_by_population(self):
        """Test discovery reports types, counts and a sample"""
        records = [{"sku": "A", "cost": 1.5}, {"sku": "B", "cost": None}, {"sku": 3}]

        fields = discover_fields(records)

        assert fields[0]["field"] == "sku"
        assert fields[0]["non_null_count"] == 3
        assert fields[0]["type"] == "str|int"
        cost = next(f for f in fields if f["field"] == "cost")
        assert cost["non_null_count"] == 1
        assert cost["sample_value"] == 1.5
