"""
Variant Transformer

Converts schema-valid records into rows of the ``variants`` table, resolving
cost and lost revenue through the mappings detected for the batch.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from inventory_sync.quality.field_detection import (
    FieldMappingDetection,
    get_cost_value,
    get_lost_revenue_value,
)
from inventory_sync.quality.validators import ValidRecord

logger = structlog.get_logger(__name__)

INT32_MAX = 2**31 - 1

INTEGER_COLUMNS = (
    "in_stock",
    "purchase_orders_qty",
    "last_7_days_sales",
    "last_30_days_sales",
    "last_90_days_sales",
    "last_180_days_sales",
    "last_365_days_sales",
    "total_sales",
    "replenishment",
    "to_order",
    "oos",
    "oos_last_60_days",
)

PASSTHROUGH_COLUMNS = (
    "title",
    "barcode",
    "brand",
    "product_type",
    "image",
    "price",
    "forecasted_stock",
    "current_forecast",
    "minimum_stock",
    "orders_by_month",
    "forecast_by_period",
)


class TransformError(ValueError):
    """A value parsed but could not be converted to its storage form"""

    def __init__(self, field_name: str, message: str, value: Any = None):
        super().__init__(message)
        self.field_name = field_name
        self.value = value


@dataclass
class TransformFailure:
    record: ValidRecord
    field_name: Optional[str]
    message: str
    value: Any = None


@dataclass
class TransformResult:
    """Rows ready for upsert plus the records that failed to transform"""
    rows: List[Dict[str, Any]] = field(default_factory=list)
    failures: List[TransformFailure] = field(default_factory=list)
    # Record index of every row, parallel to ``rows``
    indexes: List[int] = field(default_factory=list)


def _to_int(field_name: str, value: Any) -> Optional[int]:
    if value is None:
        return None
    number = int(round(float(value)))
    if abs(number) > INT32_MAX:
        raise TransformError(field_name, f"{field_name} is out of integer range", value)
    return number


def transform_variant(
    valid: ValidRecord,
    mappings: Optional[FieldMappingDetection] = None,
    synced_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Build the storage row for one validated record.

    Raises:
        TransformError: When a value cannot be stored
    """
    record = valid.record
    data = record.model_dump()

    cost_field = mappings.cost.detected_field if mappings else None
    lost_revenue_field = mappings.lost_revenue.detected_field if mappings else None

    row: Dict[str, Any] = {"id": record.id, "sku": record.sku}
    for column in PASSTHROUGH_COLUMNS:
        row[column] = data.get(column)
    for column in INTEGER_COLUMNS:
        row[column] = _to_int(column, data.get(column)) or 0

    row["lead_time"] = _to_int("lead_time", record.lead_time)
    row["cost_price"] = get_cost_value(data, cost_field)
    row["forecasted_lost_revenue"] = get_lost_revenue_value(data, lost_revenue_field)

    # Flattened planner records carry their original payload under raw_data
    raw = valid.raw
    row["raw_data"] = raw.get("raw_data") if isinstance(raw.get("raw_data"), dict) else raw
    row["synced_at"] = synced_at or datetime.now(timezone.utc)
    return row


def transform_variants(
    records: List[ValidRecord],
    mappings: Optional[FieldMappingDetection] = None,
) -> TransformResult:
    """Transform every record; failures are collected, never raised."""
    result = TransformResult()
    synced_at = datetime.now(timezone.utc)

    for valid in records:
        try:
            row = transform_variant(valid, mappings, synced_at=synced_at)
        except TransformError as e:
            result.failures.append(TransformFailure(valid, e.field_name, str(e), e.value))
            continue
        except (TypeError, ValueError, OverflowError) as e:
            result.failures.append(TransformFailure(valid, None, str(e)))
            continue
        result.rows.append(row)
        result.indexes.append(valid.index)

    if result.failures:
        logger.warning("Variant transform failures", failed=len(result.failures), transformed=len(result.rows))
    return result
