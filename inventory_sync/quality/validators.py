"""
Variant Validation Module

Schema and business-rule validation of raw variant records.

Features:
- Typed schema validation (pydantic) with per-field errors
- Non-negativity and range checks (stock itself may be negative)
- Passthrough of unknown fields for audit storage
- Business-rule warnings that never block ingestion
- Error and warning summaries grouped by field and message
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from inventory_sync.quality.field_detection import get_cost_value

logger = structlog.get_logger(__name__)

DEFAULT_STOCK_CEILING = 1_000_000

TimeSeries = Dict[str, Dict[str, float]]


class ValidationSeverity(str, Enum):
    """Severity levels for validation findings"""
    ERROR = "error"  # Record rejected
    WARNING = "warning"  # Record ingested, annotated


# Counters that default to 0 when absent or explicitly null
_ZERO_DEFAULT_FIELDS = (
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

_TEXT_FIELDS = ("title", "barcode", "brand", "product_type", "image")


class VariantPayload(BaseModel):
    """
    Typed view of one upstream variant record.

    Unknown keys are kept in ``model_extra`` and stored with the raw payload.
    """

    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)

    id: str = Field(min_length=1)
    sku: str = Field(min_length=1)
    title: Optional[str] = None
    barcode: Optional[str] = None
    brand: Optional[str] = None
    product_type: Optional[str] = None
    image: Optional[str] = None

    # Pricing
    price: Optional[float] = Field(default=None, ge=0)
    cost_price: Optional[float] = Field(default=None, ge=0)
    cost: Optional[float] = Field(default=None, ge=0)
    unit_cost: Optional[float] = Field(default=None, ge=0)
    average_cost: Optional[float] = Field(default=None, ge=0)
    cogs: Optional[float] = Field(default=None, ge=0)
    purchase_price: Optional[float] = Field(default=None, ge=0)
    landed_cost: Optional[float] = Field(default=None, ge=0)

    # Stock (negative means oversold / backordered)
    in_stock: float = 0
    purchase_orders_qty: float = Field(default=0, ge=0)

    # Sales windows
    last_7_days_sales: float = Field(default=0, ge=0)
    last_30_days_sales: float = Field(default=0, ge=0)
    last_90_days_sales: float = Field(default=0, ge=0)
    last_180_days_sales: float = Field(default=0, ge=0)
    last_365_days_sales: float = Field(default=0, ge=0)
    total_sales: float = Field(default=0, ge=0)

    # Replenishment
    replenishment: float = 0
    to_order: float = 0
    minimum_stock: Optional[float] = Field(default=None, ge=0)
    lead_time: Optional[float] = Field(default=None, ge=0, le=365)

    # Out of stock
    oos: float = Field(default=0, ge=0)
    oos_last_60_days: float = Field(default=0, ge=0, le=60)

    # Revenue
    forecasted_lost_revenue_lead_time: Optional[float] = None
    forecasted_lost_revenue: Optional[float] = None
    lost_revenue: Optional[float] = None
    potential_lost_revenue: Optional[float] = None
    oos_lost_revenue: Optional[float] = None

    # Forecast
    forecasted_stock: Optional[float] = None
    current_forecast: Optional[float] = None

    # Time series
    orders_by_month: Optional[TimeSeries] = None
    forecast_by_period: Optional[TimeSeries] = None

    @field_validator("id", "sku", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        """Numeric identifiers are accepted and stored as strings"""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(int(v)) if float(v).is_integer() else str(v)
        return v

    @field_validator(*_TEXT_FIELDS, mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator(*_ZERO_DEFAULT_FIELDS, mode="before")
    @classmethod
    def null_counter_is_zero(cls, v: Any) -> Any:
        return 0 if v is None else v

    @property
    def passthrough(self) -> Dict[str, Any]:
        """Fields not declared on the schema"""
        return dict(self.model_extra or {})


@dataclass
class RecordIssue:
    """Single field-level finding on a record"""
    field: str
    message: str
    value: Any = None
    severity: ValidationSeverity = ValidationSeverity.ERROR
    code: str = "custom_validation"

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "message": self.message, "value": self.value}


@dataclass
class ValidRecord:
    """Record that passed schema validation"""
    index: int
    record: VariantPayload
    raw: Dict[str, Any]
    warnings: List[RecordIssue] = field(default_factory=list)


@dataclass
class InvalidRecord:
    """Record rejected by schema validation"""
    index: int
    sku: str
    errors: List[RecordIssue]
    raw: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "sku": self.sku, "errors": [e.to_dict() for e in self.errors]}


@dataclass
class WarnedRecord:
    """Record ingested with business-rule warnings"""
    index: int
    sku: str
    warnings: List[RecordIssue]

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "sku": self.sku, "warnings": [w.to_dict() for w in self.warnings]}


@dataclass
class ValidationSummary:
    total: int = 0
    passed: int = 0
    failed: int = 0
    with_warnings: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "with_warnings": self.with_warnings,
        }


@dataclass
class VariantValidationResult:
    """Three buckets of a validated batch plus its summary"""
    valid: List[ValidRecord] = field(default_factory=list)
    invalid: List[InvalidRecord] = field(default_factory=list)
    warnings: List[WarnedRecord] = field(default_factory=list)
    summary: ValidationSummary = field(default_factory=ValidationSummary)


def _record_sku(item: Any, index: int) -> str:
    if isinstance(item, dict):
        sku = item.get("sku")
        if sku is not None and str(sku).strip():
            return str(sku)
    return f"index-{index}"


def _errors_from(exc: ValidationError, item: Any) -> List[RecordIssue]:
    issues = []
    for error in exc.errors():
        loc = error.get("loc") or ()
        field_name = ".".join(str(part) for part in loc) or "record"
        value = item.get(loc[0]) if isinstance(item, dict) and loc else item
        issues.append(RecordIssue(
            field=field_name,
            message=error.get("msg", "Invalid value"),
            value=value,
            code=error.get("type", "invalid"),
        ))
    return issues


def check_business_rules(
    record: VariantPayload,
    stock_ceiling: int = DEFAULT_STOCK_CEILING,
    cost_field: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[RecordIssue]:
    """
    Business-rule warnings for a schema-valid record.

    Checks sales-window consistency, negative margin, future-dated sales
    history and implausibly high stock.
    """
    warnings: List[RecordIssue] = []

    if record.last_30_days_sales > record.last_90_days_sales and record.last_90_days_sales > 0:
        warnings.append(RecordIssue(
            field="last_30_days_sales",
            message="30-day sales exceeds 90-day sales",
            value=record.last_30_days_sales,
            severity=ValidationSeverity.WARNING,
        ))

    cost_value = get_cost_value(record.model_dump(), cost_field)
    if record.price and cost_value and cost_value > record.price:
        warnings.append(RecordIssue(
            field=cost_field or "cost_price",
            message="Cost exceeds selling price (negative margin)",
            value=cost_value,
            severity=ValidationSeverity.WARNING,
        ))

    if record.orders_by_month:
        current = now or datetime.now(timezone.utc)
        for year, months in record.orders_by_month.items():
            if not str(year).isdigit():
                continue
            for month in months:
                if not str(month).isdigit():
                    continue
                if int(year) > current.year or (int(year) == current.year and int(month) > current.month):
                    warnings.append(RecordIssue(
                        field="orders_by_month",
                        message=f"Future date in sales history: {year}-{month}",
                        value=f"{year}-{month}",
                        severity=ValidationSeverity.WARNING,
                    ))

    if record.in_stock > stock_ceiling:
        warnings.append(RecordIssue(
            field="in_stock",
            message=f"Unusually high stock quantity (over {stock_ceiling:,} units)",
            value=record.in_stock,
            severity=ValidationSeverity.WARNING,
        ))

    return warnings


def validate_variants(
    data: Sequence[Any],
    stock_ceiling: int = DEFAULT_STOCK_CEILING,
    cost_field: Optional[str] = None,
) -> VariantValidationResult:
    """
    Validate a batch of raw variant records.

    Args:
        data: Raw records as extracted from the payload
        stock_ceiling: Stock above this raises a warning
        cost_field: Detected cost field, if known, used for the margin check

    Returns:
        VariantValidationResult with valid, invalid and warned buckets
    """
    result = VariantValidationResult()
    result.summary.total = len(data)

    for index, item in enumerate(data):
        sku = _record_sku(item, index)

        if not isinstance(item, dict):
            result.invalid.append(InvalidRecord(
                index=index,
                sku=sku,
                errors=[RecordIssue(field="record", message="Record must be an object", value=item)],
                raw=item,
            ))
            result.summary.failed += 1
            continue

        try:
            record = VariantPayload.model_validate(item)
        except ValidationError as e:
            result.invalid.append(InvalidRecord(index=index, sku=sku, errors=_errors_from(e, item), raw=item))
            result.summary.failed += 1
            continue

        warnings = check_business_rules(record, stock_ceiling=stock_ceiling, cost_field=cost_field)
        if warnings:
            result.warnings.append(WarnedRecord(index=index, sku=record.sku, warnings=warnings))
            result.summary.with_warnings += 1

        result.valid.append(ValidRecord(index=index, record=record, raw=item, warnings=warnings))
        result.summary.passed += 1

    logger.debug(
        "Variant batch validated",
        total=result.summary.total,
        passed=result.summary.passed,
        failed=result.summary.failed,
        with_warnings=result.summary.with_warnings,
    )
    return result


def _group(issues_by_record: List[List[RecordIssue]]) -> Dict[str, int]:
    summary: Dict[str, int] = {}
    for issues in issues_by_record:
        for issue in issues:
            key = f"{issue.field}: {issue.message}"
            summary[key] = summary.get(key, 0) + 1
    return summary


def get_error_summary(result: VariantValidationResult) -> Dict[str, int]:
    """Error counts grouped by ``"<field>: <message>"``"""
    return _group([record.errors for record in result.invalid])


def get_warning_summary(result: VariantValidationResult) -> Dict[str, int]:
    """Warning counts grouped by ``"<field>: <message>"``"""
    return _group([record.warnings for record in result.warnings])
