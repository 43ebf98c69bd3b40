"""
Field Mapping Detection

Upstream exports name the same logical value differently from one delivery
to the next. For each logical field a ranked candidate list is scored by its
coverage over the batch and the best candidate becomes the mapping.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import structlog

logger = structlog.get_logger(__name__)


COST_FIELD_CANDIDATES = (
    "cost_price",
    "cost",
    "unit_cost",
    "average_cost",
    "cogs",
    "purchase_price",
    "landed_cost",
)

LOST_REVENUE_FIELD_CANDIDATES = (
    "forecasted_lost_revenue_lead_time",
    "forecasted_lost_revenue",
    "lost_revenue",
    "potential_lost_revenue",
    "oos_lost_revenue",
)

DEFAULT_COVERAGE_THRESHOLD = 0.5


@dataclass
class CandidateCoverage:
    """Coverage of one candidate field over a batch"""
    field: str
    count: int
    coverage: float
    sample: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "count": self.count,
            "coverage": round(self.coverage, 4),
            "sample": self.sample,
        }


@dataclass
class FieldDetectionResult:
    """Selected mapping for one logical field plus the runner-up candidates"""
    detected_field: Optional[str]
    coverage: float
    alternatives: List[CandidateCoverage] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detected_field": self.detected_field,
            "coverage": round(self.coverage, 4),
            "alternatives": [alt.to_dict() for alt in self.alternatives],
        }


@dataclass
class FieldMappingDetection:
    """Mappings detected for one ingestion batch"""
    cost: FieldDetectionResult
    lost_revenue: FieldDetectionResult
    needs_confirmation: bool
    summary: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cost": self.cost.to_dict(),
            "lost_revenue": self.lost_revenue.to_dict(),
            "needs_confirmation": self.needs_confirmation,
            "summary": self.summary,
        }


def _numeric(value: Any) -> Optional[float]:
    """Float value of ``value`` or None when it is null, boolean or not numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if number != number else number


def detect_field(
    records: Sequence[Dict[str, Any]],
    candidates: Sequence[str],
) -> FieldDetectionResult:
    """
    Pick the candidate key with the highest coverage over ``records``.

    A record covers a candidate when the value is present, numeric and
    non-zero. Ties go to the candidate declared first.
    """
    if not records:
        return FieldDetectionResult(detected_field=None, coverage=0.0)

    scored: List[CandidateCoverage] = []
    for name in candidates:
        count = 0
        sample = None
        for record in records:
            if not isinstance(record, dict):
                continue
            value = _numeric(record.get(name))
            if value is not None and value != 0:
                if count == 0:
                    sample = record.get(name)
                count += 1
        scored.append(CandidateCoverage(field=name, count=count, coverage=count / len(records), sample=sample))

    # sorted() is stable, so equal counts keep candidate order
    ranked = sorted(scored, key=lambda c: c.count, reverse=True)
    best = ranked[0]
    if best.count == 0:
        return FieldDetectionResult(detected_field=None, coverage=0.0)

    return FieldDetectionResult(
        detected_field=best.field,
        coverage=best.coverage,
        alternatives=[c for c in ranked[1:] if c.count > 0],
    )


def detect_cost_field(records: Sequence[Dict[str, Any]]) -> FieldDetectionResult:
    return detect_field(records, COST_FIELD_CANDIDATES)


def detect_lost_revenue_field(records: Sequence[Dict[str, Any]]) -> FieldDetectionResult:
    return detect_field(records, LOST_REVENUE_FIELD_CANDIDATES)


def detect_field_mappings(
    records: Sequence[Dict[str, Any]],
    coverage_threshold: float = DEFAULT_COVERAGE_THRESHOLD,
) -> FieldMappingDetection:
    """
    Detect cost and lost-revenue mappings for one batch.

    ``needs_confirmation`` is raised when no cost field was found or the
    best cost coverage is under ``coverage_threshold``.
    """
    cost = detect_cost_field(records)
    lost_revenue = detect_lost_revenue_field(records)

    needs_confirmation = cost.detected_field is None or cost.coverage < coverage_threshold

    parts = []
    if cost.detected_field:
        parts.append(f'Cost field: "{cost.detected_field}" ({cost.coverage * 100:.0f}% coverage)')
    else:
        parts.append("Cost field: Not detected")
    if lost_revenue.detected_field:
        parts.append(
            f'Lost revenue: "{lost_revenue.detected_field}" ({lost_revenue.coverage * 100:.0f}% coverage)'
        )

    detection = FieldMappingDetection(
        cost=cost,
        lost_revenue=lost_revenue,
        needs_confirmation=needs_confirmation,
        summary="; ".join(parts),
    )
    if needs_confirmation and records:
        logger.warning("Field mapping needs confirmation", summary=detection.summary, records=len(records))
    return detection


def _value_from(
    record: Dict[str, Any],
    configured_field: Optional[str],
    candidates: Sequence[str],
) -> Optional[float]:
    if configured_field and record.get(configured_field) is not None:
        return _numeric(record.get(configured_field))
    for name in candidates:
        value = _numeric(record.get(name))
        if value is not None:
            return value
    return None


def get_cost_value(record: Dict[str, Any], configured_field: Optional[str] = None) -> Optional[float]:
    """Cost from the detected field, else the first numeric candidate."""
    return _value_from(record, configured_field, COST_FIELD_CANDIDATES)


def get_lost_revenue_value(record: Dict[str, Any], configured_field: Optional[str] = None) -> Optional[float]:
    """Lost revenue from the detected field, else the first numeric candidate."""
    return _value_from(record, configured_field, LOST_REVENUE_FIELD_CANDIDATES)


def discover_fields(records: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Every key seen in ``records`` with its observed types, non-null count
    and first non-null sample, most populated first.
    """
    stats: Dict[str, Dict[str, Any]] = {}
    for record in records:
        if not isinstance(record, dict):
            continue
        for key, value in record.items():
            entry = stats.setdefault(key, {"types": [], "non_null_count": 0, "sample": None})
            if value is None:
                continue
            entry["non_null_count"] += 1
            type_name = type(value).__name__
            if type_name not in entry["types"]:
                entry["types"].append(type_name)
            if entry["non_null_count"] == 1:
                entry["sample"] = value

    discovered = [
        {
            "field": key,
            "type": "|".join(entry["types"]),
            "non_null_count": entry["non_null_count"],
            "sample_value": entry["sample"],
        }
        for key, entry in stats.items()
    ]
    return sorted(discovered, key=lambda d: d["non_null_count"], reverse=True)
