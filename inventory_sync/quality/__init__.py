"""
Data Quality Module
"""
from .field_detection import (
    COST_FIELD_CANDIDATES,
    LOST_REVENUE_FIELD_CANDIDATES,
    FieldDetectionResult,
    FieldMappingDetection,
    detect_field,
    detect_field_mappings,
    discover_fields,
    get_cost_value,
    get_lost_revenue_value,
)
from .validators import (
    ValidationSeverity,
    VariantPayload,
    VariantValidationResult,
    get_error_summary,
    get_warning_summary,
    validate_variants,
)

__all__ = [
    "COST_FIELD_CANDIDATES",
    "LOST_REVENUE_FIELD_CANDIDATES",
    "FieldDetectionResult",
    "FieldMappingDetection",
    "detect_field",
    "detect_field_mappings",
    "discover_fields",
    "get_cost_value",
    "get_lost_revenue_value",
    "ValidationSeverity",
    "VariantPayload",
    "VariantValidationResult",
    "get_error_summary",
    "get_warning_summary",
    "validate_variants",
]
