"""
Payload Extraction

Turns request bodies of uncertain shape into a flat list of variant records.

Supported shapes:
- Raw array: ``[{...}, ...]``
- Wrapped: ``{"variants": [...]}``, ``{"data": [...]}``, ``{"items": [...]}``
- One pass-through level: ``{"body": {"variants": [...]}}``
- Workflow-tool exports: ``[{"json": {"variants": [...]}}, ...]``
- Planner nested variants carrying ``connections[]`` and ``warehouse[]`` arrays
"""

from typing import Any, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)

WRAPPER_KEYS = ("variants", "data", "items")
PASSTHROUGH_KEYS = ("body", "json", "payload")


def _unwrap(obj: Dict[str, Any]) -> Optional[List[Any]]:
    for key in WRAPPER_KEYS:
        if isinstance(obj.get(key), list):
            return obj[key]
    return None


def _is_export_item(item: Any) -> bool:
    return isinstance(item, dict) and isinstance(item.get("json"), dict) and len(item) <= 2


def extract_raw_records(body: Any) -> List[Any]:
    """Locate the list of raw variant records inside ``body``."""
    if isinstance(body, list):
        if body and all(_is_export_item(item) for item in body):
            records: List[Any] = []
            for item in body:
                inner = _unwrap(item["json"])
                if inner is not None:
                    records.extend(inner)
                else:
                    records.append(item["json"])
            return records
        return body

    if not isinstance(body, dict):
        return []

    for key in PASSTHROUGH_KEYS:
        inner = body.get(key)
        if isinstance(inner, dict):
            records = _unwrap(inner)
            if records:
                return records

    return _unwrap(body) or []


def _positive(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _first_present(source: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if source.get(key) is not None:
            return source[key]
    return default


def extract_cost_price(connection: Dict[str, Any], warehouse: Dict[str, Any]) -> Optional[float]:
    """
    Cost resolution for nested planner variants.

    Warehouse ``cost_price`` first, then the connection's first vendor,
    then the connection itself. Only positive values count.
    """
    cost = _positive(warehouse.get("cost_price"))
    if cost is not None:
        return cost

    vendors = connection.get("vendors")
    if isinstance(vendors, list) and vendors and isinstance(vendors[0], dict):
        cost = _positive(vendors[0].get("cost_price"))
        if cost is not None:
            return cost

    return _positive(connection.get("cost_price"))


def flatten_connection_variant(variant: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Flatten a nested planner variant into one flat record.

    Records that already carry ``id`` and ``sku`` at the root, or that have
    no ``connections`` array, are returned unchanged.
    """
    if variant.get("id") and variant.get("sku"):
        return variant

    connections = variant.get("connections")
    if not isinstance(connections, list) or not connections:
        return variant

    candidates = [c for c in connections if isinstance(c, dict)]
    if not candidates:
        return None
    main = next((c for c in candidates if c.get("connection_main") is True), candidates[0])

    warehouse: Dict[str, Any] = {}
    warehouses = variant.get("warehouse")
    if isinstance(warehouses, list):
        entries = [w for w in warehouses if isinstance(w, dict)]
        if entries:
            warehouse = next((w for w in entries if "combined" in str(w.get("warehouse"))), entries[0])

    return {
        "id": main.get("id"),
        "sku": main.get("sku"),
        "title": main.get("title") or main.get("product_title"),
        "barcode": main.get("barcode"),
        "brand": main.get("brand"),
        "product_type": main.get("product_type"),
        "image": main.get("image"),
        "price": main.get("price"),
        "cost_price": extract_cost_price(main, warehouse),
        "in_stock": _first_present(warehouse, "in_stock", default=0),
        "replenishment": _first_present(warehouse, "replenishment", default=0),
        "to_order": _first_present(warehouse, "to_order", default=0),
        "lead_time": warehouse.get("lead_time"),
        "oos": _first_present(warehouse, "oos", default=0),
        "last_7_days_sales": _first_present(warehouse, "last_7_days", "sales_last_7_days", default=0),
        "last_30_days_sales": _first_present(warehouse, "last_30_days", "sales_last_30_days", default=0),
        "last_90_days_sales": _first_present(warehouse, "last_90_days", "sales_last_90_days", default=0),
        "last_180_days_sales": _first_present(warehouse, "last_180_days", "sales_last_180_days", default=0),
        "last_365_days_sales": _first_present(warehouse, "last_365_days", "sales_last_365_days", default=0),
        "orders_by_month": _first_present(warehouse, "orders_by_month") or variant.get("orders_by_month"),
        "forecast_by_period": _first_present(warehouse, "forecast_by_period") or variant.get("forecast_by_period"),
        "current_forecast": _first_present(warehouse, "current_forecast", "forecast"),
        "forecasted_lost_revenue": _first_present(warehouse, "forecasted_lost_revenue", "lost_revenue"),
        "raw_data": variant,
    }


def extract_variants(body: Any) -> List[Dict[str, Any]]:
    """
    Extract a flat list of variant records from a request body.

    Non-object entries are passed through so the validator can reject them
    with a proper error.
    """
    raw_records = extract_raw_records(body)
    variants: List[Dict[str, Any]] = []
    for record in raw_records:
        if isinstance(record, dict):
            flat = flatten_connection_variant(record)
            if flat is not None:
                variants.append(flat)
        else:
            variants.append(record)

    logger.debug("Variants extracted", raw=len(raw_records), extracted=len(variants))
    return variants
