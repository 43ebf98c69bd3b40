"""
Upload File Loader

Parses uploaded variant files into raw records for the orchestrator.

Supported formats:
- .json: array, wrapper object or workflow-tool export items
- .ndjson / .jsonl: one JSON record per line
- .csv: header row plus one record per line (polars); JSON-encoded
  time-series columns are decoded back into maps
"""

import io
import json
from pathlib import Path
from typing import Any, Dict, List

import polars as pl
import structlog

from inventory_sync.ingestion.exceptions import PayloadError
from inventory_sync.ingestion.extractors import extract_variants

logger = structlog.get_logger(__name__)

JSON_COLUMNS = ("orders_by_month", "forecast_by_period", "connections", "warehouse", "vendors")
SUPPORTED_SUFFIXES = (".json", ".ndjson", ".jsonl", ".csv")


def _decode_json_columns(record: Dict[str, Any]) -> Dict[str, Any]:
    for column in JSON_COLUMNS:
        value = record.get(column)
        if isinstance(value, str) and value.strip().startswith(("{", "[")):
            try:
                record[column] = json.loads(value)
            except json.JSONDecodeError:
                pass  # left as text, the validator reports it
    return record


def _drop_nulls(record: Dict[str, Any]) -> Dict[str, Any]:
    """CSV cells that are empty come back as null and mean absent."""
    return {key: value for key, value in record.items() if value is not None}


def _read_csv(content: bytes) -> List[Dict[str, Any]]:
    # Every column as text, so identifiers and barcodes keep leading zeros
    frame = pl.read_csv(io.BytesIO(content), infer_schema_length=0)
    return [_decode_json_columns(_drop_nulls(row)) for row in frame.to_dicts()]


def _read_ndjson(content: bytes) -> List[Any]:
    # Parsed per line: nested maps differ between records and must not be unified into one schema
    text = content.decode("utf-8-sig")
    return [json.loads(line) for line in text.splitlines() if line.strip()]


def parse_upload(filename: str, content: bytes) -> List[Dict[str, Any]]:
    """
    Parse an uploaded file into variant records.

    Raises:
        PayloadError: Unsupported extension or unparseable content
    """
    suffix = Path(filename or "").suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise PayloadError(
            f"Unsupported file type '{suffix or filename}'",
            {"supported": list(SUPPORTED_SUFFIXES)},
        )

    try:
        if suffix == ".json":
            records = extract_variants(json.loads(content.decode("utf-8-sig")))
        elif suffix in (".ndjson", ".jsonl"):
            records = extract_variants(_read_ndjson(content))
        else:
            records = extract_variants(_read_csv(content))
    except (UnicodeDecodeError, json.JSONDecodeError, pl.exceptions.PolarsError) as e:
        raise PayloadError(f"Could not parse {suffix} file: {e}", {"filename": filename}) from e

    logger.info("Upload parsed", filename=filename, format=suffix.lstrip("."), records=len(records))
    return records
