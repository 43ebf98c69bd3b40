"""
Translation of ingestion failures into HTTP responses
"""

import structlog
from fastapi import HTTPException
from fastapi.responses import JSONResponse

from inventory_sync.ingestion.exceptions import IngestionError

logger = structlog.get_logger(__name__)


def http_error(error: IngestionError) -> HTTPException:
    """HTTPException carrying the error's status and structured body"""
    return HTTPException(
        status_code=error.status_code,
        detail={"error": error.message, "details": error.details},
    )


def server_error(error: Exception, message: str = "Ingestion failed") -> JSONResponse:
    logger.error(message, error=str(error), error_type=type(error).__name__)
    return JSONResponse(
        status_code=500,
        content={"error": message, "details": f"{type(error).__name__}: {error}"},
    )
