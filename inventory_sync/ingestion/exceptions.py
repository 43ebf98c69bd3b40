"""
Ingestion exceptions.

Record-level failures never raise; they are written to the error log. These
exceptions cover request-level failures that abort an ingestion call.
"""

from typing import Optional


class IngestionError(Exception):
    """Base class for request-level ingestion failures"""

    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class PayloadError(IngestionError):
    """The body could not be parsed or held no variant records"""

    status_code = 400


class SessionNotFoundError(IngestionError):
    """No sync session exists for the given id or token"""

    status_code = 404

    def __init__(self, session_id: str):
        super().__init__(f"Sync session not found: {session_id}", {"session_id": session_id})
        self.session_id = session_id


class InvalidSessionStateError(IngestionError):
    """The requested operation is not allowed in the session's current state"""

    status_code = 409

    def __init__(self, session_id: str, status: str, operation: str):
        super().__init__(
            f"Cannot {operation} session {session_id} in status '{status}'",
            {"session_id": session_id, "status": status, "operation": operation},
        )
        self.session_id = session_id
        self.status = status
        self.operation = operation
