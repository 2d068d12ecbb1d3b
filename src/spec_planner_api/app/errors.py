"""Error taxonomy shared by the pipeline, storage, and HTTP layer.

Every error that reaches the HTTP boundary is an ``ApiError`` and is rendered
as ``{"message": ..., "statusCode": ...}`` by the handlers in ``main.py``.
"""

from __future__ import annotations

from typing import Any

# PostgreSQL SQLSTATE codes that get a dedicated status/message.
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
NOT_NULL_VIOLATION = "23502"

_SQLSTATE_MAP: dict[str, tuple[int, str]] = {
    UNIQUE_VIOLATION: (409, "Duplicate entry: value must be unique."),
    FOREIGN_KEY_VIOLATION: (400, "Invalid reference: foreign key constraint failed."),
    NOT_NULL_VIOLATION: (400, "Missing required field."),
}


class ApiError(Exception):
    """Base error carrying the HTTP status it should surface with."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_payload(self) -> dict[str, Any]:
        return {"message": self.message, "statusCode": self.status_code}


class ValidationError(ApiError):
    """Request is missing a required field (raised before any side effect)."""

    status_code = 400


class UpstreamError(ApiError):
    """Model service failed: missing credential, network, or non-2xx reply."""

    status_code = 502

    def __init__(
        self, message: str, *, status_code: int | None = None, retryable: bool = False
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.retryable = retryable


class ExtractionError(ApiError):
    """Model output holds no brace-delimited candidate object."""

    status_code = 500


class MalformedResponseError(ApiError):
    """Candidate object is not valid JSON or has the wrong top-level shape."""

    status_code = 500


class DatabaseError(ApiError):
    """Driver error mapped to a status by its SQLSTATE class."""

    def __init__(self, message: str, *, sqlstate: str | None = None) -> None:
        self.sqlstate = sqlstate
        status_code, mapped_message = self._map_sqlstate(sqlstate, message)
        super().__init__(mapped_message, status_code=status_code)

    @staticmethod
    def _map_sqlstate(sqlstate: str | None, message: str) -> tuple[int, str]:
        if sqlstate is None:
            # Connection-level failures carry no SQLSTATE.
            return 500, "Database unavailable."
        if sqlstate in _SQLSTATE_MAP:
            return _SQLSTATE_MAP[sqlstate]
        return 400, message or "Database error."
