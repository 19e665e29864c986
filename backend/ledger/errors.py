"""
Error taxonomy shared by the import pipeline, the REST routers and the client.

Every error carries the HTTP status it maps to and a human-readable message
that is returned to callers verbatim as ``{"error": message}``.
"""

from __future__ import annotations

from typing import List, Optional


class LedgerError(Exception):
    status_code = 400

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = list(details or [])

    def to_payload(self) -> dict:
        payload: dict = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(LedgerError):
    """Missing or malformed required input (wrong file type, missing member, ...)."""

    status_code = 400


class ArchiveTooLargeError(ValidationError):
    status_code = 413


class MalformedArchiveError(LedgerError):
    """The upload is not a readable ZIP container."""

    status_code = 400


class SchemaError(LedgerError):
    """A JSON member does not have the expected shape."""

    status_code = 422


class ConflictError(LedgerError):
    status_code = 409


class NotFoundError(LedgerError):
    status_code = 404


ERRORS_BY_STATUS = {
    400: ValidationError,
    404: NotFoundError,
    409: ConflictError,
    413: ArchiveTooLargeError,
    422: SchemaError,
}
