"""
Exception taxonomy for the ingestion pipeline.

Row-scoped errors carry the offending (field, value, message) and are recorded
on the job without stopping the run. Job-fatal errors abort the run and mark
the job as failed.
"""
from typing import Any, Dict, Optional


class IntegrationError(Exception):
    """Base exception for the integration backend."""


class RowError(IntegrationError):
    """A failure attributable to a single input row."""

    def __init__(self, field: str, value: Any, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.value = "" if value is None else str(value)
        self.message = message

    def to_dict(self, row_number: int) -> Dict[str, Any]:
        return {
            "row": row_number,
            "field": self.field,
            "value": self.value,
            "message": self.message,
        }


class ValidationError(RowError):
    """Raised when a required field is missing or a value is malformed."""


class ReferenceNotFound(RowError):
    """Raised when an internal code does not match any record of the tenant."""

    def __init__(self, field: str, value: Any, message: Optional[str] = None) -> None:
        super().__init__(field, value, message or f"No record found for {field} '{value}'")


class PersistenceError(RowError):
    """Raised when the write for a single row is rejected by the store."""


class JobFatalError(IntegrationError):
    """A failure that aborts the whole job run."""


class UnsupportedFormat(JobFatalError):
    """Raised when the file extension is not csv, xlsx or xls."""


class FileParseError(JobFatalError):
    """Raised when a file with a supported extension cannot be read."""


class FetchFailure(JobFatalError):
    """Raised when the uploaded file cannot be retrieved."""


class StoreUnavailableError(JobFatalError):
    """Raised when the connection to the database is lost mid-run."""


class InvalidTransitionError(IntegrationError):
    """Raised when a job status change is not allowed by the state machine."""
