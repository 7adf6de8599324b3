"""
Shared integration enums kept lightweight so routers and schemas can import
them without pulling in the SQLAlchemy models.
"""
from enum import Enum


class IntegrationEntityType(str, Enum):
    locations = "locations"
    machine_models = "machine-models"
    machines = "machines"
    maintenance_ranges = "maintenance-ranges"
    operations = "operations"


class JobStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


# Forward-only lifecycle, plus the administrative recovery edge processing -> pending.
ALLOWED_TRANSITIONS = {
    JobStatus.pending: {JobStatus.processing},
    JobStatus.processing: {JobStatus.completed, JobStatus.failed, JobStatus.pending},
    JobStatus.completed: set(),
    JobStatus.failed: set(),
}

TERMINAL_STATUSES = {JobStatus.completed, JobStatus.failed}

SUPPORTED_FILE_EXTENSIONS = {"csv", "xlsx", "xls"}
