# app/helpers/job_store.py
"""
Persistence operations for IntegrationJob records.

All status changes go through conditional UPDATE statements filtered on the
expected current status, so an out-of-order write can never move a job
backwards. The claim (pending -> processing) relies on this to guarantee that
two workers cannot both run the same job.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.exceptions import InvalidTransitionError
from app.core.logger import app_logger
from app.helpers.integration_types import (
    ALLOWED_TRANSITIONS,
    IntegrationEntityType,
    JobStatus,
    TERMINAL_STATUSES,
)
from app.models.integration_job import IntegrationJob

_TERMINAL_VALUES = [status.value for status in TERMINAL_STATUSES]


def utc_now() -> datetime:
    return datetime.utcnow()


@dataclass
class JobProgress:
    """In-memory counters of a run, written to the job record at checkpoints."""

    total_rows: int = 0
    processed_rows: int = 0
    success_rows: int = 0
    error_rows: int = 0
    limited_rows: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def as_values(self) -> Dict[str, Any]:
        return {
            "total_rows": self.total_rows,
            "processed_rows": self.processed_rows,
            "success_rows": self.success_rows,
            "error_rows": self.error_rows,
            "limited_rows": self.limited_rows,
            "errors": list(self.errors),
        }


def check_transition(current: JobStatus, target: JobStatus) -> None:
    """Raise InvalidTransitionError when the lifecycle does not allow current -> target."""
    if JobStatus(target) not in ALLOWED_TRANSITIONS[JobStatus(current)]:
        raise InvalidTransitionError(
            f"Invalid job status transition: {JobStatus(current).value} -> {JobStatus(target).value}"
        )


def _transition(
    db: Session,
    job_id: str,
    from_statuses: Iterable[JobStatus],
    to_status: JobStatus,
    values: Optional[Dict[str, Any]] = None,
) -> bool:
    """Conditionally move a job to `to_status`; returns False if it was not in `from_statuses`."""
    sources = [JobStatus(s) for s in from_statuses]
    for source in sources:
        check_transition(source, to_status)

    update_values: Dict[str, Any] = dict(values or {})
    update_values["status"] = to_status.value
    update_values["updated_at"] = utc_now()

    updated = (
        db.query(IntegrationJob)
        .filter(IntegrationJob.id == job_id)
        .filter(IntegrationJob.status.in_([s.value for s in sources]))
        .update(update_values, synchronize_session=False)
    )
    db.commit()
    return updated == 1


# =============================================================================
# Submission and reads
# =============================================================================

def submit_job(
    db: Session,
    company_id: str,
    entity_type: IntegrationEntityType,
    file_url: str,
    file_name: str,
    file_size: int,
) -> str:
    """Create a pending job for an already stored file and return its id."""
    if not company_id:
        raise ValueError("company_id is required")
    if file_size is None or file_size < 0:
        raise ValueError("file_size must be a non-negative integer")

    entity = IntegrationEntityType(entity_type)
    now = utc_now()
    job = IntegrationJob(
        company_id=company_id,
        entity_type=entity.value,
        status=JobStatus.pending.value,
        file_url=file_url,
        file_name=file_name,
        file_size=int(file_size),
        errors=[],
        created_at=now,
        updated_at=now,
    )
    db.add(job)
    db.commit()

    app_logger.info(
        "Integration job submitted",
        extra={
            "job_id": job.id,
            "tenant_id": company_id,
            "entity_type": entity.value,
            "file_name": file_name,
            "file_size": file_size,
        },
    )
    return job.id


def get_job(db: Session, job_id: str) -> Optional[IntegrationJob]:
    return db.query(IntegrationJob).filter(IntegrationJob.id == job_id).first()


def get_job_for_tenant(db: Session, company_id: str, job_id: str) -> Optional[IntegrationJob]:
    return (
        db.query(IntegrationJob)
        .filter(IntegrationJob.id == job_id)
        .filter(IntegrationJob.company_id == company_id)
        .first()
    )


def list_jobs(
    db: Session,
    company_id: str,
    page: int = 1,
    limit: int = 20,
    status: Optional[JobStatus] = None,
) -> Tuple[List[IntegrationJob], int]:
    """Return one page of the tenant's jobs (newest first) and the total count."""
    query = db.query(IntegrationJob).filter(IntegrationJob.company_id == company_id)
    if status is not None:
        query = query.filter(IntegrationJob.status == JobStatus(status).value)

    total = query.with_entities(func.count(IntegrationJob.id)).scalar() or 0
    offset = (max(page, 1) - 1) * limit
    items = (
        query.order_by(IntegrationJob.created_at.desc(), IntegrationJob.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


def fetch_pending_jobs(db: Session, limit: int) -> List[IntegrationJob]:
    """Oldest pending jobs across all tenants."""
    return (
        db.query(IntegrationJob)
        .filter(IntegrationJob.status == JobStatus.pending.value)
        .order_by(IntegrationJob.created_at.asc(), IntegrationJob.id.asc())
        .limit(limit)
        .all()
    )


# =============================================================================
# Lifecycle writes
# =============================================================================

def claim_job(db: Session, job_id: str) -> bool:
    """Atomically move a job from pending to processing. False if someone else took it."""
    return _transition(db, job_id, [JobStatus.pending], JobStatus.processing)


def checkpoint_progress(db: Session, job_id: str, progress: JobProgress) -> None:
    """Persist counters and errors of a job that is still processing."""
    values = progress.as_values()
    values["updated_at"] = utc_now()
    (
        db.query(IntegrationJob)
        .filter(IntegrationJob.id == job_id)
        .filter(IntegrationJob.status == JobStatus.processing.value)
        .update(values, synchronize_session=False)
    )
    db.commit()


def mark_completed(db: Session, job_id: str, progress: JobProgress) -> bool:
    values = progress.as_values()
    values["completed_at"] = utc_now()
    return _transition(db, job_id, [JobStatus.processing], JobStatus.completed, values)


def mark_failed(db: Session, job_id: str, reason: str) -> bool:
    """Fail a processing job; counters stay as last checkpointed."""
    return _transition(
        db,
        job_id,
        [JobStatus.processing],
        JobStatus.failed,
        {"failure_reason": reason, "completed_at": utc_now()},
    )


def force_fail(db: Session, job_id: str, reason: str) -> bool:
    """Fail a job regardless of whether it was claimed (used after unexpected runner crashes)."""
    # pending -> failed is not a lifecycle edge, so claim first when needed
    claim_job(db, job_id)
    return mark_failed(db, job_id, reason)


def find_stale_jobs(db: Session, cutoff: datetime, company_id: Optional[str] = None) -> List[IntegrationJob]:
    """Jobs in processing or pending whose last update is older than `cutoff`."""
    query = (
        db.query(IntegrationJob)
        .filter(IntegrationJob.status.notin_(_TERMINAL_VALUES))
        .filter(IntegrationJob.updated_at < cutoff)
    )
    if company_id is not None:
        query = query.filter(IntegrationJob.company_id == company_id)
    return query.order_by(IntegrationJob.updated_at.asc()).all()


def reset_stale_jobs(db: Session, cutoff: datetime, company_id: Optional[str] = None) -> List[str]:
    """
    Return stale processing/pending jobs to pending so the scheduler picks them
    up again. Progress counters and errors are reset for the new run.
    """
    reset_ids: List[str] = []
    for job in find_stale_jobs(db, cutoff, company_id):
        updated = (
            db.query(IntegrationJob)
            .filter(IntegrationJob.id == job.id)
            .filter(IntegrationJob.status.notin_(_TERMINAL_VALUES))
            .filter(IntegrationJob.updated_at < cutoff)
            .update(
                {
                    "status": JobStatus.pending.value,
                    "updated_at": utc_now(),
                    "total_rows": 0,
                    "processed_rows": 0,
                    "success_rows": 0,
                    "error_rows": 0,
                    "limited_rows": 0,
                    "errors": [],
                    "failure_reason": None,
                },
                synchronize_session=False,
            )
        )
        if updated:
            reset_ids.append(job.id)
    db.commit()
    return reset_ids


# =============================================================================
# Serialization
# =============================================================================

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_job(job: IntegrationJob, include_errors: bool = False) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": job.id,
        "company_id": job.company_id,
        "entity_type": job.entity_type,
        "status": job.status,
        "file_name": job.file_name,
        "file_url": job.file_url,
        "file_size": job.file_size,
        "total_rows": job.total_rows or 0,
        "processed_rows": job.processed_rows or 0,
        "success_rows": job.success_rows or 0,
        "error_rows": job.error_rows or 0,
        "limited_rows": job.limited_rows or 0,
        "error_count": len(job.errors or []),
        "failure_reason": job.failure_reason,
        "created_at": _iso(job.created_at),
        "updated_at": _iso(job.updated_at),
        "completed_at": _iso(job.completed_at),
    }
    if include_errors:
        data["errors"] = list(job.errors or [])
    return data
