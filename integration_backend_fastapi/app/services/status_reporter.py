# app/services/status_reporter.py
"""
Read-side reporting over integration jobs, plus the stuck-job recovery.

Every function is tenant-scoped when company_id is given and global otherwise.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.logger import app_logger
from app.helpers.integration_types import JobStatus
from app.helpers.job_store import find_stale_jobs, reset_stale_jobs, utc_now
from app.models.integration_job import IntegrationJob


def _scoped(query, company_id: Optional[str]):
    if company_id is not None:
        query = query.filter(IntegrationJob.company_id == company_id)
    return query


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _count_by_status(db: Session, company_id: Optional[str], since: Optional[datetime] = None) -> Dict[str, int]:
    query = _scoped(
        db.query(IntegrationJob.status, func.count(IntegrationJob.id)),
        company_id,
    )
    if since is not None:
        query = query.filter(IntegrationJob.created_at >= since)
    return {status: count for status, count in query.group_by(IntegrationJob.status).all()}


def get_queue_status(db: Session, company_id: Optional[str] = None) -> Dict[str, Any]:
    """Counts per status and the oldest pending job (the next one to be picked up)."""
    counts = _count_by_status(db, company_id)

    next_job = (
        _scoped(db.query(IntegrationJob), company_id)
        .filter(IntegrationJob.status == JobStatus.pending.value)
        .order_by(IntegrationJob.created_at.asc(), IntegrationJob.id.asc())
        .first()
    )

    return {
        "pending_jobs": counts.get(JobStatus.pending.value, 0),
        "processing_jobs": counts.get(JobStatus.processing.value, 0),
        "completed_jobs": counts.get(JobStatus.completed.value, 0),
        "failed_jobs": counts.get(JobStatus.failed.value, 0),
        "next_job_to_process": {
            "id": next_job.id,
            "file_name": next_job.file_name,
            "entity_type": next_job.entity_type,
            "created_at": _iso(next_job.created_at),
        } if next_job else None,
    }


def get_job_stats(db: Session, company_id: Optional[str] = None, days: int = 7) -> Dict[str, Any]:
    """
    Statistics over jobs created in the last `days` days.

    success_rate is the percentage of completed jobs (0-100) and
    average_processing_time the mean of completed_at - created_at in seconds,
    over completed jobs only.
    """
    if days < 1:
        raise ValueError("days must be at least 1")
    since = utc_now() - timedelta(days=days)

    jobs_by_status = _count_by_status(db, company_id, since)
    total_jobs = sum(jobs_by_status.values())
    completed_jobs = jobs_by_status.get(JobStatus.completed.value, 0)

    type_query = _scoped(
        db.query(IntegrationJob.entity_type, func.count(IntegrationJob.id)),
        company_id,
    ).filter(IntegrationJob.created_at >= since)
    jobs_by_type = {
        entity_type: count
        for entity_type, count in type_query.group_by(IntegrationJob.entity_type).all()
    }

    durations = [
        (completed_at - created_at).total_seconds()
        for created_at, completed_at in _scoped(
            db.query(IntegrationJob.created_at, IntegrationJob.completed_at),
            company_id,
        )
        .filter(IntegrationJob.created_at >= since)
        .filter(IntegrationJob.status == JobStatus.completed.value)
        .filter(IntegrationJob.completed_at.isnot(None))
        .all()
    ]

    return {
        "days": days,
        "total_jobs": total_jobs,
        "success_rate": round(completed_jobs / total_jobs * 100, 2) if total_jobs else 0,
        "average_processing_time": round(sum(durations) / len(durations), 2) if durations else 0,
        "jobs_by_type": jobs_by_type,
        "jobs_by_status": jobs_by_status,
    }


def _stuck_for_minutes(updated_at: datetime, now: datetime) -> int:
    return int((now - updated_at).total_seconds() // 60)


def diagnose(
    db: Session,
    company_id: Optional[str] = None,
    threshold_minutes: Optional[int] = None,
    recent_limit: Optional[int] = None,
) -> Dict[str, Any]:
    """Stuck jobs with their staleness, a status histogram and the most recent jobs."""
    settings = get_settings()
    threshold = threshold_minutes or settings.STUCK_JOB_THRESHOLD_MINUTES
    limit = recent_limit or settings.DIAGNOSE_RECENT_JOBS_LIMIT
    now = utc_now()

    stuck_jobs = find_stale_jobs(db, now - timedelta(minutes=threshold), company_id)
    recent_jobs = (
        _scoped(db.query(IntegrationJob), company_id)
        .order_by(IntegrationJob.created_at.desc(), IntegrationJob.id.desc())
        .limit(limit)
        .all()
    )

    return {
        "threshold_minutes": threshold,
        "stuck_jobs": [
            {
                "id": job.id,
                "file_name": job.file_name,
                "entity_type": job.entity_type,
                "status": job.status,
                "created_at": _iso(job.created_at),
                "updated_at": _iso(job.updated_at),
                "stuck_for_minutes": _stuck_for_minutes(job.updated_at, now),
            }
            for job in stuck_jobs
        ],
        "jobs_by_status": _count_by_status(db, company_id),
        "recent_jobs": [
            {
                "id": job.id,
                "file_name": job.file_name,
                "status": job.status,
                "created_at": _iso(job.created_at),
                "updated_at": _iso(job.updated_at),
            }
            for job in recent_jobs
        ],
    }


def reset_stuck_jobs(
    db: Session,
    company_id: Optional[str] = None,
    threshold_minutes: Optional[int] = None,
) -> Dict[str, Any]:
    """Move every stuck job back to pending so the next scheduler tick runs it again."""
    threshold = threshold_minutes or get_settings().STUCK_JOB_THRESHOLD_MINUTES
    cutoff = utc_now() - timedelta(minutes=threshold)

    stuck_jobs = {job.id: job for job in find_stale_jobs(db, cutoff, company_id)}
    if not stuck_jobs:
        return {"message": "No stuck jobs found", "reset_jobs": []}

    details: List[Dict[str, Any]] = [
        {"id": job.id, "file_name": job.file_name, "entity_type": job.entity_type}
        for job in stuck_jobs.values()
    ]
    reset_ids = set(reset_stale_jobs(db, cutoff, company_id))
    reset_jobs = [item for item in details if item["id"] in reset_ids]

    app_logger.warning(
        "Stuck integration jobs reset to pending",
        extra={"tenant_id": company_id, "reset_count": len(reset_jobs), "job_ids": sorted(reset_ids)},
    )
    return {
        "message": f"Reset {len(reset_jobs)} stuck jobs to pending",
        "reset_jobs": reset_jobs,
    }
