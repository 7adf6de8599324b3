"""
Integration Router - bulk ingestion of CSV/Excel files.

Uploads are stored and queued as pending jobs; the ingestion scheduler
processes them in the background. The remaining endpoints expose job
progress, queue statistics and the stuck-job recovery.

Supported entity types:
- locations
- machine-models
- machines
- maintenance-ranges
- operations
"""
import math
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    UploadFile,
    status,
)
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logger import app_logger
from app.db.session import get_db
from app.helpers.auth_helper import get_current_tenant_id
from app.helpers.blob_storage import save_uploaded_file
from app.helpers.integration_types import (
    SUPPORTED_FILE_EXTENSIONS,
    IntegrationEntityType,
    JobStatus,
)
from app.helpers.job_store import get_job_for_tenant, list_jobs, serialize_job, submit_job
from app.helpers.rbac_helper import (
    AccessLevel,
    get_access_level,
    require_admin,
    require_editor_or_admin,
)
from app.schemas.integration_schemas import JobErrorsResponse, JobListResponse, UploadResponse
from app.services import status_reporter

router = APIRouter(prefix="/api/integration", tags=["Integration"])


def _validate_upload(upload: UploadFile, content: bytes) -> None:
    file_name = upload.filename or ""
    extension = Path(file_name).suffix.lower().lstrip(".")
    if extension not in SUPPORTED_FILE_EXTENSIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid file type for {file_name}. Only CSV and Excel files are allowed.",
        )
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f"File {file_name} exceeds maximum allowed size of "
                f"{settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB"
            ),
        )


def _get_tenant_job_or_404(db: Session, company_id: str, job_id: str):
    job = get_job_for_tenant(db, company_id, job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )
    return job


@router.post(
    "/upload",
    response_model=UploadResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload CSV/Excel files and queue one integration job per file",
)
async def upload_integration_files(
    files: List[UploadFile] = File(
        ...,
        description="CSV or Excel files (.csv, .xlsx, .xls). First row must be headers.",
    ),
    entity_type: str = Form(
        ...,
        alias="type",
        description="locations | machine-models | machines | maintenance-ranges | operations",
    ),
    access_level: AccessLevel = Depends(require_editor_or_admin),
    company_id: str = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    """
    Store every file and create a pending job for it.

    The API acknowledges receipt immediately (202 Accepted); rows are processed
    by the background scheduler. Poll /jobs/{job_id} for progress.
    """
    try:
        entity = IntegrationEntityType(entity_type)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid type",
        )

    if not files:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Files and type are required",
        )

    # Validate everything first so a bad file does not leave half the batch queued
    uploads: List[Tuple[str, bytes]] = []
    for upload in files:
        content = await upload.read()
        _validate_upload(upload, content)
        uploads.append((upload.filename, content))

    job_ids: List[str] = []
    for file_name, content in uploads:
        file_url = save_uploaded_file(content, file_name, company_id)
        job_ids.append(
            submit_job(
                db,
                company_id=company_id,
                entity_type=entity,
                file_url=file_url,
                file_name=file_name,
                file_size=len(content),
            )
        )

    app_logger.info(
        "Integration files uploaded",
        extra={"entity_type": entity.value, "files": len(job_ids), "job_ids": job_ids},
    )
    return {
        "message": f"{len(job_ids)} file(s) uploaded successfully",
        "job_ids": job_ids,
    }


@router.get(
    "/jobs",
    response_model=JobListResponse,
    summary="List the company's integration jobs, newest first",
)
def list_integration_jobs(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    job_status: Optional[JobStatus] = Query(None, alias="status"),
    company_id: str = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    jobs, total = list_jobs(db, company_id, page=page, limit=limit, status=job_status)
    return {
        "jobs": [serialize_job(job) for job in jobs],
        "total_items": total,
        "total_pages": math.ceil(total / limit) if total else 0,
        "current_page": page,
        "items_per_page": limit,
    }


@router.get(
    "/jobs/{job_id}",
    response_model=Dict[str, Any],
    summary="Get one integration job with its progress counters",
)
def get_integration_job(
    job_id: str,
    company_id: str = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    job = _get_tenant_job_or_404(db, company_id, job_id)
    return serialize_job(job)


@router.get(
    "/jobs/{job_id}/errors",
    response_model=JobErrorsResponse,
    summary="Get the row errors of an integration job",
)
def get_integration_job_errors(
    job_id: str,
    company_id: str = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    """
    Row-level errors of a job.

    A failed job reports only its fatal cause. When rows were left out because
    of the per-run row limit a truncation notice is included.
    """
    job = _get_tenant_job_or_404(db, company_id, job_id)
    is_failed = job.status == JobStatus.failed.value
    limited_rows = job.limited_rows or 0

    truncation_notice = None
    if limited_rows > 0 and not is_failed:
        truncation_notice = (
            f"Only the first {(job.total_rows or 0) - limited_rows} rows were processed; "
            f"{limited_rows} remaining rows were not imported. "
            "Split the file and upload the remaining rows separately."
        )

    return {
        "job_id": job.id,
        "status": job.status,
        "errors": [] if is_failed else list(job.errors or []),
        "total_errors": job.error_rows or 0,
        "success_rows": job.success_rows or 0,
        "total_rows": job.total_rows or 0,
        "limited_rows": limited_rows,
        "failure_reason": job.failure_reason,
        "truncation_notice": truncation_notice,
    }


@router.get(
    "/queue",
    response_model=Dict[str, Any],
    summary="Queue status: job counts per status and the next job to be processed",
)
def get_queue_status(
    scope: str = Query("tenant", pattern="^(tenant|global)$"),
    access_level: AccessLevel = Depends(get_access_level),
    company_id: str = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    if scope == "global":
        if access_level is not AccessLevel.admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Admin access required for this action.",
            )
        return status_reporter.get_queue_status(db)
    return status_reporter.get_queue_status(db, company_id)


@router.get(
    "/stats",
    response_model=Dict[str, Any],
    summary="Job statistics over the last N days",
)
def get_job_stats(
    days: int = Query(7, ge=1, le=365),
    company_id: str = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    return status_reporter.get_job_stats(db, company_id, days=days)


@router.get(
    "/diagnose",
    response_model=Dict[str, Any],
    summary="Diagnose stuck integration jobs",
)
def diagnose_integration_jobs(
    company_id: str = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    return status_reporter.diagnose(db, company_id)


@router.post(
    "/reset-stuck-jobs",
    response_model=Dict[str, Any],
    summary="Return stuck integration jobs to pending",
)
def reset_stuck_integration_jobs(
    access_level: AccessLevel = Depends(require_admin),
    company_id: str = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    return status_reporter.reset_stuck_jobs(db, company_id)
