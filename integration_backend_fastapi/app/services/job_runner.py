# app/services/job_runner.py
"""
Runs one integration job end to end:
claim -> fetch file -> parse rows -> process rows -> checkpoint -> finalize.

Row-scoped failures are recorded on the job and never stop the run. Job-fatal
failures (fetch, format, parse, lost database) mark the job as failed with the
counters left as last checkpointed. Only the first `max_rows_per_run` rows of a
file are processed; the remainder is reported through `limited_rows`.
"""
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from sqlalchemy import exc
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.exceptions import (
    JobFatalError,
    PersistenceError,
    RowError,
    StoreUnavailableError,
)
from app.core.logger import app_logger, clear_job_context, set_job_context
from app.helpers.blob_storage import fetch_file_bytes
from app.helpers.file_parser import RowRecord, extension_from_name, parse_rows
from app.helpers.integration_types import IntegrationEntityType
from app.helpers.job_store import (
    JobProgress,
    checkpoint_progress,
    claim_job,
    get_job,
    mark_completed,
    mark_failed,
)
from app.helpers.row_processors import ROW_PROCESSORS, RowProcessor
from app.models.integration_job import IntegrationJob

OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"

# Errors meaning the connection to the database is gone, not that a row is bad
STORE_UNAVAILABLE_ERRORS = (exc.OperationalError, exc.InterfaceError, exc.DisconnectionError)


@dataclass
class JobRunResult:
    job_id: str
    outcome: str
    progress: JobProgress = field(default_factory=JobProgress)
    failure_reason: Optional[str] = None
    duration_ms: float = 0.0


class JobRunner:
    """Processes a single job; one instance is shared by every scheduler tick."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        file_fetcher: Callable[[str], bytes] = fetch_file_bytes,
        max_rows_per_run: Optional[int] = None,
        checkpoint_interval: Optional[int] = None,
        processors: Optional[Dict[IntegrationEntityType, RowProcessor]] = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory
        self._file_fetcher = file_fetcher
        self.max_rows_per_run = max_rows_per_run or settings.MAX_ROWS_PER_RUN
        self.checkpoint_interval = checkpoint_interval or settings.PROGRESS_CHECKPOINT_INTERVAL
        self._processors = processors if processors is not None else ROW_PROCESSORS

        if self.max_rows_per_run < 1:
            raise ValueError("max_rows_per_run must be at least 1")
        if self.checkpoint_interval < 1:
            raise ValueError("checkpoint_interval must be at least 1")

    def run(self, job_id: str) -> JobRunResult:
        db = self._session_factory()
        start_time = time.time()
        try:
            result = self._run(db, job_id)
        finally:
            clear_job_context()
            db.close()
        result.duration_ms = round((time.time() - start_time) * 1000, 2)
        return result

    # ------------------------------------------------------------------

    def _run(self, db: Session, job_id: str) -> JobRunResult:
        if not claim_job(db, job_id):
            app_logger.info(
                "Integration job already claimed or no longer pending; skipping",
                extra={"job_id": job_id},
            )
            return JobRunResult(job_id=job_id, outcome=OUTCOME_SKIPPED)

        job = get_job(db, job_id)
        set_job_context(job.id, tenant_id=job.company_id, entity_type=job.entity_type)
        app_logger.info("Integration job started", extra={"file_name": job.file_name})

        progress = JobProgress()
        try:
            processor = self._get_processor(job.entity_type)
            rows = self._load_rows(job)

            progress.total_rows = len(rows)
            progress.limited_rows = max(0, len(rows) - self.max_rows_per_run)
            checkpoint_progress(db, job_id, progress)

            if progress.limited_rows:
                app_logger.warning(
                    "File exceeds the per-run row limit; extra rows will not be processed",
                    extra={
                        "total_rows": progress.total_rows,
                        "max_rows_per_run": self.max_rows_per_run,
                        "limited_rows": progress.limited_rows,
                    },
                )

            self._process_rows(db, job_id, job.company_id, processor, rows[: self.max_rows_per_run], progress)
        except JobFatalError as err:
            return self._fail(db, job_id, progress, str(err))
        except STORE_UNAVAILABLE_ERRORS as err:
            return self._fail(db, job_id, progress, f"Database unavailable: {err}")

        if not mark_completed(db, job_id, progress):
            return self._lost_job(job_id, progress, "completed")
        app_logger.info(
            "Integration job completed",
            extra={
                "total_rows": progress.total_rows,
                "processed_rows": progress.processed_rows,
                "success_rows": progress.success_rows,
                "error_rows": progress.error_rows,
                "limited_rows": progress.limited_rows,
            },
        )
        return JobRunResult(job_id=job_id, outcome=OUTCOME_COMPLETED, progress=progress)

    def _get_processor(self, entity_type: str) -> RowProcessor:
        try:
            return self._processors[IntegrationEntityType(entity_type)]
        except (ValueError, KeyError):
            raise JobFatalError(f"Unsupported entity type: '{entity_type}'")

    def _load_rows(self, job: IntegrationJob) -> List[RowRecord]:
        file_bytes = self._file_fetcher(job.file_url)
        extension = extension_from_name(job.file_name) or extension_from_name(job.file_url)
        rows = parse_rows(file_bytes, extension)
        app_logger.debug(
            "Integration file parsed",
            extra={"extension": extension, "file_size": len(file_bytes), "rows": len(rows)},
        )
        return rows

    def _process_rows(
        self,
        db: Session,
        job_id: str,
        company_id: str,
        processor: RowProcessor,
        rows: List[RowRecord],
        progress: JobProgress,
    ) -> None:
        for row_number, row in enumerate(rows, start=1):
            row_error: Optional[RowError] = None
            try:
                processor.process(db, company_id, row)
                db.commit()
            except RowError as err:
                db.rollback()
                row_error = err
            except exc.IntegrityError as err:
                db.rollback()
                row_error = PersistenceError("internalCode", row.get("internalCode"), f"Failed to save row: {err.orig}")
            except STORE_UNAVAILABLE_ERRORS as err:
                db.rollback()
                raise StoreUnavailableError(f"Database unavailable while processing row {row_number}: {err}") from err
            except Exception as err:
                db.rollback()
                app_logger.exception("Unexpected error while processing row", extra={"row": row_number})
                row_error = RowError("unknown", "", str(err) or err.__class__.__name__)

            if row_error is None:
                progress.success_rows += 1
            else:
                progress.error_rows += 1
                progress.errors.append(row_error.to_dict(row_number))
                app_logger.debug(
                    "Row rejected",
                    extra={"row": row_number, "field": row_error.field, "error": row_error.message},
                )
            progress.processed_rows += 1

            if progress.processed_rows % self.checkpoint_interval == 0:
                checkpoint_progress(db, job_id, progress)

    def _fail(self, db: Session, job_id: str, progress: JobProgress, reason: str) -> JobRunResult:
        db.rollback()
        app_logger.error(
            "Integration job failed",
            extra={"reason": reason, "processed_rows": progress.processed_rows},
        )
        if not mark_failed(db, job_id, reason):
            return self._lost_job(job_id, progress, "failed")
        return JobRunResult(job_id=job_id, outcome=OUTCOME_FAILED, progress=progress, failure_reason=reason)

    def _lost_job(self, job_id: str, progress: JobProgress, final_status: str) -> JobRunResult:
        # Typically a stuck-job reset moved it back to pending mid-run
        app_logger.warning(
            "Integration job left processing before it could be finalized; result discarded",
            extra={"final_status": final_status, "processed_rows": progress.processed_rows},
        )
        return JobRunResult(job_id=job_id, outcome=OUTCOME_SKIPPED, progress=progress)
