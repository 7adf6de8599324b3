# app/services/scheduler.py
"""
Background scheduler that drives pending integration jobs to completion.

Every tick loads the oldest pending jobs across all companies, picks a fair
batch (round-robin over companies, capped per company and per tick) and runs
the selected jobs one after the other. Ticks never overlap: a tick that
starts while another is still running is skipped, not queued.

The scheduler is an explicit service object owned by the FastAPI app
(app.state.ingestion_scheduler); nothing here is a module-level singleton.
"""
import threading
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.logger import app_logger
from app.helpers.job_store import fetch_pending_jobs, force_fail, utc_now
from app.models.integration_job import IntegrationJob
from app.services.job_runner import (
    OUTCOME_COMPLETED,
    OUTCOME_FAILED,
    OUTCOME_SKIPPED,
    JobRunner,
)

TICK_JOB_ID = "integration-jobs-tick"


@dataclass
class TickSummary:
    ran: bool = True
    selected: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    tenants: List[str] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)
    started_at: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def select_fair_batch(
    jobs: Sequence[IntegrationJob],
    max_per_tenant: int,
    max_total: int,
) -> List[IntegrationJob]:
    """
    Round-robin selection over companies.

    `jobs` must be ordered oldest first; companies are visited in the order of
    their oldest job and each round takes at most one job per company.
    """
    by_tenant: "OrderedDict[str, List[IntegrationJob]]" = OrderedDict()
    for job in jobs:
        by_tenant.setdefault(job.company_id, []).append(job)

    selected: List[IntegrationJob] = []
    for round_index in range(max_per_tenant):
        added = False
        for tenant_jobs in by_tenant.values():
            if len(selected) >= max_total:
                return selected
            if round_index < len(tenant_jobs):
                selected.append(tenant_jobs[round_index])
                added = True
        if not added:
            break
    return selected


class IngestionScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        runner: JobRunner,
        interval_seconds: Optional[int] = None,
        fetch_limit: Optional[int] = None,
        max_jobs_per_tick: Optional[int] = None,
        max_jobs_per_tenant: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory
        self._runner = runner
        self.interval_seconds = interval_seconds or settings.SCHEDULER_INTERVAL_SECONDS
        self.fetch_limit = fetch_limit or settings.SCHEDULER_FETCH_LIMIT
        self.max_jobs_per_tick = max_jobs_per_tick or settings.SCHEDULER_MAX_JOBS_PER_TICK
        self.max_jobs_per_tenant = max_jobs_per_tenant or settings.SCHEDULER_MAX_JOBS_PER_TENANT

        self._scheduler: Optional[BackgroundScheduler] = None
        self._state_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self.last_summary: Optional[TickSummary] = None

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def start(self, interval_seconds: Optional[int] = None) -> bool:
        """Start the timer with an immediate first tick. Returns False if already running."""
        with self._state_lock:
            if self._scheduler is not None and self._scheduler.running:
                return False

            if interval_seconds:
                if interval_seconds <= 0:
                    raise ValueError("interval_seconds must be greater than zero")
                self.interval_seconds = interval_seconds

            scheduler = BackgroundScheduler()
            scheduler.add_job(
                self.run_tick,
                trigger=IntervalTrigger(seconds=self.interval_seconds),
                id=TICK_JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                next_run_time=datetime.now(),  # Run immediately on start
            )
            scheduler.start()
            self._scheduler = scheduler

        app_logger.info(
            "Integration scheduler started",
            extra={"interval_seconds": self.interval_seconds},
        )
        return True

    def stop(self) -> bool:
        """Stop the timer. A tick in progress finishes its current batch."""
        with self._state_lock:
            if self._scheduler is None or not self._scheduler.running:
                return False
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        app_logger.info("Integration scheduler stopped")
        return True

    def is_active(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def is_ticking(self) -> bool:
        return self._tick_lock.locked()

    def trigger_now(self) -> TickSummary:
        """Run one tick synchronously in the calling thread."""
        return self.run_tick()

    def status(self) -> Dict[str, Any]:
        return {
            "active": self.is_active(),
            "ticking": self.is_ticking(),
            "interval_seconds": self.interval_seconds,
            "fetch_limit": self.fetch_limit,
            "max_jobs_per_tick": self.max_jobs_per_tick,
            "max_jobs_per_tenant": self.max_jobs_per_tenant,
            "last_tick": self.last_summary.to_dict() if self.last_summary else None,
        }

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def run_tick(self) -> TickSummary:
        if not self._tick_lock.acquire(blocking=False):
            app_logger.info("Previous integration tick still running; skipping this tick")
            return TickSummary(ran=False)
        try:
            summary = self._tick()
        finally:
            self._tick_lock.release()
        self.last_summary = summary
        return summary

    def _tick(self) -> TickSummary:
        start_time = time.time()
        summary = TickSummary(started_at=utc_now().isoformat())

        db = self._session_factory()
        try:
            pending = fetch_pending_jobs(db, self.fetch_limit)
            batch = select_fair_batch(pending, self.max_jobs_per_tenant, self.max_jobs_per_tick)
            selected = [(job.id, job.company_id) for job in batch]
        except SQLAlchemyError as exc:
            app_logger.exception("Failed to load pending integration jobs")
            summary.errors.append({"job_id": "", "error": str(exc)})
            summary.duration_ms = round((time.time() - start_time) * 1000, 2)
            return summary
        finally:
            db.close()

        summary.selected = len(selected)
        for job_id, company_id in selected:
            if company_id not in summary.tenants:
                summary.tenants.append(company_id)

        if selected:
            app_logger.info(
                "Integration tick selected jobs",
                extra={
                    "pending_loaded": len(pending),
                    "selected": summary.selected,
                    "tenants": summary.tenants,
                },
            )

        for job_id, company_id in selected:
            try:
                result = self._runner.run(job_id)
            except Exception as exc:
                app_logger.exception(
                    "Unhandled error while running integration job",
                    extra={"job_id": job_id, "tenant_id": company_id},
                )
                self._force_fail(job_id, f"Unexpected error: {exc}")
                summary.failed += 1
                summary.errors.append({"job_id": job_id, "error": str(exc)})
                continue

            if result.outcome == OUTCOME_COMPLETED:
                summary.completed += 1
            elif result.outcome == OUTCOME_FAILED:
                summary.failed += 1
                summary.errors.append({"job_id": job_id, "error": result.failure_reason or ""})
            elif result.outcome == OUTCOME_SKIPPED:
                summary.skipped += 1

        summary.duration_ms = round((time.time() - start_time) * 1000, 2)
        if selected:
            app_logger.info("Integration tick finished", extra=summary.to_dict())
        return summary

    def _force_fail(self, job_id: str, reason: str) -> None:
        db = self._session_factory()
        try:
            if not force_fail(db, job_id, reason):
                app_logger.warning(
                    "Could not mark crashed integration job as failed",
                    extra={"job_id": job_id},
                )
        except SQLAlchemyError:
            app_logger.exception(
                "Failed to record integration job failure; stuck-job recovery will pick it up",
                extra={"job_id": job_id},
            )
        finally:
            db.close()
