"""
Scheduler Router - manual control of the ingestion scheduler.
Available outside production only; in production the scheduler is driven by
the application lifespan and these routes answer 404.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.core.config import settings
from app.helpers.rbac_helper import AccessLevel, require_admin
from app.schemas.integration_schemas import SchedulerAction, SchedulerControlRequest
from app.services.scheduler import IngestionScheduler

router = APIRouter(prefix="/api/integration", tags=["Integration Scheduler"])


def _get_scheduler(request: Request) -> IngestionScheduler:
    if settings.ENVIRONMENT == "prod":
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Not found",
        )
    scheduler = getattr(request.app.state, "ingestion_scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ingestion scheduler is not initialised",
        )
    return scheduler


@router.get(
    "/scheduler",
    response_model=Dict[str, Any],
    summary="Ingestion scheduler state",
)
def get_scheduler_status(
    access_level: AccessLevel = Depends(require_admin),
    scheduler: IngestionScheduler = Depends(_get_scheduler),
):
    state = scheduler.status()
    state["message"] = "Scheduler is running" if state["active"] else "Scheduler is stopped"
    return state


@router.post(
    "/scheduler",
    response_model=Dict[str, Any],
    summary="Start or stop the ingestion scheduler, or run one tick now",
)
def control_scheduler(
    payload: SchedulerControlRequest,
    access_level: AccessLevel = Depends(require_admin),
    scheduler: IngestionScheduler = Depends(_get_scheduler),
):
    """
    Actions:
    - **start**: start the timer (first tick runs immediately)
    - **stop**: stop the timer
    - **process**: run one tick synchronously and return its summary
    """
    if payload.action == SchedulerAction.start:
        started = scheduler.start(payload.interval_seconds)
        return {
            "message": "Scheduler started" if started else "Scheduler already running",
            "is_active": scheduler.is_active(),
        }

    if payload.action == SchedulerAction.stop:
        stopped = scheduler.stop()
        return {
            "message": "Scheduler stopped" if stopped else "Scheduler was not running",
            "is_active": scheduler.is_active(),
        }

    summary = scheduler.trigger_now()
    return {
        "message": "Jobs processed manually" if summary.ran else "A tick is already running; skipped",
        "is_active": scheduler.is_active(),
        "summary": summary.to_dict(),
    }
