# app/schemas/integration_schemas.py
"""
Request/response schemas for the integration API.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SchedulerAction(str, Enum):
    start = "start"
    stop = "stop"
    process = "process"


class SchedulerControlRequest(BaseModel):
    action: SchedulerAction = Field(..., description="start, stop, or process")
    interval_seconds: Optional[int] = Field(None, gt=0, description="Tick interval used by 'start'")


class UploadResponse(BaseModel):
    message: str
    job_ids: List[str]


class JobListResponse(BaseModel):
    jobs: List[Dict[str, Any]]
    total_items: int
    total_pages: int
    current_page: int
    items_per_page: int


class JobErrorsResponse(BaseModel):
    job_id: str
    status: str
    errors: List[Dict[str, Any]]
    total_errors: int
    success_rows: int
    total_rows: int
    limited_rows: int
    failure_reason: Optional[str] = None
    truncation_notice: Optional[str] = None
