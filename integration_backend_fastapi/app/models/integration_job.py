# app/models/integration_job.py
"""
Ingestion job record: one per uploaded file.
Created pending by the upload path, then mutated only by the job runner /
scheduler and by the stuck-job recovery. Never deleted by the pipeline.
"""
import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text

from app.db.base import Base


# -------------------------------------------------------
# INTEGRATION JOB
# Migration: 002_create_integration_job
# -------------------------------------------------------
class IntegrationJob(Base):
    __tablename__ = "integration_job"
    __table_args__ = (
        Index("ix_integration_job_company_status", "company_id", "status"),
        Index("ix_integration_job_type_status", "entity_type", "status"),
        Index("ix_integration_job_status_created", "status", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default="pending")

    file_name = Column(String(255), nullable=False)
    file_url = Column(String(1024), nullable=False)
    file_size = Column(Integer, nullable=False, default=0)

    total_rows = Column(Integer, nullable=False, default=0)
    processed_rows = Column(Integer, nullable=False, default=0)
    success_rows = Column(Integer, nullable=False, default=0)
    error_rows = Column(Integer, nullable=False, default=0)
    limited_rows = Column(Integer, nullable=False, default=0)

    # Ordered list of {"row", "field", "value", "message"}
    errors = Column(JSON, nullable=False, default=list)
    failure_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
