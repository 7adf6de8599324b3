# app/models/entity_models.py
"""
Maintenance domain models written by the bulk integration pipeline.
Every record is scoped to a company (tenant) and carries an internal_code,
a stable external identifier unique within the company, used by later files
to update records instead of duplicating them and by dependent rows to
resolve references.
"""
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.db.base import Base


def generate_internal_code() -> str:
    return str(uuid.uuid4())


# -------------------------------------------------------
# LOCATION
# Migration: 001_create_integration_entities
# -------------------------------------------------------
class Location(Base):
    __tablename__ = "location"
    __table_args__ = (
        UniqueConstraint("company_id", "internal_code", name="uq_location_company_code"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False, index=True)
    internal_code = Column(String(36), nullable=False, default=generate_internal_code)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    icon = Column(String(50), nullable=True)
    parent_id = Column(
        Integer,
        ForeignKey("location.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    path = Column(String(1000), nullable=False, default="")
    level = Column(Integer, nullable=False, default=0)
    is_leaf = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    parent = relationship("Location", remote_side=[id], back_populates="children")
    children = relationship("Location", back_populates="parent")
    machines = relationship("Machine", back_populates="location_ref")


# -------------------------------------------------------
# MACHINE MODEL
# Migration: 001_create_integration_entities
# -------------------------------------------------------
class MachineModel(Base):
    __tablename__ = "machine_model"
    __table_args__ = (
        UniqueConstraint("company_id", "internal_code", name="uq_machine_model_company_code"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False, index=True)
    internal_code = Column(String(36), nullable=False, default=generate_internal_code)
    name = Column(String(255), nullable=False)
    manufacturer = Column(String(255), nullable=False)
    brand = Column(String(255), nullable=False)
    year = Column(Integer, nullable=False)
    properties = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    machines = relationship("Machine", back_populates="model")


# -------------------------------------------------------
# MACHINE
# Migration: 001_create_integration_entities
# -------------------------------------------------------
class Machine(Base):
    __tablename__ = "machine"
    __table_args__ = (
        UniqueConstraint("company_id", "internal_code", name="uq_machine_company_code"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False, index=True)
    internal_code = Column(String(36), nullable=False, default=generate_internal_code)
    model_id = Column(
        Integer,
        ForeignKey("machine_model.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    location_id = Column(
        Integer,
        ForeignKey("location.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    # Path of the location at the time the machine was written
    location = Column(String(1000), nullable=False)
    description = Column(String(500), nullable=True)
    properties = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    model = relationship("MachineModel", back_populates="machines")
    location_ref = relationship("Location", back_populates="machines")


# -------------------------------------------------------
# MAINTENANCE RANGE
# Migration: 001_create_integration_entities
# -------------------------------------------------------
class MaintenanceRange(Base):
    __tablename__ = "maintenance_range"
    __table_args__ = (
        UniqueConstraint("company_id", "internal_code", name="uq_maintenance_range_company_code"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False, index=True)
    internal_code = Column(String(36), nullable=False, default=generate_internal_code)
    name = Column(String(255), nullable=False)
    description = Column(String(500), nullable=False)
    type = Column(String(20), nullable=False)  # preventive | corrective
    frequency = Column(String(100), nullable=True)
    start_date = Column(Date, nullable=True)
    start_time = Column(String(10), nullable=True)
    days_of_week = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


# -------------------------------------------------------
# OPERATION
# Migration: 001_create_integration_entities
# -------------------------------------------------------
class Operation(Base):
    __tablename__ = "operation"
    __table_args__ = (
        UniqueConstraint("company_id", "internal_code", name="uq_operation_company_code"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False, index=True)
    internal_code = Column(String(36), nullable=False, default=generate_internal_code)
    name = Column(String(255), nullable=False)
    description = Column(String(500), nullable=False)
    type = Column(String(20), nullable=False)  # text | date | time | datetime | boolean | number
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
