# app/schemas/row_schemas.py
"""
Pydantic schemas validating one parsed file row per entity type.
Aliases are the column headers of the upload templates (camelCase).
"""
import json
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator

MAINTENANCE_RANGE_TYPES = ("preventive", "corrective")
OPERATION_VALUE_TYPES = ("text", "date", "time", "datetime", "boolean", "number")

_TIME_PATTERN = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")


def _parse_properties(value: Any) -> Dict[str, Any]:
    if value is None or value == "":
        return {}
    if isinstance(value, dict):
        return value
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        raise ValueError("Invalid JSON format")
    if not isinstance(parsed, dict):
        raise ValueError("Properties must be a JSON object")
    return parsed


class RowSchema(BaseModel):
    """Common configuration: populate by alias or name, ignore unknown columns."""

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    internal_code: Optional[str] = Field(None, alias="internalCode", max_length=36)


# =============================================================================
# Location
# =============================================================================

class LocationRow(RowSchema):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    icon: Optional[str] = Field(None, max_length=50)
    parent_internal_code: Optional[str] = Field(None, alias="parentInternalCode", max_length=36)


# =============================================================================
# Machine model
# =============================================================================

class MachineModelRow(RowSchema):
    name: str = Field(..., min_length=1, max_length=255)
    manufacturer: str = Field(..., min_length=1, max_length=255)
    brand: str = Field(..., min_length=1, max_length=255)
    year: int
    properties: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("year", mode="before")
    @classmethod
    def _parse_year(cls, value: Any) -> int:
        try:
            number = float(str(value).strip())
        except (TypeError, ValueError):
            raise ValueError("Valid year is required")
        if not number.is_integer():
            raise ValueError("Valid year is required")
        year = int(number)
        max_year = datetime.utcnow().year + 1
        if year < 1900 or year > max_year:
            raise ValueError(f"Year must be between 1900 and {max_year}")
        return year

    @field_validator("properties", mode="before")
    @classmethod
    def _parse_properties(cls, value: Any) -> Dict[str, Any]:
        return _parse_properties(value)


# =============================================================================
# Machine
# =============================================================================

class MachineRow(RowSchema):
    model_internal_code: str = Field(..., alias="modelInternalCode", min_length=1, max_length=36)
    location_internal_code: str = Field(..., alias="locationInternalCode", min_length=1, max_length=36)
    description: Optional[str] = Field(None, max_length=500)
    properties: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("properties", mode="before")
    @classmethod
    def _parse_properties(cls, value: Any) -> Dict[str, Any]:
        return _parse_properties(value)


# =============================================================================
# Maintenance range
# =============================================================================

class MaintenanceRangeRow(RowSchema):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1, max_length=500)
    range_type: str = Field(..., alias="type")
    frequency: Optional[str] = Field(None, max_length=100)
    start_date: Optional[date] = Field(None, alias="startDate")
    start_time: Optional[str] = Field(None, alias="startTime")
    days_of_week: Optional[List[int]] = Field(None, alias="daysOfWeek")

    @field_validator("range_type", mode="before")
    @classmethod
    def _check_type(cls, value: Any) -> str:
        text = str(value).strip() if value is not None else ""
        if text not in MAINTENANCE_RANGE_TYPES:
            raise ValueError("Type must be preventive or corrective")
        return text

    @field_validator("start_date", mode="before")
    @classmethod
    def _parse_start_date(cls, value: Any) -> Optional[date]:
        if value is None or value == "":
            return None
        try:
            return pd.to_datetime(str(value).strip(), errors="raise").date()
        except (ValueError, TypeError, OverflowError):
            raise ValueError("Invalid start date format")

    @field_validator("start_time", mode="before")
    @classmethod
    def _check_start_time(cls, value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        text = str(value).strip()
        if not _TIME_PATTERN.match(text):
            raise ValueError("Start time must use HH:MM format")
        return text

    @field_validator("days_of_week", mode="before")
    @classmethod
    def _parse_days_of_week(cls, value: Any) -> Optional[List[int]]:
        if value is None or value == "":
            return None
        if isinstance(value, list):
            parts = value
        else:
            parts = [part for part in str(value).split(",") if part.strip()]
        try:
            days = [int(str(part).strip()) for part in parts]
        except ValueError:
            raise ValueError("Invalid days of week format")
        if any(day < 0 or day > 6 for day in days):
            raise ValueError("Days of week must be between 0 and 6")
        return days or None


# =============================================================================
# Operation
# =============================================================================

class OperationRow(RowSchema):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1, max_length=500)
    value_type: str = Field(..., alias="type")

    @field_validator("value_type", mode="before")
    @classmethod
    def _check_type(cls, value: Any) -> str:
        text = str(value).strip() if value is not None else ""
        if text not in OPERATION_VALUE_TYPES:
            raise ValueError(f"Type must be one of: {', '.join(OPERATION_VALUE_TYPES)}")
        return text
