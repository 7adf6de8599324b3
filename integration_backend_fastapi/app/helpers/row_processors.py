# app/helpers/row_processors.py
"""
Per-entity row processors for bulk integration files.
Each processor validates one row record with its pydantic schema, resolves the
record identity by internalCode within the tenant, resolves cross-entity
references and creates or updates exactly one entity.

Identity rules:
- internalCode omitted: a new record is created with a fresh UUID4 code
- internalCode matching a tenant record: that record is updated in place
- internalCode supplied but unknown: locations, machine-models and operations
  create a record with the supplied code; machines and maintenance-ranges
  reject the row with ReferenceNotFound

Processors only flush; committing or rolling back the row is up to the caller.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import PersistenceError, ReferenceNotFound, ValidationError
from app.helpers.db_utils import get_entity_by_internal_code, require_entity_by_internal_code
from app.helpers.file_parser import RowRecord
from app.helpers.integration_types import IntegrationEntityType
from app.models.entity_models import (
    Location,
    Machine,
    MachineModel,
    MaintenanceRange,
    Operation,
    generate_internal_code,
)
from app.schemas.row_schemas import (
    LocationRow,
    MachineModelRow,
    MachineRow,
    MaintenanceRangeRow,
    OperationRow,
    RowSchema,
)

ROW_CREATED = "created"
ROW_UPDATED = "updated"


@dataclass(frozen=True)
class RowOutcome:
    action: str
    internal_code: str


def normalize_column_name(col_name: str) -> str:
    """Normalize a column header so 'Internal Code', 'internal_code' and 'internalCode' match."""
    return re.sub(r"[\s_\-]+", "", str(col_name).strip().lower())


def build_column_lookup(schema_class: Type[RowSchema]) -> Dict[str, str]:
    """Map normalized column names to the schema's canonical column (alias)."""
    lookup: Dict[str, str] = {}
    for field_name, field in schema_class.model_fields.items():
        canonical = field.alias or field_name
        lookup[normalize_column_name(field_name)] = canonical
        lookup[normalize_column_name(canonical)] = canonical
    return lookup


def schema_error_to_row_error(exc: SchemaValidationError) -> ValidationError:
    """Convert the first pydantic error into a row-scoped ValidationError."""
    errors = exc.errors()
    if not errors:
        return ValidationError("unknown", "", str(exc))

    first = errors[0]
    loc = first.get("loc") or ()
    field = str(loc[0]) if loc else "unknown"
    error_type = first.get("type", "")

    if error_type == "missing":
        return ValidationError(field, "", f"{field} is required")
    if error_type == "string_too_short" and not first.get("input"):
        return ValidationError(field, "", f"{field} is required")

    message = str(first.get("msg", "Invalid value"))
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return ValidationError(field, first.get("input"), message)


def _provided(data: RowSchema, field_name: str) -> bool:
    return field_name in data.model_fields_set


class RowProcessor:
    """Base class: validation, identity resolution and flush for one row."""

    entity_type: IntegrationEntityType
    schema_class: Type[RowSchema]
    model_class: Type[Any]
    label: str
    # Whether a supplied internalCode without a tenant match creates a record
    create_with_unknown_code: bool = True

    def __init__(self) -> None:
        self._column_lookup = build_column_lookup(self.schema_class)

    def canonicalize(self, row: RowRecord) -> Dict[str, str]:
        canonical: Dict[str, str] = {}
        for column, value in row.items():
            key = self._column_lookup.get(normalize_column_name(column), column)
            # First occurrence wins when two headers normalize to the same column
            canonical.setdefault(key, value)
        return canonical

    def validate(self, row: RowRecord) -> RowSchema:
        try:
            return self.schema_class.model_validate(self.canonicalize(row))
        except SchemaValidationError as exc:
            raise schema_error_to_row_error(exc) from exc

    def resolve_existing(self, db: Session, company_id: str, internal_code: Optional[str]) -> Optional[Any]:
        if not internal_code:
            return None
        existing = get_entity_by_internal_code(db, self.model_class, company_id, internal_code)
        if existing is None and not self.create_with_unknown_code:
            raise ReferenceNotFound(
                "internalCode",
                internal_code,
                f"{self.label} with internalCode '{internal_code}' not found",
            )
        return existing

    def apply(self, db: Session, company_id: str, entity: Any, data: RowSchema, created: bool) -> None:
        raise NotImplementedError

    def process(self, db: Session, company_id: str, row: RowRecord) -> RowOutcome:
        """
        Validate and upsert one row.

        Raises:
            ValidationError: missing or malformed field
            ReferenceNotFound: unresolved internal code
            PersistenceError: the store rejected the write
        """
        data = self.validate(row)
        entity = self.resolve_existing(db, company_id, data.internal_code)
        created = entity is None
        if created:
            entity = self.model_class(
                company_id=company_id,
                internal_code=data.internal_code or generate_internal_code(),
            )

        self.apply(db, company_id, entity, data, created)
        if created:
            db.add(entity)

        try:
            db.flush()
        except IntegrityError as exc:
            raise PersistenceError(
                "internalCode",
                entity.internal_code,
                f"Failed to save {self.label.lower()}: {exc.orig}",
            ) from exc

        return RowOutcome(ROW_CREATED if created else ROW_UPDATED, entity.internal_code)


# =============================================================================
# Location
# =============================================================================

def _is_same_or_descendant(candidate: Location, location: Location) -> bool:
    node = candidate
    while node is not None:
        if node is location:
            return True
        node = node.parent
    return False


def _refresh_path(location: Location) -> None:
    parent = location.parent
    if parent is not None:
        location.path = f"{parent.path}/{location.name}"
        location.level = (parent.level or 0) + 1
    else:
        location.path = f"/{location.name}"
        location.level = 0
    for child in location.children:
        _refresh_path(child)


class LocationProcessor(RowProcessor):
    entity_type = IntegrationEntityType.locations
    schema_class = LocationRow
    model_class = Location
    label = "Location"

    def apply(self, db, company_id, location, data, created):
        location.name = data.name
        if created or _provided(data, "description"):
            location.description = data.description
        if created or _provided(data, "icon"):
            location.icon = data.icon
        if created:
            location.is_leaf = True

        if data.parent_internal_code:
            if data.parent_internal_code == location.internal_code:
                raise ValidationError(
                    "parentInternalCode",
                    data.parent_internal_code,
                    "Location cannot be its own parent",
                )
            parent = require_entity_by_internal_code(
                db, Location, company_id, data.parent_internal_code, "parentInternalCode", "Parent location"
            )
            if not created and _is_same_or_descendant(parent, location):
                raise ValidationError(
                    "parentInternalCode",
                    data.parent_internal_code,
                    "Location cannot be moved under one of its descendants",
                )
            previous_parent = location.parent
            location.parent = parent
            parent.is_leaf = False
            if previous_parent is not None and previous_parent is not parent:
                previous_parent.is_leaf = not any(
                    child is not location for child in previous_parent.children
                )

        _refresh_path(location)


# =============================================================================
# Machine model
# =============================================================================

class MachineModelProcessor(RowProcessor):
    entity_type = IntegrationEntityType.machine_models
    schema_class = MachineModelRow
    model_class = MachineModel
    label = "Machine model"

    def apply(self, db, company_id, model, data, created):
        model.name = data.name
        model.manufacturer = data.manufacturer
        model.brand = data.brand
        model.year = data.year
        if created or _provided(data, "properties"):
            model.properties = dict(data.properties)


# =============================================================================
# Machine
# =============================================================================

class MachineProcessor(RowProcessor):
    entity_type = IntegrationEntityType.machines
    schema_class = MachineRow
    model_class = Machine
    label = "Machine"
    create_with_unknown_code = False

    def apply(self, db, company_id, machine, data, created):
        model = require_entity_by_internal_code(
            db, MachineModel, company_id, data.model_internal_code, "modelInternalCode", "Machine model"
        )
        location = require_entity_by_internal_code(
            db, Location, company_id, data.location_internal_code, "locationInternalCode", "Location"
        )
        machine.model = model
        machine.location_ref = location
        machine.location = location.path
        if created or _provided(data, "description"):
            machine.description = data.description
        if created or _provided(data, "properties"):
            machine.properties = dict(data.properties)


# =============================================================================
# Maintenance range
# =============================================================================

class MaintenanceRangeProcessor(RowProcessor):
    entity_type = IntegrationEntityType.maintenance_ranges
    schema_class = MaintenanceRangeRow
    model_class = MaintenanceRange
    label = "Maintenance range"
    create_with_unknown_code = False

    def apply(self, db, company_id, maintenance_range, data, created):
        maintenance_range.name = data.name
        maintenance_range.description = data.description
        maintenance_range.type = data.range_type
        for field_name in ("frequency", "start_date", "start_time", "days_of_week"):
            if created or _provided(data, field_name):
                setattr(maintenance_range, field_name, getattr(data, field_name))


# =============================================================================
# Operation
# =============================================================================

class OperationProcessor(RowProcessor):
    entity_type = IntegrationEntityType.operations
    schema_class = OperationRow
    model_class = Operation
    label = "Operation"

    def apply(self, db, company_id, operation, data, created):
        operation.name = data.name
        operation.description = data.description
        operation.type = data.value_type


# =============================================================================
# Dispatch table
# =============================================================================

ROW_PROCESSORS: Dict[IntegrationEntityType, RowProcessor] = {
    processor.entity_type: processor
    for processor in (
        LocationProcessor(),
        MachineModelProcessor(),
        MachineProcessor(),
        MaintenanceRangeProcessor(),
        OperationProcessor(),
    )
}

_missing_processors = set(IntegrationEntityType) - set(ROW_PROCESSORS)
if _missing_processors:
    raise RuntimeError(
        f"No row processor registered for: {sorted(t.value for t in _missing_processors)}"
    )


def get_row_processor(entity_type: IntegrationEntityType) -> RowProcessor:
    return ROW_PROCESSORS[IntegrationEntityType(entity_type)]
