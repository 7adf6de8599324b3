# app/helpers/db_utils.py
"""
Tenant-scoped lookup helpers shared by the row processors.
Every query filters by company_id so one tenant's codes never resolve
against another tenant's records.
"""
from typing import Optional, Type, TypeVar

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.exceptions import ReferenceNotFound

# Type variable for model classes
ModelType = TypeVar("ModelType")


def get_entity_by_internal_code(
    db: Session,
    model_class: Type[ModelType],
    company_id: str,
    internal_code: Optional[str],
) -> Optional[ModelType]:
    """Return the tenant's record with this internal code, or None."""
    if not internal_code:
        return None
    return (
        db.query(model_class)
        .filter(model_class.company_id == company_id)
        .filter(model_class.internal_code == internal_code.strip())
        .first()
    )


def require_entity_by_internal_code(
    db: Session,
    model_class: Type[ModelType],
    company_id: str,
    internal_code: str,
    field: str,
    label: Optional[str] = None,
) -> ModelType:
    """
    Resolve a cross-entity reference by internal code.

    Raises:
        ReferenceNotFound: scoped to `field` when no tenant record matches
    """
    entity = get_entity_by_internal_code(db, model_class, company_id, internal_code)
    if entity is None:
        name = label or model_class.__name__
        raise ReferenceNotFound(
            field,
            internal_code,
            f"{name} with internalCode '{internal_code}' not found",
        )
    return entity


def count_entities(db: Session, model_class: Type[ModelType], company_id: str) -> int:
    return (
        db.query(func.count(model_class.id))
        .filter(model_class.company_id == company_id)
        .scalar()
        or 0
    )
