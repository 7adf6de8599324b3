# app/helpers/rbac_helper.py
"""
RBAC helper functions for role-based access control.
Roles come from the `roles` claim of the JWT access token.
"""
from enum import Enum
from typing import Any, Dict, Optional, Set

from fastapi import Depends, Header, HTTPException, status

from app.helpers.auth_helper import decode_access_token, _get_token_from_header


class AccessLevel(str, Enum):
    admin = "admin"
    editor = "editor"
    viewer = "viewer"


ADMIN_CODES: Set[str] = {"ADMIN"}
EDITOR_CODES: Set[str] = {"EDITOR"}


def _access_level_from_roles(roles: Set[str]) -> AccessLevel:
    """
    Compute access level from a set of role codes.
    """
    if roles & ADMIN_CODES:
        return AccessLevel.admin
    if roles & EDITOR_CODES:
        return AccessLevel.editor
    # Default to viewer if no matching role codes found
    return AccessLevel.viewer


def access_level_from_payload(payload: Dict[str, Any]) -> AccessLevel:
    raw_roles = payload.get("roles") or []
    if isinstance(raw_roles, str):
        roles_set: Set[str] = {raw_roles.upper()}
    else:
        try:
            roles_iter = list(raw_roles)
        except TypeError:
            roles_iter = []
        roles_set = {str(r).upper() for r in roles_iter}

    if bool(payload.get("is_superuser")):
        return AccessLevel.admin

    return _access_level_from_roles(roles_set)


def get_access_level(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> AccessLevel:
    """
    FastAPI dependency to compute the caller's AccessLevel (admin/editor/viewer)
    from the roles embedded in the JWT access token.
    """
    token_str = _get_token_from_header(authorization)
    return access_level_from_payload(decode_access_token(token_str))


def require_editor_or_admin(
    access_level: AccessLevel = Depends(get_access_level),
) -> AccessLevel:
    """
    Require editor or admin access for uploads.
    """
    if access_level not in {AccessLevel.admin, AccessLevel.editor}:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You need editor or admin access to perform this action.",
        )
    return access_level


def require_admin(
    access_level: AccessLevel = Depends(get_access_level),
) -> AccessLevel:
    """
    Require admin-only access for recovery and scheduler control.
    """
    if access_level is not AccessLevel.admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required for this action.",
        )
    return access_level
