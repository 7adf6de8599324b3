# app/helpers/auth_helper.py
"""
Bearer-token handling for the integration API.
Users and sessions are managed by the identity service that issues the JWTs;
this backend only validates the signature and reads the claims it needs:
the tenant (JWT_TENANT_CLAIM, "company_id" by default) and the role codes.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import jwt
from fastapi import Header, HTTPException, status

from app.core.config import settings


def _get_token_from_header(authorization: str | None) -> str:
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing",
        )
    scheme, _, token_str = authorization.partition(" ")
    token_str = token_str.strip()
    if scheme.lower() != "bearer" or not token_str:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
        )
    return token_str


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a JWT access token.

    - Returns payload on success
    - Raises HTTPException(419) if token is expired
    - Raises HTTPException(401) for other validation errors
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=419,
            detail="Access token expired",
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid access token",
        )


def tenant_from_payload(payload: Dict[str, Any]) -> Optional[str]:
    value = payload.get(settings.JWT_TENANT_CLAIM)
    if value is None:
        return None
    tenant_id = str(value).strip()
    return tenant_id or None


def get_token_payload(
    authorization: str | None = Header(None, alias="Authorization"),
) -> Dict[str, Any]:
    """Dependency returning the validated claims of the bearer token."""
    return decode_access_token(_get_token_from_header(authorization))


def get_current_tenant_id(
    authorization: str | None = Header(None, alias="Authorization"),
) -> str:
    """
    Dependency that resolves the caller's tenant (company) id.

    Every integration operation is scoped to this id; a token without the
    tenant claim is rejected.
    """
    payload = get_token_payload(authorization)
    tenant_id = tenant_from_payload(payload)
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token missing company",
        )
    return tenant_id

