from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException, status

from app.core.config import settings
from app.helpers import auth_helper


def _bearer(payload: dict, key: str | None = None) -> str:
    token = jwt.encode(
        payload,
        key or settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )
    return f"Bearer {token}"


def test_get_token_from_header_valid():
    token = "abc123"
    header = f"Bearer {token}"

    result = auth_helper._get_token_from_header(header)  # type: ignore[attr-defined]

    assert result == token


@pytest.mark.parametrize(
    "header",
    [
        None,
        "",
        "Token abc",
        "Bearer ",
        "bearer",  # missing token part
    ],
)
def test_get_token_from_header_invalid(header):
    with pytest.raises(HTTPException) as exc_info:
        auth_helper._get_token_from_header(header)  # type: ignore[attr-defined]

    assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED


def test_decode_access_token_expired_raises_419():
    payload = {
        "sub": "1",
        "exp": int((datetime.now(timezone.utc) - timedelta(seconds=1)).timestamp()),
    }
    expired_token = jwt.encode(
        payload,
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )

    with pytest.raises(HTTPException) as exc_info:
        auth_helper.decode_access_token(expired_token)

    assert exc_info.value.status_code == 419
    assert "expired" in exc_info.value.detail.lower()


def test_decode_access_token_invalid_signature_raises_401():
    # Token signed with a different key should be rejected
    bogus_token = jwt.encode(
        {"sub": "1"},
        "wrong-key",
        algorithm=settings.JWT_ALGORITHM,
    )

    with pytest.raises(HTTPException) as exc_info:
        auth_helper.decode_access_token(bogus_token)

    assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED
    assert "invalid" in exc_info.value.detail.lower()


@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"company_id": "acme"}, "acme"),
        ({"company_id": "  acme  "}, "acme"),
        ({"company_id": 42}, "42"),
        ({"company_id": ""}, None),
        ({"sub": "1"}, None),
    ],
)
def test_tenant_from_payload(payload, expected):
    assert auth_helper.tenant_from_payload(payload) == expected


def test_get_current_tenant_id_reads_claim():
    header = _bearer({"sub": "1", "company_id": "acme"})

    assert auth_helper.get_current_tenant_id(authorization=header) == "acme"


def test_get_current_tenant_id_without_claim_raises_401():
    header = _bearer({"sub": "1", "roles": ["ADMIN"]})

    try:
        auth_helper.get_current_tenant_id(authorization=header)
    except HTTPException as exc:
        assert exc.status_code == status.HTTP_401_UNAUTHORIZED
        assert exc.detail == "Access token missing company"
    else:  # pragma: no cover - defensive
        raise AssertionError("Expected HTTPException for token without company")


def test_get_current_tenant_id_rejects_foreign_signature():
    header = _bearer({"sub": "1", "company_id": "acme"}, key="another-service-key")

    with pytest.raises(HTTPException) as exc_info:
        auth_helper.get_current_tenant_id(authorization=header)

    assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED
