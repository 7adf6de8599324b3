import os

# Keep the background scheduler off while the app is imported by tests
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")

import jwt
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import reset_settings, settings
from app.db.base import Base
from app.models import entity_models, integration_job  # noqa: F401  (register tables)


def make_auth_header(company_id="acme", roles=("EDITOR",), **claims) -> dict:
    payload = {"sub": "1", "roles": list(roles), **claims}
    if company_id is not None:
        payload["company_id"] = company_id
    token = jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    """Point UPLOAD_STORAGE_PATH at a temporary folder."""
    monkeypatch.setenv("UPLOAD_STORAGE_PATH", str(tmp_path))
    reset_settings()
    yield tmp_path
    reset_settings()
