"""
Database session management with lazy initialization.
The engine and session factory are created on first use, not at import time,
so importing the app (or starting the scheduler object) never opens a connection.
"""
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from app.core.config import settings

# Global variables for lazy initialization
_engine = None
_SessionLocal = None


def _get_database_url() -> str:
    """Get database URL from settings (called lazily)."""
    url = settings.DB_URL
    if not url:
        raise ValueError("DB_URL not set in environment variables!")
    return url


def get_engine():
    """
    Lazy engine creation - database connection only happens on first query,
    not during FastAPI startup.
    """
    global _engine
    if _engine is None:
        database_url = _get_database_url()

        if database_url.startswith("sqlite"):
            # The scheduler runs in its own thread
            _engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                echo=False,
            )
        else:
            _engine = create_engine(
                database_url,
                pool_pre_ping=True,
                pool_size=5,
                max_overflow=10,
                pool_timeout=30,
                echo=False,
            )
    return _engine


def get_session_factory():
    """Lazy session factory creation."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=get_engine(),
        )
    return _SessionLocal


class SessionLocal:
    """
    Drop-in replacement for sessionmaker() that supports lazy initialization.
    Usage: session = SessionLocal() works as before.
    """
    def __new__(cls) -> Session:
        factory = get_session_factory()
        return factory()


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency for database sessions.
    Use: db: Session = Depends(get_db)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
