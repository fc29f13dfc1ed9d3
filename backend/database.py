"""
FXComp - Database Configuration
===============================

Central database configuration and session management.
"""

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
import os
from typing import Generator

from backend.config import settings

# Database URL from environment or settings default
DATABASE_URL = os.getenv("DATABASE_URL", settings.DATABASE_URL)

APP_DATABASE_URL = DATABASE_URL

_engine_kwargs = {
    "echo": os.getenv("DEBUG", "false").lower() == "true",
    "pool_pre_ping": True,
}
if DATABASE_URL.startswith("sqlite"):
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
else:
    _engine_kwargs["pool_recycle"] = 300

# Create engine
engine = create_engine(DATABASE_URL, **_engine_kwargs)

# Raw factory kept private; SessionLocal wrapper enforces test safety in pytest
_RAW_SESSION_FACTORY = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def _assert_test_db_guard():
    """Abort if pytest tries to use the app database.

    Rules:
    - If running under pytest (PYTEST_CURRENT_TEST or FXCOMP_TESTING), require TEST_DATABASE_URL.
    - If TEST_DATABASE_URL equals APP_DATABASE_URL, abort.
    """
    is_testing = bool(os.getenv("PYTEST_CURRENT_TEST") or os.getenv("FXCOMP_TESTING"))
    if not is_testing:
        return
    test_db_url = os.getenv("TEST_DATABASE_URL", "")
    if not test_db_url:
        raise RuntimeError(
            "TEST_DATABASE_URL is required for tests; refusing to use APP_DATABASE_URL"
        )
    if test_db_url == APP_DATABASE_URL:
        raise RuntimeError(
            "TEST_DATABASE_URL equals APP_DATABASE_URL; aborting to avoid destructive operations"
        )


def SessionLocal():
    """Guarded session factory. In tests, refuses to hit the app DB."""
    _assert_test_db_guard()
    return _RAW_SESSION_FACTORY()


# Dependency for getting database sessions
def get_db() -> Generator:
    """Database session dependency for FastAPI."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Health check
def check_db_health() -> bool:
    """Check if database is accessible."""
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
        return True
    except Exception:
        return False
