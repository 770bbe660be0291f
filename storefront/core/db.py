"""Storefront Billing – Database engine and sessions.

PostgreSQL in every real environment. SQLite is accepted only when
``ENVIRONMENT=testing`` (or under pytest), where it falls back to a local file.
"""

import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from config.settings import get_settings

IS_TEST = os.getenv("PYTEST_CURRENT_TEST") is not None or os.getenv("ENVIRONMENT") == "testing"

TEST_DATABASE_URL = "sqlite:///./test_storefront.db"


def resolve_database_url() -> str:
    url = (get_settings().database_url or os.getenv("DATABASE_URL", "")).strip()
    if IS_TEST and not url:
        return TEST_DATABASE_URL
    if not url.startswith("postgresql") and not IS_TEST:
        raise RuntimeError(
            "DATABASE_URL must be a PostgreSQL connection string; "
            "SQLite is only accepted for the test suite."
        )
    return url


def build_engine(url: str) -> Engine:
    if url.startswith("postgresql"):
        return create_engine(
            url,
            pool_size=20,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=1800,
            pool_pre_ping=True,
        )
    # sessions cross threads between the dependency and the handler
    return create_engine(url, connect_args={"check_same_thread": False})


engine = build_engine(resolve_database_url())

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def run_migrations() -> None:
    """Create missing tables. Schema changes in production go through Alembic."""
    import storefront.core.models  # noqa: F401  (registers the mappers)

    Base.metadata.create_all(bind=engine)


def get_db():
    """FastAPI dependency: one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
