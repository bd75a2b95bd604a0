"""
=============================================================================
DATABASE MODULE
=============================================================================
Single source of truth for the SQLAlchemy engine and session factory.

The realtime layer never touches sessions directly: it goes through
``carelink.services.chat_store`` which owns transactions per call.
=============================================================================
"""

from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from carelink.core.config import settings

DATABASE_URL = settings.DATABASE_URL


def _create_engine(url: str = DATABASE_URL):
    """Create the SQLAlchemy engine.

    SQLite (used by the test suite and local demos) is opened without the
    same-thread check; the in-memory flavour also needs a static pool so every
    thread sees the same database.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        if parsed.database in (None, "", ":memory:"):
            return create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
    return create_engine(url, pool_pre_ping=True)


engine = _create_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


# Dependency for FastAPI routes
def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def initialize_main_database() -> None:
    from carelink.db.session import Base
    from carelink.models import community, conversations, messages, user  # noqa: F401

    Base.metadata.create_all(bind=engine)
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
