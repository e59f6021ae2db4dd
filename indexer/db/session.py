"""Metadata database engine, session factory, and dependency injection.

This is the one shared pool for connections, jobs and logs. Tenant databases
never borrow from it; see ``indexer.connectors.postgres``.
"""

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from indexer.core.config import settings

# SQLite (tests, local tinkering) has no QueuePool sizing knobs
engine_kwargs = {}
if not settings.DATABASE_URL.startswith("sqlite"):
    engine_kwargs = {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }

engine = create_engine(settings.DATABASE_URL, echo=settings.DEBUG, **engine_kwargs)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency that provides a DB session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create all metadata tables. Called on startup and by ``indexerctl db init``."""
    import indexer.models  # noqa: F401  register models on Base.metadata
    from indexer.db.base import Base

    Base.metadata.create_all(bind=engine)
