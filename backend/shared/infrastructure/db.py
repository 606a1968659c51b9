"""
Engine and sessions (SQLAlchemy 2.0).

PostgreSQL in deployment, SQLite in tests; the engine options differ only
in pooling.
"""

from collections.abc import Generator
from contextlib import contextmanager
import os
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from shared.config.settings import DATABASE_URL


def _engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        # 2 per core plus one, at most 20
        "pool_size": min((os.cpu_count() or 4) * 2 + 1, 20),
        "max_overflow": 15,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "connect_args": {"connect_timeout": 10},
    }


engine = create_engine(DATABASE_URL, echo=False, **_engine_options(DATABASE_URL))

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Session for code outside a request (workers, scheduled jobs):

        with get_db_context() as db:
            RoyaltyService(db).mark_overdue()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session dependency, closed when the response is sent."""
    with get_db_context() as db:
        yield db


def safe_commit(db: Session) -> None:
    """Commit, or roll back and re-raise."""
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
