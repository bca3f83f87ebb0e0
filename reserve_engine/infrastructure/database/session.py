"""Database session management with connection pooling and transactional units of work"""

from contextlib import contextmanager
from typing import Callable, Iterator, Optional
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from reserve_engine.config import settings

SessionFactory = Callable[[], Session]

# Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,  # Verify connections before using
    pool_size=10,
    max_overflow=10,
    pool_recycle=3600,
)

# Rows are handed back to callers after commit, so keep their loaded state
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_db() -> Iterator[Session]:
    """Dependency injection for database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(session_factory: Optional[SessionFactory] = None, timeout_ms: Optional[int] = None) -> Iterator[Session]:
    """
    One atomic transaction: commit when the block exits cleanly, roll back on any exception.

    timeout_ms becomes a transaction-scoped statement_timeout on PostgreSQL; other
    backends have no equivalent and ignore it.
    """
    db = (session_factory or SessionLocal)()
    try:
        if timeout_ms and db.get_bind().dialect.name == "postgresql":
            db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
