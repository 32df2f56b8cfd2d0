"""
Database Session Management

Manages SQLAlchemy sessions for the subscription store.

A single sync engine serves request handlers (FastAPI runs sync endpoints in its threadpool),
webhook processing, and APScheduler sweeps running in worker threads.

Usage (request handlers):
    from subsync.database.session import get_db
    def endpoint(db: Session = Depends(get_db)): ...

Usage (services, background jobs):
    from subsync.database.session import get_session
    with get_session() as session:
        session.query(Subscription).filter(...).all()
"""

from contextlib import contextmanager
from typing import Generator
import logging
import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./subsync.db")


def make_engine(url: str) -> Engine:
    """Create an engine; SQLite gets thread-sharing settings, server databases a pool."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        echo=False,
    )


engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Unit of work: commits on success, rolls back on any exception."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: yields a Session."""
    with get_session() as session:
        yield session


def init_db() -> None:
    """Create tables (use Alembic in production)."""
    import subsync.database.models  # noqa: F401 - registers models on Base.metadata

    Base.metadata.create_all(bind=engine)
