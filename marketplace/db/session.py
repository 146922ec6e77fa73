"""
Database session management with SQLAlchemy.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator
from contextlib import contextmanager

from marketplace.core.config import settings
from marketplace.core.logging import get_logger

logger = get_logger(__name__)


def build_engine(database_url: str, **overrides):
    """Create an engine with pool settings suited to the backend."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False, "timeout": 30}}
    else:
        kwargs = {
            "pool_pre_ping": True,
            "pool_size": 10,
            "max_overflow": 20,
            "pool_timeout": 30,
            "pool_recycle": 1800,
        }
    kwargs.update(overrides)
    return create_engine(database_url, **kwargs)


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for database session."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """
    Verify the database is reachable and the schema is present.

    The schema is owned by the Alembic baseline revision; run
    `alembic upgrade head` before first startup. In DEBUG mode missing tables
    are created from the ORM metadata so local runs work out of the box.
    """
    from sqlalchemy import inspect

    if not settings.DATABASE_URL.startswith("sqlite"):
        from marketplace.db.preflight import run_db_preflight
        run_db_preflight()

    from marketplace.db import models  # noqa

    inspector = inspect(engine)
    existing_tables = inspector.get_table_names()
    required_tables = ['suppliers', 'rfqs', 'rfq_bids', 'marketplace_events']

    missing = [t for t in required_tables if t not in existing_tables]
    if not missing:
        logger.info(f"Database schema verified: {len(existing_tables)} tables found")
        return

    logger.warning(f"Missing required tables: {missing}. Run `alembic upgrade head`.")
    if settings.DEBUG:
        logger.warning("DEBUG=true: creating tables from ORM metadata (NOT for production!)")
        Base.metadata.create_all(bind=engine)
