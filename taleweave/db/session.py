"""Database session management and initialization."""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import Session as SQLAlchemySession
from sqlalchemy.orm import sessionmaker

from ..config import config
from .models import Base

logger = logging.getLogger(__name__)

# Global engine and session factory
_engine = None
_SessionLocal = None

PROJECT_ROOT = Path(__file__).parent.parent.parent


def get_database_url() -> str:
    """Get database URL from environment or use the local SQLite default."""
    return config.get_database_url()


def _is_memory_db(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") == "sqlite:")


def get_engine():
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        database_url = get_database_url()

        if database_url.startswith("sqlite"):
            # SQLite needs special handling for check_same_thread
            _engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                echo=config.is_debug(),
            )
        else:
            # PostgreSQL with connection pooling
            _engine = create_engine(
                database_url,
                pool_size=5,
                max_overflow=10,
                pool_pre_ping=True,
                echo=config.is_debug(),
            )

    return _engine


def get_session_factory():
    """Get or create the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=get_engine(),
        )
    return _SessionLocal


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def init_db():
    """Initialize the database: run Alembic migrations to head.

    In-memory SQLite lives on a single connection that Alembic cannot
    reach, so it always goes through create_all().
    """
    database_url = get_database_url()
    if _is_memory_db(database_url):
        Base.metadata.create_all(bind=get_engine())
        logger.debug("In-memory database initialized via create_all")
        return

    try:
        from alembic import command
        from alembic.config import Config

        alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
        alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
        # Override the URL with our environment-aware one
        alembic_cfg.set_main_option("sqlalchemy.url", database_url)
        command.upgrade(alembic_cfg, "head")
        logger.info(f"Database initialized via Alembic: {database_url}")
    except Exception as e:
        # Fallback to create_all when the migration scripts are not shipped
        logger.warning(f"Alembic migration failed ({e}), falling back to create_all()")
        Base.metadata.create_all(bind=get_engine())
        logger.info(f"Database initialized via create_all: {database_url}")


def drop_db():
    """Drop all tables (use with caution!)."""
    engine = get_engine()
    Base.metadata.drop_all(bind=engine)
    logger.info("Database tables dropped.")


@contextmanager
def get_session() -> Generator[SQLAlchemySession, None, None]:
    """Context manager for database sessions.

    Usage:
        with get_session() as session:
            session.query(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_session() -> SQLAlchemySession:
    """Create a new database session (caller must manage lifecycle)."""
    SessionLocal = get_session_factory()
    return SessionLocal()
