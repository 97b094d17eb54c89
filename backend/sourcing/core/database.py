"""
Database utilities and connection management.

WHAT: SQLite database setup with WAL mode
WHY: Negotiation history must survive restarts and concurrent writers
HOW: SQLAlchemy sync engine with WAL mode, session factory per engine
"""

from sqlalchemy import create_engine, text, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from contextlib import contextmanager
from pathlib import Path

from .config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Base for models
Base = declarative_base()


def build_engine(database_url: str) -> Engine:
    """
    Create an engine with the SQLite pragmas the store relies on.

    Args:
        database_url: SQLAlchemy URL; sqlite file directories are created

    Returns:
        Engine
    """
    if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
        data_dir = Path(database_url.replace("sqlite:///", "")).parent
        data_dir.mkdir(parents=True, exist_ok=True)

    new_engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},  # Store calls run in worker threads
        echo=settings.DEBUG,
        future=True
    )

    # Enable WAL mode on connection
    @event.listens_for(new_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        """Enable WAL mode and FK constraints."""
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return new_engine


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        bind=bind,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False
    )


engine = build_engine(settings.DATABASE_URL)
SessionLocal = build_session_factory(engine)


@contextmanager
def get_db(session_factory: sessionmaker | None = None):
    """
    Context manager for database session.

    Usage:
        with get_db() as db:
            # use db session
            pass

    Yields:
        Session: SQLAlchemy session, committed on success and rolled back on error
    """
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ping_database(bind: Engine | None = None) -> dict:
    """
    Check database connectivity.

    Returns:
        Dict with status and info
    """
    bind = bind or engine
    try:
        with bind.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return {"available": True, "url": str(bind.url), "error": None}
    except Exception as e:
        logger.error(f"Database ping failed: {e}")
        return {"available": False, "url": str(bind.url), "error": str(e)}


def init_db(bind: Engine | None = None):
    """Create all tables."""
    from . import models  # noqa: F401  registers tables on Base.metadata

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    logger.info(f"Database initialized at {bind.url}")


def close_db(bind: Engine | None = None):
    """Close database connections."""
    (bind or engine).dispose()
    logger.info("Database connections closed")
