"""Database engine, session factory and the declarative base."""
from contextlib import contextmanager
from typing import Any, Dict, Generator
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from batchforge.config import get_settings

settings = get_settings()


def build_engine(database_url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite (used for local runs) does not take pool sizing arguments and
    needs cross-thread access because the worker writes from a thread pool.

    Args:
        database_url: SQLAlchemy database URL

    Returns:
        Engine: Configured engine
    """
    options: Dict[str, Any] = {"echo": settings.DATABASE_ECHO}
    if make_url(database_url).get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(
            pool_pre_ping=True,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
        )
    return create_engine(database_url, **options)


engine = build_engine(settings.DATABASE_URL)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for declarative models
Base = declarative_base()


@contextmanager
def session_scope(session_factory: sessionmaker = SessionLocal) -> Generator[Session, None, None]:
    """
    Open a session for one unit of work.

    Rolls back on error and always closes the session.

    Args:
        session_factory: Factory to open the session from

    Yields:
        Session: SQLAlchemy database session
    """
    session = session_factory()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency for FastAPI.

    Yields:
        Session: SQLAlchemy database session
    """
    with session_scope() as db:
        yield db
