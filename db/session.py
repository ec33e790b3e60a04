"""Database session management for the castle hire booking system."""

from typing import Generator

from sqlalchemy import create_engine as sa_create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from core.config import settings


def create_engine(url: str = settings.database_url, echo: bool = settings.debug) -> Engine:
    """
    Create the SQLAlchemy engine.

    Args:
        url: Database URL
        echo: Whether to log all SQL statements

    Returns:
        SQLAlchemy engine
    """
    connect_args = {}
    if url.startswith("sqlite"):
        # FastAPI runs sync dependencies in a threadpool
        connect_args["check_same_thread"] = False

    return sa_create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


# Global engine instance
engine: Engine = create_engine()

# Session factory
SessionLocal = sessionmaker(
    bind=engine,
    class_=Session,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting a database session.

    Yields:
        Session instance

    Example:
        def my_view(db: Session = Depends(get_db)):
            # use session
            pass
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind: Engine = engine) -> None:
    """Initialize database by creating all tables."""
    from .base import Base
    from . import models_sqlalchemy  # noqa: F401  registers the tables

    Base.metadata.create_all(bind=bind)


def drop_db(bind: Engine = engine) -> None:
    """Drop all database tables. Use with caution!"""
    from .base import Base

    Base.metadata.drop_all(bind=bind)


def close_db() -> None:
    """Close database engine and all connections."""
    engine.dispose()
