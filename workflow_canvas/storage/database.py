"""Database connection and session management."""

import os
from typing import Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

DEFAULT_DATABASE_URL = "sqlite:///./workflow_canvas.db"

# Global engine and session factory
_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None

# Base class for all database models
Base = declarative_base()


def create_database_engine(database_url: str, echo: bool = False,
                           connect_args: Optional[dict] = None) -> Engine:
    """Create a new engine; SQLite engines share one connection across threads."""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args=connect_args or {"check_same_thread": False},
            poolclass=StaticPool,
            echo=echo
        )
    return create_engine(database_url, echo=echo, connect_args=connect_args or {})


def get_database_engine(database_url: Optional[str] = None,
                        echo: bool = False,
                        connect_args: Optional[dict] = None) -> Engine:
    """Get or create the global database engine."""
    global _engine, _session_factory

    if _engine is None:
        if database_url is None:
            database_url = os.getenv("WORKFLOW_CANVAS_DATABASE_URL", DEFAULT_DATABASE_URL)
        _engine = create_database_engine(database_url, echo=echo, connect_args=connect_args)
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_engine)

    return _engine


def get_session_factory() -> sessionmaker:
    get_database_engine()
    return _session_factory


def create_tables(engine: Optional[Engine] = None):
    """Create all database tables."""
    from . import models  # noqa: F401  registers the tables on Base
    Base.metadata.create_all(bind=engine or get_database_engine())


def drop_tables(engine: Optional[Engine] = None):
    """Drop all database tables."""
    Base.metadata.drop_all(bind=engine or get_database_engine())
