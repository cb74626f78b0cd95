"""Database migrations for execution history queries."""

from typing import Optional

from sqlalchemy import Engine, text

from ..core.logging import get_logger
from .database import get_database_engine

logger = get_logger(__name__)

EXECUTION_INDEXES = {
    # Per-workflow history, newest first
    "idx_executions_workflow_start": "executions(workflow_id, start_time DESC)",
    # Status filters in the monitoring view
    "idx_executions_status_start": "executions(status, start_time DESC)",
    "idx_workflows_updated_at": "workflows(updated_at DESC)",
}


def create_indexes_for_execution_queries(engine: Optional[Engine] = None):
    """Create database indexes used by execution filtering and workflow listing."""
    engine = engine or get_database_engine()
    try:
        with engine.connect() as connection:
            for name, target in EXECUTION_INDEXES.items():
                connection.execute(text(f"CREATE INDEX IF NOT EXISTS {name} ON {target}"))
            connection.commit()
        logger.info(f"Created {len(EXECUTION_INDEXES)} database indexes for execution queries")
    except Exception as e:
        logger.error(f"Failed to create database indexes: {str(e)}")
        raise


def optimize_sqlite(engine: Optional[Engine] = None):
    """Apply SQLite pragmas for concurrent readers; other backends are left alone."""
    engine = engine or get_database_engine()
    if engine.dialect.name != "sqlite" or engine.url.database in (None, "", ":memory:"):
        return

    try:
        with engine.connect() as connection:
            connection.execute(text("PRAGMA journal_mode=WAL"))
            connection.execute(text("PRAGMA cache_size=10000"))
            connection.commit()
        logger.info("Applied SQLite optimizations")
    except Exception as e:
        logger.error(f"Failed to optimize database: {str(e)}")
        raise


def run_migrations(engine: Optional[Engine] = None):
    """Run all schema migrations."""
    logger.info("Starting database migrations")
    create_indexes_for_execution_queries(engine)
    optimize_sqlite(engine)
    logger.info("Database migrations completed successfully")
