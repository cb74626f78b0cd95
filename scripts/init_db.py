#!/usr/bin/env python3
"""Database initialization script."""

import sys

from workflow_canvas.config import load_config
from workflow_canvas.core.logging import setup_logging
from workflow_canvas.storage.database import create_database_engine, create_tables
from workflow_canvas.storage.migrations import run_migrations


def main():
    """Initialize the database."""
    config = load_config()

    logger = setup_logging(level=config.log_level.value)

    try:
        logger.info(f"Initializing database at {config.database_url}...")

        engine = create_database_engine(config.database_url, echo=config.database_echo)

        create_tables(engine)
        logger.info("Database tables created successfully")

        run_migrations(engine)
        logger.info("Database migrations completed successfully")

        engine.dispose()
        logger.info("Database initialization completed")

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
