#!/usr/bin/env python3
"""Database initialization script."""

import sys
import os

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from flowengine.config import load_config, validate_config
from flowengine.storage.database import configure_database, create_tables, drop_tables
from flowengine.storage.migrations import run_migrations
from flowengine.core.logging import setup_logging


def main():
    """Initialize the database."""
    config = load_config()
    validate_config(config)

    logger = setup_logging(level=config.log_level.value)

    try:
        logger.info("Initializing database...")

        configure_database(config.database_url, echo=config.database_echo)

        if "--reset" in sys.argv[1:]:
            drop_tables()
            logger.info("Existing tables dropped")

        create_tables()
        logger.info("Database tables created successfully")

        run_migrations()
        logger.info("Database migrations completed successfully")

        logger.info("Database initialization completed")

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
