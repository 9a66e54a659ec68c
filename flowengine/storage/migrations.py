"""Database migrations for execution history queries."""

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .database import get_database_engine
from ..core.logging import get_logger

logger = get_logger(__name__)


INDEX_STATEMENTS = [
    # Execution list filtered by workflow, newest first
    """
    CREATE INDEX IF NOT EXISTS idx_executions_workflow_started
    ON executions(workflow_id, started_at DESC)
    """,
    # Execution list filtered by status and daily stats
    """
    CREATE INDEX IF NOT EXISTS idx_executions_status_started
    ON executions(status, started_at)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_executions_started_at
    ON executions(started_at DESC)
    """,
    # Workflow list ordering
    """
    CREATE INDEX IF NOT EXISTS idx_workflows_updated_at
    ON workflows(updated_at DESC)
    """,
]


def create_indexes_for_execution_queries():
    """Create indexes used by the execution list and stats queries."""
    try:
        with get_database_engine().begin() as connection:
            for statement in INDEX_STATEMENTS:
                connection.execute(text(statement))
        logger.info("Created database indexes for execution queries")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create database indexes: {str(e)}")
        raise


def optimize_sqlite():
    """Apply SQLite pragmas suited to concurrent readers."""
    engine = get_database_engine()
    if engine.dialect.name != "sqlite" or ":memory:" in str(engine.url):
        return

    try:
        with engine.begin() as connection:
            connection.execute(text("PRAGMA journal_mode=WAL"))
            connection.execute(text("PRAGMA optimize"))
        logger.info("Applied SQLite optimizations")
    except SQLAlchemyError as e:
        logger.error(f"Failed to optimize database: {str(e)}")
        raise


def run_migrations():
    """Run all post-create migrations."""
    logger.info("Starting database migrations")
    create_indexes_for_execution_queries()
    optimize_sqlite()
    logger.info("Database migrations completed successfully")


if __name__ == "__main__":
    run_migrations()
