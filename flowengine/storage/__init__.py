"""Database models and storage layer."""

from .database import (
    Base,
    configure_database,
    create_tables,
    drop_tables,
    get_database_engine,
    reset_database_engine,
    session_scope,
)
from .models import WorkflowModel, ExecutionModel, ExecutionStepModel

__all__ = [
    "Base",
    "configure_database",
    "create_tables",
    "drop_tables",
    "get_database_engine",
    "reset_database_engine",
    "session_scope",
    "WorkflowModel",
    "ExecutionModel",
    "ExecutionStepModel",
]
