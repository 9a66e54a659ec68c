"""Core workflow engine components."""

from .exceptions import (
    WorkflowEngineError,
    WorkflowNotFoundError,
    ExecutionNotFoundError,
    NodeExecutionError,
    NodeConfigurationError,
    IntegrationError,
    UserCodeError,
    StorageError,
    ConfigurationError,
)
from .logging import setup_logging, get_logger

__all__ = [
    "WorkflowEngineError",
    "WorkflowNotFoundError",
    "ExecutionNotFoundError",
    "NodeExecutionError",
    "NodeConfigurationError",
    "IntegrationError",
    "UserCodeError",
    "StorageError",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
]
