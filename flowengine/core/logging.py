"""Logging configuration for the workflow engine."""

import logging
import sys
import json
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional, Dict, Any
from pathlib import Path


class StructuredFormatter(logging.Formatter):
    """Formatter emitting one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info)
            }

        # Run context (workflow_id, execution_id, node_id, ...)
        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, default=str)


class ExecutionContextFilter(logging.Filter):
    """Attach the current run's identifiers to every record.

    The fields live in a context variable, so each thread and each asyncio
    task sees only the context it set itself.
    """

    def set_context(self, **kwargs):
        fields = {key: value for key, value in kwargs.items() if value is not None}
        _log_context.set({**_log_context.get(), **fields})

    def clear_context(self):
        _log_context.set({})

    @property
    def context(self) -> Dict[str, Any]:
        return dict(_log_context.get())

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'extra_fields'):
            record.extra_fields = {}
        for key, value in _log_context.get().items():
            record.extra_fields.setdefault(key, value)
        return True


# Never mutated in place; every change sets a new dict
_log_context: ContextVar[Dict[str, Any]] = ContextVar("flowengine_log_context", default={})
_context_filter = ExecutionContextFilter()


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure logging for the workflow engine.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for log output
        log_format: Custom log format string
        structured: Whether to use structured JSON logging
        max_size: Maximum log file size in bytes before rotation
        backup_count: Number of backup files to keep

    Returns:
        Root logger instance
    """
    if structured:
        formatter = StructuredFormatter()
    else:
        if log_format is None:
            log_format = "%(asctime)s - %(name)s - %(levelname)s - [%(module)s:%(funcName)s:%(lineno)d] - %(message)s"
        formatter = logging.Formatter(fmt=log_format, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(_context_filter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_size,
            backupCount=backup_count
        )
        file_handler.setFormatter(formatter)
        file_handler.addFilter(_context_filter)
        root_logger.addHandler(file_handler)

    # Third-party loggers are noisy at DEBUG
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    logging.getLogger("flowengine.core").setLevel(logging.DEBUG if level.upper() == "DEBUG" else logging.INFO)
    logging.getLogger("flowengine.nodes").setLevel(logging.INFO)
    logging.getLogger("flowengine.api").setLevel(logging.INFO)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name."""
    return logging.getLogger(name)


def set_logging_context(**kwargs):
    """Set context fields for all subsequent log messages."""
    _context_filter.set_context(**kwargs)


def clear_logging_context():
    """Clear all logging context fields."""
    _context_filter.clear_context()


@contextmanager
def logging_context(**kwargs):
    """Scope context fields to a block, restoring the previous values afterwards."""
    fields = {key: value for key, value in kwargs.items() if value is not None}
    token = _log_context.set({**_log_context.get(), **fields})
    try:
        yield
    finally:
        _log_context.reset(token)


def log_with_context(logger: logging.Logger, level: int, message: str, **context):
    """Log a message with additional context fields."""
    logger.log(level, message, extra={"extra_fields": context})


class ExecutionLogger:
    """Logger for the lifecycle of workflow runs and their steps."""

    def __init__(self, component_name: str = "executor"):
        self.logger = get_logger(f"flowengine.core.{component_name}")

    def run_started(self, workflow_id: str, execution_id: str, node_count: int, test_mode: bool):
        log_with_context(
            self.logger, logging.INFO,
            f"Starting execution {execution_id} of workflow {workflow_id} ({node_count} nodes)",
            workflow_id=workflow_id,
            execution_id=execution_id,
            node_count=node_count,
            test_mode=test_mode
        )

    def run_finished(self, execution_id: str, status: str, duration_ms: int):
        log_with_context(
            self.logger, logging.INFO,
            f"Execution {execution_id} finished with status {status} in {duration_ms}ms",
            execution_id=execution_id,
            status=status,
            duration_ms=duration_ms
        )

    def run_failed(self, execution_id: str, error: Exception):
        log_with_context(
            self.logger, logging.ERROR,
            f"Execution {execution_id} failed: {error}",
            execution_id=execution_id,
            error_type=type(error).__name__,
            error_message=str(error)
        )

    def step_started(self, step_number: int, node_id: str, node_type: str):
        log_with_context(
            self.logger, logging.DEBUG,
            f"Step {step_number}: running node {node_id} ({node_type})",
            step_number=step_number,
            node_id=node_id,
            node_type=node_type
        )

    def step_failed(self, step_number: int, node_id: str, error: Exception):
        log_with_context(
            self.logger, logging.WARNING,
            f"Step {step_number}: node {node_id} failed: {error}",
            step_number=step_number,
            node_id=node_id,
            error_type=type(error).__name__,
            error_message=str(error)
        )


class ErrorRecoveryLogger:
    """Logger for retried operations."""

    def __init__(self, component_name: str):
        self.logger = get_logger(f"flowengine.recovery.{component_name}")
        self.component_name = component_name

    def log_recovery_attempt(self, operation: str, error: Exception, attempt: int, max_attempts: int):
        log_with_context(
            self.logger, logging.WARNING,
            f"Recovery attempt {attempt}/{max_attempts} for {operation}",
            component=self.component_name,
            operation=operation,
            error_type=type(error).__name__,
            error_message=str(error),
            attempt=attempt,
            max_attempts=max_attempts
        )

    def log_recovery_failure(self, operation: str, final_error: Exception, attempts_used: int):
        log_with_context(
            self.logger, logging.ERROR,
            f"Failed to recover from {operation} after {attempts_used} attempts",
            component=self.component_name,
            operation=operation,
            error_type=type(final_error).__name__,
            error_message=str(final_error),
            attempts_used=attempts_used,
            recovery_status="failed"
        )
