"""Data models for the workflow engine."""

from .core import (
    ExecutionStatusEnum,
    NodeKind,
    IntegrationKind,
    NodeConfig,
    TriggerConfig,
    HttpConfig,
    FunctionConfig,
    WebhookConfig,
    PassThroughConfig,
    NodeDefinition,
    EdgeDefinition,
    ExecutionStepRecord,
    ExecutionRecord,
    ExecutionResult,
    ExecutionSummary,
    ExecutionPage,
    ExecutionStats,
    WorkflowCreate,
    WorkflowUpdate,
    WorkflowRecord,
)

__all__ = [
    "ExecutionStatusEnum",
    "NodeKind",
    "IntegrationKind",
    "NodeConfig",
    "TriggerConfig",
    "HttpConfig",
    "FunctionConfig",
    "WebhookConfig",
    "PassThroughConfig",
    "NodeDefinition",
    "EdgeDefinition",
    "ExecutionStepRecord",
    "ExecutionRecord",
    "ExecutionResult",
    "ExecutionSummary",
    "ExecutionPage",
    "ExecutionStats",
    "WorkflowCreate",
    "WorkflowUpdate",
    "WorkflowRecord",
]
