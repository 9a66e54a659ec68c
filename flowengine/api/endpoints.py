"""FastAPI REST endpoints for workflows and their executions."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..core.exceptions import (
    ErrorCategory,
    WorkflowEngineError,
    create_error_response,
)
from ..core.logging import get_logger
from ..core.orchestrator import WorkflowExecutor
from ..core.recorder import ExecutionRecorder
from ..core.workflow_store import WorkflowStore
from ..models.core import (
    ExecutionPage,
    ExecutionRecord,
    ExecutionResult,
    ExecutionStats,
    WorkflowCreate,
    WorkflowRecord,
    WorkflowUpdate,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["workflows"])

# Global instances (initialized in main.py)
_workflow_store: Optional[WorkflowStore] = None
_execution_recorder: Optional[ExecutionRecorder] = None
_workflow_executor: Optional[WorkflowExecutor] = None


def init_dependencies(
    workflow_store: WorkflowStore,
    execution_recorder: ExecutionRecorder,
    workflow_executor: WorkflowExecutor
):
    """Initialize the global dependencies."""
    global _workflow_store, _execution_recorder, _workflow_executor
    _workflow_store = workflow_store
    _execution_recorder = execution_recorder
    _workflow_executor = workflow_executor


def get_workflow_store() -> WorkflowStore:
    """Dependency to get the workflow store."""
    if _workflow_store is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow store not initialized"
        )
    return _workflow_store


def get_execution_recorder() -> ExecutionRecorder:
    """Dependency to get the execution recorder."""
    if _execution_recorder is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution recorder not initialized"
        )
    return _execution_recorder


def get_workflow_executor() -> WorkflowExecutor:
    """Dependency to get the workflow executor."""
    if _workflow_executor is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow executor not initialized"
        )
    return _workflow_executor


# Request models
class StatusUpdateRequest(BaseModel):
    """Request model for activating or deactivating a workflow."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_active: bool = Field(..., description="Whether the workflow is active")


_STATUS_BY_CATEGORY = {
    ErrorCategory.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCategory.VALIDATION: status.HTTP_400_BAD_REQUEST,
}


def _http_error(error: Exception, action: str) -> HTTPException:
    """Translate an engine error into an HTTP error response."""
    if isinstance(error, WorkflowEngineError):
        status_code = _STATUS_BY_CATEGORY.get(error.category, status.HTTP_500_INTERNAL_SERVER_ERROR)
        if status_code == status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error(f"Failed to {action}: {error.message}")
        else:
            logger.warning(f"Failed to {action}: {error.message}")
        return HTTPException(status_code=status_code, detail=create_error_response(error))

    logger.error(f"Unexpected error while trying to {action}: {str(error)}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "InternalError",
            "message": f"An unexpected error occurred while trying to {action}",
            "details": {"original_error": str(error)},
            "timestamp": datetime.utcnow().isoformat()
        }
    )


# Workflows

@router.post(
    "/workflows",
    response_model=WorkflowRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow"
)
def create_workflow(
    request: WorkflowCreate,
    store: WorkflowStore = Depends(get_workflow_store)
) -> WorkflowRecord:
    try:
        return store.create_workflow(request)
    except Exception as e:
        raise _http_error(e, "create workflow")


@router.get(
    "/workflows",
    response_model=List[WorkflowRecord],
    summary="List workflows"
)
def list_workflows(
    q: Optional[str] = Query(None, description="Case-insensitive name filter"),
    workflow_status: Optional[str] = Query(None, alias="status", description="Active or Inactive"),
    sort: str = Query("updatedAt", description="name, createdAt, lastRun or updatedAt"),
    store: WorkflowStore = Depends(get_workflow_store)
) -> List[WorkflowRecord]:
    try:
        return store.list_workflows(q=q, status=workflow_status, sort=sort)
    except Exception as e:
        raise _http_error(e, "list workflows")


@router.get(
    "/workflows/{workflow_id}",
    response_model=WorkflowRecord,
    summary="Get a workflow"
)
def get_workflow(
    workflow_id: str,
    store: WorkflowStore = Depends(get_workflow_store)
) -> WorkflowRecord:
    try:
        return store.get_workflow(workflow_id)
    except Exception as e:
        raise _http_error(e, f"load workflow {workflow_id}")


@router.put(
    "/workflows/{workflow_id}",
    response_model=WorkflowRecord,
    summary="Update a workflow"
)
def update_workflow(
    workflow_id: str,
    request: WorkflowUpdate,
    store: WorkflowStore = Depends(get_workflow_store)
) -> WorkflowRecord:
    try:
        return store.update_workflow(workflow_id, request)
    except Exception as e:
        raise _http_error(e, f"update workflow {workflow_id}")


@router.delete(
    "/workflows/{workflow_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a workflow and its executions"
)
def delete_workflow(
    workflow_id: str,
    store: WorkflowStore = Depends(get_workflow_store)
) -> Response:
    try:
        store.delete_workflow(workflow_id)
    except Exception as e:
        raise _http_error(e, f"delete workflow {workflow_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/workflows/{workflow_id}/duplicate",
    response_model=WorkflowRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Duplicate a workflow"
)
def duplicate_workflow(
    workflow_id: str,
    store: WorkflowStore = Depends(get_workflow_store)
) -> WorkflowRecord:
    try:
        return store.duplicate_workflow(workflow_id)
    except Exception as e:
        raise _http_error(e, f"duplicate workflow {workflow_id}")


@router.patch(
    "/workflows/{workflow_id}/status",
    response_model=WorkflowRecord,
    summary="Activate or deactivate a workflow"
)
def set_workflow_status(
    workflow_id: str,
    request: StatusUpdateRequest,
    store: WorkflowStore = Depends(get_workflow_store)
) -> WorkflowRecord:
    try:
        return store.set_active(workflow_id, request.is_active)
    except Exception as e:
        raise _http_error(e, f"update status of workflow {workflow_id}")


@router.post(
    "/workflows/{workflow_id}/test",
    response_model=ExecutionResult,
    summary="Run a workflow in test mode",
    description="Runs the workflow synchronously with the posted payload (or its testData) and returns every step"
)
def test_workflow(
    workflow_id: str,
    payload: Optional[Dict[str, Any]] = Body(None),
    executor: WorkflowExecutor = Depends(get_workflow_executor)
) -> ExecutionResult:
    trigger_data = (payload or {}).get("testData") or payload or None
    logger.info(f"Starting test execution of workflow {workflow_id}")
    try:
        return executor.execute(workflow_id, trigger_data, test_mode=True)
    except Exception as e:
        raise _http_error(e, f"test workflow {workflow_id}")


# Executions

@router.get(
    "/executions",
    response_model=ExecutionPage,
    summary="List executions"
)
def list_executions(
    q: Optional[str] = Query(None, description="Case-insensitive workflow name filter"),
    execution_status: str = Query("all", alias="status"),
    started_from: Optional[datetime] = Query(None, alias="from"),
    started_to: Optional[datetime] = Query(None, alias="to"),
    workflow_id: Optional[str] = Query(None, alias="workflowId"),
    sort: str = Query("startedAt"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=200, alias="pageSize"),
    recorder: ExecutionRecorder = Depends(get_execution_recorder)
) -> ExecutionPage:
    try:
        return recorder.list_executions(
            workflow_id=workflow_id,
            status=execution_status,
            search=q,
            started_from=started_from,
            started_to=started_to,
            page=page,
            page_size=page_size,
            sort=sort,
            order=order,
        )
    except Exception as e:
        raise _http_error(e, "list executions")


@router.get(
    "/executions/stats/summary",
    response_model=ExecutionStats,
    summary="Today's execution counters"
)
def execution_stats(
    recorder: ExecutionRecorder = Depends(get_execution_recorder)
) -> ExecutionStats:
    try:
        return recorder.execution_stats()
    except Exception as e:
        raise _http_error(e, "load execution stats")


@router.get(
    "/executions/{execution_id}",
    response_model=ExecutionRecord,
    summary="Get an execution with its steps"
)
def get_execution(
    execution_id: str,
    recorder: ExecutionRecorder = Depends(get_execution_recorder)
) -> ExecutionRecord:
    try:
        return recorder.get_execution(execution_id, include_steps=True)
    except Exception as e:
        raise _http_error(e, f"load execution {execution_id}")


@router.post(
    "/executions/{execution_id}/retry",
    response_model=ExecutionResult,
    summary="Re-run an execution with its original input"
)
def retry_execution(
    execution_id: str,
    executor: WorkflowExecutor = Depends(get_workflow_executor)
) -> ExecutionResult:
    try:
        return executor.retry(execution_id)
    except Exception as e:
        raise _http_error(e, f"retry execution {execution_id}")
