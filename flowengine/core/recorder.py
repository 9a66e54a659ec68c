"""Persistence of workflow executions and their per-node steps."""

import json
import uuid
from datetime import datetime, time as day_time
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..models.core import (
    ExecutionRecord,
    ExecutionStatusEnum,
    ExecutionStepRecord,
    ExecutionPage,
    ExecutionStats,
    ExecutionSummary,
    NodeDefinition,
)
from ..storage.database import session_scope
from ..storage.models import ExecutionModel, ExecutionStepModel, WorkflowModel
from .error_recovery import STORAGE_RETRY, with_retry
from .exceptions import ExecutionNotFoundError, StorageError, serialize_error
from .logging import get_logger

logger = get_logger(__name__)

SUCCESS_RATE_ON_SUCCESS = 100

# Sort keys accepted by list_executions, in API and attribute spelling
_SORT_COLUMNS = {
    "started_at": ExecutionModel.started_at,
    "startedAt": ExecutionModel.started_at,
    "finished_at": ExecutionModel.finished_at,
    "finishedAt": ExecutionModel.finished_at,
    "duration_ms": ExecutionModel.duration_ms,
    "durationMs": ExecutionModel.duration_ms,
    "status": ExecutionModel.status,
}


def to_json_safe(value: Any) -> Any:
    """Round-trip ``value`` through JSON so it can be stored in a JSON column."""
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def _error_payload(error: Union[BaseException, Dict[str, Any], str]) -> Dict[str, Any]:
    if isinstance(error, BaseException):
        return serialize_error(error)
    if isinstance(error, dict):
        return to_json_safe(error)
    return {"message": str(error)}


def _step_snapshot(model: ExecutionStepModel) -> ExecutionStepRecord:
    return ExecutionStepRecord(
        id=model.id,
        execution_id=model.execution_id,
        step_number=model.step_number,
        node_id=model.node_id,
        node_name=model.node_name or model.node_id,
        node_type=model.node_type or "default",
        status=ExecutionStatusEnum(model.status),
        started_at=model.started_at,
        finished_at=model.finished_at,
        duration_ms=model.duration_ms,
        input=model.input,
        output=model.output,
        error=model.error,
    )


def _execution_snapshot(model: ExecutionModel, steps: Optional[List[ExecutionStepModel]] = None) -> ExecutionRecord:
    return ExecutionRecord(
        id=model.id,
        workflow_id=model.workflow_id,
        status=ExecutionStatusEnum(model.status),
        trigger_type=model.trigger_type,
        started_at=model.started_at,
        finished_at=model.finished_at,
        duration_ms=model.duration_ms,
        input=model.input,
        output=model.output,
        error=model.error,
        success_rate=model.success_rate,
        steps=[_step_snapshot(step) for step in (steps or [])],
    )


class ExecutionRecorder:
    """
    Writes execution and step records.

    Every write commits before returning and hands back an immutable
    snapshot of what was stored, so callers never keep a second copy of the
    run that could drift from the database.
    """

    # Write side

    @with_retry(STORAGE_RETRY)
    def begin_execution(self, workflow_id: str, input_data: Any, trigger_type: Optional[str]) -> ExecutionRecord:
        """Insert a Running execution for ``workflow_id``."""
        model = ExecutionModel(
            id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            status=ExecutionStatusEnum.RUNNING.value,
            trigger_type=trigger_type,
            started_at=datetime.utcnow(),
            input=to_json_safe(input_data),
        )
        self._save(model, "begin_execution")
        logger.debug(f"Began execution {model.id} for workflow {workflow_id}")
        return _execution_snapshot(model)

    @with_retry(STORAGE_RETRY)
    def begin_step(self, execution_id: str, step_number: int, node: NodeDefinition, input_data: Any) -> ExecutionStepRecord:
        """Insert a Running step for ``node``."""
        model = ExecutionStepModel(
            id=str(uuid.uuid4()),
            execution_id=execution_id,
            step_number=step_number,
            node_id=node.id,
            node_name=node.display_name,
            node_type=node.node_type,
            status=ExecutionStatusEnum.RUNNING.value,
            started_at=datetime.utcnow(),
            input=to_json_safe(input_data),
        )
        self._save(model, "begin_step")
        return _step_snapshot(model)

    @with_retry(STORAGE_RETRY)
    def complete_step(self, step: ExecutionStepRecord, output: Any, duration_ms: int) -> ExecutionStepRecord:
        """Mark ``step`` successful with its output."""
        return self._finish_step(step, ExecutionStatusEnum.SUCCESS, duration_ms, output=to_json_safe(output))

    @with_retry(STORAGE_RETRY)
    def fail_step(self, step: ExecutionStepRecord, error: Union[BaseException, Dict[str, Any], str],
                  duration_ms: int) -> ExecutionStepRecord:
        """Mark ``step`` failed with the serialised error."""
        return self._finish_step(step, ExecutionStatusEnum.FAILED, duration_ms, error=_error_payload(error))

    @with_retry(STORAGE_RETRY)
    def complete_execution(self, execution: ExecutionRecord, output: Any, duration_ms: int) -> ExecutionRecord:
        """Mark ``execution`` successful with its final output."""
        return self._finish_execution(
            execution,
            ExecutionStatusEnum.SUCCESS,
            duration_ms,
            output=to_json_safe(output),
            success_rate=SUCCESS_RATE_ON_SUCCESS,
        )

    @with_retry(STORAGE_RETRY)
    def fail_execution(self, execution: ExecutionRecord, error: Union[BaseException, Dict[str, Any], str],
                       duration_ms: int) -> ExecutionRecord:
        """Mark ``execution`` failed; its output stays unset."""
        return self._finish_execution(
            execution,
            ExecutionStatusEnum.FAILED,
            duration_ms,
            error=_error_payload(error),
        )

    def _save(self, model: Any, operation: str):
        try:
            with session_scope() as db:
                db.add(model)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to {operation.replace('_', ' ')}: {str(e)}", operation=operation) from e

    def _finish_step(self, step: ExecutionStepRecord, status: ExecutionStatusEnum, duration_ms: int,
                     **values) -> ExecutionStepRecord:
        try:
            with session_scope() as db:
                model = db.query(ExecutionStepModel).filter(ExecutionStepModel.id == step.id).first()
                if model is None:
                    error = StorageError(f"Step {step.id} not found", operation="finish_step", table="execution_steps")
                    error.recoverable = False
                    raise error
                model.status = status.value
                model.finished_at = datetime.utcnow()
                model.duration_ms = duration_ms
                for key, value in values.items():
                    setattr(model, key, value)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to update step {step.id}: {str(e)}", operation="finish_step") from e
        return _step_snapshot(model)

    def _finish_execution(self, execution: ExecutionRecord, status: ExecutionStatusEnum, duration_ms: int,
                          **values) -> ExecutionRecord:
        try:
            with session_scope() as db:
                model = db.query(ExecutionModel).filter(ExecutionModel.id == execution.id).first()
                if model is None:
                    raise ExecutionNotFoundError(execution.id)
                model.status = status.value
                model.finished_at = datetime.utcnow()
                model.duration_ms = duration_ms
                for key, value in values.items():
                    setattr(model, key, value)
                steps = list(model.steps)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to update execution {execution.id}: {str(e)}", operation="finish_execution") from e
        return _execution_snapshot(model, steps)

    # Read side

    def get_execution(self, execution_id: str, include_steps: bool = True) -> ExecutionRecord:
        """
        Load an execution, optionally with its steps ordered by step number.

        Raises:
            ExecutionNotFoundError: If no such execution exists
        """
        try:
            with session_scope() as db:
                model = db.query(ExecutionModel).filter(ExecutionModel.id == execution_id).first()
                if model is None:
                    raise ExecutionNotFoundError(execution_id)
                return _execution_snapshot(model, list(model.steps) if include_steps else None)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load execution {execution_id}: {str(e)}", operation="get_execution") from e

    def list_steps(self, execution_id: str) -> List[ExecutionStepRecord]:
        try:
            with session_scope() as db:
                steps = (
                    db.query(ExecutionStepModel)
                    .filter(ExecutionStepModel.execution_id == execution_id)
                    .order_by(ExecutionStepModel.step_number)
                    .all()
                )
                return [_step_snapshot(step) for step in steps]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load steps of {execution_id}: {str(e)}", operation="list_steps") from e

    def load_original_input(self, execution_id: str) -> Any:
        """Return the input an execution was started with."""
        try:
            with session_scope() as db:
                model = db.query(ExecutionModel).filter(ExecutionModel.id == execution_id).first()
                if model is None:
                    raise ExecutionNotFoundError(execution_id)
                return model.input
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load input of {execution_id}: {str(e)}", operation="load_original_input") from e

    def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        started_from: Optional[datetime] = None,
        started_to: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 25,
        sort: str = "started_at",
        order: str = "desc"
    ) -> ExecutionPage:
        """
        Page through executions, newest first by default.

        Args:
            workflow_id: Only executions of this workflow
            status: Only executions with this status ("all" disables the filter)
            search: Case-insensitive substring of the workflow name
            started_from: Lower bound on the start time
            started_to: Upper bound on the start time
            page: 1-based page number
            page_size: Items per page
            sort: Column to sort by
            order: "asc" or "desc"

        Returns:
            ExecutionPage: The page and the total number of matches
        """
        page = max(page, 1)
        page_size = max(min(page_size, 200), 1)
        sort_column = _SORT_COLUMNS.get(sort, ExecutionModel.started_at)
        ordering = sort_column.asc() if order == "asc" else sort_column.desc()

        try:
            with session_scope() as db:
                query = db.query(ExecutionModel, WorkflowModel.name).join(
                    WorkflowModel, ExecutionModel.workflow_id == WorkflowModel.id
                )
                if workflow_id:
                    query = query.filter(ExecutionModel.workflow_id == workflow_id)
                if status and status != "all":
                    query = query.filter(ExecutionModel.status == status)
                if search:
                    query = query.filter(WorkflowModel.name.ilike(f"%{search}%"))
                if started_from:
                    query = query.filter(ExecutionModel.started_at >= started_from)
                if started_to:
                    query = query.filter(ExecutionModel.started_at <= started_to)

                total = query.count()
                rows = query.order_by(ordering).offset((page - 1) * page_size).limit(page_size).all()

                items = [
                    ExecutionSummary(
                        id=model.id,
                        workflow_id=model.workflow_id,
                        workflow_name=name,
                        status=ExecutionStatusEnum(model.status),
                        trigger_type=model.trigger_type,
                        started_at=model.started_at,
                        finished_at=model.finished_at,
                        duration_ms=model.duration_ms,
                    )
                    for model, name in rows
                ]
                return ExecutionPage(items=items, total=total)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list executions: {str(e)}", operation="list_executions") from e

    def execution_stats(self, now: Optional[datetime] = None) -> ExecutionStats:
        """
        Today's counters.

        The average duration covers every recorded execution, not only
        today's; runs still in progress count as not successful.
        """
        now = now or datetime.utcnow()
        start_of_day = datetime.combine(now.date(), day_time.min)

        try:
            with session_scope() as db:
                total_today = (
                    db.query(func.count(ExecutionModel.id))
                    .filter(ExecutionModel.started_at >= start_of_day)
                    .scalar()
                ) or 0
                success_today = (
                    db.query(func.count(ExecutionModel.id))
                    .filter(ExecutionModel.started_at >= start_of_day)
                    .filter(ExecutionModel.status == ExecutionStatusEnum.SUCCESS.value)
                    .scalar()
                ) or 0
                average = db.query(func.avg(ExecutionModel.duration_ms)).scalar()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to compute execution stats: {str(e)}", operation="execution_stats") from e

        return ExecutionStats(
            total_today=total_today,
            failed_today=total_today - success_today,
            success_rate=round(success_today / total_today * 100) if total_today else 0,
            average_ms=round(average or 0),
        )
