"""Storage of workflow definitions."""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..models.core import WorkflowCreate, WorkflowRecord, WorkflowUpdate
from ..storage.database import session_scope
from ..storage.models import WorkflowModel
from .error_recovery import STORAGE_RETRY, with_retry
from .exceptions import StorageError, WorkflowNotFoundError
from .graph import WorkflowGraph
from .logging import get_logger

logger = get_logger(__name__)

LIST_LIMIT = 50

_LIST_ORDERING = {
    "name": WorkflowModel.name.asc(),
    "createdAt": WorkflowModel.created_at.desc(),
    "created_at": WorkflowModel.created_at.desc(),
    "lastRun": WorkflowModel.last_run_at.desc(),
    "last_run_at": WorkflowModel.last_run_at.desc(),
}


def _to_record(model: WorkflowModel) -> WorkflowRecord:
    return WorkflowRecord(
        id=model.id,
        name=model.name,
        description=model.description,
        is_active=bool(model.is_active),
        trigger_type=model.trigger_type,
        trigger_config=model.trigger_config,
        rf_nodes=model.rf_nodes or [],
        rf_edges=model.rf_edges or [],
        last_run_at=model.last_run_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class WorkflowStore:
    """CRUD for workflows plus the graph loading the executor needs."""

    @with_retry(STORAGE_RETRY)
    def create_workflow(self, workflow: WorkflowCreate) -> WorkflowRecord:
        """
        Store a new, inactive workflow.

        Args:
            workflow: Name, trigger settings and editor graph

        Returns:
            WorkflowRecord: The stored workflow
        """
        now = datetime.utcnow()
        model = WorkflowModel(
            id=str(uuid.uuid4()),
            name=workflow.name,
            description=workflow.description,
            is_active=False,
            trigger_type=workflow.trigger_type,
            trigger_config=workflow.trigger_config,
            rf_nodes=workflow.rf_nodes,
            rf_edges=workflow.rf_edges,
            created_at=now,
            updated_at=now,
        )
        try:
            with session_scope() as db:
                db.add(model)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to create workflow: {str(e)}", operation="create_workflow") from e

        logger.info(f"Created workflow {model.id} ({model.name})")
        return _to_record(model)

    def get_workflow(self, workflow_id: str) -> WorkflowRecord:
        """
        Raises:
            WorkflowNotFoundError: If the workflow does not exist
        """
        try:
            with session_scope() as db:
                return _to_record(self._get_model(db, workflow_id))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load workflow {workflow_id}: {str(e)}", operation="get_workflow") from e

    @with_retry(STORAGE_RETRY)
    def update_workflow(self, workflow_id: str, update: WorkflowUpdate) -> WorkflowRecord:
        """Apply the fields set on ``update``; the rest stay unchanged."""
        try:
            with session_scope() as db:
                model = self._get_model(db, workflow_id)
                for field, value in update.model_dump(exclude_unset=True).items():
                    if field in ("name", "is_active") and value is None:
                        continue
                    if field in ("rf_nodes", "rf_edges") and value is None:
                        value = []
                    setattr(model, field, value)
                model.updated_at = datetime.utcnow()
                db.flush()
                record = _to_record(model)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to update workflow {workflow_id}: {str(e)}", operation="update_workflow") from e

        logger.info(f"Updated workflow {workflow_id}")
        return record

    @with_retry(STORAGE_RETRY)
    def delete_workflow(self, workflow_id: str) -> None:
        """Delete a workflow together with its executions."""
        try:
            with session_scope() as db:
                db.delete(self._get_model(db, workflow_id))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete workflow {workflow_id}: {str(e)}", operation="delete_workflow") from e
        logger.info(f"Deleted workflow {workflow_id}")

    def duplicate_workflow(self, workflow_id: str) -> WorkflowRecord:
        """Copy a workflow under the name "<name> Copy"; the copy starts inactive."""
        original = self.get_workflow(workflow_id)
        return self.create_workflow(WorkflowCreate(
            name=f"{original.name} Copy",
            description=original.description,
            trigger_type=original.trigger_type,
            trigger_config=original.trigger_config,
            rf_nodes=original.rf_nodes,
            rf_edges=original.rf_edges,
        ))

    def set_active(self, workflow_id: str, is_active: bool) -> WorkflowRecord:
        return self.update_workflow(workflow_id, WorkflowUpdate(is_active=bool(is_active)))

    def list_workflows(self, q: Optional[str] = None, status: Optional[str] = None,
                       sort: str = "updatedAt") -> List[WorkflowRecord]:
        """
        List up to 50 workflows.

        Args:
            q: Case-insensitive substring of the name
            status: "Active" or "Inactive"; anything else lists both
            sort: "name", "createdAt", "lastRun" or (default) most recently updated
        """
        try:
            with session_scope() as db:
                query = db.query(WorkflowModel)
                if q:
                    query = query.filter(WorkflowModel.name.ilike(f"%{q}%"))
                if status == "Active":
                    query = query.filter(WorkflowModel.is_active.is_(True))
                elif status == "Inactive":
                    query = query.filter(WorkflowModel.is_active.is_(False))

                ordering = _LIST_ORDERING.get(sort, WorkflowModel.updated_at.desc())
                models = query.order_by(ordering).limit(LIST_LIMIT).all()
                return [_to_record(model) for model in models]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list workflows: {str(e)}", operation="list_workflows") from e

    def load_graph(self, workflow_id: str) -> WorkflowGraph:
        """
        Load the executable graph of a workflow.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist
        """
        workflow = self.get_workflow(workflow_id)
        return WorkflowGraph.from_raw(workflow.rf_nodes, workflow.rf_edges, workflow_id=workflow.id)

    @with_retry(STORAGE_RETRY)
    def touch_last_run(self, workflow_id: str, when: Optional[datetime] = None) -> None:
        """Record that the workflow just ran."""
        try:
            with session_scope() as db:
                model = self._get_model(db, workflow_id)
                model.last_run_at = when or datetime.utcnow()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to update last run of {workflow_id}: {str(e)}", operation="touch_last_run") from e

    @staticmethod
    def _get_model(db, workflow_id: str) -> WorkflowModel:
        model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
        if model is None:
            raise WorkflowNotFoundError(workflow_id)
        return model
