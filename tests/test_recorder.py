"""Tests for execution recording, querying and the workflow store."""

from datetime import datetime, timedelta

import pytest

from flowengine.core.exceptions import ExecutionNotFoundError, WorkflowNotFoundError
from flowengine.models.core import ExecutionStatusEnum, NodeDefinition, WorkflowUpdate
from flowengine.storage.database import session_scope
from flowengine.storage.models import ExecutionModel, ExecutionStepModel

from conftest import make_node


@pytest.fixture
def workflow(create_workflow):
    return create_workflow([make_node("t", "trigger")], name="Price Bot")


@pytest.fixture
def trigger_node():
    return NodeDefinition.from_raw(make_node("t", "trigger", label="Incoming"))


class TestExecutionRecorder:
    """Write-side lifecycle of executions and steps."""

    def test_begin_execution_is_running(self, recorder, workflow):
        execution = recorder.begin_execution(workflow.id, {"content": "price BTC"}, "slack")

        assert execution.status == ExecutionStatusEnum.RUNNING
        assert execution.input == {"content": "price BTC"}
        assert execution.trigger_type == "slack"
        assert execution.finished_at is None

        stored = recorder.get_execution(execution.id)
        assert stored.status == ExecutionStatusEnum.RUNNING

    def test_step_lifecycle(self, recorder, workflow, trigger_node):
        execution = recorder.begin_execution(workflow.id, {}, "manual")

        step = recorder.begin_step(execution.id, 1, trigger_node, {"in": 1})
        assert step.status == ExecutionStatusEnum.RUNNING
        assert step.node_name == "Incoming"
        assert step.node_type == "trigger"

        completed = recorder.complete_step(step, {"out": 2}, 12)
        assert completed.status == ExecutionStatusEnum.SUCCESS
        assert completed.output == {"out": 2}
        assert completed.duration_ms == 12
        assert completed.finished_at is not None
        assert recorder.list_steps(execution.id) == [completed]

    def test_fail_step_serializes_error(self, recorder, workflow, trigger_node):
        execution = recorder.begin_execution(workflow.id, {}, "manual")
        step = recorder.begin_step(execution.id, 1, trigger_node, {})

        try:
            raise ValueError("bad input")
        except ValueError as e:
            failed = recorder.fail_step(step, e, 3)

        assert failed.status == ExecutionStatusEnum.FAILED
        assert failed.error["message"] == "bad input"
        assert failed.error["type"] == "ValueError"
        assert "ValueError: bad input" in failed.error["stack"]
        assert failed.output is None

    def test_complete_execution_sets_success_rate(self, recorder, workflow):
        execution = recorder.begin_execution(workflow.id, {}, "manual")

        finished = recorder.complete_execution(execution, {"message": "done"}, 40)

        assert finished.status == ExecutionStatusEnum.SUCCESS
        assert finished.output == {"message": "done"}
        assert finished.success_rate == 100
        assert finished.duration_ms == 40

    def test_fail_execution_leaves_output_unset(self, recorder, workflow):
        execution = recorder.begin_execution(workflow.id, {}, "manual")

        failed = recorder.fail_execution(execution, "node exploded", 5)

        assert failed.status == ExecutionStatusEnum.FAILED
        assert failed.output is None
        assert failed.error == {"message": "node exploded"}
        assert failed.success_rate is None

    def test_non_json_values_are_stored_as_text(self, recorder, workflow):
        when = datetime(2024, 1, 2, 3, 4, 5)

        execution = recorder.begin_execution(workflow.id, {"at": when}, "manual")

        assert recorder.load_original_input(execution.id) == {"at": str(when)}

    def test_steps_read_back_in_step_order(self, recorder, workflow, trigger_node):
        execution = recorder.begin_execution(workflow.id, {}, "manual")
        for number in (2, 1, 3):
            recorder.begin_step(execution.id, number, trigger_node, {"n": number})

        stored = recorder.get_execution(execution.id)

        assert [step.step_number for step in stored.steps] == [1, 2, 3]
        assert recorder.get_execution(execution.id, include_steps=False).steps == []

    def test_unknown_execution(self, recorder):
        with pytest.raises(ExecutionNotFoundError):
            recorder.get_execution("missing")
        with pytest.raises(ExecutionNotFoundError):
            recorder.load_original_input("missing")

    def test_steps_are_deleted_with_execution(self, recorder, workflow, trigger_node):
        execution = recorder.begin_execution(workflow.id, {}, "manual")
        recorder.begin_step(execution.id, 1, trigger_node, {})

        with session_scope() as db:
            db.delete(db.query(ExecutionModel).filter(ExecutionModel.id == execution.id).first())

        with session_scope() as db:
            assert db.query(ExecutionStepModel).count() == 0


class TestExecutionQueries:
    """Listing, filtering and daily stats."""

    def test_list_filters_and_names(self, recorder, create_workflow):
        btc = create_workflow([], name="BTC Alerts")
        eth = create_workflow([], name="ETH Alerts")
        first = recorder.begin_execution(btc.id, {}, "manual")
        recorder.complete_execution(first, {}, 10)
        second = recorder.begin_execution(eth.id, {}, "manual")
        recorder.fail_execution(second, "x", 10)

        everything = recorder.list_executions()
        assert everything.total == 2
        assert {item.workflow_name for item in everything.items} == {"BTC Alerts", "ETH Alerts"}

        failed = recorder.list_executions(status="Failed")
        assert [item.id for item in failed.items] == [second.id]

        searched = recorder.list_executions(search="btc")
        assert [item.id for item in searched.items] == [first.id]

        by_workflow = recorder.list_executions(workflow_id=eth.id, status="all")
        assert [item.id for item in by_workflow.items] == [second.id]

    def test_pagination_and_order(self, recorder, workflow):
        ids = [recorder.begin_execution(workflow.id, {"n": n}, "manual").id for n in range(5)]

        page = recorder.list_executions(page=2, page_size=2, order="asc")

        assert page.total == 5
        assert [item.id for item in page.items] == ids[2:4]

    def test_date_range(self, recorder, workflow):
        execution = recorder.begin_execution(workflow.id, {}, "manual")
        now = datetime.utcnow()

        assert recorder.list_executions(started_from=now + timedelta(hours=1)).total == 0
        inside = recorder.list_executions(started_from=now - timedelta(hours=1), started_to=now + timedelta(hours=1))
        assert [item.id for item in inside.items] == [execution.id]

    def test_stats(self, recorder, workflow):
        for outcome in ("ok", "ok", "ok", "fail"):
            execution = recorder.begin_execution(workflow.id, {}, "manual")
            if outcome == "ok":
                recorder.complete_execution(execution, {}, 100)
            else:
                recorder.fail_execution(execution, "x", 300)

        stats = recorder.execution_stats()

        assert stats.total_today == 4
        assert stats.failed_today == 1
        assert stats.success_rate == 75
        assert stats.average_ms == 150

    def test_stats_empty(self, recorder):
        stats = recorder.execution_stats()

        assert (stats.total_today, stats.failed_today, stats.success_rate, stats.average_ms) == (0, 0, 0, 0)


class TestWorkflowStore:
    """CRUD of workflow definitions."""

    def test_create_and_get(self, workflow_store, create_workflow):
        created = create_workflow([make_node("t", "trigger")], name="  My Flow ")

        loaded = workflow_store.get_workflow(created.id)

        assert loaded.name == "My Flow"
        assert loaded.is_active is False
        assert loaded.rf_nodes[0]["id"] == "t"
        assert loaded.created_at is not None

    def test_update_only_touches_set_fields(self, workflow_store, workflow):
        updated = workflow_store.update_workflow(workflow.id, WorkflowUpdate(description="new"))

        assert updated.description == "new"
        assert updated.name == "Price Bot"
        assert updated.rf_nodes == workflow.rf_nodes

    def test_duplicate(self, workflow_store, workflow):
        workflow_store.set_active(workflow.id, True)

        copy = workflow_store.duplicate_workflow(workflow.id)

        assert copy.id != workflow.id
        assert copy.name == "Price Bot Copy"
        assert copy.is_active is False
        assert copy.rf_nodes == workflow.rf_nodes

    def test_list_filters(self, workflow_store, create_workflow):
        alpha = create_workflow([], name="Alpha")
        create_workflow([], name="Beta")
        workflow_store.set_active(alpha.id, True)

        assert [w.name for w in workflow_store.list_workflows(status="Active")] == ["Alpha"]
        assert [w.name for w in workflow_store.list_workflows(status="Inactive")] == ["Beta"]
        assert [w.name for w in workflow_store.list_workflows(q="bet")] == ["Beta"]
        assert [w.name for w in workflow_store.list_workflows(sort="name")] == ["Alpha", "Beta"]

    def test_delete_cascades_to_executions(self, workflow_store, recorder, workflow, trigger_node):
        execution = recorder.begin_execution(workflow.id, {}, "manual")
        recorder.begin_step(execution.id, 1, trigger_node, {})

        workflow_store.delete_workflow(workflow.id)

        with pytest.raises(WorkflowNotFoundError):
            workflow_store.get_workflow(workflow.id)
        with pytest.raises(ExecutionNotFoundError):
            recorder.get_execution(execution.id)

    def test_touch_last_run(self, workflow_store, workflow):
        when = datetime(2024, 5, 1, 12, 0, 0)

        workflow_store.touch_last_run(workflow.id, when)

        assert workflow_store.get_workflow(workflow.id).last_run_at == when

    def test_unknown_workflow(self, workflow_store):
        with pytest.raises(WorkflowNotFoundError):
            workflow_store.load_graph("missing")
