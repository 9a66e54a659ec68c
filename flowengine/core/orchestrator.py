"""Workflow execution: drives a run from trigger input to recorded result."""

import time
from typing import Any, Callable, List, Optional

from ..models.core import (
    ExecutionResult,
    ExecutionStatusEnum,
    ExecutionStepRecord,
    IntegrationKind,
    NodeDefinition,
    NodeKind,
)
from .logging import ExecutionLogger, get_logger, logging_context
from .node_executor import ExecutionContext, NodeExecutor
from .recorder import ExecutionRecorder
from .traversal import compute_order
from .workflow_store import WorkflowStore

logger = get_logger(__name__)

DEFAULT_TEST_INPUT = {"content": "price BTC"}

StepRunner = Callable[[int, NodeDefinition, Any], Any]


def _elapsed_ms(started: float) -> int:
    return int((time.time() - started) * 1000)


def resolve_workflow_input(trigger: Optional[NodeDefinition], trigger_input: Any, test_mode: bool) -> Any:
    """
    Decide the input a run starts with.

    An explicit payload wins when the graph has a trigger. Test runs use the
    payload's ``testData``, the payload itself, or the default test command.
    """
    if trigger is not None and trigger_input is not None:
        return trigger_input
    if test_mode:
        if isinstance(trigger_input, dict) and trigger_input.get("testData"):
            return trigger_input["testData"]
        if trigger_input is not None:
            return trigger_input
        return dict(DEFAULT_TEST_INPUT)
    return trigger_input


def extract_formatted_message(output: Any) -> Optional[str]:
    """Return the formatted message carried by a transform output, if any."""
    candidate = output[0] if isinstance(output, list) and output else output
    if isinstance(candidate, dict):
        message = candidate.get("formattedMessage")
        if isinstance(message, str) and message:
            return message
    return None


class FinalOutputSelector:
    """
    Tracks node outputs during a run and picks the run's final output.

    Precedence: the last formatted message produced by a function node,
    wrapped together with the last output that carried no message; then the
    most recent HTTP node output; then the last node output; then the data
    the run ended with or its input.
    """

    def __init__(self, workflow_input: Any):
        self.workflow_input = workflow_input
        self.formatted_message: Optional[str] = None
        self.raw_output: Any = None
        self.http_output: Any = None
        self.last_output: Any = None

    def observe(self, node: NodeDefinition, output: Any):
        message = None
        if node.handler_kind == NodeKind.FUNCTION:
            message = extract_formatted_message(output)

        if message is not None:
            self.formatted_message = message
            return

        self.raw_output = output
        if node.handler_kind == NodeKind.HTTP and output:
            self.http_output = output
        if output:
            self.last_output = output

    def select(self, current_data: Any = None) -> Any:
        if self.formatted_message is not None:
            return {
                "message": self.formatted_message,
                "formattedMessage": self.formatted_message,
                "rawOutput": self.raw_output,
            }
        if self.http_output:
            return self.http_output
        if self.last_output:
            return self.last_output
        return current_data or self.workflow_input


class SchedulingStrategy:
    """Drives the nodes of a run through a step runner."""

    def run(self, order: List[NodeDefinition], initial_data: Any, run_step: StepRunner) -> Any:
        """
        Run every node of ``order``.

        ``run_step(step_number, node, input_data)`` records and executes one
        node and returns its output; it raises when the node fails, which
        must end the run. Step numbers form a single total order starting
        at 1. Returns the data the run ended with.
        """
        raise NotImplementedError


class SequentialScheduler(SchedulingStrategy):
    """Runs nodes one at a time, feeding each node the previous node's output."""

    def run(self, order: List[NodeDefinition], initial_data: Any, run_step: StepRunner) -> Any:
        current_data = initial_data
        for step_number, node in enumerate(order, start=1):
            current_data = run_step(step_number, node, current_data)
        return current_data


class WorkflowExecutor:
    """Executes stored workflows and records every step."""

    def __init__(
        self,
        store: Optional[WorkflowStore] = None,
        recorder: Optional[ExecutionRecorder] = None,
        node_executor: Optional[NodeExecutor] = None,
        scheduler: Optional[SchedulingStrategy] = None
    ):
        self.store = store or WorkflowStore()
        self.recorder = recorder or ExecutionRecorder()
        self.node_executor = node_executor or NodeExecutor()
        self.scheduler = scheduler or SequentialScheduler()
        self.execution_logger = ExecutionLogger()

    def execute(self, workflow_id: str, trigger_input: Any = None, test_mode: bool = False) -> ExecutionResult:
        """
        Run a workflow.

        Args:
            workflow_id: Workflow to run
            trigger_input: Payload delivered by the trigger
            test_mode: Whether this is an editor test run

        Returns:
            ExecutionResult: ``ok`` with output and steps, or the failure message

        Raises:
            WorkflowNotFoundError: If the workflow does not exist; no execution is recorded
        """
        graph = self.store.load_graph(workflow_id)
        trigger = graph.find_trigger()
        workflow_input = resolve_workflow_input(trigger, trigger_input, test_mode)
        trigger_type = (trigger.integration_kind if trigger else None) or IntegrationKind.MANUAL.value

        execution = self.recorder.begin_execution(workflow_id, workflow_input, trigger_type)
        started = time.time()
        steps: List[ExecutionStepRecord] = []

        with logging_context(workflow_id=workflow_id, execution_id=execution.id):
            try:
                order = compute_order(graph.nodes, graph.edges, trigger.id if trigger else None)
                self.execution_logger.run_started(workflow_id, execution.id, len(order), test_mode)

                selector = FinalOutputSelector(workflow_input)
                context = ExecutionContext(workflow_id, execution.id, test_mode=test_mode)

                def run_step(step_number: int, node: NodeDefinition, input_data: Any) -> Any:
                    step = self.recorder.begin_step(execution.id, step_number, node, input_data)
                    self.execution_logger.step_started(step_number, node.id, node.node_type)
                    step_started = time.time()
                    try:
                        output = self.node_executor.execute(node, input_data, context.for_step(step_number))
                    except Exception as e:
                        self.execution_logger.step_failed(step_number, node.id, e)
                        steps.append(self.recorder.fail_step(step, e, _elapsed_ms(step_started)))
                        raise
                    completed = self.recorder.complete_step(step, output, _elapsed_ms(step_started))
                    steps.append(completed)
                    selector.observe(node, completed.output)
                    return completed.output

                initial_data = workflow_input if workflow_input else dict(DEFAULT_TEST_INPUT)
                current_data = self.scheduler.run(order, initial_data, run_step)

                finished = self.recorder.complete_execution(
                    execution, selector.select(current_data), _elapsed_ms(started)
                )
                self.store.touch_last_run(workflow_id)
            except Exception as e:
                self.execution_logger.run_failed(execution.id, e)
                self.recorder.fail_execution(execution, e, _elapsed_ms(started))
                return ExecutionResult(
                    ok=False,
                    execution_id=execution.id,
                    test_mode=test_mode,
                    input=workflow_input,
                    steps=steps,
                    error=str(e) or type(e).__name__,
                )

        self.execution_logger.run_finished(execution.id, ExecutionStatusEnum.SUCCESS.value, finished.duration_ms)
        return ExecutionResult(
            ok=True,
            execution_id=execution.id,
            test_mode=test_mode,
            input=workflow_input,
            output=finished.output,
            steps=steps,
        )

    def retry(self, execution_id: str) -> ExecutionResult:
        """
        Run an execution's workflow again with the input it was started with.

        The original execution is left untouched; the retry is a new test-mode run.

        Raises:
            ExecutionNotFoundError: If the execution does not exist
        """
        execution = self.recorder.get_execution(execution_id, include_steps=False)
        original_input = self.recorder.load_original_input(execution_id)
        logger.info(f"Retrying execution {execution_id} of workflow {execution.workflow_id}")
        return self.execute(execution.workflow_id, original_input or {}, test_mode=True)
