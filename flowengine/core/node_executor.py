"""Dispatch of single node runs to the handler for their kind."""

from typing import Any, Callable, Dict, Optional

from ..config import AppConfig, get_config
from ..models.core import NodeDefinition, NodeKind, CONFIG_TYPES
from ..nodes import NODE_HANDLERS
from .exceptions import ConfigurationError, NodeExecutionError, WorkflowEngineError
from .http_client import HttpClient
from .logging import get_logger
from .sandbox import UserCodeEvaluator

logger = get_logger(__name__)


class ExecutionContext:
    """Identifies the run and step a node executes in."""

    def __init__(self, workflow_id: str, execution_id: str, step_number: int = 0, test_mode: bool = False):
        self.workflow_id = workflow_id
        self.execution_id = execution_id
        self.step_number = step_number
        self.test_mode = test_mode

    def for_step(self, step_number: int) -> 'ExecutionContext':
        return ExecutionContext(self.workflow_id, self.execution_id, step_number, self.test_mode)

    def __repr__(self) -> str:
        return (
            f"ExecutionContext(workflow_id={self.workflow_id!r}, execution_id={self.execution_id!r}, "
            f"step_number={self.step_number}, test_mode={self.test_mode})"
        )


class NodeServices:
    """Collaborators shared by node handlers."""

    def __init__(
        self,
        http_client: Any,
        evaluator: Any,
        price_api_base_url: str = "https://api.coingecko.com/api/v3",
        http_timeout: float = 10.0
    ):
        self.http_client = http_client
        self.evaluator = evaluator
        self.price_api_base_url = price_api_base_url.rstrip("/")
        self.http_timeout = http_timeout

    @classmethod
    def from_config(cls, config: Optional[AppConfig] = None, http_client: Any = None,
                    evaluator: Any = None) -> 'NodeServices':
        config = config or get_config()
        return cls(
            http_client=http_client or HttpClient(timeout=config.http_timeout),
            evaluator=evaluator or UserCodeEvaluator(timeout=config.sandbox_timeout),
            price_api_base_url=config.price_api_base_url,
            http_timeout=config.http_timeout,
        )


NodeHandler = Callable[[NodeDefinition, Any, ExecutionContext, NodeServices], Any]


class NodeExecutor:
    """
    Runs one node against its input.

    Each node kind maps to exactly one handler; the table is checked for
    completeness at construction so an unhandled kind fails fast instead of
    at run time.
    """

    def __init__(self, services: Optional[NodeServices] = None,
                 handlers: Optional[Dict[NodeKind, NodeHandler]] = None):
        self.services = services or NodeServices.from_config()
        self._handlers: Dict[NodeKind, NodeHandler] = dict(NODE_HANDLERS)
        if handlers:
            self._handlers.update(handlers)

        missing = [kind.value for kind in CONFIG_TYPES if kind not in self._handlers]
        if missing:
            raise ConfigurationError(f"No node handler registered for: {', '.join(missing)}")

    def register_handler(self, kind: NodeKind, handler: NodeHandler):
        """Replace the handler for ``kind``."""
        self._handlers[kind] = handler
        logger.debug(f"Registered handler for node kind '{kind.value}'")

    def execute(self, node: NodeDefinition, input_data: Any, context: ExecutionContext) -> Any:
        """
        Run ``node`` with ``input_data``.

        Args:
            node: Node to run
            input_data: Output of the previous node (or the workflow input)
            context: Run and step the node belongs to

        Returns:
            The node's output

        Raises:
            NodeExecutionError: If the handler fails
        """
        handler = self._handlers[node.handler_kind]
        try:
            return handler(node, input_data, context, self.services)
        except NodeExecutionError as e:
            e.add_context(node_id=node.id, execution_id=context.execution_id, step_number=context.step_number)
            raise
        except WorkflowEngineError:
            raise
        except Exception as e:
            raise NodeExecutionError(
                f"Node '{node.display_name}' failed: {e}",
                node_id=node.id,
                execution_id=context.execution_id
            ) from e
