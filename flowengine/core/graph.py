"""In-memory workflow graph built from the editor's stored nodes and edges."""

from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from ..models.core import NodeDefinition, EdgeDefinition
from .logging import get_logger

logger = get_logger(__name__)


def find_trigger(nodes: Iterable[NodeDefinition]) -> Optional[NodeDefinition]:
    """Return the first node marked as the graph's trigger, if any."""
    for node in nodes:
        if node.is_trigger:
            return node
    return None


def outgoing_edges(edges: Iterable[EdgeDefinition], node_id: str) -> List[EdgeDefinition]:
    """Return the edges leaving ``node_id`` in their persisted order."""
    return [edge for edge in edges if edge.source == node_id]


class WorkflowGraph:
    """Nodes and edges of one workflow, in storage order."""

    def __init__(self, nodes: List[NodeDefinition], edges: List[EdgeDefinition], workflow_id: Optional[str] = None):
        self.workflow_id = workflow_id
        self.nodes = list(nodes)
        self.edges = list(edges)

    @classmethod
    def from_raw(
        cls,
        rf_nodes: Optional[List[Dict[str, Any]]],
        rf_edges: Optional[List[Dict[str, Any]]],
        workflow_id: Optional[str] = None
    ) -> 'WorkflowGraph':
        """
        Build a graph from stored editor payloads.

        Nodes without an id and edges without both endpoints cannot take part
        in a run and are dropped with a warning. Edges that point at missing
        nodes are kept; traversal skips them.

        Args:
            rf_nodes: Stored editor nodes
            rf_edges: Stored editor edges
            workflow_id: Owning workflow, used for logging

        Returns:
            WorkflowGraph: The parsed graph
        """
        nodes = []
        for raw in rf_nodes or []:
            try:
                nodes.append(NodeDefinition.from_raw(raw))
            except (ValidationError, AttributeError) as e:
                logger.warning(f"Skipping malformed node in workflow {workflow_id}: {e}")

        edges = []
        for raw in rf_edges or []:
            if not isinstance(raw, dict) or raw.get("source") is None or raw.get("target") is None:
                logger.warning(f"Skipping edge without endpoints in workflow {workflow_id}: {raw}")
                continue
            edges.append(EdgeDefinition.from_raw(raw))

        return cls(nodes, edges, workflow_id=workflow_id)

    def find_trigger(self) -> Optional[NodeDefinition]:
        return find_trigger(self.nodes)

    def outgoing_edges(self, node_id: str) -> List[EdgeDefinition]:
        return outgoing_edges(self.edges, node_id)

    def get_node(self, node_id: str) -> Optional[NodeDefinition]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def __len__(self) -> int:
        return len(self.nodes)
