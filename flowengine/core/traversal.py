"""Execution order computation for workflow graphs."""

from typing import Dict, List, Optional, Sequence

from ..models.core import NodeDefinition, EdgeDefinition
from .graph import find_trigger


def compute_order(
    nodes: Sequence[NodeDefinition],
    edges: Sequence[EdgeDefinition],
    start_node_id: Optional[str] = None
) -> List[NodeDefinition]:
    """
    Compute the order in which a run visits the graph's nodes.

    Depth-first pre-order walk from ``start_node_id``: a node is recorded,
    then each outgoing edge is followed in persisted order, the first edge's
    subtree being fully explored before the next sibling. Every node id is
    visited at most once, so cycles terminate and a node reachable over
    several paths runs at its first visit only.

    When no start node is given the trigger is used. A graph without a trigger
    is not walked at all: every node is returned in storage order.

    Args:
        nodes: Nodes in storage order
        edges: Edges in storage order
        start_node_id: Node to start from (defaults to the trigger)

    Returns:
        Ordered list of nodes; empty when the start node does not exist
    """
    if start_node_id is None:
        trigger = find_trigger(nodes)
        if trigger is None:
            return list(nodes)
        start_node_id = trigger.id

    nodes_by_id: Dict[str, NodeDefinition] = {}
    for node in nodes:
        nodes_by_id.setdefault(node.id, node)

    targets: Dict[str, List[str]] = {}
    for edge in edges:
        targets.setdefault(edge.source, []).append(edge.target)

    visited = set()
    ordered = []
    stack = [start_node_id]

    # Children are pushed in reverse so the first edge is popped first,
    # matching the recursive walk
    while stack:
        node_id = stack.pop()
        if node_id in visited:
            continue
        visited.add(node_id)

        node = nodes_by_id.get(node_id)
        if node is None:
            continue

        ordered.append(node)
        stack.extend(reversed(targets.get(node_id, [])))

    return ordered
