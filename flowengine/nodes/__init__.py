"""Node handlers, one per node kind."""

from ..models.core import NodeKind
from .trigger import run_trigger_node, parse_command
from .http_request import run_http_node, lookup_price
from .function import run_function_node, format_price_message
from .webhook import run_webhook_node, render_body


def run_passthrough_node(node, input_data, context=None, services=None):
    """Nodes without behaviour forward their input unchanged."""
    return input_data


NODE_HANDLERS = {
    NodeKind.TRIGGER: run_trigger_node,
    NodeKind.HTTP: run_http_node,
    NodeKind.FUNCTION: run_function_node,
    NodeKind.WEBHOOK: run_webhook_node,
    NodeKind.DEFAULT: run_passthrough_node,
}

__all__ = [
    "NODE_HANDLERS",
    "run_trigger_node",
    "run_http_node",
    "run_function_node",
    "run_webhook_node",
    "run_passthrough_node",
    "parse_command",
    "lookup_price",
    "format_price_message",
    "render_body",
]
