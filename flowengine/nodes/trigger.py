"""Trigger node: turns the incoming chat command into a lookup request."""

from typing import Any, Dict, Optional

from ..models.core import IntegrationKind, NodeDefinition
from ..core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_COIN = "bitcoin"
_TEXT_FIELDS = ("content", "text", "message")


def parse_command(input_data: Any) -> Dict[str, Any]:
    """
    Parse a chat command such as ``"price BTC"``.

    The message is the first non-empty of ``content``, ``text`` and
    ``message``; its second whitespace-separated token, lower-cased, names
    the coin.

    Returns:
        ``{"coin": ..., "message": ...}``
    """
    message = ""
    if isinstance(input_data, dict):
        for field in _TEXT_FIELDS:
            if input_data.get(field):
                message = input_data[field]
                break

    parts = str(message).strip().split()
    coin = parts[1].lower() if len(parts) > 1 else DEFAULT_COIN
    return {"coin": coin, "message": message}


def run_trigger_node(node: NodeDefinition, input_data: Any, context: Optional[Any] = None,
                     services: Optional[Any] = None) -> Any:
    """Run a trigger node. Chat-bot triggers parse the command, others pass input through."""
    if node.integration_kind == IntegrationKind.SLACK.value:
        result = parse_command(input_data)
        logger.debug(f"Trigger {node.id} parsed coin '{result['coin']}'")
        return result
    return input_data
