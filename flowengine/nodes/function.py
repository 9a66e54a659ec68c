"""Function node: runs a user transform over the current data."""

import json
from typing import Any, Dict, Optional

from ..models.core import NodeDefinition
from ..core.exceptions import UserCodeError


def _usd(value: Any) -> Any:
    return value.get("usd") if isinstance(value, dict) else None


def format_price_message(input_data: Any) -> Dict[str, Any]:
    """
    Default result of a transform that returned nothing.

    Price payloads (``bitcoin.usd``, ``btc.usd`` or ``input[input.coin].usd``)
    become a chat-ready price line; anything else is serialised as is.
    """
    if isinstance(input_data, dict):
        fallback_price = _usd(input_data.get("bitcoin")) or _usd(input_data.get("btc"))
        if fallback_price:
            coin = next((key for key in input_data if key != "coin"), "BTC")
            price = _usd(input_data.get(coin)) or fallback_price or "N/A"
            return {"formattedMessage": f"💰 {coin.upper()} Price: ${price}", "coin": coin, "price": price}

        coin = input_data.get("coin")
        if isinstance(coin, str) and _usd(input_data.get(coin)):
            price = _usd(input_data[coin])
            return {"formattedMessage": f"💰 {coin.upper()} Price: ${price}", "coin": coin, "price": price}

    return {"formattedMessage": json.dumps(input_data, default=str)}


def run_function_node(node: NodeDefinition, input_data: Any, context: Optional[Any] = None,
                      services: Optional[Any] = None) -> Any:
    """Evaluate the node's code with the input bound as ``json``/``input``."""
    try:
        result = services.evaluator.evaluate(node.config.code, input_data, input_data)
    except UserCodeError as e:
        raise UserCodeError(f"Function execution error: {e.message}", node_id=node.id) from e

    if result is None:
        return format_price_message(input_data)
    return result
