"""HTTP request node, with a shortcut for the price lookup API."""

from typing import Any, Optional
from urllib.parse import quote

from ..models.core import NodeDefinition
from ..core.exceptions import IntegrationError, NodeConfigurationError
from ..core.logging import get_logger
from .trigger import DEFAULT_COIN

logger = get_logger(__name__)

PRICE_API_HOST_MARKER = "coingecko"


def is_price_lookup(url: str) -> bool:
    return PRICE_API_HOST_MARKER in url


def lookup_price(coin: str, services: Any) -> dict:
    """
    Fetch the USD price of ``coin``.

    Returns:
        ``{coin: {"usd": price}}``; the price is ``"N/A"`` when the API does not know the coin
    """
    url = f"{services.price_api_base_url}/simple/price?ids={quote(coin)}&vs_currencies=usd"
    try:
        response = services.http_client.request("GET", url, timeout=services.http_timeout)
    except IntegrationError as e:
        raise IntegrationError(
            f"CoinGecko API error: {e.message}",
            status_code=e.status_code,
            url=url
        ) from e

    payload = response.body if isinstance(response.body, dict) else {}
    return {coin: payload.get(coin) or {"usd": "N/A"}}


def run_http_node(node: NodeDefinition, input_data: Any, context: Optional[Any] = None,
                  services: Optional[Any] = None) -> Any:
    """
    Run an HTTP request node.

    Price lookup URLs query the configured price API for ``input.coin``.
    Any other URL is called with the configured method; the body is the
    configured one, falling back to the node input.
    """
    config = node.config
    if not config.url:
        raise NodeConfigurationError(f"HTTP node '{node.display_name}' has no URL configured", node_id=node.id)

    if is_price_lookup(config.url):
        coin = input_data.get("coin") if isinstance(input_data, dict) else None
        return lookup_price(str(coin or DEFAULT_COIN), services)

    body = config.body if config.body is not None else input_data
    try:
        response = services.http_client.request(
            config.method,
            config.url,
            body=body,
            timeout=services.http_timeout
        )
    except IntegrationError as e:
        raise IntegrationError(
            f"HTTP request failed: {e.message}",
            status_code=e.status_code,
            url=config.url,
            node_id=node.id
        ) from e

    logger.debug(f"HTTP node {node.id} got status {response.status}")
    return response.body
