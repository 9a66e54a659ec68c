"""Chat webhook node: posts the current message to a Discord webhook."""

import json
import re
from typing import Any, Dict, List, Optional, Tuple

from ..models.core import NodeDefinition
from ..core.exceptions import IntegrationError, NodeConfigurationError
from ..core.logging import get_logger

logger = get_logger(__name__)

WEBHOOK_URL_MARKER = "discord.com/api/webhooks"

_TEMPLATE_LINE = re.compile(r"^(\w+):\s*(.+)$")
_FIELD_PLACEHOLDERS = ("formattedMessage", "content", "message")


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value, default=str)


def _substitute(value: str, data: Any) -> str:
    if isinstance(data, dict):
        for field in _FIELD_PLACEHOLDERS:
            field_value = data.get(field)
            # An empty formatted message leaves the placeholder untouched
            if field_value is None or (field == "formattedMessage" and not field_value):
                continue
            value = value.replace("{{$json.%s}}" % field, _as_text(field_value))
    if "{{$json}}" in value:
        value = value.replace("{{$json}}", json.dumps(data, default=str))
    return value


def render_body(template: str, data: Any) -> Tuple[Dict[str, Any], Optional[List[Any]]]:
    """
    Render a ``key: value`` per line body template against ``data``.

    Values that look like JSON objects or arrays are parsed. A parsed array
    replaces the whole body, which is returned separately.

    Returns:
        (fields, replacement) where ``replacement`` is the array body if any
    """
    fields: Dict[str, Any] = {}
    replacement = None

    for line in (template or "").splitlines():
        match = _TEMPLATE_LINE.match(line.strip())
        if not match:
            continue
        key, value = match.group(1), _substitute(match.group(2).strip(), data)

        if value.strip().startswith(("[", "{")):
            try:
                parsed = json.loads(value)
            except ValueError:
                fields[key] = value
                continue
            if isinstance(parsed, list):
                replacement = parsed
            else:
                fields[key] = parsed
        else:
            fields[key] = value

    return fields, replacement


def default_body(normalized: Any, input_data: Any) -> Any:
    """Body used when no template is configured: the best text as ``content``."""
    content = None
    if isinstance(normalized, dict):
        content = normalized.get("formattedMessage") or normalized.get("content")
    if not content:
        content = json.dumps(input_data, default=str)

    # A message that already is a JSON array is sent as the array
    try:
        parsed = json.loads(content)
    except (TypeError, ValueError):
        parsed = None
    if isinstance(parsed, list):
        return parsed
    return {"content": content}


def run_webhook_node(node: NodeDefinition, input_data: Any, context: Optional[Any] = None,
                     services: Optional[Any] = None) -> Dict[str, Any]:
    """Build the message body and POST it to the configured webhook."""
    url = node.config.url.strip()
    template = node.config.body_parameters

    if not url or WEBHOOK_URL_MARKER not in url:
        raise NodeConfigurationError("Invalid Discord webhook URL", node_id=node.id)

    normalized = input_data[0] if isinstance(input_data, list) and input_data else input_data

    body: Any = {}
    if template.strip():
        fields, replacement = render_body(template, normalized)
        body = replacement if replacement is not None else fields
    if not template.strip() or not body:
        body = default_body(normalized, input_data)

    try:
        response = services.http_client.request(
            "POST", url, body=body, timeout=services.http_timeout
        )
    except IntegrationError as e:
        raise IntegrationError(
            f"Discord webhook failed: {e.message}",
            status_code=e.status_code,
            node_id=node.id
        ) from e

    logger.info(f"Webhook node {node.id} delivered message (status {response.status})")
    return {
        "status": "sent",
        "message": body,
        "url": url,
        "discordResponse": response.status,
        "bodyParams": template,
    }
