"""Outbound HTTP client used by integration nodes."""

import json
from typing import Any, Dict, Optional

import requests

from .exceptions import IntegrationError
from .logging import get_logger

logger = get_logger(__name__)

# Methods that never carry a request body
_BODYLESS_METHODS = {"GET", "HEAD", "OPTIONS", "DELETE"}


class HttpResponse:
    """Decoded response of an outbound call."""

    def __init__(self, status: int, body: Any, headers: Optional[Dict[str, str]] = None):
        self.status = status
        self.body = body
        self.headers = headers or {}

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def __repr__(self) -> str:
        return f"HttpResponse(status={self.status})"


class HttpClient:
    """
    Thin wrapper over a ``requests.Session``.

    JSON request bodies are sent as JSON, JSON responses are decoded and any
    other response is returned as text. Non-2xx responses, timeouts and
    connection failures raise ``IntegrationError``.
    """

    def __init__(self, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def request(
        self,
        method: str,
        url: str,
        body: Any = None,
        timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> HttpResponse:
        """
        Send a request and decode its response.

        Args:
            method: HTTP method
            url: Absolute request URL
            body: JSON-serialisable body; ignored for GET, HEAD, OPTIONS and DELETE
            timeout: Per-call timeout in seconds, defaults to the client's
            headers: Extra request headers

        Returns:
            HttpResponse: Status, decoded body and response headers

        Raises:
            IntegrationError: On non-2xx status, timeout or connection failure
        """
        method = (method or "GET").upper()
        timeout = timeout if timeout is not None else self.timeout
        request_headers = dict(headers or {})

        json_body = None
        if body is not None and method not in _BODYLESS_METHODS:
            json_body = body
            request_headers.setdefault("Content-Type", "application/json")

        logger.debug(f"{method} {url}")
        try:
            response = self.session.request(
                method=method,
                url=url,
                json=json_body,
                headers=request_headers,
                timeout=timeout,
            )
        except requests.Timeout as e:
            raise IntegrationError(f"Request to {url} timed out after {timeout}s", url=url) from e
        except requests.RequestException as e:
            raise IntegrationError(f"Request to {url} failed: {e}", url=url) from e

        decoded = self._decode(response)
        if not 200 <= response.status_code < 300:
            detail = response.text if response.text else response.reason
            raise IntegrationError(
                f"{method} {url} returned {response.status_code}: {detail}",
                status_code=response.status_code,
                url=url,
            ).add_details(response_body=decoded)

        return HttpResponse(response.status_code, decoded, dict(response.headers))

    def get(self, url: str, timeout: Optional[float] = None) -> HttpResponse:
        return self.request("GET", url, timeout=timeout)

    def post(self, url: str, body: Any = None, timeout: Optional[float] = None) -> HttpResponse:
        return self.request("POST", url, body=body, timeout=timeout)

    def close(self):
        self.session.close()

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return None
        content_type = response.headers.get("Content-Type", "")
        if "json" in content_type:
            try:
                return response.json()
            except ValueError:
                return response.text
        try:
            return json.loads(response.text)
        except ValueError:
            return response.text
