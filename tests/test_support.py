"""Tests for configuration, logging, retries and the outbound HTTP client."""

import json
import logging
import os
import threading

import pytest
import requests

from flowengine.config import AppConfig, load_config, reset_config
from flowengine.core.error_recovery import RetryConfig, with_retry
from flowengine.core.exceptions import IntegrationError, StorageError, create_error_response
from flowengine.core.http_client import HttpClient
from flowengine.core.logging import (
    ExecutionContextFilter,
    StructuredFormatter,
    clear_logging_context,
    logging_context,
    set_logging_context,
)


class TestConfiguration:
    """Environment driven settings."""

    def test_defaults(self):
        config = AppConfig()

        assert config.database_url == "sqlite:///./flowengine.db"
        assert config.http_timeout == 10.0
        assert config.sandbox_timeout == 5.0
        assert config.is_sqlite

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("FLOWENGINE_PORT", "9001")
        monkeypatch.setenv("FLOWENGINE_DEBUG", "yes")
        monkeypatch.setenv("FLOWENGINE_HTTP_TIMEOUT", "3.5")
        monkeypatch.setenv("FLOWENGINE_PRICE_API_BASE_URL", "http://prices.local/api/")
        monkeypatch.setenv("FLOWENGINE_CORS_ORIGINS", "http://a.test,http://b.test")

        config = AppConfig.from_env()

        assert config.port == 9001
        assert config.debug is True
        assert config.http_timeout == 3.5
        assert config.price_api_base_url == "http://prices.local/api"
        assert config.cors_origins == ["http://a.test", "http://b.test"]

    def test_load_config_reads_dotenv(self, tmp_path, monkeypatch):
        env_file = tmp_path / "settings.env"
        env_file.write_text("FLOWENGINE_SANDBOX_TIMEOUT=2.5\n")
        monkeypatch.delenv("FLOWENGINE_SANDBOX_TIMEOUT", raising=False)

        try:
            config = load_config(str(env_file))
            assert config.sandbox_timeout == 2.5
        finally:
            os.environ.pop("FLOWENGINE_SANDBOX_TIMEOUT", None)
            reset_config()

    @pytest.mark.parametrize("field, value", [
        ("database_url", "oracle://db"),
        ("port", 0),
        ("http_timeout", 0),
        ("sandbox_timeout", -1),
    ])
    def test_invalid_values_are_rejected(self, field, value):
        with pytest.raises(ValueError):
            AppConfig(**{field: value})


class TestStructuredLogging:
    """JSON log records carry the run context."""

    def _fields(self):
        record = logging.LogRecord("flowengine.core", logging.INFO, __file__, 10, "x", None, None)
        ExecutionContextFilter().filter(record)
        return record.extra_fields

    def test_context_is_attached(self):
        record = logging.LogRecord("flowengine.core", logging.INFO, __file__, 10, "step done", None, None)

        with logging_context(workflow_id="wf-1", execution_id="ex-1", node_id=None):
            ExecutionContextFilter().filter(record)
        entry = json.loads(StructuredFormatter().format(record))

        assert entry["message"] == "step done"
        assert entry["workflow_id"] == "wf-1"
        assert entry["execution_id"] == "ex-1"
        assert "node_id" not in entry

    def test_explicit_fields_win_over_context(self):
        record = logging.LogRecord("flowengine.core", logging.INFO, __file__, 10, "x", None, None)
        record.extra_fields = {"execution_id": "inner"}

        with logging_context(execution_id="outer"):
            ExecutionContextFilter().filter(record)

        assert record.extra_fields["execution_id"] == "inner"

    def test_nested_context_is_restored(self):
        with logging_context(workflow_id="wf-1", execution_id="outer"):
            with logging_context(execution_id="inner"):
                assert self._fields() == {"workflow_id": "wf-1", "execution_id": "inner"}
            assert self._fields() == {"workflow_id": "wf-1", "execution_id": "outer"}
        assert self._fields() == {}

    def test_set_and_clear(self):
        try:
            set_logging_context(request_id="req-1")
            assert self._fields() == {"request_id": "req-1"}
        finally:
            clear_logging_context()

        assert self._fields() == {}

    def test_concurrent_runs_keep_their_own_context(self):
        a_entered = threading.Event()
        b_entered = threading.Event()
        a_exited = threading.Event()
        seen = {}

        def run_a():
            with logging_context(execution_id="A"):
                a_entered.set()
                b_entered.wait(5)
            a_exited.set()

        def run_b():
            a_entered.wait(5)
            with logging_context(execution_id="B"):
                b_entered.set()
                a_exited.wait(5)
                seen["during"] = self._fields().get("execution_id")
            seen["after"] = self._fields().get("execution_id")

        threads = [threading.Thread(target=run_a), threading.Thread(target=run_b)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5)

        assert seen == {"during": "B", "after": None}
        assert self._fields().get("execution_id") is None


class TestRetry:
    """Retries of recoverable storage failures."""

    def test_recoverable_error_is_retried(self):
        attempts = []

        @with_retry(RetryConfig(max_attempts=3, base_delay=0, jitter=False))
        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise StorageError("database is locked")
            return "ok"

        assert flaky() == "ok"
        assert len(attempts) == 3

    def test_non_recoverable_error_is_raised_at_once(self):
        attempts = []

        @with_retry(RetryConfig(max_attempts=3, base_delay=0))
        def broken():
            attempts.append(1)
            error = StorageError("row missing")
            error.recoverable = False
            raise error

        with pytest.raises(StorageError):
            broken()
        assert len(attempts) == 1

    def test_other_errors_are_not_retried(self):
        attempts = []

        @with_retry(RetryConfig(max_attempts=3, base_delay=0))
        def failing():
            attempts.append(1)
            raise IntegrationError("upstream down")

        with pytest.raises(IntegrationError):
            failing()
        assert len(attempts) == 1

    def test_storage_errors_are_the_default_retryable_type(self):
        config = RetryConfig()

        assert config.retryable_exceptions == [StorageError]
        assert config.should_retry(StorageError("locked"), 1) is True
        assert config.should_retry(ValueError("bad"), 1) is False

    def test_error_response_shape(self):
        response = create_error_response(StorageError("disk full", operation="save"))

        assert response["error"] == "StorageError"
        assert response["details"]["category"] == "storage"
        assert response["details"]["recoverable"] is True
        assert response["context"] == {"operation": "save"}


def _response(status, body=None, text=None, content_type="application/json", reason="OK"):
    response = requests.Response()
    response.status_code = status
    response.reason = reason
    if body is not None:
        response._content = json.dumps(body).encode()
    else:
        response._content = (text or "").encode()
    response.headers["Content-Type"] = content_type
    return response


class StubSession:
    """Stands in for requests.Session, replaying one outcome."""

    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    def request(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    def close(self):
        pass


class TestHttpClient:
    """Request encoding, response decoding and error mapping."""

    def test_post_sends_json_and_decodes_response(self):
        session = StubSession(_response(200, {"id": 1}))

        response = HttpClient(timeout=4.0, session=session).post("https://example.com", {"a": 1})

        assert response.ok
        assert response.body == {"id": 1}
        assert session.calls[0]["json"] == {"a": 1}
        assert session.calls[0]["timeout"] == 4.0
        assert session.calls[0]["headers"]["Content-Type"] == "application/json"

    def test_get_never_sends_body(self):
        session = StubSession(_response(200, text="plain", content_type="text/plain"))

        response = HttpClient(session=session).request("get", "https://example.com", body={"a": 1}, timeout=1.0)

        assert response.body == "plain"
        assert session.calls[0]["method"] == "GET"
        assert session.calls[0]["json"] is None
        assert session.calls[0]["timeout"] == 1.0

    def test_empty_response_body(self):
        session = StubSession(_response(204, text="", reason="No Content"))

        assert HttpClient(session=session).post("https://example.com").body is None

    def test_non_2xx_raises_with_status(self):
        session = StubSession(_response(404, {"error": "nope"}, reason="Not Found"))

        with pytest.raises(IntegrationError) as exc_info:
            HttpClient(session=session).get("https://example.com/x")

        assert exc_info.value.status_code == 404
        assert "returned 404" in exc_info.value.message
        assert exc_info.value.details["response_body"] == {"error": "nope"}

    def test_timeout_raises(self):
        session = StubSession(requests.Timeout("slow"))

        with pytest.raises(IntegrationError) as exc_info:
            HttpClient(timeout=0.5, session=session).get("https://example.com")

        assert exc_info.value.message == "Request to https://example.com timed out after 0.5s"

    def test_connection_error_raises(self):
        session = StubSession(requests.ConnectionError("refused"))

        with pytest.raises(IntegrationError) as exc_info:
            HttpClient(session=session).get("https://example.com")

        assert "refused" in exc_info.value.message
