"""Pytest configuration and fixtures."""

from typing import Any, Dict, List, Optional

import pytest

from flowengine.config import get_testing_config
from flowengine.core.exceptions import IntegrationError
from flowengine.core.http_client import HttpResponse
from flowengine.core.node_executor import NodeExecutor, NodeServices
from flowengine.core.orchestrator import WorkflowExecutor
from flowengine.core.recorder import ExecutionRecorder
from flowengine.core.sandbox import UserCodeEvaluator
from flowengine.core.workflow_store import WorkflowStore
from flowengine.models.core import WorkflowCreate
from flowengine.storage.database import configure_database, create_tables, reset_database_engine

PRICE_API = "https://api.coingecko.com/api/v3"
DISCORD_URL = "https://discord.com/api/webhooks/123/abc"


class FakeHttpClient:
    """Records outbound calls and answers them from canned responses."""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self._routes: List[tuple] = []

    def respond(self, url_marker: str, body: Any = None, status: int = 200):
        self._routes.append((url_marker, HttpResponse(status, body)))

    def fail(self, url_marker: str, message: str = "upstream unavailable", status_code: Optional[int] = 503):
        self._routes.append((url_marker, IntegrationError(message, status_code=status_code)))

    def request(self, method, url, body=None, timeout=None, headers=None):
        self.calls.append({"method": method, "url": url, "body": body, "timeout": timeout})
        for marker, outcome in self._routes:
            if marker in url:
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        return HttpResponse(200, {"ok": True})

    def close(self):
        pass


def make_node(node_id: str, node_type: str = "default", integration: Optional[str] = None,
              label: Optional[str] = None, raw_type: Optional[str] = None, **config) -> Dict[str, Any]:
    """Build a node the way the editor stores it."""
    data = {"nodeType": node_type, "label": label or node_id}
    if integration:
        data["integrationType"] = integration
    data.update(config)
    return {"id": node_id, "type": raw_type or node_type, "position": {"x": 0, "y": 0}, "data": data}


def make_edge(source: str, target: str) -> Dict[str, Any]:
    return {"id": f"e-{source}-{target}", "source": source, "target": target}


def chain_edges(*node_ids: str) -> List[Dict[str, Any]]:
    return [make_edge(source, target) for source, target in zip(node_ids, node_ids[1:])]


@pytest.fixture
def database(tmp_path):
    """Point the storage layer at a fresh SQLite file."""
    configure_database(f"sqlite:///{tmp_path / 'flowengine-test.db'}")
    create_tables()
    yield
    reset_database_engine()


@pytest.fixture
def http_client():
    return FakeHttpClient()


@pytest.fixture
def services(http_client):
    return NodeServices(
        http_client=http_client,
        evaluator=UserCodeEvaluator(timeout=1.0),
        price_api_base_url=PRICE_API,
        http_timeout=2.0
    )


@pytest.fixture
def node_executor(services):
    return NodeExecutor(services)


@pytest.fixture
def workflow_store(database):
    return WorkflowStore()


@pytest.fixture
def recorder(database):
    return ExecutionRecorder()


@pytest.fixture
def executor(workflow_store, recorder, node_executor):
    return WorkflowExecutor(store=workflow_store, recorder=recorder, node_executor=node_executor)


@pytest.fixture
def create_workflow(workflow_store):
    """Factory storing a workflow from editor nodes and edges."""
    def _create(nodes, edges=None, name="Test Workflow"):
        return workflow_store.create_workflow(WorkflowCreate(name=name, rf_nodes=nodes, rf_edges=edges or []))
    return _create


@pytest.fixture
def app_config(tmp_path):
    return get_testing_config().model_copy(
        update={"database_url": f"sqlite:///{tmp_path / 'flowengine-api.db'}"}
    )


@pytest.fixture
def client(app_config, http_client):
    """Create a test client running the full application lifespan."""
    from fastapi.testclient import TestClient
    from flowengine.main import create_app

    app = create_app(app_config, http_client=http_client)
    with TestClient(app) as test_client:
        yield test_client
