"""Tests for the REST API."""

from conftest import PRICE_API, chain_edges, make_node

# Works for whichever coin the trigger parsed
PRICE_CODE = 'coin = list($json)[0]\nreturn [{"formattedMessage": "$" + $json[coin]["usd"]}]'

PRICE_BOT = {
    "name": "Price Bot",
    "triggerType": "slack",
    "rfNodes": [
        make_node("t", "trigger", integration="slack"),
        make_node("h", "http", url=f"{PRICE_API}/simple/price"),
        make_node("f", "function", code=PRICE_CODE),
    ],
    "rfEdges": chain_edges("t", "h", "f"),
}


def create(client, payload=None):
    response = client.post("/api/v1/workflows", json=payload or PRICE_BOT)
    assert response.status_code == 201
    return response.json()


class TestHealth:

    def test_root_and_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"
        assert "running" in client.get("/").json()["message"]

    def test_request_id_header(self, client):
        assert client.get("/health").headers["X-Request-ID"]


class TestWorkflowEndpoints:
    """Workflow CRUD."""

    def test_create_and_get(self, client):
        created = create(client)

        assert created["name"] == "Price Bot"
        assert created["isActive"] is False
        assert created["triggerType"] == "slack"
        assert [node["id"] for node in created["rfNodes"]] == ["t", "h", "f"]

        fetched = client.get(f"/api/v1/workflows/{created['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["rfEdges"] == PRICE_BOT["rfEdges"]

    def test_get_unknown_workflow(self, client):
        response = client.get("/api/v1/workflows/nope")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "WorkflowNotFoundError"

    def test_list_with_filters(self, client):
        create(client, {"name": "Alpha"})
        beta = create(client, {"name": "Beta"})
        client.patch(f"/api/v1/workflows/{beta['id']}/status", json={"isActive": True})

        active = client.get("/api/v1/workflows", params={"status": "Active"}).json()
        searched = client.get("/api/v1/workflows", params={"q": "alp"}).json()

        assert [w["name"] for w in active] == ["Beta"]
        assert [w["name"] for w in searched] == ["Alpha"]

    def test_update(self, client):
        created = create(client)

        response = client.put(f"/api/v1/workflows/{created['id']}", json={"description": "Posts prices"})

        assert response.status_code == 200
        assert response.json()["description"] == "Posts prices"
        assert response.json()["name"] == "Price Bot"

    def test_status_toggle(self, client):
        created = create(client)

        response = client.patch(f"/api/v1/workflows/{created['id']}/status", json={"isActive": True})

        assert response.status_code == 200
        assert response.json()["isActive"] is True

    def test_duplicate(self, client):
        created = create(client)

        response = client.post(f"/api/v1/workflows/{created['id']}/duplicate")

        assert response.status_code == 201
        assert response.json()["name"] == "Price Bot Copy"
        assert response.json()["id"] != created["id"]

    def test_delete(self, client):
        created = create(client)

        assert client.delete(f"/api/v1/workflows/{created['id']}").status_code == 204
        assert client.get(f"/api/v1/workflows/{created['id']}").status_code == 404
        assert client.delete(f"/api/v1/workflows/{created['id']}").status_code == 404


class TestRunEndpoints:
    """Test runs, execution history and retry."""

    def test_test_run_with_test_data(self, client, http_client):
        http_client.respond("simple/price", {"ethereum": {"usd": "3000"}, "bitcoin": {"usd": "65000"}})
        workflow = create(client)

        response = client.post(
            f"/api/v1/workflows/{workflow['id']}/test",
            json={"testData": {"content": "price bitcoin"}}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["testMode"] is True
        assert body["input"] == {"content": "price bitcoin"}
        assert body["output"]["formattedMessage"] == "$65000"
        assert [step["stepNumber"] for step in body["steps"]] == [1, 2, 3]
        assert body["steps"][0]["nodeType"] == "trigger"

    def test_test_run_without_body_uses_default(self, client, http_client):
        http_client.respond("simple/price", {"btc": {"usd": "1"}})
        workflow = create(client)

        body = client.post(f"/api/v1/workflows/{workflow['id']}/test").json()

        assert body["input"] == {"content": "price BTC"}
        assert body["output"]["formattedMessage"] == "$1"

    def test_failed_run_is_reported(self, client, http_client):
        http_client.fail("simple/price", "rate limited", status_code=429)
        workflow = create(client)

        body = client.post(f"/api/v1/workflows/{workflow['id']}/test", json={"content": "price btc"}).json()

        assert body["ok"] is False
        assert body["error"] == "CoinGecko API error: rate limited"
        assert len(body["steps"]) == 2

    def test_test_run_unknown_workflow(self, client):
        assert client.post("/api/v1/workflows/nope/test", json={}).status_code == 404

    def test_execution_history(self, client, http_client):
        http_client.respond("simple/price", {"btc": {"usd": "1"}})
        workflow = create(client)
        run = client.post(f"/api/v1/workflows/{workflow['id']}/test").json()

        detail = client.get(f"/api/v1/executions/{run['executionId']}")
        assert detail.status_code == 200
        assert detail.json()["status"] == "Success"
        assert detail.json()["steps"] == run["steps"]

        listing = client.get("/api/v1/executions", params={"workflowId": workflow["id"], "pageSize": 10}).json()
        assert listing["total"] == 1
        assert listing["items"][0]["workflowName"] == "Price Bot"

        assert client.get("/api/v1/executions", params={"status": "Failed"}).json()["total"] == 0

    def test_stats(self, client, http_client):
        http_client.respond("simple/price", {"btc": {"usd": "1"}})
        workflow = create(client)
        client.post(f"/api/v1/workflows/{workflow['id']}/test")

        stats = client.get("/api/v1/executions/stats/summary").json()

        assert stats["totalToday"] == 1
        assert stats["failedToday"] == 0
        assert stats["successRate"] == 100

    def test_retry(self, client, http_client):
        http_client.respond("simple/price", {"doge": {"usd": "0.1"}})
        workflow = create(client)
        first = client.post(f"/api/v1/workflows/{workflow['id']}/test", json={"content": "price doge"}).json()

        retried = client.post(f"/api/v1/executions/{first['executionId']}/retry")

        assert retried.status_code == 200
        assert retried.json()["executionId"] != first["executionId"]
        assert retried.json()["input"] == {"content": "price doge"}

    def test_unknown_execution(self, client):
        assert client.get("/api/v1/executions/nope").status_code == 404
        assert client.post("/api/v1/executions/nope/retry").status_code == 404
