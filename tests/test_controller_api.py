"""
Unit tests for Controller REST API.

Tests the FastAPI endpoints for intent management and node status reporting.
"""

import pytest
from fastapi.testclient import TestClient

from controller.api import app, intent_store


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture(autouse=True)
def reset_state():
    """Reset the intent store before each test."""
    intent_store.clear()
    yield
    intent_store.clear()


def put_intent(client, name="backend-net", **fields):
    payload = {"name": name, "subnet": "192.168.1.0/24", "gateway": "10.0.0.1"}
    payload.update(fields)
    return client.put(f"/api/v1/intents/{name}", json=payload)


def status_payload(hostname="node-a", state="applied", **fields):
    payload = {
        "hostname": hostname,
        "state": state,
        "destination": "192.168.1.0/24",
        "gateway": "10.0.0.1",
        "table": 100,
    }
    payload.update(fields)
    return payload


class TestIntentEndpoints:
    """Tests for /api/v1/intents."""

    def test_create_intent(self, client):
        response = put_intent(client)

        assert response.status_code == 200
        data = response.json()
        assert data["subnet"] == "192.168.1.0/24"
        assert data["generation"] == 1
        assert data["node"] is None

    def test_subnet_normalized(self, client):
        response = put_intent(client, subnet="192.168.1.77/24")

        assert response.json()["subnet"] == "192.168.1.0/24"

    def test_update_bumps_generation(self, client):
        put_intent(client)

        response = put_intent(client, gateway="10.0.0.2")

        assert response.json()["generation"] == 2

    def test_identical_update_keeps_generation(self, client):
        put_intent(client)

        response = put_intent(client)

        assert response.json()["generation"] == 1

    def test_name_mismatch_returns_400(self, client):
        response = client.put(
            "/api/v1/intents/other",
            json={"name": "backend-net", "subnet": "192.168.1.0/24"}
        )

        assert response.status_code == 400

    @pytest.mark.parametrize("fields", [
        {"subnet": "192.168.1.0"},
        {"subnet": "not-a-network/24"},
        {"gateway": "10.0.0.300"},
    ])
    def test_invalid_intent_returns_422(self, client, fields):
        response = put_intent(client, **fields)

        assert response.status_code == 422

    def test_list_scoped_to_node(self, client):
        put_intent(client, name="everywhere")
        put_intent(client, name="only-a", node="node-a")
        put_intent(client, name="only-b", node="node-b")

        response = client.get("/api/v1/intents", params={"node": "node-a"})

        assert response.status_code == 200
        names = [i["name"] for i in response.json()["intents"]]
        assert names == ["everywhere", "only-a"]

    def test_list_all(self, client):
        put_intent(client, name="b")
        put_intent(client, name="a", node="node-b")

        names = [i["name"] for i in client.get("/api/v1/intents").json()["intents"]]

        assert names == ["a", "b"]

    def test_get_intent(self, client):
        put_intent(client)

        response = client.get("/api/v1/intents/backend-net")

        assert response.status_code == 200
        assert response.json()["gateway"] == "10.0.0.1"

    def test_get_unknown_intent_returns_404(self, client):
        assert client.get("/api/v1/intents/missing").status_code == 404

    def test_delete_intent(self, client):
        put_intent(client)

        response = client.delete("/api/v1/intents/backend-net")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert client.get("/api/v1/intents/backend-net").status_code == 404

    def test_delete_unknown_intent_returns_404(self, client):
        assert client.delete("/api/v1/intents/missing").status_code == 404


class TestStatusEndpoints:
    """Tests for per-node status reporting."""

    def test_report_status(self, client):
        put_intent(client)

        response = client.put("/api/v1/intents/backend-net/status", json=status_payload())

        assert response.status_code == 200
        statuses = client.get("/api/v1/intents/backend-net/status").json()
        assert statuses["node-a"]["state"] == "applied"
        assert statuses["node-a"]["table"] == 100

    def test_report_rejection(self, client):
        put_intent(client, subnet="10.1.0.0/16")
        payload = status_payload(state="rejected", destination="10.1.0.0/16",
                                 error="overlaps protected subnet 10.0.0.0/8", permanent=True)

        client.put("/api/v1/intents/backend-net/status", json=payload)

        status = client.get("/api/v1/intents/backend-net/status").json()["node-a"]
        assert status["state"] == "rejected"
        assert status["permanent"] is True

    def test_status_for_unknown_intent_returns_404(self, client):
        response = client.put("/api/v1/intents/missing/status", json=status_payload())

        assert response.status_code == 404

    def test_invalid_state_returns_422(self, client):
        put_intent(client)

        response = client.put("/api/v1/intents/backend-net/status",
                              json=status_payload(state="done"))

        assert response.status_code == 422

    def test_clear_status(self, client):
        put_intent(client)
        client.put("/api/v1/intents/backend-net/status", json=status_payload())

        response = client.delete("/api/v1/intents/backend-net/status/node-a")

        assert response.json() == {"status": "ok", "removed": True}
        assert client.get("/api/v1/intents/backend-net/status").json() == {}

    def test_update_resets_status(self, client):
        put_intent(client)
        client.put("/api/v1/intents/backend-net/status", json=status_payload())

        put_intent(client, subnet="192.168.2.0/24")

        assert client.get("/api/v1/intents/backend-net/status").json() == {}

    def test_remove_node_prunes_status(self, client):
        put_intent(client, name="one")
        put_intent(client, name="two")
        client.put("/api/v1/intents/one/status", json=status_payload("node-a"))
        client.put("/api/v1/intents/two/status", json=status_payload("node-b"))

        response = client.delete("/api/v1/nodes/node-a")

        assert response.json() == {"status": "ok", "pruned": ["one"]}
        assert client.get("/api/v1/intents/one/status").json() == {}
        assert "node-b" in client.get("/api/v1/intents/two/status").json()


class TestHealthEndpoint:

    def test_health(self, client):
        put_intent(client)

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "intent_count": 1}
