"""Integration tests for the workflow API endpoints."""
import pytest
from fastapi.testclient import TestClient

from storeflow.api.dependencies import get_service
from storeflow.api.main import app

OWNER = {"X-Owner-Id": "store-1"}

ECHO = {
    "name": "Echo",
    "nodes": [
        {"id": "t", "kind": "trigger"},
        {"id": "p", "kind": "primitive", "primitive": "test.echo"},
        {"id": "o", "kind": "output", "outputType": "return"},
    ],
    "edges": [{"id": "e1", "source": "t", "target": "p"}, {"id": "e2", "source": "p", "target": "o"}],
}


@pytest.fixture
def client(service):
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_enabled(client, data=ECHO, **fields):
    created = client.post("/v1/workflows", json={**data, **fields}, headers=OWNER).json()
    response = client.post(f"/v1/workflows/{created['id']}/enable", headers=OWNER)
    assert response.status_code == 200
    return response.json()


def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "storeflow", "primitives": 3}


def test_root_endpoint(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["service"] == "storeflow"


class TestPrimitiveRoutes:
    """Palette and custom primitive endpoints."""

    def test_list_and_get(self, client):
        palette = client.get("/v1/primitives").json()

        assert [entry["id"] for entry in palette] == ["test.echo", "test.fail", "test.slow"]
        assert client.get("/v1/primitives/test.slow").json()["inputSchema"]["properties"]["seconds"]["type"] == "number"
        assert client.get("/v1/primitives/nope").status_code == 404

    def test_create_custom_primitive(self, client):
        body = {
            "name": "custom.discounted",
            "category": "pricing",
            "expression": "total * (1 - rate)",
            "inputSchema": {"properties": {"total": {"type": "number"}, "rate": {"type": "number", "default": 0.1}}},
        }

        response = client.post("/v1/primitives", json=body)

        assert response.status_code == 201
        assert response.json()["builtin"] is False
        assert [entry["id"] for entry in client.get("/v1/primitives", params={"category": "pricing"}).json()] == ["custom.discounted"]

    def test_duplicate_primitive(self, client):
        response = client.post("/v1/primitives", json={"name": "test.echo", "expression": "1"})

        assert response.status_code == 409
        assert response.json()["code"] == "DuplicateName"

    def test_invalid_schema(self, client):
        response = client.post(
            "/v1/primitives",
            json={"name": "custom.bad", "expression": "1", "inputSchema": {"properties": {"x": {"type": "decimal"}}}},
        )

        assert response.status_code == 422
        assert response.json()["code"] == "InvalidSchema"
        assert response.json()["problems"] == ["x: unknown type 'decimal'"]

    def test_delete_primitive(self, client):
        client.post("/v1/primitives", json={"name": "custom.one", "expression": "1"})

        assert client.delete("/v1/primitives/custom.one").status_code == 204
        assert client.delete("/v1/primitives/custom.one").status_code == 404

    def test_update_primitive(self, client, service):
        client.post("/v1/primitives", json={"name": "custom.one", "expression": "1"})

        response = client.put(
            "/v1/primitives/custom.one",
            json={"expression": "n + 1", "description": "Adds one", "inputSchema": {"properties": {"n": {"type": "number"}}}},
        )

        assert response.status_code == 200
        assert response.json()["id"] == "custom.one"
        assert response.json()["description"] == "Adds one"
        assert service.registry.get("custom.one").invoke({"n": 1}) == 2
        assert service.store.list_primitives()[0]["description"] == "Adds one"

    def test_update_unknown_primitive(self, client):
        response = client.put("/v1/primitives/custom.missing", json={"expression": "1"})

        assert response.status_code == 404

    def test_update_invalid_primitive(self, client):
        client.post("/v1/primitives", json={"name": "custom.one", "expression": "1"})

        response = client.put("/v1/primitives/custom.one", json={"expression": "__import__('os')"})

        assert response.status_code == 422
        assert response.json()["code"] == "InvalidSchema"


class TestWorkflowRoutes:
    """CRUD, lifecycle and execution endpoints."""

    def test_create_and_get(self, client):
        response = client.post("/v1/workflows", json=ECHO, headers=OWNER)

        assert response.status_code == 201
        workflow = response.json()
        assert workflow["enabled"] is False
        assert workflow["owner"] == "store-1"
        assert workflow["slug"] == "echo"

        fetched = client.get(f"/v1/workflows/{workflow['id']}", headers=OWNER)
        assert fetched.json()["id"] == workflow["id"]

    def test_other_owner_gets_404(self, client):
        workflow = client.post("/v1/workflows", json=ECHO, headers=OWNER).json()

        response = client.get(f"/v1/workflows/{workflow['id']}", headers={"X-Owner-Id": "store-2"})

        assert response.status_code == 404
        assert response.json()["code"] == "WorkflowNotFound"

    def test_malformed_definition(self, client):
        response = client.post("/v1/workflows", json={"name": "Bad", "nodes": [{"id": "x", "kind": "teleport"}]})

        assert response.status_code == 422
        assert response.json()["code"] == "InvalidDefinition"

    def test_list_filters(self, client):
        create_enabled(client)
        client.post("/v1/workflows", json={**ECHO, "triggerType": "WEBHOOK"}, headers=OWNER)

        enabled = client.get("/v1/workflows", params={"enabled": "true"}, headers=OWNER).json()
        webhooks = client.get("/v1/workflows", params={"triggerType": "WEBHOOK"}, headers=OWNER).json()

        assert len(enabled) == 1
        assert [workflow["triggerType"] for workflow in webhooks] == ["WEBHOOK"]

    def test_update_and_delete(self, client):
        workflow = client.post("/v1/workflows", json=ECHO, headers=OWNER).json()

        updated = client.put(f"/v1/workflows/{workflow['id']}", json={"description": "Echoes"}, headers=OWNER)
        assert updated.json()["description"] == "Echoes"
        assert updated.json()["version"] == 2

        assert client.delete(f"/v1/workflows/{workflow['id']}", headers=OWNER).status_code == 204
        assert client.get(f"/v1/workflows/{workflow['id']}", headers=OWNER).status_code == 404

    def test_validate(self, client):
        workflow = client.post("/v1/workflows", json={"name": "Broken", "nodes": [{"id": "o", "kind": "output"}]}).json()

        report = client.post(f"/v1/workflows/{workflow['id']}/validate").json()

        assert report["valid"] is False
        assert report["errors"][0]["code"] == "MissingTrigger"

    def test_enable_invalid(self, client):
        workflow = client.post("/v1/workflows", json={"name": "Broken", "nodes": [{"id": "o", "kind": "output"}]}).json()

        response = client.post(f"/v1/workflows/{workflow['id']}/enable")

        assert response.status_code == 422
        assert response.json()["code"] == "InvalidWorkflow"
        assert response.json()["errors"][0]["code"] == "MissingTrigger"

    def test_execute(self, client):
        workflow = create_enabled(client)

        response = client.post(f"/v1/workflows/{workflow['id']}/execute", json={"payload": {"x": 5}}, headers=OWNER)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["result"] == {"x": 5}
        assert [trace["nodeId"] for trace in data["trace"]] == ["t", "p", "o"]

        history = client.get(f"/v1/workflows/{workflow['id']}/executions", headers=OWNER).json()
        assert history[0]["executionId"] == data["executionId"]

    def test_execute_disabled(self, client):
        workflow = client.post("/v1/workflows", json=ECHO).json()

        response = client.post(f"/v1/workflows/{workflow['id']}/execute", json={"payload": {}})

        assert response.status_code == 409
        assert response.json()["code"] == "WorkflowDisabled"

    def test_disable(self, client):
        workflow = create_enabled(client)

        response = client.post(f"/v1/workflows/{workflow['id']}/disable", headers=OWNER)

        assert response.json()["enabled"] is False


class TestTriggerRoutes:
    """Webhook and event endpoints."""

    def test_webhook(self, client):
        workflow = create_enabled(client, triggerType="WEBHOOK")

        response = client.post(f"/v1/webhooks/{workflow['slug']}", json={"orderId": "A1"})

        assert response.status_code == 200
        assert response.json()["result"] == {"orderId": "A1"}

    def test_webhook_mismatch(self, client):
        workflow = create_enabled(client)

        response = client.post(f"/v1/webhooks/{workflow['slug']}", json={})

        assert response.status_code == 400
        assert response.json()["code"] == "TriggerMismatch"

    def test_webhook_unknown(self, client):
        assert client.post("/v1/webhooks/missing", json={}).status_code == 404

    def test_event(self, client):
        workflow = create_enabled(client, triggerType="EVENT", triggerConfig={"eventTypes": ["order.paid"]})

        response = client.post("/v1/events", json={"type": "order.paid", "data": {"total": 10}}, headers=OWNER)

        assert response.status_code == 200
        executions = response.json()["executions"]
        assert [execution["workflowId"] for execution in executions] == [workflow["id"]]
        assert executions[0]["success"] is True
        assert "error" not in executions[0]


class TestTemplateRoutes:
    """Template gallery endpoints."""

    def test_list_grouped(self, client):
        groups = client.get("/v1/templates").json()

        assert "ecommerce" in groups
        assert groups["marketing"][0]["id"] == "tpl_welcome_coupon"

    def test_get(self, client):
        assert client.get("/v1/templates/big-order-alert").json()["id"] == "tpl_big_order_alert"
        assert client.get("/v1/templates/nope").status_code == 404

    def test_install(self, client):
        response = client.post("/v1/templates/install", json={"templateId": "tpl_welcome_coupon", "name": "Coupons"}, headers=OWNER)

        assert response.status_code == 201
        workflow = response.json()
        assert workflow["enabled"] is False
        assert workflow["templateId"] == "tpl_welcome_coupon"
        assert workflow["owner"] == "store-1"

        conflict = client.post("/v1/templates/install", json={"templateId": "tpl_welcome_coupon", "name": "Coupons"}, headers=OWNER)
        assert conflict.status_code == 409
        assert conflict.json()["code"] == "NameConflict"

    def test_install_unknown(self, client):
        response = client.post("/v1/templates/install", json={"templateId": "nope"})

        assert response.status_code == 404
        assert response.json()["code"] == "TemplateNotFound"

    def test_save_as_template(self, client):
        workflow = client.post("/v1/workflows", json=ECHO, headers=OWNER).json()

        response = client.post(
            "/v1/templates",
            json={"workflowId": workflow["id"], "name": "Echo Starter", "category": "content", "tags": ["demo"]},
            headers=OWNER,
        )

        assert response.status_code == 201
        assert response.json()["slug"] == "echo-starter"
        assert client.get("/v1/templates").json()["content"][0]["name"] == "Echo Starter"
