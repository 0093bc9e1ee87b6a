"""
Unit tests for Automation main service.
"""

import pytest
from fastapi.testclient import TestClient

from shared.config import get_config
from service_automation.app.main import AutomationService, create_app
from service_automation.app.persistence import InMemoryAuditSink, InMemoryDefinitionStore


class TestAutomationService:
    """Test cases for AutomationService."""

    @pytest.fixture
    def service(self):
        """Create AutomationService with in-memory backends."""
        return AutomationService(
            config=get_config("automation", 8020, definition_store="memory", audit_sink="memory"),
            store=InMemoryDefinitionStore(),
            audit_sink=InMemoryAuditSink(),
        )

    @pytest.fixture
    def client(self, service):
        """Create test client."""
        with TestClient(service.app) as client:
            yield client

    @pytest.fixture
    def discount_definition(self):
        """Definition request for a big-order discount."""
        return {
            "name": "Big order discount",
            "description": "10% off orders above 100",
            "trigger_key": "order.created",
            "priority": 10,
            "conditions": [
                {"field": "total", "operator": "gt", "value": 100}
            ],
            "actions": [
                {"type": "apply_discount", "config": {"discountPercent": 10}}
            ]
        }

    def create(self, client, body):
        response = client.post("/automation/definitions", json=body)
        assert response.status_code == 201, response.text
        return response.json()

    def test_create_app(self):
        app = create_app()
        assert app.title == "Automation Service"

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "automation"
        assert "apply_discount" in data["action_types"]

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["dependencies"] == {"definition_store": "ok", "audit_sink": "ok"}

    def test_metrics(self, client):
        client.get("/")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "http_requests_total" in response.text

    def test_list_actions(self, client):
        response = client.get("/automation/actions")
        types = [a["type"] for a in response.json()["actions"]]
        assert "call_webhook" in types
        assert "send_notification" in types

    def test_list_triggers(self, client):
        data = client.get("/automation/triggers").json()
        assert "pricing" in data["rule_types"]
        assert "order.created" in data["events"]

    def test_create_and_get_definition(self, client, discount_definition):
        created = self.create(client, discount_definition)
        assert created["enabled"] is True
        assert created["execution_count"] == 0

        response = client.get(f"/automation/definitions/{created['definition_id']}")
        assert response.status_code == 200
        assert response.json()["conditions"][0]["operator"] == "gt"

    def test_create_normalises_legacy_between(self, client, discount_definition):
        discount_definition["conditions"] = [{"field": "total", "operator": "between", "value": [100, 200]}]
        created = self.create(client, discount_definition)
        condition = created["conditions"][0]
        assert condition["value"] == 100
        assert condition["value2"] == 200

    def test_create_rejects_unknown_action_type(self, client, discount_definition):
        discount_definition["actions"] = [{"type": "teleport", "config": {}}]
        response = client.post("/automation/definitions", json=discount_definition)
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_create_rejects_unknown_operator(self, client, discount_definition):
        discount_definition["conditions"] = [{"field": "total", "operator": "regex", "value": "1"}]
        response = client.post("/automation/definitions", json=discount_definition)
        assert response.status_code == 422

    def test_create_rejects_inverted_window(self, client, discount_definition):
        discount_definition["valid_from"] = "2026-02-01T00:00:00Z"
        discount_definition["valid_until"] = "2026-01-01T00:00:00Z"
        response = client.post("/automation/definitions", json=discount_definition)
        assert response.status_code == 422

    def test_get_missing_definition(self, client):
        response = client.get("/automation/definitions/missing")
        assert response.status_code == 404
        assert response.json()["code"] == "DEFINITION_NOT_FOUND"

    def test_trigger_runs_matching_definitions(self, client, discount_definition):
        created = self.create(client, discount_definition)

        response = client.post("/automation/triggers/order.created", json={"payload": {"id": "o-1", "total": 150}})

        assert response.status_code == 200
        data = response.json()
        assert data["trigger_key"] == "order.created"
        assert data["results"][0]["definition_id"] == created["definition_id"]
        assert data["results"][0]["status"] == "success"

        executions = client.get("/automation/executions", params={"definition_id": created["definition_id"]}).json()
        assert executions["total"] == 1
        record = executions["executions"][0]
        assert record["triggered_by"] == "o-1"
        assert record["action_results"][0]["output"]["discountedPrice"] == 135

        definition = client.get(f"/automation/definitions/{created['definition_id']}").json()
        assert definition["execution_count"] == 1

    def test_trigger_skips_non_matching(self, client, discount_definition):
        self.create(client, discount_definition)

        data = client.post("/automation/triggers/order.created", json={"payload": {"total": 50}}).json()

        assert data["results"][0]["status"] == "skipped"
        assert client.get("/automation/executions").json()["total"] == 0

    def test_trigger_without_definitions(self, client):
        data = client.post("/automation/triggers/order.cancelled", json={"payload": {}}).json()
        assert data["results"] == []

    def test_manual_test_run(self, client, discount_definition):
        created = self.create(client, discount_definition)
        client.put(f"/automation/definitions/{created['definition_id']}/enabled", json={"enabled": False})

        response = client.post(
            f"/automation/definitions/{created['definition_id']}/test",
            json={"payload": {"total": 150}}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["conditions_met"] is True
        assert data["action_results"][0]["output"]["discountAmount"] == 15
        assert "Conditions evaluation: PASSED" in data["logs"]

    def test_manual_test_run_missing(self, client):
        response = client.post("/automation/definitions/missing/test", json={"payload": {}})
        assert response.status_code == 404

    def test_disable_definition(self, client, discount_definition):
        created = self.create(client, discount_definition)

        response = client.put(f"/automation/definitions/{created['definition_id']}/enabled", json={"enabled": False})
        assert response.status_code == 200
        assert response.json()["enabled"] is False

        data = client.post("/automation/triggers/order.created", json={"payload": {"total": 150}}).json()
        assert data["results"] == []

    def test_definition_stats(self, client, discount_definition):
        created = self.create(client, discount_definition)
        for total in (150, 200, 50):
            client.post("/automation/triggers/order.created", json={"payload": {"total": total}})

        stats = client.get(f"/automation/definitions/{created['definition_id']}/stats").json()

        assert stats["execution_count"] == 2
        assert stats["total_executions"] == 2
        assert stats["successful"] == 2
        assert stats["success_rate"] == 100.0

    def test_update_definition_keeps_stats(self, client, discount_definition):
        created = self.create(client, discount_definition)
        client.post("/automation/triggers/order.created", json={"payload": {"total": 150}})

        discount_definition["name"] = "Bigger order discount"
        discount_definition["conditions"] = [{"field": "total", "operator": "gt", "value": 500}]
        response = client.put(f"/automation/definitions/{created['definition_id']}", json=discount_definition)

        assert response.status_code == 200
        updated = response.json()
        assert updated["definition_id"] == created["definition_id"]
        assert updated["name"] == "Bigger order discount"
        assert updated["conditions"][0]["value"] == 500
        assert updated["execution_count"] == 1
        assert updated["created_at"] == created["created_at"]

        data = client.post("/automation/triggers/order.created", json={"payload": {"total": 150}}).json()
        assert data["results"][0]["status"] == "skipped"

    def test_update_missing_definition(self, client, discount_definition):
        response = client.put("/automation/definitions/missing", json=discount_definition)
        assert response.status_code == 404

    def test_update_rejects_unknown_action_type(self, client, discount_definition):
        created = self.create(client, discount_definition)
        discount_definition["actions"] = [{"type": "teleport", "config": {}}]
        response = client.put(f"/automation/definitions/{created['definition_id']}", json=discount_definition)
        assert response.status_code == 422

    def test_delete_definition(self, client, discount_definition):
        created = self.create(client, discount_definition)

        response = client.delete(f"/automation/definitions/{created['definition_id']}")
        assert response.status_code == 200
        assert response.json()["deleted"] is True

        assert client.delete(f"/automation/definitions/{created['definition_id']}").status_code == 404

    def test_list_definitions(self, client, discount_definition):
        self.create(client, discount_definition)
        discount_definition["trigger_key"] = "pricing"
        self.create(client, discount_definition)

        assert client.get("/automation/definitions").json()["total"] == 2
        assert client.get("/automation/definitions", params={"trigger_key": "pricing"}).json()["total"] == 1
