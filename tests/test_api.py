"""
API endpoint tests
"""
import time

import pytest
from fastapi.testclient import TestClient

from reminder_flows.api.app import create_app
from reminder_flows.api.middleware import resource_fields
from reminder_flows.config import Settings
from reminder_flows.integrations import Channel


class TestReminderFlowAPI:
    """Runs the real application on in-memory storage"""

    @pytest.fixture
    def client(self, entities, provider):
        settings = Settings(
            database_url="sqlite+aiosqlite:///:memory:",
            scheduler_enabled=False,
            worker_id="api-test"
        )
        app = create_app(
            settings,
            entities=entities,
            providers={c: provider for c in Channel},
            in_memory=True
        )
        with TestClient(app) as client:
            yield client

    @pytest.fixture
    def flow_id(self, client, follow_up_document):
        response = client.post("/api/v1/flows/", json=follow_up_document)
        assert response.status_code == 201
        return response.json()["id"]

    def _trigger(self, client, entity_id="loan-42"):
        response = client.post(
            "/api/v1/events/",
            json={"event_type": "application_created", "entity_id": entity_id}
        )
        assert response.status_code == 202
        return response.json()["executions"]

    def _tick(self, client):
        response = client.post("/api/v1/monitoring/scheduler/tick")
        assert response.status_code == 200
        return response.json()

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["name"] == "Reminder Flow API"
        assert "X-Request-ID" in response.headers
        assert response.headers["X-Worker-ID"] == "api-test"

    def test_create_flow(self, client, follow_up_document):
        response = client.post("/api/v1/flows/", json=follow_up_document)

        assert response.status_code == 201
        data = response.json()
        assert data["id"] == "flow-follow-up"
        assert data["version"] == 1
        assert data["step_count"] == 7
        assert len(data["connections"]) == 7
        assert "position_x" not in data["steps"][0]

    def test_create_invalid_flow(self, client, follow_up_document):
        follow_up_document["connections"] = []

        response = client.post("/api/v1/flows/", json=follow_up_document)

        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "validation_error"
        assert data["details"]["errors"]

    def test_create_duplicate_flow(self, client, flow_id, follow_up_document):
        response = client.post("/api/v1/flows/", json=follow_up_document)
        assert response.status_code == 422

    def test_validate_flow(self, client, follow_up_document):
        response = client.post("/api/v1/flows/validate", json=follow_up_document)
        assert response.json() == {"valid": True, "errors": []}

        follow_up_document["steps"][0]["step_type"] = "wait"
        response = client.post("/api/v1/flows/validate", json=follow_up_document)
        data = response.json()
        assert data["valid"] is False
        assert any("exactly one trigger step" in e for e in data["errors"])

        # Nothing was stored
        assert client.get("/api/v1/flows/").json() == []

    def test_get_flow(self, client, flow_id):
        response = client.get(f"/api/v1/flows/{flow_id}")

        assert response.status_code == 200
        assert response.json()["name"] == "New application follow-up"

    def test_get_missing_flow(self, client):
        response = client.get("/api/v1/flows/nope")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_update_flow(self, client, flow_id, follow_up_document):
        follow_up_document["name"] = "Follow-up v2"

        response = client.put(f"/api/v1/flows/{flow_id}", json=follow_up_document)

        assert response.status_code == 200
        assert response.json()["version"] == 2
        old = client.get(f"/api/v1/flows/{flow_id}", params={"version": 1}).json()
        assert old["name"] == "New application follow-up"

    def test_toggle_flow(self, client, flow_id):
        response = client.post(f"/api/v1/flows/{flow_id}/toggle")
        assert response.json()["is_active"] is False

        response = client.post(f"/api/v1/flows/{flow_id}/toggle", json={"is_active": True})
        assert response.json()["is_active"] is True
        assert response.json()["version"] == 1

    def test_list_flows(self, client, flow_id):
        self._trigger(client)

        flows = client.get("/api/v1/flows/", params={"is_active": True}).json()

        assert [f["id"] for f in flows] == [flow_id]
        assert flows[0]["active_executions"] == 1

    def test_event_starts_execution(self, client, flow_id):
        executions = self._trigger(client)

        assert len(executions) == 1
        execution = executions[0]
        assert execution["flow_id"] == flow_id
        assert execution["flow_name"] == "New application follow-up"
        assert execution["client_name"] == "Ada Lovelace"
        assert execution["application_number"] == "APP-0042"
        assert execution["status"] == "active"
        assert execution["current_step_key"] is None

        assert self._trigger(client) == []

        assert self._tick(client)["advanced"] == [execution["id"]]
        execution_id = execution["id"]
        detail = client.get(f"/api/v1/executions/{execution_id}").json()
        assert detail["current_step_key"] == "wait_3d"

    def test_event_with_unknown_type(self, client):
        response = client.post(
            "/api/v1/events/",
            json={"event_type": "loan_exploded", "entity_id": "loan-42"}
        )
        assert response.status_code == 422

    def test_list_and_get_executions(self, client, flow_id):
        execution_id = self._trigger(client)[0]["id"]
        self._tick(client)

        rows = client.get("/api/v1/executions/", params={"entity_id": "loan-42"}).json()
        assert [r["id"] for r in rows] == [execution_id]
        assert client.get("/api/v1/executions/", params={"status": "completed"}).json() == []

        detail = client.get(f"/api/v1/executions/{execution_id}").json()
        assert detail["trigger_event"] == "application_created"
        assert detail["context"]["client_email"] == "ada@example.com"
        assert [h["step_key"] for h in detail["history"]] == ["start", "wait_3d"]

    def test_get_missing_execution(self, client):
        assert client.get("/api/v1/executions/nope").status_code == 404

    def test_pause_resume_cancel(self, client, flow_id):
        execution_id = self._trigger(client)[0]["id"]

        response = client.post(f"/api/v1/executions/{execution_id}/pause")
        assert response.json()["status"] == "paused"

        response = client.post(f"/api/v1/executions/{execution_id}/pause")
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state_transition"

        response = client.post(f"/api/v1/executions/{execution_id}/resume")
        assert response.json()["status"] == "active"

        response = client.post(f"/api/v1/executions/{execution_id}/cancel")
        assert response.json()["status"] == "cancelled"
        assert response.json()["next_execution_at"] is None

    def test_delete_flow_cancels_executions(self, client, flow_id):
        execution_id = self._trigger(client)[0]["id"]

        response = client.delete(f"/api/v1/flows/{flow_id}")

        assert response.status_code == 200
        assert response.json()["data"] == {"cancelled_executions": 1}
        assert client.get(f"/api/v1/flows/{flow_id}").status_code == 404
        assert client.get(f"/api/v1/executions/{execution_id}").json()["status"] == "cancelled"

    def test_delete_missing_flow(self, client):
        assert client.delete("/api/v1/flows/nope").status_code == 404

    def test_zero_delay_flow_sends_immediately(self, client, follow_up_document, provider):
        follow_up_document["steps"][1]["config"] = {"delay_days": 0}
        client.post("/api/v1/flows/", json=follow_up_document)

        execution_id = self._trigger(client)[0]["id"]
        assert provider.sent == []

        self._tick(client)

        assert client.get(f"/api/v1/executions/{execution_id}").json()["status"] == "completed"
        assert len(provider.messages_for(Channel.NOTIFICATION)) == 1

    def test_event_returns_before_slow_sends(self, client, follow_up_document, provider):
        """Ingestion only queues; the walk and its sends happen on the scheduler"""
        follow_up_document["steps"][1]["config"] = {"delay_days": 0}
        client.post("/api/v1/flows/", json=follow_up_document)
        provider.delay = 5.0

        started = time.monotonic()
        execution = self._trigger(client)[0]

        assert time.monotonic() - started < 2.0
        assert execution["status"] == "active"
        assert execution["current_step_key"] is None
        assert provider.sent == []

    def test_health(self, client):
        response = client.get("/api/v1/monitoring/health")

        data = response.json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"] is True
        assert data["checks"]["channels"] == ["email", "notification", "sms"]
        assert data["checks"]["event_delivery_failures"] == 0

    def test_scheduler_stats_and_tick(self, client, flow_id):
        execution_id = self._trigger(client)[0]["id"]

        stats = client.get("/api/v1/monitoring/scheduler").json()
        assert stats["running"] is False
        assert stats["pending_wakes"] == 1
        assert stats["executions_by_status"] == {"active": 1}

        assert self._tick(client) == {"advanced": [execution_id], "failed": [], "skipped": []}
        assert self._tick(client) == {"advanced": [], "failed": [], "skipped": []}

        stats = client.get("/api/v1/monitoring/scheduler").json()
        assert stats["total_advanced"] == 1
        assert stats["total_skipped"] == 0
        assert stats["pending_wakes"] == 1

    def test_request_log_names_the_execution(self, client, flow_id, caplog):
        execution_id = self._trigger(client)[0]["id"]

        with caplog.at_level("INFO", logger="reminder_flows.api.middleware"):
            response = client.post(
                f"/api/v1/executions/{execution_id}/pause",
                headers={"X-Request-ID": "req-1"}
            )

        assert response.headers["X-Request-ID"] == "req-1"
        records = [r for r in caplog.records if r.name == "reminder_flows.api.middleware"]
        assert records[-1].execution_id == execution_id
        assert records[-1].request_id == "req-1"
        assert records[-1].status_code == 200


def test_resource_fields():
    assert resource_fields("/api/v1/executions/x-1/cancel") == {"execution_id": "x-1"}
    assert resource_fields("/api/v1/flows/flow-a") == {"flow_id": "flow-a"}
    assert resource_fields("/api/v1/flows/validate") == {}
    assert resource_fields("/api/v1/monitoring/health") == {}
