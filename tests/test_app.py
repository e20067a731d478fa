import pytest
from unittest.mock import AsyncMock

from api_clients.memory_store import InMemoryWorkflowStore
from exceptions import DefinitionError
from models.workflow import WorkflowDefinition


@pytest.fixture
def store():
    return InMemoryWorkflowStore([
        WorkflowDefinition.model_validate({
            "id": "wf_api",
            "name": "API workflow",
            "trigger_type": "manual",
            "steps": [
                {"id": "greet", "action_type": "send_email", "config": {"to": "{{ email }}", "subject": "Hello {{ name }}"}},
            ],
        }),
        WorkflowDefinition.model_validate({
            "id": "wf_paused",
            "name": "Paused workflow",
            "trigger_type": "manual",
            "active": False,
        }),
    ])


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_execute_workflow(client, connectors):
    response = client.post("/api/v1/workflows/wf_api/execute", json={"event_id": "req-1", "payload": {"email": "ada@example.com", "name": "Ada"}})

    assert response.status_code == 200
    data = response.json()
    assert data["id"] == "wf_api_req-1"
    assert data["status"] == "completed"
    assert len(data["execution_log"]) == 1
    assert connectors.get("email").sent[0]["subject"] == "Hello Ada"

    execution = client.get("/api/v1/executions/wf_api_req-1")
    assert execution.status_code == 200
    assert execution.json()["status"] == "completed"


def test_execute_duplicate_event_conflicts(client):
    body = {"event_id": "req-dup", "payload": {"email": "a@b.com"}}
    assert client.post("/api/v1/workflows/wf_api/execute", json=body).status_code == 200
    assert client.post("/api/v1/workflows/wf_api/execute", json=body).status_code == 409


def test_execute_errors(client):
    assert client.post("/api/v1/workflows/missing/execute").status_code == 404
    assert client.post("/api/v1/workflows/wf_paused/execute").status_code == 409
    assert client.get("/api/v1/executions/missing").status_code == 404


def test_pause_resume_delete(client):
    assert client.post("/api/v1/workflows/wf_api/pause").json() == {"workflow_id": "wf_api", "active": False}
    assert client.post("/api/v1/workflows/wf_api/execute").status_code == 409

    assert client.post("/api/v1/workflows/wf_api/resume").status_code == 200
    assert client.delete("/api/v1/workflows/wf_api").json() == {"workflow_id": "wf_api", "deleted": True}
    assert client.delete("/api/v1/workflows/wf_api").status_code == 404


def test_analytics(client):
    client.post("/api/v1/workflows/wf_api/execute", json={"event_id": "a1", "payload": {"email": "a@b.com"}})
    response = client.get("/api/v1/workflows/wf_api/analytics")
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["successful"] == 1
    assert data["success_rate"] == 100.0


def test_publish_event_is_accepted(client, engine):
    response = client.post("/api/v1/events", json={"id": "chat-9", "type": "chat_message", "payload": {"message": "hi"}})
    assert response.status_code == 202
    assert response.json() == {"status": "accepted", "event_type": "chat_message", "event_id": "chat-9"}
    assert engine.event_source.pending("chat_message") == 1


def test_publish_unsubscribed_event_type_is_rejected(client, engine):
    response = client.post("/api/v1/events", json={"id": "m-1", "type": "manual"})
    assert response.status_code == 422
    assert "manual" in response.json()["detail"]
    assert engine.event_source.pending("manual") == 0


def test_malformed_stored_workflow_is_bad_gateway(client, engine):
    engine.store.get_definition = AsyncMock(side_effect=DefinitionError("Store returned a malformed workflow wf_api"))
    response = client.post("/api/v1/workflows/wf_api/execute")
    assert response.status_code == 502
