import json
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import requests

from api_clients.memory_store import InMemoryWorkflowStore
from api_clients.workflow_client import WorkflowClient
from exceptions import DefinitionError, StoreUnavailableError
from models.execution_log import ExecutionStatus, WorkflowExecution
from models.trigger_event import TriggerEvent
from models.workflow import TriggerType


def _response(status_code=200, body=None):
    response = MagicMock(status_code=status_code, content=json.dumps(body).encode() if body is not None else b"", text="")
    response.json.return_value = body
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} Error", response=response)
    return response


def _execution(execution_id="wf_1_evt", workflow_id="wf_1", started_at=None):
    return WorkflowExecution(
        id=execution_id,
        workflow_id=workflow_id,
        trigger_event=TriggerEvent(id="evt", type="manual"),
        started_at=started_at or datetime.now(timezone.utc),
    )


# --- In-memory store ---
@pytest.mark.asyncio
async def test_memory_store_filters_active_by_trigger_type(make_definition):
    store = InMemoryWorkflowStore([
        make_definition(id="a", trigger_type="chat_message"),
        make_definition(id="b", trigger_type="chat_message", active=False),
        make_definition(id="c", trigger_type="webhook"),
    ])
    active = await store.list_active_definitions(TriggerType.CHAT_MESSAGE)
    assert [d.id for d in active] == ["a"]


@pytest.mark.asyncio
async def test_memory_store_returns_copies(make_definition):
    store = InMemoryWorkflowStore([make_definition()])
    definition = await store.get_definition("wf_1")
    definition.name = "changed"
    assert (await store.get_definition("wf_1")).name == "Test Workflow"


@pytest.mark.asyncio
async def test_memory_store_execution_upsert_and_range():
    store = InMemoryWorkflowStore()
    old = _execution("old", started_at=datetime.now(timezone.utc) - timedelta(days=3))
    new = _execution("new")
    await store.save_execution(old)
    await store.save_execution(new)

    new.status = ExecutionStatus.COMPLETED
    await store.save_execution(new)
    assert (await store.get_execution("new")).status == ExecutionStatus.COMPLETED

    recent = await store.list_executions("wf_1", start=datetime.now(timezone.utc) - timedelta(days=1))
    assert [e.id for e in recent] == ["new"]
    assert len(await store.list_executions("wf_1")) == 2


@pytest.mark.asyncio
async def test_memory_store_lifecycle(make_definition):
    store = InMemoryWorkflowStore([make_definition()])
    assert await store.set_definition_active("wf_1", False)
    assert await store.list_active_definitions(TriggerType.MANUAL) == []
    assert not await store.set_definition_active("missing", True)

    assert await store.delete_definition("wf_1")
    assert not await store.delete_definition("wf_1")


def test_memory_store_from_file(tmp_path):
    path = tmp_path / "workflows.json"
    path.write_text(json.dumps({"workflows": [{"id": "wf_file", "name": "From file", "trigger_type": "webhook"}]}))
    store = InMemoryWorkflowStore.from_file(str(path))
    assert "wf_file" in store._definitions


# --- REST client ---
@pytest.mark.asyncio
async def test_workflow_client_lists_definitions():
    client = WorkflowClient("https://orchestrator.example.com/api/", api_key="secret")
    rows = [
        {"id": "wf_1", "name": "Good", "trigger_type": "webhook"},
        {"id": "wf_2", "name": "Broken", "trigger_type": "carrier_pigeon"},
    ]
    with patch.object(client.session, "request", return_value=_response(200, rows)) as mock_request:
        definitions = await client.list_active_definitions(TriggerType.WEBHOOK)

    assert [d.id for d in definitions] == ["wf_1"]
    args, kwargs = mock_request.call_args
    assert args == ("GET", "https://orchestrator.example.com/api/workflows")
    assert kwargs["params"] == {"active": "true", "trigger_type": "webhook"}
    assert client.session.headers["X-API-Key"] == "secret"


@pytest.mark.asyncio
async def test_workflow_client_missing_is_none():
    client = WorkflowClient("https://orchestrator.example.com/api")
    with patch.object(client.session, "request", return_value=_response(404)):
        assert await client.get_definition("nope") is None
        assert await client.get_execution("nope") is None
        assert await client.set_definition_active("nope", False) is False


@pytest.mark.asyncio
async def test_workflow_client_save_execution_puts_json():
    client = WorkflowClient("https://orchestrator.example.com/api")
    execution = _execution()
    with patch.object(client.session, "request", return_value=_response(200, {})) as mock_request:
        await client.save_execution(execution)

    args, kwargs = mock_request.call_args
    assert args == ("PUT", "https://orchestrator.example.com/api/executions/wf_1_evt")
    assert kwargs["json"]["status"] == "pending"
    assert kwargs["json"]["trigger_event"]["type"] == "manual"


@pytest.mark.asyncio
async def test_workflow_client_raises_when_unavailable():
    client = WorkflowClient("https://orchestrator.example.com/api")
    with patch.object(client.session, "request", side_effect=requests.ConnectionError("refused")):
        with pytest.raises(StoreUnavailableError):
            await client.list_active_definitions(TriggerType.WEBHOOK)

    with patch.object(client.session, "request", return_value=_response(503, {"error": "down"})):
        with pytest.raises(StoreUnavailableError) as exc_info:
            await client.get_definition("wf_1")
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_workflow_client_malformed_rows():
    client = WorkflowClient("https://orchestrator.example.com/api")
    with patch.object(client.session, "request", return_value=_response(200, {"id": "wf_1", "trigger_type": "carrier_pigeon"})):
        with pytest.raises(DefinitionError, match="malformed workflow wf_1"):
            await client.get_definition("wf_1")

    with patch.object(client.session, "request", return_value=_response(200, {"id": "wf_1_evt"})):
        with pytest.raises(DefinitionError, match="malformed execution"):
            await client.get_execution("wf_1_evt")

    rows = [_execution().model_dump(mode="json"), {"id": "broken"}]
    with patch.object(client.session, "request", return_value=_response(200, rows)):
        executions = await client.list_executions("wf_1")
    assert [e.id for e in executions] == ["wf_1_evt"]
