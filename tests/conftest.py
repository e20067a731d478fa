import pytest
from fastapi.testclient import TestClient

from api_clients.memory_store import InMemoryWorkflowStore
from config import Settings
from connectors.connector_builder import ConnectorBuilder
from engine import WorkflowEngine
from models.workflow import WorkflowDefinition


@pytest.fixture
def settings():
    return Settings(tick_seconds=0.05, script_timeout_seconds=1.0, webhook_timeout_seconds=2.0)


@pytest.fixture
def make_definition():
    def _make(**overrides):
        data = {
            "id": "wf_1",
            "name": "Test Workflow",
            "trigger_type": "manual",
            "steps": [],
        }
        data.update(overrides)
        return WorkflowDefinition.model_validate(data)
    return _make


@pytest.fixture
def escalation_definition(make_definition):
    return make_definition(
        id="wf_escalate",
        name="Escalate unhappy premium customers",
        trigger_type="chat_message",
        trigger_conditions={
            "settings": {"sentiment_threshold": -0.7, "customer_tier": "premium"},
        },
        steps=[
            {
                "id": "escalate",
                "action_type": "escalate_to_human",
                "config": {"priority": "high", "department": "support", "message": "Unhappy customer: {{ message }}"},
            },
            {
                "id": "notify",
                "action_type": "send_slack",
                "config": {"channel": "#support", "message": "Escalated chat from {{ customer.name }}"},
            },
        ],
    )


@pytest.fixture
def connectors():
    return ConnectorBuilder.build_mock_registry()


@pytest.fixture
def store():
    return InMemoryWorkflowStore()


@pytest.fixture
def engine(store, connectors, settings):
    return WorkflowEngine(store, connectors=connectors, settings=settings)


@pytest.fixture
def client(engine):
    from app import app, get_engine
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()
