import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from api_clients.base_store import WorkflowStore
from models.execution_log import WorkflowExecution
from models.workflow import TriggerType, WorkflowDefinition
from utils.time_utils import ensure_utc, utcnow

logger = logging.getLogger("workflow_engine")


class InMemoryWorkflowStore(WorkflowStore):
    """
    Process-local store for local runs and tests. Reads return deep copies,
    so callers never share mutable state with the store.
    """

    def __init__(self, definitions: Iterable[WorkflowDefinition] = ()):
        self._lock = asyncio.Lock()
        self._definitions: Dict[str, WorkflowDefinition] = {d.id: d.model_copy(deep=True) for d in definitions}
        self._executions: Dict[str, WorkflowExecution] = {}
        self.escalations: List[Dict[str, Any]] = []

    @classmethod
    def from_file(cls, path: str) -> "InMemoryWorkflowStore":
        """Seeds the store from a JSON file holding a list of definitions."""
        with open(path) as f:
            raw = json.load(f)
        if isinstance(raw, dict):
            raw = raw.get("workflows", [])
        definitions = [WorkflowDefinition.model_validate(item) for item in raw]
        logger.info(f"Loaded {len(definitions)} workflow definition(s) from {path}")
        return cls(definitions)

    async def add_definition(self, definition: WorkflowDefinition):
        async with self._lock:
            self._definitions[definition.id] = definition.model_copy(deep=True)

    async def list_active_definitions(self, trigger_type: TriggerType) -> List[WorkflowDefinition]:
        trigger_type = TriggerType(trigger_type)
        async with self._lock:
            return [
                d.model_copy(deep=True)
                for d in self._definitions.values()
                if d.active and d.trigger_type == trigger_type
            ]

    async def get_definition(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        async with self._lock:
            definition = self._definitions.get(workflow_id)
            return definition.model_copy(deep=True) if definition else None

    async def update_definition_last_triggered(self, workflow_id: str, when: datetime) -> None:
        async with self._lock:
            definition = self._definitions.get(workflow_id)
            if definition:
                definition.last_triggered = when
                definition.updated_at = utcnow()

    async def set_definition_active(self, workflow_id: str, active: bool) -> bool:
        async with self._lock:
            definition = self._definitions.get(workflow_id)
            if not definition:
                return False
            definition.active = active
            definition.updated_at = utcnow()
            return True

    async def delete_definition(self, workflow_id: str) -> bool:
        async with self._lock:
            return self._definitions.pop(workflow_id, None) is not None

    async def save_execution(self, execution: WorkflowExecution) -> None:
        async with self._lock:
            self._executions[execution.id] = execution.model_copy(deep=True)

    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        async with self._lock:
            execution = self._executions.get(execution_id)
            return execution.model_copy(deep=True) if execution else None

    async def list_executions(
        self,
        workflow_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[WorkflowExecution]:
        start = ensure_utc(start) if start else None
        end = ensure_utc(end) if end else None
        async with self._lock:
            selected = []
            for execution in self._executions.values():
                if execution.workflow_id != workflow_id:
                    continue
                started = ensure_utc(execution.started_at)
                if start and started < start:
                    continue
                if end and started > end:
                    continue
                selected.append(execution.model_copy(deep=True))
        return sorted(selected, key=lambda e: e.started_at)

    async def create_escalation(self, record: Dict[str, Any]) -> Dict[str, Any]:
        async with self._lock:
            stored = {"id": uuid4().hex, **record}
            self.escalations.append(stored)
            return dict(stored)
