import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from pydantic import ValidationError

from api_clients.base_client import BaseClient
from api_clients.base_store import WorkflowStore
from exceptions import DefinitionError
from models.execution_log import WorkflowExecution
from models.workflow import TriggerType, WorkflowDefinition

logger = logging.getLogger("workflow_engine")


def _parse(model, row, label: str):
    try:
        return model.model_validate(row)
    except ValidationError as e:
        raise DefinitionError(f"Store returned a malformed {label}: {e}") from e


class WorkflowClient(BaseClient, WorkflowStore):
    """WorkflowStore backed by the orchestrator REST API."""

    async def list_active_definitions(self, trigger_type: TriggerType) -> List[WorkflowDefinition]:
        params = {"active": "true", "trigger_type": TriggerType(trigger_type).value}
        rows = await asyncio.to_thread(self._get, "/workflows", params)
        definitions = []
        for row in rows or []:
            try:
                definitions.append(WorkflowDefinition.model_validate(row))
            except ValidationError as e:
                logger.warning(f"Skipping malformed workflow {row.get('id') if isinstance(row, dict) else row!r}: {e}")
        return definitions

    async def get_definition(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        row = await asyncio.to_thread(self._get, f"/workflows/{workflow_id}")
        return _parse(WorkflowDefinition, row, f"workflow {workflow_id}") if row else None

    async def update_definition_last_triggered(self, workflow_id: str, when: datetime) -> None:
        await asyncio.to_thread(self._patch, f"/workflows/{workflow_id}", {"last_triggered": when.isoformat()})

    async def set_definition_active(self, workflow_id: str, active: bool) -> bool:
        resp = await asyncio.to_thread(self._patch, f"/workflows/{workflow_id}", {"active": active})
        return resp is not None

    async def delete_definition(self, workflow_id: str) -> bool:
        resp = await asyncio.to_thread(self._delete, f"/workflows/{workflow_id}")
        return resp is not None

    async def save_execution(self, execution: WorkflowExecution) -> None:
        await asyncio.to_thread(self._put, f"/executions/{execution.id}", execution.model_dump(mode="json"))

    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        row = await asyncio.to_thread(self._get, f"/executions/{execution_id}")
        return _parse(WorkflowExecution, row, f"execution {execution_id}") if row else None

    async def list_executions(
        self,
        workflow_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[WorkflowExecution]:
        params = {"workflow_id": workflow_id}
        if start:
            params["started_after"] = start.isoformat()
        if end:
            params["started_before"] = end.isoformat()
        rows = await asyncio.to_thread(self._get, "/executions", params)
        executions = []
        for row in rows or []:
            try:
                executions.append(WorkflowExecution.model_validate(row))
            except ValidationError as e:
                logger.warning(f"Skipping malformed execution {row.get('id') if isinstance(row, dict) else row!r}: {e}")
        return executions

    async def create_escalation(self, record: Dict[str, Any]) -> Dict[str, Any]:
        payload = {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in record.items()}
        resp = await asyncio.to_thread(self._post, "/escalations", payload)
        return resp or {}
