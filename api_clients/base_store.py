from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from models.execution_log import WorkflowExecution
from models.workflow import TriggerType, WorkflowDefinition


class WorkflowStore(ABC):
    """
    Durable storage for workflow definitions and execution records.
    Implementations raise StoreUnavailableError when the backend cannot be
    reached; a missing record is None, not an error.
    """

    @abstractmethod
    async def list_active_definitions(self, trigger_type: TriggerType) -> List[WorkflowDefinition]:
        pass

    @abstractmethod
    async def get_definition(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        pass

    @abstractmethod
    async def update_definition_last_triggered(self, workflow_id: str, when: datetime) -> None:
        pass

    @abstractmethod
    async def set_definition_active(self, workflow_id: str, active: bool) -> bool:
        """Returns False if the workflow does not exist."""

    @abstractmethod
    async def delete_definition(self, workflow_id: str) -> bool:
        """Returns False if the workflow does not exist."""

    @abstractmethod
    async def save_execution(self, execution: WorkflowExecution) -> None:
        """Insert-or-update by execution id."""

    @abstractmethod
    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        pass

    @abstractmethod
    async def list_executions(
        self,
        workflow_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[WorkflowExecution]:
        pass

    @abstractmethod
    async def create_escalation(self, record: Dict[str, Any]) -> Dict[str, Any]:
        pass
