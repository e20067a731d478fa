import logging
from typing import Optional, Tuple

from api_clients.base_store import WorkflowStore
from exceptions import DuplicateExecutionError
from executor.step_executor import StepExecutor
from models.execution_log import ExecutionStatus, WorkflowExecution
from models.trigger_event import TriggerEvent
from models.workflow import WorkflowDefinition
from utils.idempotency import ExecutionRegistry, IdempotencyKey
from utils.time_utils import utcnow

logger = logging.getLogger("workflow_engine")


class ScheduleRunner:
    """
    Creates and runs one execution per (workflow, event) pair.

    The execution id is derived from the workflow id and the event key, so a
    re-delivered event maps to the same id and is rejected instead of run
    twice.
    """

    def __init__(self, store: WorkflowStore, step_executor: StepExecutor, registry: ExecutionRegistry):
        self.store = store
        self.step_executor = step_executor
        self.registry = registry

    async def submit(
        self,
        definition: WorkflowDefinition,
        event: TriggerEvent,
        execution_id: Optional[str] = None,
    ) -> WorkflowExecution:
        snapshot, execution = await self.prepare(definition, event, execution_id)
        return await self.run(snapshot, execution)

    async def prepare(
        self,
        definition: WorkflowDefinition,
        event: TriggerEvent,
        execution_id: Optional[str] = None,
    ) -> Tuple[WorkflowDefinition, WorkflowExecution]:
        """
        Claims the execution id and persists the PENDING record. On success the
        id stays claimed until `run` finishes; on any error it is released.
        """
        execution_id = execution_id or IdempotencyKey.execution_id(definition.id, event)

        # 1. In-process guard
        if not await self.registry.try_acquire(execution_id, definition.id):
            raise DuplicateExecutionError(execution_id)

        prepared = False
        try:
            # 2. Durable guard
            if await self.store.get_execution(execution_id) is not None:
                logger.info(f"Execution {execution_id} already recorded. Skipping.")
                raise DuplicateExecutionError(execution_id)

            # Later edits to the definition do not affect this run
            snapshot = definition.model_copy(deep=True)
            execution = WorkflowExecution(
                id=execution_id,
                workflow_id=snapshot.id,
                trigger_event=event,
                status=ExecutionStatus.PENDING,
                started_at=utcnow(),
            )
            await self.store.save_execution(execution)
            prepared = True
        finally:
            if not prepared:
                await self.registry.release(execution_id)

        logger.info(f"Triggering workflow {snapshot.id} ({snapshot.name}) for {event.type} event -> execution {execution_id}")
        return snapshot, execution

    async def run(self, snapshot: WorkflowDefinition, execution: WorkflowExecution) -> WorkflowExecution:
        """Runs the steps of a prepared execution and releases its id."""
        try:
            await self.step_executor.run(snapshot, execution)
            return execution
        finally:
            await self.registry.release(execution.id)
