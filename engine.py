import logging
from datetime import datetime
from typing import Optional

from api_clients.base_store import WorkflowStore
from api_clients.memory_store import InMemoryWorkflowStore
from api_clients.workflow_client import WorkflowClient
from config import Settings
from connectors.connector_builder import ConnectorBuilder, ConnectorRegistry
from exceptions import UnsupportedEventTypeError, WorkflowBusyError, WorkflowInactiveError, WorkflowNotFoundError
from executor.action_dispatcher import ActionDispatcher
from executor.condition_evaluator import ConditionEvaluator
from executor.script_sandbox import ScriptSandbox
from executor.step_executor import StepExecutor
from executor.trigger_matcher import TriggerMatcher
from models.execution_log import ExecutionStatus, WorkflowAnalytics, WorkflowExecution
from models.trigger_event import TriggerEvent
from models.workflow import TriggerType
from scheduler.event_source import BaseEventSource, QueueEventSource
from scheduler.schedule_runner import ScheduleRunner
from scheduler.scheduler_loop import SchedulerLoop
from utils.idempotency import ExecutionRegistry
from utils.time_utils import ensure_utc

logger = logging.getLogger("workflow_engine")


class WorkflowEngine:
    """
    Wires the store, connectors, executor and scheduler together and exposes
    the lifecycle operations used by the HTTP API and the CLI.
    """

    def __init__(
        self,
        store: WorkflowStore,
        event_source: BaseEventSource = None,
        connectors: ConnectorRegistry = None,
        settings: Settings = None,
        registry: ExecutionRegistry = None,
    ):
        self.settings = settings or Settings()
        self.store = store
        self.event_source = event_source or QueueEventSource()
        self.connectors = connectors or ConnectorBuilder.from_settings(self.settings)
        self.registry = registry or ExecutionRegistry()

        self.evaluator = ConditionEvaluator()
        self.dispatcher = ActionDispatcher(
            self.connectors,
            self.store,
            sandbox=ScriptSandbox(self.settings.script_timeout_seconds),
            webhook_timeout_seconds=self.settings.webhook_timeout_seconds,
        )
        self.step_executor = StepExecutor(self.dispatcher, self.store, self.evaluator)
        self.matcher = TriggerMatcher(self.evaluator)
        self.runner = ScheduleRunner(self.store, self.step_executor, self.registry)
        self.scheduler = SchedulerLoop(
            self.store, self.event_source, self.matcher, self.runner, self.registry, self.settings
        )

    async def start(self):
        await self.scheduler.start()

    async def stop(self):
        await self.scheduler.stop()

    async def _require_definition(self, workflow_id: str):
        definition = await self.store.get_definition(workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(workflow_id)
        return definition

    async def execute_workflow(self, workflow_id: str, trigger_event: Optional[TriggerEvent] = None) -> WorkflowExecution:
        """
        Runs a workflow now, bypassing trigger matching, and returns the
        finished execution record.
        """
        definition = await self._require_definition(workflow_id)
        if not definition.active:
            raise WorkflowInactiveError(workflow_id)

        event = trigger_event or TriggerEvent(type=TriggerType.MANUAL.value, source="manual")
        logger.info(f"Manual execution requested for workflow {workflow_id}")
        return await self.runner.submit(definition, event)

    async def pause(self, workflow_id: str):
        if not await self.store.set_definition_active(workflow_id, False):
            raise WorkflowNotFoundError(workflow_id)
        logger.info(f"Workflow {workflow_id} paused")

    async def resume(self, workflow_id: str):
        if not await self.store.set_definition_active(workflow_id, True):
            raise WorkflowNotFoundError(workflow_id)
        logger.info(f"Workflow {workflow_id} resumed")

    async def delete_workflow(self, workflow_id: str):
        """Deletes the definition. Execution records are kept."""
        running = await self.registry.running_for(workflow_id)
        if running:
            raise WorkflowBusyError(workflow_id, running)
        if not await self.store.delete_definition(workflow_id):
            raise WorkflowNotFoundError(workflow_id)
        await self.registry.forget(workflow_id)
        logger.info(f"Workflow {workflow_id} deleted")

    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        return await self.store.get_execution(execution_id)

    async def get_analytics(
        self,
        workflow_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> WorkflowAnalytics:
        executions = await self.store.list_executions(workflow_id, start, end)

        total = len(executions)
        successful = sum(1 for e in executions if e.status == ExecutionStatus.COMPLETED)
        failed = sum(1 for e in executions if e.status == ExecutionStatus.FAILED)
        durations = [
            (ensure_utc(e.completed_at) - ensure_utc(e.started_at)).total_seconds()
            for e in executions
            if e.completed_at is not None
        ]

        return WorkflowAnalytics(
            workflow_id=workflow_id,
            start=start,
            end=end,
            total=total,
            successful=successful,
            failed=failed,
            running=total - successful - failed,
            success_rate=round(successful / total * 100, 2) if total else 0.0,
            failure_rate=round(failed / total * 100, 2) if total else 0.0,
            average_duration_seconds=round(sum(durations) / len(durations), 3) if durations else None,
        )

    async def publish_event(self, event: TriggerEvent):
        """Queues an event for its subscription. Types nothing consumes are rejected."""
        if event.type not in self.settings.event_types:
            raise UnsupportedEventTypeError(event.type)
        await self.event_source.publish(event)


def build_store(settings: Settings) -> WorkflowStore:
    if settings.store_url:
        logger.info(f"Using REST workflow store at {settings.store_url}")
        return WorkflowClient(settings.store_url, api_key=settings.store_api_key)
    if settings.definitions_file:
        return InMemoryWorkflowStore.from_file(settings.definitions_file)
    logger.warning("No WORKFLOW_STORE_URL or WORKFLOW_DEFINITIONS_FILE set. Using an empty in-memory store.")
    return InMemoryWorkflowStore()


def build_engine(settings: Settings = None) -> WorkflowEngine:
    settings = settings or Settings.from_env()
    return WorkflowEngine(build_store(settings), settings=settings)
