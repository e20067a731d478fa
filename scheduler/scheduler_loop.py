import asyncio
import logging
import traceback
from typing import List, Set

from api_clients.base_store import WorkflowStore
from config import Settings
from exceptions import DefinitionError, DuplicateExecutionError, StoreUnavailableError
from executor.trigger_matcher import TriggerMatcher
from models.trigger_event import TIME_TRIGGER_EVENT, TriggerEvent
from models.workflow import TriggerType, WorkflowDefinition
from utils.idempotency import ExecutionRegistry
from utils.time_utils import to_timestamp, utcnow

from .event_source import BaseEventSource
from .schedule_rules import is_due, schedule_for
from .schedule_runner import ScheduleRunner

logger = logging.getLogger("workflow_engine")


class SchedulerLoop:
    """
    Drives executions from two sources: subscribed events and a periodic
    tick for time-based workflows. Each execution runs as its own task.
    """

    def __init__(
        self,
        store: WorkflowStore,
        event_source: BaseEventSource,
        matcher: TriggerMatcher,
        runner: ScheduleRunner,
        registry: ExecutionRegistry,
        settings: Settings = None,
    ):
        self.store = store
        self.event_source = event_source
        self.matcher = matcher
        self.runner = runner
        self.registry = registry
        self.settings = settings or Settings()
        self.interval = self.settings.tick_seconds
        self.running = False
        self._loops: List[asyncio.Task] = []
        self._executions: Set[asyncio.Task] = set()
        self._tick_lock = asyncio.Lock()

    async def start(self):
        """Starts the event subscriptions and the tick loop."""
        if self.running:
            return

        self.running = True
        for event_type in self.settings.event_types:
            self._loops.append(asyncio.create_task(self._consume(event_type), name=f"subscribe:{event_type}"))
        self._loops.append(asyncio.create_task(self._tick_forever(), name="scheduler-tick"))
        logger.info(f"Scheduler started (tick={self.interval}s, events={', '.join(self.settings.event_types)}).")

    async def stop(self):
        self.running = False
        for task in self._loops:
            task.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops.clear()
        await self.drain()
        logger.info("Scheduler stopped.")

    async def drain(self):
        """Waits for every execution task launched so far."""
        while self._executions:
            await asyncio.gather(*list(self._executions), return_exceptions=True)

    @property
    def active_executions(self) -> int:
        return len(self._executions)

    async def _consume(self, event_type: str):
        async for event in self.event_source.subscribe(event_type):
            try:
                await self.handle_event(event)
            except Exception:
                logger.error(f"Failed to handle {event_type} event {event.id}: {traceback.format_exc()}")

    async def _tick_forever(self):
        while self.running:
            try:
                await self._tick()
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}")
                logger.debug(traceback.format_exc())
            await asyncio.sleep(self.interval)

    async def handle_event(self, event: TriggerEvent) -> List[asyncio.Task]:
        """Launches one execution task per active definition matching `event`."""
        trigger_type = TriggerType.TIME_BASED if event.type == TIME_TRIGGER_EVENT else None
        if trigger_type is None:
            try:
                trigger_type = TriggerType(event.type)
            except ValueError:
                logger.warning(f"Ignoring event {event.id} with unknown type '{event.type}'")
                return []

        try:
            definitions = await self.store.list_active_definitions(trigger_type)
        except StoreUnavailableError as e:
            logger.error(f"Could not load {trigger_type.value} workflows for event {event.id}: {e}")
            return []

        matched = self.matcher.match(event, definitions)
        return [self._launch(definition, event) for definition in matched]

    def _launch(self, definition: WorkflowDefinition, event: TriggerEvent) -> asyncio.Task:
        return self._track(self._guarded(definition.id, self.runner.submit(definition, event)), definition.id)

    def _track(self, coro, workflow_id: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"execute:{workflow_id}")
        self._executions.add(task)
        task.add_done_callback(self._executions.discard)
        return task

    async def _guarded(self, workflow_id: str, coro):
        try:
            return await coro
        except DuplicateExecutionError as e:
            logger.info(f"Skipping duplicate execution {e.execution_id}")
        except StoreUnavailableError as e:
            logger.error(f"Store unavailable while running workflow {workflow_id}: {e}")
        except Exception:
            logger.error(f"Workflow {workflow_id} crashed: {traceback.format_exc()}")
        return None

    async def _tick(self) -> List[asyncio.Task]:
        """Process one tick of the scheduler."""
        if self._tick_lock.locked():
            logger.warning("Previous tick still running. Skipping this one.")
            return []

        async with self._tick_lock:
            definitions = await self.store.list_active_definitions(TriggerType.TIME_BASED)
            now = utcnow()
            launched = []

            for definition in definitions:
                try:
                    last = await self.registry.last_triggered(definition.id, definition.last_triggered)
                    if not is_due(schedule_for(definition), last, now):
                        continue
                except DefinitionError as e:
                    logger.warning(f"Skipping workflow {definition.id}: {e}")
                    continue

                event = TriggerEvent(
                    id=f"tick-{int(to_timestamp(now))}",
                    type=TIME_TRIGGER_EVENT,
                    payload={"scheduled_at": now.isoformat(), "workflow_id": definition.id},
                    timestamp=now,
                    source="scheduler",
                )
                if not self.matcher.match(event, [definition]):
                    continue

                logger.info(f"Workflow {definition.id} is due (last triggered: {last}). Launching...")
                # last_triggered only moves once the execution record exists
                try:
                    snapshot, execution = await self.runner.prepare(definition, event)
                except DuplicateExecutionError as e:
                    logger.info(f"Skipping duplicate execution {e.execution_id}")
                    continue
                except (StoreUnavailableError, DefinitionError) as e:
                    logger.error(f"Could not record execution, workflow {definition.id} will be retried next tick: {e}")
                    continue

                launched.append(self._track(self._guarded(definition.id, self.runner.run(snapshot, execution)), definition.id))

                await self.registry.mark_triggered(definition.id, now)
                try:
                    await self.store.update_definition_last_triggered(definition.id, now)
                except StoreUnavailableError as e:
                    logger.error(f"Could not persist last_triggered for {definition.id}: {e}")

            return launched
