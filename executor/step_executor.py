import logging
import traceback
from typing import Optional

from api_clients.base_store import WorkflowStore
from exceptions import DefinitionError
from models.execution_log import ActionResult, ExecutionStatus, LogLevel, WorkflowExecution
from models.workflow import ActionType, Step, WorkflowDefinition
from utils.retry import RetryManager
from utils.time_utils import utcnow

from .action_dispatcher import ActionDispatcher
from .condition_evaluator import ConditionEvaluator
from .execution_context import ExecutionContext

logger = logging.getLogger("workflow_engine")


class StepExecutor:
    """
    Runs one execution's steps strictly in order.

    State machine: pending -> running -> completed | failed. The execution
    record is persisted on every transition. A failed required step aborts
    the run; a failed optional step is logged and the run continues. Steps
    are only re-run when they declare an explicit RetryPolicy.
    """

    def __init__(self, dispatcher: ActionDispatcher, store: WorkflowStore, evaluator: ConditionEvaluator = None):
        self.dispatcher = dispatcher
        self.store = store
        self.evaluator = evaluator or ConditionEvaluator()

    async def run(
        self,
        definition: WorkflowDefinition,
        execution: WorkflowExecution,
        context: Optional[ExecutionContext] = None,
    ) -> ActionResult:
        """
        Executes the definition's steps for `execution`. Store errors
        propagate; everything else ends up in the execution record.
        """
        if context is None:
            context = ExecutionContext.build(definition, execution)

        # PENDING -> RUNNING
        execution.status = ExecutionStatus.RUNNING
        await self.store.save_execution(execution)
        logger.info(f"Execution {execution.id} running {len(definition.steps)} step(s) for workflow {definition.id}")

        executed = 0
        skipped = 0
        failed = 0
        failure: Optional[str] = None

        for step in definition.steps:
            # 1. Gate
            try:
                should_run = self.evaluator.evaluate(step.conditions, context)
            except DefinitionError as e:
                should_run = True
                result = ActionResult(success=False, error=str(e))
            else:
                result = None

            if not should_run:
                skipped += 1
                skip_result = ActionResult(success=True, message="Step conditions not met, skipped")
                context.record_result(step, skip_result, "skipped")
                execution.log(f"Step {step.id} skipped: conditions not met", step_id=step.id, data={"action_type": step.action_type.value})
                logger.info(f"   [{execution.id}] Step {step.id} skipped")
                continue

            # 2. Dispatch
            if result is None:
                result = await self._dispatch(step, context)
            executed += 1

            # 3. Record
            status = "completed" if result.success else "failed"
            context.record_result(step, result, status)
            log_data = {"action_type": step.action_type.value, "result": result.model_dump(mode="json")}

            if result.success:
                execution.log(f"Step {step.id} completed: {result.message or step.action_type.value}", step_id=step.id, data=log_data)
                logger.info(f"   [{execution.id}] Step {step.id} ({step.action_type.value}) completed")
                continue

            failed += 1
            if step.required:
                failure = f"Required step {step.id} failed: {result.error}"
                execution.log(f"Step {step.id} failed: {result.error}", level=LogLevel.ERROR, step_id=step.id, data=log_data)
                logger.error(f"   [{execution.id}] {failure}")
                break

            execution.log(f"Optional step {step.id} failed: {result.error}", level=LogLevel.WARNING, step_id=step.id, data=log_data)
            logger.warning(f"   [{execution.id}] Optional step {step.id} failed: {result.error}. Continuing.")

        summary = {
            "results": context["results"],
            "steps_executed": executed,
            "steps_skipped": skipped,
            "steps_failed": failed,
        }
        if failure:
            aggregate = ActionResult(success=False, error=failure, data=summary)
        else:
            aggregate = ActionResult(success=True, message="Workflow completed successfully", data=summary)

        # RUNNING -> COMPLETED / FAILED
        self._finish(execution, context, aggregate)
        await self.store.save_execution(execution)
        logger.info(f"Execution {execution.id} {execution.status.value} (executed={executed}, skipped={skipped}, failed={failed})")
        return aggregate

    async def _dispatch(self, step: Step, context: ExecutionContext) -> ActionResult:
        # delay is an in-process suspension, never a retryable call
        if step.retry and step.retry.max_attempts > 1 and step.action_type != ActionType.DELAY:
            @RetryManager.with_retry(step.retry)
            async def _attempt():
                return await self.dispatcher.execute(step, context)
            return await _attempt()
        return await self.dispatcher.execute(step, context)

    @staticmethod
    def _finish(execution: WorkflowExecution, context: ExecutionContext, aggregate: ActionResult):
        try:
            execution.context = context.snapshot()
            execution.result = aggregate.model_copy(update={"data": ExecutionContext(aggregate.data or {}).snapshot()})
        except (TypeError, ValueError):
            logger.error(f"Could not snapshot context for {execution.id}: {traceback.format_exc()}")
            execution.result = ActionResult(success=aggregate.success, message=aggregate.message, error=aggregate.error)

        execution.completed_at = utcnow()
        if aggregate.success:
            execution.status = ExecutionStatus.COMPLETED
            execution.error_message = None
        else:
            execution.status = ExecutionStatus.FAILED
            execution.error_message = aggregate.error or "Workflow execution failed"
