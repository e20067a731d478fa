import json
from typing import Any, Dict

from models.execution_log import ActionResult, WorkflowExecution
from models.workflow import Step, WorkflowDefinition
from utils.dotpath import MISSING, resolve_path

RESERVED_KEYS = ("event", "trigger_event", "variables", "workflow_id", "execution_id", "results", "steps")


class ExecutionContext(dict):
    """
    Mutable scope threaded through one execution's steps.

    Layout: trigger payload keys and workflow variables at the top level,
    plus `event`, `trigger_event`, `variables`, `workflow_id`,
    `execution_id`, `results` (ordered step outcomes) and `steps`
    (outcomes keyed by step id).
    """

    @classmethod
    def build(cls, definition: WorkflowDefinition, execution: WorkflowExecution) -> "ExecutionContext":
        event = execution.trigger_event
        context = cls()
        context.update(event.payload)
        context.update(definition.variables)
        context["event"] = event.payload
        context["trigger_event"] = event.model_dump(mode="json")
        context["variables"] = dict(definition.variables)
        context["workflow_id"] = definition.id
        context["execution_id"] = execution.id
        context["results"] = []
        context["steps"] = {}
        return context

    def resolve(self, path: str, default: Any = None) -> Any:
        value = resolve_path(self, path)
        return default if value is MISSING else value

    def set_variable(self, name: str, value: Any):
        self["variables"][name] = value
        if name not in RESERVED_KEYS:
            self[name] = value

    def record_result(self, step: Step, result: ActionResult, status: str):
        outcome = {
            "step_id": step.id,
            "action_type": step.action_type.value,
            "status": status,
            "success": result.success,
            "message": result.message,
            "error": result.error,
            "data": result.data,
        }
        self["results"].append(outcome)
        self["steps"][step.id] = outcome

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe copy for persistence."""
        return json.loads(json.dumps(self, default=str))
