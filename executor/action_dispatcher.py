import asyncio
import logging
import traceback
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import requests

from api_clients.base_store import WorkflowStore
from connectors.connector_builder import ConnectorRegistry
from exceptions import ConnectorError, ScriptTimeoutError
from models.execution_log import ActionResult
from models.workflow import ActionType, Step
from utils.time_utils import utcnow

from .execution_context import ExecutionContext
from .script_sandbox import ScriptSandbox
from .template_renderer import TemplateRenderer

logger = logging.getLogger("workflow_engine")

DEFAULT_WEBHOOK_TIMEOUT_SECONDS = 30.0


class BaseActionHandler:
    """One action type. Handlers may raise; the dispatcher converts errors to results."""

    # custom_script passes its source through untouched
    render_config = True

    async def execute(self, config: Dict[str, Any], context: ExecutionContext) -> ActionResult:
        raise NotImplementedError


class NotificationActionHandler(BaseActionHandler):
    MESSAGES = {"email": "Email sent successfully", "sms": "SMS sent successfully", "slack": "Slack notification sent successfully"}

    def __init__(self, connectors: ConnectorRegistry, channel: str):
        self.connectors = connectors
        self.channel = channel

    async def execute(self, config, context):
        connector = self.connectors.notification(self.channel)
        data = await connector.send_notification(self.channel, config)
        return ActionResult(success=True, message=self.MESSAGES.get(self.channel, "Notification sent"), data=data)


class RecordActionHandler(BaseActionHandler):
    """Create or update one CRM / e-commerce object."""

    PROPERTY_KEYS = ("properties", "updates", "taskData", "data")
    ID_KEYS = ("record_id", "dealId", "orderId", "contactId", "customerId", "id")

    def __init__(self, connectors: ConnectorRegistry, system: str, operation: str, object_type: str):
        self.connectors = connectors
        self.system = system
        self.operation = operation
        self.object_type = object_type

    def _properties(self, config: Dict[str, Any]) -> Dict[str, Any]:
        for key in self.PROPERTY_KEYS:
            if isinstance(config.get(key), dict):
                return config[key]
        raise ValueError(f"{self.system} {self.object_type} {self.operation} requires 'properties'")

    def _record_id(self, config: Dict[str, Any]) -> str:
        for key in self.ID_KEYS:
            if config.get(key) not in (None, ""):
                return str(config[key])
        raise ValueError(f"{self.system} {self.object_type} update requires 'record_id'")

    async def execute(self, config, context):
        connector = self.connectors.records(self.system)
        properties = self._properties(config)
        if self.operation == "create":
            data = await connector.create_record(self.object_type, properties)
            verb = "created"
        else:
            data = await connector.update_record(self.object_type, self._record_id(config), properties)
            verb = "updated"
        return ActionResult(
            success=True,
            message=f"{self.system.capitalize()} {self.object_type} {verb} successfully",
            data=data,
        )


class EscalationActionHandler(BaseActionHandler):
    def __init__(self, store: WorkflowStore):
        self.store = store

    async def execute(self, config, context):
        record = {
            "workflow_execution_id": context.get("execution_id"),
            "workflow_id": context.get("workflow_id"),
            "priority": config.get("priority") or "medium",
            "department": config.get("department") or "support",
            "message": config.get("message") or "",
            "status": "pending",
            "created_at": utcnow(),
        }
        data = await self.store.create_escalation(record)
        return ActionResult(success=True, message="Escalated to human agent successfully", data=data)


class DelayActionHandler(BaseActionHandler):
    async def execute(self, config, context):
        raw = config.get("duration", 0)
        try:
            duration_ms = float(raw)
        except (TypeError, ValueError):
            return ActionResult(success=False, error=f"Invalid delay duration: {raw!r}")
        if duration_ms < 0:
            return ActionResult(success=False, error=f"Delay duration must be non-negative, got {raw!r}")

        # Suspends only this execution's task
        await asyncio.sleep(duration_ms / 1000.0)
        return ActionResult(success=True, message=f"Delayed for {duration_ms:g}ms", data={"duration": duration_ms})


class WebhookActionHandler(BaseActionHandler):
    def __init__(self, timeout_seconds: float = DEFAULT_WEBHOOK_TIMEOUT_SECONDS):
        self.timeout_seconds = timeout_seconds
        self.session = requests.Session()

    def _call(self, method: str, url: str, headers: Dict[str, str], body: Any, timeout: float) -> requests.Response:
        return self.session.request(method, url, headers=headers, json=body, timeout=timeout)

    async def execute(self, config, context):
        url = config.get("url")
        if not url:
            return ActionResult(success=False, error="Webhook requires a 'url'")

        method = str(config.get("method") or "POST").upper()
        headers = {"Content-Type": "application/json", **(config.get("headers") or {})}
        body = config.get("body")
        timeout = float(config.get("timeout") or self.timeout_seconds)

        try:
            response = await asyncio.to_thread(self._call, method, url, headers, body, timeout)
        except requests.Timeout:
            return ActionResult(success=False, error=f"Webhook timeout after {timeout}s")
        except requests.RequestException as e:
            return ActionResult(success=False, error=f"Webhook connection failed: {e}")

        try:
            result = response.json()
        except ValueError:
            result = response.text

        data = {"status": response.status_code, "result": result}
        if not response.ok:
            return ActionResult(success=False, message="Webhook failed", error=f"Webhook returned HTTP {response.status_code}", data=data)
        return ActionResult(success=True, message="Webhook executed successfully", data=data)


class CustomScriptActionHandler(BaseActionHandler):
    render_config = False

    def __init__(self, sandbox: ScriptSandbox):
        self.sandbox = sandbox

    async def execute(self, config, context):
        script = config.get("script") or config.get("expression")
        language = str(config.get("language") or "expression").lower()
        timeout = config.get("timeout")
        timeout_seconds = float(timeout) / 1000.0 if timeout is not None else None

        try:
            value = await self.sandbox.run(script, context.snapshot(), language=language, timeout_seconds=timeout_seconds)
        except ScriptTimeoutError as e:
            return ActionResult(success=False, error=str(e))

        output_variable = config.get("output_variable")
        if output_variable:
            context.set_variable(output_variable, value)
        return ActionResult(success=True, message="Custom script executed successfully", data=value)


HandlerLike = Union[BaseActionHandler, Callable[[Dict[str, Any], ExecutionContext], Awaitable[ActionResult]]]

RECORD_ACTIONS = {
    ActionType.HUBSPOT_CREATE_CONTACT: ("hubspot", "create", "contact"),
    ActionType.HUBSPOT_UPDATE_CONTACT: ("hubspot", "update", "contact"),
    ActionType.HUBSPOT_CREATE_DEAL: ("hubspot", "create", "deal"),
    ActionType.HUBSPOT_UPDATE_DEAL: ("hubspot", "update", "deal"),
    ActionType.HUBSPOT_CREATE_TICKET: ("hubspot", "create", "ticket"),
    ActionType.SALESFORCE_CREATE_CONTACT: ("salesforce", "create", "contact"),
    ActionType.SALESFORCE_UPDATE_CONTACT: ("salesforce", "update", "contact"),
    ActionType.SALESFORCE_CREATE_OPPORTUNITY: ("salesforce", "create", "opportunity"),
    ActionType.SALESFORCE_UPDATE_OPPORTUNITY: ("salesforce", "update", "opportunity"),
    ActionType.SALESFORCE_CREATE_TASK: ("salesforce", "create", "task"),
    ActionType.SALESFORCE_CREATE_CASE: ("salesforce", "create", "case"),
    ActionType.SHOPIFY_CREATE_CUSTOMER: ("shopify", "create", "customer"),
    ActionType.SHOPIFY_UPDATE_CUSTOMER: ("shopify", "update", "customer"),
    ActionType.SHOPIFY_CREATE_ORDER: ("shopify", "create", "order"),
    ActionType.SHOPIFY_UPDATE_ORDER: ("shopify", "update", "order"),
    ActionType.SHOPIFY_CREATE_DISCOUNT: ("shopify", "create", "discount"),
}


class ActionDispatcher:
    """
    Maps a step's action type to a registered handler.

    `execute` never raises: connector, definition and script errors all come
    back as ActionResult(success=False).
    """

    def __init__(
        self,
        connectors: ConnectorRegistry,
        store: WorkflowStore,
        renderer: TemplateRenderer = None,
        sandbox: ScriptSandbox = None,
        webhook_timeout_seconds: float = DEFAULT_WEBHOOK_TIMEOUT_SECONDS,
    ):
        self.connectors = connectors
        self.store = store
        self.renderer = renderer or TemplateRenderer()
        self.sandbox = sandbox or ScriptSandbox()
        self.webhook_timeout_seconds = webhook_timeout_seconds
        self._handlers: Dict[str, HandlerLike] = {}
        self._register_builtin_handlers()

    def _register_builtin_handlers(self):
        self.register(ActionType.SEND_EMAIL, NotificationActionHandler(self.connectors, "email"))
        self.register(ActionType.SEND_SMS, NotificationActionHandler(self.connectors, "sms"))
        self.register(ActionType.SEND_SLACK, NotificationActionHandler(self.connectors, "slack"))
        for action_type, (system, operation, object_type) in RECORD_ACTIONS.items():
            self.register(action_type, RecordActionHandler(self.connectors, system, operation, object_type))
        self.register(ActionType.ESCALATE_TO_HUMAN, EscalationActionHandler(self.store))
        self.register(ActionType.DELAY, DelayActionHandler())
        self.register(ActionType.WEBHOOK, WebhookActionHandler(self.webhook_timeout_seconds))
        self.register(ActionType.CUSTOM_SCRIPT, CustomScriptActionHandler(self.sandbox))

    def register(self, action_type: Union[ActionType, str], handler: HandlerLike):
        """Adds or replaces the handler for an action type."""
        key = action_type.value if isinstance(action_type, ActionType) else str(action_type)
        self._handlers[key] = handler

    def handler_for(self, action_type: Union[ActionType, str]) -> Optional[HandlerLike]:
        key = action_type.value if isinstance(action_type, ActionType) else str(action_type)
        return self._handlers.get(key)

    async def execute(self, step: Step, context: ExecutionContext) -> ActionResult:
        action_type = step.action_type.value if isinstance(step.action_type, ActionType) else str(step.action_type)
        handler = self.handler_for(action_type)
        if handler is None:
            return ActionResult(success=False, error=f"Unknown action type: {action_type}")

        try:
            config = step.config
            if getattr(handler, "render_config", True):
                missing = self.renderer.missing_in_value(config, context)
                if missing:
                    logger.warning(f"Step {step.id}: unresolved template variables {missing}")
                config = self.renderer.render_value(config, context)

            if isinstance(handler, BaseActionHandler):
                result = await handler.execute(config, context)
            else:
                result = await handler(config, context)

            if not isinstance(result, ActionResult):
                result = ActionResult(success=True, message=f"{action_type} completed", data=result)
            if not result.success and not result.error:
                result.error = result.message or f"{action_type} failed"
            return result

        except ConnectorError as e:
            logger.error(f"Step {step.id} ({action_type}) connector error: {e}")
            return ActionResult(success=False, error=str(e) or "Connector error")
        except Exception as e:
            logger.error(f"Step {step.id} ({action_type}) failed: {e}")
            logger.debug(traceback.format_exc())
            return ActionResult(success=False, error=str(e) or e.__class__.__name__)
