import logging
from typing import Any, Dict, Iterable, List, Optional

from exceptions import DefinitionError
from models.trigger_event import TIME_TRIGGER_EVENT, TriggerEvent
from models.workflow import TriggerType, WorkflowDefinition

from .condition_evaluator import ConditionEvaluator

logger = logging.getLogger("workflow_engine")

TEXT_FIELDS = ("message", "content", "text")
VALUE_FIELDS = ("value", "amount", "total", "total_price", "order_value")
MIN_VALUE_SETTINGS = ("min_value", "min_order_value", "min_deal_value")
PREMIUM_TIERS = ("premium", "enterprise", "vip")


def _first_present(payload: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _customer_tier(payload: Dict[str, Any]) -> Optional[str]:
    customer = payload.get("customer")
    if isinstance(customer, dict) and customer.get("tier"):
        return str(customer["tier"])
    if payload.get("customer_tier"):
        return str(payload["customer_tier"])
    return None


class TriggerMatcher:
    """
    Selects the definitions an event should start.

    A definition matches when it is active, its trigger type equals the
    event type, every trigger setting predicate holds and its trigger
    conditions evaluate true. Matching has no side effects.
    """

    def __init__(self, evaluator: ConditionEvaluator = None):
        self.evaluator = evaluator or ConditionEvaluator()

    def match(self, event: TriggerEvent, definitions: Iterable[WorkflowDefinition]) -> List[WorkflowDefinition]:
        matched = []
        for definition in definitions:
            try:
                if self.matches(event, definition):
                    matched.append(definition)
            except (DefinitionError, AttributeError, TypeError, ValueError) as e:
                logger.warning(f"Skipping workflow {getattr(definition, 'id', '?')}: malformed trigger ({e})")
        logger.debug(f"Event {event.type} matched {len(matched)} workflow(s)")
        return matched

    def matches(self, event: TriggerEvent, definition: WorkflowDefinition) -> bool:
        if not definition.active:
            return False
        if not self._type_matches(event.type, definition.trigger_type):
            return False

        settings = definition.trigger_conditions.settings or {}
        if not self._settings_match(settings, event):
            return False

        context = dict(event.payload)
        context["event"] = event.payload
        context["trigger_event"] = event.model_dump(mode="json")
        context["settings"] = settings
        return self.evaluator.evaluate(definition.trigger_conditions.conditions, context)

    @staticmethod
    def _type_matches(event_type: str, trigger_type: TriggerType) -> bool:
        if event_type == TIME_TRIGGER_EVENT:
            return trigger_type == TriggerType.TIME_BASED
        return event_type == trigger_type.value

    def _settings_match(self, settings: Dict[str, Any], event: TriggerEvent) -> bool:
        payload = event.payload

        # 1. Sentiment
        threshold = settings.get("sentiment_threshold")
        if threshold is not None:
            score = _number(payload.get("sentiment_score"))
            if score is None or score > float(threshold):
                return False

        # 2. Keywords
        keywords = settings.get("keywords")
        if keywords:
            if isinstance(keywords, str):
                keywords = [keywords]
            if not self._has_keyword(payload, keywords, bool(settings.get("case_sensitive", False))):
                return False

        # 3. Minimum value
        for key in MIN_VALUE_SETTINGS:
            if settings.get(key) is None:
                continue
            value = _number(_first_present(payload, VALUE_FIELDS))
            if value is None or value < float(settings[key]):
                return False

        # 4. Customer tier
        tier = _customer_tier(payload)
        wanted = settings.get("customer_tier")
        if wanted:
            allowed = [wanted] if isinstance(wanted, str) else list(wanted)
            if tier is None or tier.lower() not in {str(t).lower() for t in allowed}:
                return False
        if settings.get("premium_tier_only") and (tier is None or tier.lower() not in PREMIUM_TIERS):
            return False

        # 5. Source filters
        source = settings.get("integration_source")
        if source and payload.get("integration_source", payload.get("source", event.source)) != source:
            return False
        sub_type = settings.get("event_type")
        if sub_type and payload.get("event_type") != sub_type:
            return False

        return True

    @staticmethod
    def _has_keyword(payload: Dict[str, Any], keywords: List[Any], case_sensitive: bool) -> bool:
        text = _first_present(payload, TEXT_FIELDS)
        if text is None:
            return False
        text = str(text)
        if not case_sensitive:
            text = text.lower()
        for keyword in keywords:
            needle = str(keyword) if case_sensitive else str(keyword).lower()
            if needle and needle in text:
                return True
        return False
