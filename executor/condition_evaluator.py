import re
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from exceptions import DefinitionError
from models.condition import Condition, ConditionOperator, LogicalOperator, ValueType
from utils.dotpath import MISSING, resolve_path
from utils.time_utils import parse_datetime

logger = logging.getLogger("workflow_engine")

_TRUE_STRINGS = {"true", "1", "yes", "y", "on"}
_FALSE_STRINGS = {"false", "0", "no", "n", "off"}


class _CoercionFailed(Exception):
    pass


def coerce(value: Any, value_type: ValueType) -> Any:
    """
    Converts an operand to the declared condition type.
    Raises _CoercionFailed when the value cannot be represented.
    """
    if value_type == ValueType.NUMBER:
        if value is None or value is MISSING or isinstance(value, bool):
            raise _CoercionFailed()
        try:
            return float(value)
        except (TypeError, ValueError):
            raise _CoercionFailed()

    if value_type == ValueType.DATE:
        parsed = parse_datetime(value)
        if parsed is None:
            raise _CoercionFailed()
        return parsed

    if value_type == ValueType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return bool(value)
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
        raise _CoercionFailed()

    if value_type == ValueType.ARRAY:
        if isinstance(value, (list, tuple)):
            return list(value)
        raise _CoercionFailed()

    # string
    if value is None or value is MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class OperatorRegistry:
    """
    Registry of comparison operators.

    Operands reach an operator already coerced to the condition's type.
    """

    def __init__(self):
        self._operators: Dict[str, Callable[[Any, Any], bool]] = {}
        self._register_builtin_operators()

    def _register_builtin_operators(self) -> None:
        self._operators[ConditionOperator.EQUALS.value] = lambda left, right: left == right
        self._operators[ConditionOperator.NOT_EQUALS.value] = lambda left, right: left != right
        self._operators[ConditionOperator.CONTAINS.value] = self._contains
        self._operators[ConditionOperator.NOT_CONTAINS.value] = lambda left, right: not self._contains(left, right)
        self._operators[ConditionOperator.STARTS_WITH.value] = lambda left, right: str(left).startswith(str(right))
        self._operators[ConditionOperator.ENDS_WITH.value] = lambda left, right: str(left).endswith(str(right))
        self._operators[ConditionOperator.GREATER_THAN.value] = self._ordered(lambda left, right: left > right)
        self._operators[ConditionOperator.LESS_THAN.value] = self._ordered(lambda left, right: left < right)
        self._operators[ConditionOperator.GREATER_EQUAL.value] = self._ordered(lambda left, right: left >= right)
        self._operators[ConditionOperator.LESS_EQUAL.value] = self._ordered(lambda left, right: left <= right)
        self._operators[ConditionOperator.REGEX.value] = self._regex
        self._operators[ConditionOperator.IN.value] = lambda left, right: isinstance(right, list) and left in right
        self._operators[ConditionOperator.NOT_IN.value] = lambda left, right: isinstance(right, list) and left not in right
        self._operators[ConditionOperator.EXISTS.value] = lambda left, right: left is not None and left is not MISSING
        self._operators[ConditionOperator.NOT_EXISTS.value] = lambda left, right: left is None or left is MISSING

    def register(self, operator: Union[ConditionOperator, str], func: Callable[[Any, Any], bool]) -> None:
        """Register a custom operator."""
        self._operators[_operator_name(operator)] = func

    def get(self, operator: Union[ConditionOperator, str]) -> Optional[Callable[[Any, Any], bool]]:
        return self._operators.get(_operator_name(operator))

    @staticmethod
    def _contains(left: Any, right: Any) -> bool:
        if isinstance(left, list):
            return right in left
        return str(right) in str(left)

    @staticmethod
    def _ordered(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
        def _wrapped(left: Any, right: Any) -> bool:
            try:
                return bool(compare(left, right))
            except TypeError:
                return False
        return _wrapped

    @staticmethod
    def _regex(left: Any, right: Any) -> bool:
        try:
            return re.search(str(right), str(left)) is not None
        except re.error:
            return False


def _operator_name(operator: Union[ConditionOperator, str]) -> str:
    return operator.value if isinstance(operator, ConditionOperator) else str(operator)


_PRESENCE_OPERATORS = {ConditionOperator.EXISTS.value, ConditionOperator.NOT_EXISTS.value}


class ConditionEvaluator:
    """
    Evaluates condition lists against a context.

    Conditions run left to right. A failing AND condition short-circuits to
    False, a passing OR condition short-circuits to True. An empty list is
    True. A list made only of OR conditions that all failed is False.
    """

    def __init__(self, operators: OperatorRegistry = None):
        self.operators = operators or OperatorRegistry()

    @staticmethod
    def parse(conditions: Optional[Iterable[Union[Condition, Dict[str, Any]]]]) -> List[Condition]:
        """Validates raw condition dicts. Raises DefinitionError if malformed."""
        parsed = []
        for raw in conditions or []:
            if isinstance(raw, Condition):
                parsed.append(raw)
                continue
            try:
                parsed.append(Condition.model_validate(raw))
            except ValidationError as e:
                raise DefinitionError(f"Malformed condition {raw!r}: {e}")
        return parsed

    def evaluate(self, conditions: Optional[Iterable[Union[Condition, Dict[str, Any]]]], context: Mapping[str, Any]) -> bool:
        parsed = self.parse(conditions)
        if not parsed:
            return True

        saw_and = False
        for condition in parsed:
            result = self.evaluate_condition(condition, context)
            if condition.logical_operator == LogicalOperator.OR:
                if result:
                    return True
            else:
                if not result:
                    return False
                saw_and = True
        return saw_and

    def evaluate_condition(self, condition: Condition, context: Mapping[str, Any]) -> bool:
        op_name = _operator_name(condition.operator)
        func = self.operators.get(op_name)
        if func is None:
            logger.warning(f"Unknown condition operator '{op_name}' on field '{condition.field}'; evaluating to false")
            return False

        raw_field = resolve_path(context, condition.field)

        if op_name in _PRESENCE_OPERATORS:
            return func(raw_field, None)

        if op_name == ConditionOperator.REGEX.value:
            field_text = "" if raw_field is MISSING or raw_field is None else raw_field
            return func(field_text, condition.value)

        try:
            left, right = self._coerce_operands(op_name, raw_field, condition.value, condition.type)
        except _CoercionFailed:
            logger.debug(f"Condition on '{condition.field}' could not coerce operands to {condition.type.value}")
            return False

        result = func(left, right)
        logger.debug(f"Condition {condition.field} {op_name} {condition.value!r} -> {result}")
        return bool(result)

    @staticmethod
    def _coerce_operands(op_name: str, field_value: Any, value: Any, value_type: ValueType) -> Tuple[Any, Any]:
        left = coerce(field_value, value_type)

        if op_name in (ConditionOperator.IN.value, ConditionOperator.NOT_IN.value):
            if not isinstance(value, (list, tuple)):
                return left, None
            right = []
            for item in value:
                try:
                    right.append(coerce(item, value_type))
                except _CoercionFailed:
                    continue
            return left, right

        if value_type == ValueType.ARRAY:
            # the right operand of an array condition is an element, or a whole list for equality
            return left, list(value) if isinstance(value, tuple) else value

        return left, coerce(value, value_type)


def evaluate(conditions: Optional[Iterable[Union[Condition, Dict[str, Any]]]], context: Mapping[str, Any]) -> bool:
    return ConditionEvaluator().evaluate(conditions, context)
