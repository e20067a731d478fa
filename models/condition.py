from pydantic import AliasChoices, BaseModel, Field, field_validator
from typing import Any, Union
from enum import Enum


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_EQUAL = "greater_equal"
    LESS_EQUAL = "less_equal"
    REGEX = "regex"
    IN = "in"
    NOT_IN = "not_in"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class ValueType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    ARRAY = "array"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class Condition(BaseModel):
    id: str = ""
    field: str
    # Unknown operator strings are kept so they can fail closed at evaluation
    operator: Union[ConditionOperator, str] = Field(validation_alias=AliasChoices("operator", "op"))
    value: Any = None
    type: ValueType = ValueType.STRING
    logical_operator: LogicalOperator = LogicalOperator.AND

    @field_validator("logical_operator", mode="before")
    @classmethod
    def _upper_combinator(cls, v):
        return v.upper() if isinstance(v, str) else v
