"""
Condition Evaluator

Safe evaluation of action guards. A small structured DSL, never eval().

Leaf:
    {"field": "trigger.lead.status", "operator": "equals", "value": "new"}

Group:
    {"logic": "or", "conditions": [<leaf or group>, ...]}

An empty or missing condition is always true. At runtime a malformed
condition evaluates to False (fail closed); validate_condition() is used
when actions are saved so that malformed guards never reach the store.
"""

import logging
from typing import Any, Callable, Dict, Optional

from .context import ExecutionContext
from .exceptions import ValidationError

logger = logging.getLogger(__name__)


class ConditionOperator:
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUALS = "greater_than_or_equals"
    LESS_THAN_OR_EQUALS = "less_than_or_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    EXISTS = "exists"

    ALL = (
        EQUALS, NOT_EQUALS, GREATER_THAN, LESS_THAN, GREATER_THAN_OR_EQUALS,
        LESS_THAN_OR_EQUALS, CONTAINS, NOT_CONTAINS, IN, NOT_IN, IS_EMPTY,
        IS_NOT_EMPTY, EXISTS,
    )

    # Operators that do not need a "value"
    UNARY = (IS_EMPTY, IS_NOT_EMPTY, EXISTS)


LOGIC_AND = "and"
LOGIC_OR = "or"


def validate_condition(condition: Optional[Dict[str, Any]], path: str = "condition") -> None:
    """
    Check the shape of a condition.

    Raises:
        ValidationError: if the condition is not a well-formed leaf or group
    """
    if not condition:
        return

    if not isinstance(condition, dict):
        raise ValidationError(f"{path} must be an object, got {type(condition).__name__}")

    if "conditions" in condition:
        logic = str(condition.get("logic", LOGIC_AND)).lower()
        if logic not in (LOGIC_AND, LOGIC_OR):
            raise ValidationError(f"{path}.logic must be 'and' or 'or', got '{logic}'")
        children = condition["conditions"]
        if not isinstance(children, list):
            raise ValidationError(f"{path}.conditions must be a list")
        for index, child in enumerate(children):
            if not child:
                raise ValidationError(f"{path}.conditions[{index}] is empty")
            validate_condition(child, f"{path}.conditions[{index}]")
        return

    field = condition.get("field")
    if not isinstance(field, str) or not field:
        raise ValidationError(f"{path}.field is required")

    operator = condition.get("operator")
    if operator not in ConditionOperator.ALL:
        raise ValidationError(f"{path}.operator '{operator}' is not supported")

    if operator not in ConditionOperator.UNARY and "value" not in condition:
        raise ValidationError(f"{path}.value is required for operator '{operator}'")


class ConditionEvaluator:
    """Evaluate action conditions against an ExecutionContext"""

    def evaluate(self, condition: Optional[Dict[str, Any]], context: ExecutionContext) -> bool:
        if not condition:
            return True

        try:
            validate_condition(condition)
        except ValidationError as e:
            logger.warning(f"Malformed condition, evaluating to False: {e.message}")
            return False

        return self._evaluate_node(condition, context)

    def _evaluate_node(self, node: Dict[str, Any], context: ExecutionContext) -> bool:
        if "conditions" in node:
            results = (self._evaluate_node(child, context) for child in node["conditions"])
            if str(node.get("logic", LOGIC_AND)).lower() == LOGIC_OR:
                return any(results)
            return all(results)

        return self._evaluate_single(node, context)

    def _evaluate_single(self, condition: Dict[str, Any], context: ExecutionContext) -> bool:
        operator = condition["operator"]
        field = condition["field"]

        if operator == ConditionOperator.EXISTS:
            return context.has(field)

        try:
            return self._compare(context.get(field), operator, condition.get("value"))
        except Exception as e:
            logger.warning(f"Condition evaluation failed for '{field}': {e}")
            return False

    def _compare(self, field_value: Any, operator: str, compare_value: Any) -> bool:
        if operator == ConditionOperator.EQUALS:
            return field_value == compare_value

        elif operator == ConditionOperator.NOT_EQUALS:
            return field_value != compare_value

        elif operator == ConditionOperator.GREATER_THAN:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a > b)

        elif operator == ConditionOperator.LESS_THAN:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a < b)

        elif operator == ConditionOperator.GREATER_THAN_OR_EQUALS:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a >= b)

        elif operator == ConditionOperator.LESS_THAN_OR_EQUALS:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a <= b)

        elif operator == ConditionOperator.CONTAINS:
            if field_value is None:
                return False
            if isinstance(field_value, (list, tuple, dict)):
                return compare_value in field_value
            return str(compare_value) in str(field_value)

        elif operator == ConditionOperator.NOT_CONTAINS:
            if field_value is None:
                return True
            if isinstance(field_value, (list, tuple, dict)):
                return compare_value not in field_value
            return str(compare_value) not in str(field_value)

        elif operator == ConditionOperator.IN:
            if not isinstance(compare_value, list):
                compare_value = [compare_value]
            return field_value in compare_value

        elif operator == ConditionOperator.NOT_IN:
            if not isinstance(compare_value, list):
                compare_value = [compare_value]
            return field_value not in compare_value

        elif operator == ConditionOperator.IS_EMPTY:
            return field_value in (None, "", [], {})

        elif operator == ConditionOperator.IS_NOT_EMPTY:
            return field_value not in (None, "", [], {})

        return False

    def _compare_numeric(self, field_value: Any, compare_value: Any, comparator: Callable) -> bool:
        # Missing values never satisfy an ordering comparison
        if field_value is None or compare_value is None:
            return False
        try:
            return comparator(float(field_value), float(compare_value))
        except (ValueError, TypeError):
            return False
