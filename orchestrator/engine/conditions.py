# ============================================================================
# CONDITION EVALUATOR
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Core - Include-if and await condition evaluation
# PURPOSE: Evaluate boolean environment/property conditions and JSON
#          pointer/status conditions against a fetched resource
# ============================================================================
"""
Condition Evaluator

Two evaluators live here:

- ConditionEvaluator: `includeIf` gates on dependencies, descriptors and
  patches. Each condition compares an environment variable (or property)
  to an expected value, optionally negated, combined with ALL/ANY.

- AwaitConditionEvaluator: readiness predicates over the JSON body of a
  Kubernetes resource. One evaluation function per condition type:
  JSON_POINTER and STATUS_CONDITION.

Both are stateless.
"""

import json
import logging
import os
from typing import Any, Callable, Dict, Mapping, Optional

import jsonpointer

from core.contracts import AwaitConditionType, ConditionOperator, ConditionType, JsonPointerOperator
from core.models import AwaitCondition, Condition, Conditions

logger = logging.getLogger(__name__)


# ============================================================================
# INCLUDE-IF CONDITIONS
# ============================================================================

class ConditionEvaluator:
    """
    Evaluates `includeIf` conditions.

    A missing Conditions object always passes.
    """

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        properties: Optional[Mapping[str, str]] = None,
    ):
        self._environ = environ if environ is not None else os.environ
        self._properties = properties if properties is not None else {}

    def test(self, conditions: Optional[Conditions]) -> bool:
        """
        Evaluate a Conditions block.

        Args:
            conditions: Conditions to evaluate (None passes)

        Returns:
            True if the conditions hold
        """
        if conditions is None:
            return True
        results = (self._evaluate(c) for c in conditions.conditions)
        if conditions.operator == ConditionOperator.ANY:
            return any(results)
        return all(results)

    def _evaluate(self, condition: Condition) -> bool:
        if condition.key is None or not condition.key.strip():
            matched = True
        else:
            matched = condition.value == self._read(condition.type, condition.key)
        return condition.negate != matched

    def _read(self, type_: ConditionType, key: str) -> str:
        if type_ == ConditionType.SYSTEM_PROPERTY:
            return self._properties.get(key, "")
        return self._environ.get(key, "")


# ============================================================================
# AWAIT CONDITIONS
# ============================================================================

class AwaitConditionError(Exception):
    """Raised when an await condition cannot be evaluated against a body."""
    pass


def _stringify(value: Any) -> str:
    """JSON strings as is, anything else as its JSON text."""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _compare(operator: JsonPointerOperator, expected: Optional[str], actual: str) -> bool:
    if operator == JsonPointerOperator.EQUALS:
        return expected == actual
    if operator == JsonPointerOperator.NOT_EQUALS:
        return expected != actual
    if operator == JsonPointerOperator.EQUALS_IGNORE_CASE:
        return expected is not None and actual.lower() == expected.lower()
    if operator == JsonPointerOperator.NOT_EQUALS_IGNORE_CASE:
        return expected is None or actual.lower() != expected.lower()
    if operator == JsonPointerOperator.CONTAINS:
        return expected is not None and expected in actual
    if operator == JsonPointerOperator.EXISTS:
        return True
    if operator == JsonPointerOperator.MISSING:
        # the pointer resolved so the value is not missing
        return False
    raise AwaitConditionError(f"Unsupported comparison type: {operator}")


def _resolve(body: Dict[str, Any], pointer: str) -> Any:
    try:
        return jsonpointer.resolve_pointer(body, pointer)
    except jsonpointer.JsonPointerException as e:
        raise AwaitConditionError(f"Can't resolve '{pointer}': {e}") from e


def _evaluate_json_pointer(condition: AwaitCondition, body: Dict[str, Any]) -> bool:
    value = _resolve(body, condition.pointer)
    return _compare(condition.operator_type, condition.value, _stringify(value))


def _evaluate_status_condition(condition: AwaitCondition, body: Dict[str, Any]) -> bool:
    entries = _resolve(body, "/status/conditions")
    if not isinstance(entries, list):
        raise AwaitConditionError("/status/conditions is not an array")
    return any(
        isinstance(it, dict)
        and it.get("type") == condition.condition_type
        and _stringify(it.get("status")) == condition.value
        for it in entries
    )


_EVALUATORS: Dict[AwaitConditionType, Callable[[AwaitCondition, Dict[str, Any]], bool]] = {
    AwaitConditionType.JSON_POINTER: _evaluate_json_pointer,
    AwaitConditionType.STATUS_CONDITION: _evaluate_status_condition,
}


class AwaitConditionEvaluator:
    """Evaluates await conditions against a resource JSON body."""

    def evaluate(self, condition: AwaitCondition, body: Dict[str, Any]) -> bool:
        """
        Evaluate one condition.

        Raises:
            AwaitConditionError: if the body can't be evaluated (missing path...)
        """
        evaluator = _EVALUATORS.get(condition.type)
        if evaluator is None:
            raise AwaitConditionError(f"Unsupported type: {condition.type}")
        return evaluator(condition, body)

    def is_satisfied(self, condition: AwaitCondition, body: Dict[str, Any]) -> bool:
        """
        Evaluate one condition, never raising.

        A failed evaluation is satisfied only for the MISSING operator,
        otherwise it is not satisfied yet.
        """
        try:
            return self.evaluate(condition, body)
        except AwaitConditionError as e:
            if condition.operator_type == JsonPointerOperator.MISSING:
                return True
            logger.debug(f"{e} (awaiting on {condition.describe()})")
            return False


__all__ = [
    "ConditionEvaluator",
    "AwaitConditionEvaluator",
    "AwaitConditionError",
]
