"""
Condition evaluation for condition nodes and event trigger filters.

Condition nodes accept either an expression string (``input.x > 3``) or the
structured form saved by the editor's condition builder:

    {"type": "simple", "field": "input.total", "operator": "gte", "value": 100}
    {"type": "all", "conditions": [...]}

Event triggers use a Mongo-style filter over the event data:

    {"order.total": {"$gt": 50}, "order.currency": "USD"}
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Union

from storeflow.errors import ExpressionError
from storeflow.workflows.expressions import evaluate_bool
from storeflow.workflows.models import Condition

_MISSING = object()


def get_path(data: Any, path: str, default: Any = None) -> Any:
    """Read a dotted path (``order.items.0.sku``) from nested mappings and lists."""
    current = data
    for segment in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(segment, _MISSING)
        elif isinstance(current, (list, tuple)) and segment.lstrip("-").isdigit():
            index = int(segment)
            current = current[index] if -len(current) <= index < len(current) else _MISSING
        else:
            current = _MISSING
        if current is _MISSING:
            return default
    return current


def _number(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return value
    return value


def _ordered(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(actual: Any, expected: Any) -> bool:
        if actual is None or expected is None:
            return False
        try:
            return compare(_number(actual), _number(expected))
        except TypeError:
            return False

    return check


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return str(expected) in actual
    if isinstance(actual, (list, tuple, set, dict)):
        return expected in actual
    return False


def _in(actual: Any, expected: Any) -> bool:
    return isinstance(expected, (list, tuple, set)) and actual in expected


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "eq": lambda a, b: a == b,
    "neq": lambda a, b: a != b,
    "gt": _ordered(lambda a, b: a > b),
    "gte": _ordered(lambda a, b: a >= b),
    "lt": _ordered(lambda a, b: a < b),
    "lte": _ordered(lambda a, b: a <= b),
    "contains": _contains,
    "startsWith": lambda a, b: isinstance(a, str) and a.startswith(str(b)),
    "endsWith": lambda a, b: isinstance(a, str) and a.endswith(str(b)),
    "in": _in,
    "notIn": lambda a, b: not _in(a, b),
    "exists": lambda a, b: a is not None,
}


def evaluate_condition(condition: Union[str, Condition], namespace: Mapping[str, Any]) -> bool:
    """
    Evaluate a condition node's condition.

    Raises:
        ExpressionError: Invalid expression or unknown operator.
    """
    if isinstance(condition, str):
        return evaluate_bool(condition, namespace)

    if condition.type == "expression":
        return evaluate_bool(condition.expression or "", namespace)
    if condition.type == "all":
        return all(evaluate_condition(child, namespace) for child in condition.conditions)
    if condition.type == "any":
        return any(evaluate_condition(child, namespace) for child in condition.conditions)
    if condition.type == "none":
        return not any(evaluate_condition(child, namespace) for child in condition.conditions)

    if not condition.field:
        raise ExpressionError("Simple condition needs a field")
    compare = OPERATORS.get(condition.operator or "eq")
    if compare is None:
        raise ExpressionError(f"Unknown operator: {condition.operator}")
    return bool(compare(get_path(namespace, condition.field), condition.value))


_FILTER_OPERATORS = {
    "$eq": "eq",
    "$neq": "neq",
    "$ne": "neq",
    "$gt": "gt",
    "$gte": "gte",
    "$lt": "lt",
    "$lte": "lte",
    "$in": "in",
    "$nin": "notIn",
}


def matches_filter(data: Any, filter_spec: Mapping[str, Any] | None) -> bool:
    """True when every field in ``filter_spec`` matches ``data``."""
    for path, expected in (filter_spec or {}).items():
        actual = get_path(data, path)
        if isinstance(expected, Mapping) and expected and all(k.startswith("$") for k in expected):
            for op, operand in expected.items():
                name = _FILTER_OPERATORS.get(op)
                if name is None or not OPERATORS[name](actual, operand):
                    return False
        elif actual != expected:
            return False
    return True


__all__ = ["OPERATORS", "evaluate_condition", "get_path", "matches_filter"]
