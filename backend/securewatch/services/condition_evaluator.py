"""
Policy Condition Evaluator

Pure functions: no I/O, never raise. A condition whose type or operator is
unknown, or whose values cannot be compared, evaluates to False.

Context keys (built by the policy engine):
  risk_score, security_risk_score, compliance_risk_score, type, severity,
  category_detection_count, frequency, regulations, department, role,
  external_recipients, created_at
"""

import logging
from collections.abc import Mapping
from datetime import datetime

logger = logging.getLogger(__name__)

_CONTEXT_KEYS = {
    "risk_score": "risk_score",
    "security_risk_score": "security_risk_score",
    "compliance_risk_score": "compliance_risk_score",
    "violation_type": "type",
    "violation_severity": "severity",
    "category_detection_count": "category_detection_count",
    "frequency": "frequency",
    "regulation": "regulations",
    "employee_department": "department",
    "employee_role": "role",
    "external_recipients": "external_recipients",
}

CONDITION_TYPES = frozenset(_CONTEXT_KEYS) | {"time_based", "any_violation"}
OPERATORS = frozenset({
    "equals", "not_equals", "greater_than", "less_than", "greater_equal", "less_equal",
    "contains", "not_contains", "in", "not_in", "exists", "not_exists",
})

_MISSING = object()


def _field(condition, name: str, default=None):
    if isinstance(condition, Mapping):
        value = condition.get(name, default)
    else:
        value = getattr(condition, name, default)
    # Enum members (from validated input) compare by value
    return getattr(value, "value", value)


def _actual_value(condition_type: str, context: Mapping):
    if condition_type == "any_violation":
        return True
    if condition_type == "time_based":
        created_at = context.get("created_at")
        if not isinstance(created_at, datetime):
            return _MISSING
        return created_at.hour < 8 or created_at.hour >= 18 or created_at.weekday() >= 5
    key = _CONTEXT_KEYS.get(condition_type)
    if key is None:
        return _MISSING
    return context.get(key)


def _to_number(value) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _text(value) -> str:
    return str(value).strip().lower()


def _as_set(expected) -> set[str]:
    if isinstance(expected, (list, tuple, set)):
        return {_text(v) for v in expected}
    return {v.strip().lower() for v in str(expected).split(",") if v.strip()}


def _compare_scalar(actual, operator: str, expected) -> bool:
    if operator in ("greater_than", "less_than", "greater_equal", "less_equal"):
        a, e = _to_number(actual), _to_number(expected)
        if a is None or e is None:
            return False
        return {
            "greater_than": a > e,
            "less_than": a < e,
            "greater_equal": a >= e,
            "less_equal": a <= e,
        }[operator]

    if operator == "equals":
        a, e = _to_number(actual), _to_number(expected)
        if a is not None and e is not None:
            return a == e
        return _text(actual) == _text(expected)
    if operator == "contains":
        return _text(expected) in _text(actual)
    if operator == "in":
        return _text(actual) in _as_set(expected)
    raise ValueError(operator)


_NEGATIONS = {"not_equals": "equals", "not_contains": "contains", "not_in": "in"}


def evaluate(condition, context: Mapping) -> bool:
    """Evaluate one condition against a flat context. Never raises."""
    condition_type = _field(condition, "condition_type")
    operator = _field(condition, "operator")
    expected = _field(condition, "value")

    try:
        if condition_type not in CONDITION_TYPES:
            logger.warning("Unknown condition type %r; condition evaluates to false", condition_type)
            return False
        if operator not in OPERATORS:
            logger.warning("Unknown operator %r on %s; condition evaluates to false", operator, condition_type)
            return False

        actual = _actual_value(condition_type, context)
        if actual is _MISSING:
            actual = None

        if operator == "exists":
            return actual not in (None, "", [], ())
        if operator == "not_exists":
            return actual in (None, "", [], ())
        if actual is None or expected is None:
            return False

        positive = _NEGATIONS.get(operator, operator)
        if isinstance(actual, (list, tuple, set)):
            matched = any(_compare_scalar(item, positive, expected) for item in actual)
        else:
            matched = _compare_scalar(actual, positive, expected)
        return not matched if operator in _NEGATIONS else matched
    except Exception as exc:
        logger.warning("Condition %s %s %r failed to evaluate: %s", condition_type, operator, expected, exc)
        return False


def evaluate_conditions(conditions, context: Mapping) -> bool:
    """Fold conditions strictly in order.

    The first condition seeds the accumulator; every later condition is
    combined using its own logical_operator. AND skips evaluation when the
    accumulator is already false. No conditions means the policy matches.
    """
    ordered = list(conditions)
    if not ordered:
        return True

    acc = evaluate(ordered[0], context)
    for condition in ordered[1:]:
        op = str(_field(condition, "logical_operator", "AND") or "AND").upper()
        if op == "OR":
            acc = acc or evaluate(condition, context)
        elif op == "AND":
            acc = acc and evaluate(condition, context)
        else:
            logger.warning("Unknown logical operator %r; treating condition as false", op)
            acc = False
    return acc
