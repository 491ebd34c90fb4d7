"""Condition evaluation for chain branching rules.

A condition is a single comparison ``path op value``:

    steps.0.output.recommendation == "approved"
    steps.1.output.estimated_hours >= 10
    accumulated_context.trigger.event contains "status_changed"

Operators: ==, !=, >, <, >=, <=, contains, not_contains (surrounded by spaces).
The path is dot-notation over the chain context snapshot; a missing path
evaluates to False. Anything callable as ``(expression, snapshot) -> bool``
can replace the default evaluator.
"""

from typing import Any, Callable

ConditionEvaluator = Callable[[str, dict], bool]

# Scan order matters only for operators that are substrings of others;
# the surrounding spaces keep ">" from matching ">=".
_OPERATORS = ("==", "!=", ">", "<", ">=", "<=", "contains", "not_contains")

_MISSING = object()


def resolve_path(data: Any, path: str) -> Any:
    """Walk a dot-notation path through nested dicts/lists.

    Numeric segments also match integer dict keys and list positions.

    Returns:
        The value found, or ``None`` when any segment is missing.
    """
    current = data
    for segment in path.split("."):
        current = _step(current, segment)
        if current is _MISSING:
            return None
    return current


def _step(current: Any, segment: str) -> Any:
    if isinstance(current, dict):
        if segment in current:
            return current[segment]
        if segment.lstrip("-").isdigit() and int(segment) in current:
            return current[int(segment)]
        return _MISSING
    if isinstance(current, list) and segment.isdigit():
        index = int(segment)
        return current[index] if index < len(current) else _MISSING
    return _MISSING


def as_string(value: Any) -> str:
    """String rendering used by == and !=.

    Booleans render as ``true``/``false`` and integral floats drop ``.0``
    so that ``flag == true`` and ``count == 3`` read naturally.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _as_number(value: Any):
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


def compare(actual: Any, operator: str, expected: str) -> bool:
    if operator == "==":
        return as_string(actual) == expected
    if operator == "!=":
        return as_string(actual) != expected
    if operator in (">", "<", ">=", "<="):
        left, right = _as_number(actual), _as_number(expected)
        if left is None or right is None:
            return False
        if operator == ">":
            return left > right
        if operator == "<":
            return left < right
        if operator == ">=":
            return left >= right
        return left <= right
    if operator == "contains":
        return isinstance(actual, str) and expected in actual
    if operator == "not_contains":
        return isinstance(actual, str) and expected not in actual
    return False


def evaluate_condition(expression: str, snapshot: dict) -> bool:
    """Evaluate ``path op value`` against a context snapshot.

    Args:
        expression: Condition string, e.g. ``steps.0.output.route == "team_a"``
        snapshot: Chain context as produced by ``ChainContext.to_dict()``

    Returns:
        True if the comparison holds. Unparseable expressions and
        missing paths evaluate to False.
    """
    for op in _OPERATORS:
        token = f" {op} "
        if token in expression:
            path, expected = expression.split(token, 1)
            break
    else:
        return False

    actual = resolve_path(snapshot, path.strip())
    if actual is None:
        return False
    return compare(actual, op, expected.strip().strip("\"' "))
