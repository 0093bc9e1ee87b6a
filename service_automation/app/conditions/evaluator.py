"""
Condition evaluation for the Automation Service.

Conditions are folded strictly left to right with no precedence grouping:
the logical operator stored on condition *i* decides how condition *i+1* is
combined with the running result. Every function here is total; malformed
paths, operators or operands evaluate to ``False`` instead of raising.
"""

from typing import Any, Callable, Dict, List, Mapping, Sequence, Tuple

from shared.logging import get_logger

from ..models import Condition, ConditionOperator, LogicalOperator
from .values import ABSENT, compare, stringify, values_equal

logger = get_logger("automation.conditions")


def get_field(payload: Any, path: str) -> Any:
    """Follow a dot path into a payload.

    Numeric segments index into lists (``items.0.sku``). Returns ``ABSENT``
    when any segment does not resolve.
    """
    if not isinstance(path, str) or not path:
        return ABSENT

    current = payload
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return ABSENT
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return ABSENT
            current = current[index]
        else:
            return ABSENT

    return current


def _is_bound(value: Any) -> bool:
    return value is not None and value is not ABSENT


def _ordered(predicate: Callable[[int], bool]) -> Callable[[Any, Any, Any], bool]:
    def _check(value: Any, cmp: Any, cmp2: Any) -> bool:
        result = compare(value, cmp)
        return result is not None and predicate(result)
    return _check


def _contains(value: Any, cmp: Any, cmp2: Any) -> bool:
    if not _is_bound(cmp):
        return False
    return stringify(cmp).lower() in stringify(value).lower()


def _not_contains(value: Any, cmp: Any, cmp2: Any) -> bool:
    # An unbound operand is false for both contains and not_contains.
    if not _is_bound(cmp):
        return False
    return not _contains(value, cmp, cmp2)


def _in(value: Any, cmp: Any, cmp2: Any) -> bool:
    if not isinstance(cmp, (list, tuple)):
        return False
    return any(values_equal(value, item) for item in cmp)


def _not_in(value: Any, cmp: Any, cmp2: Any) -> bool:
    # A non-list operand is false for both in and not_in.
    if not isinstance(cmp, (list, tuple)):
        return False
    return not any(values_equal(value, item) for item in cmp)


def _between(value: Any, cmp: Any, cmp2: Any) -> bool:
    if not _is_bound(cmp) or not _is_bound(cmp2):
        return False
    lower = compare(value, cmp)
    upper = compare(value, cmp2)
    return lower is not None and upper is not None and lower >= 0 and upper <= 0


_OPERATORS: Dict[str, Callable[[Any, Any, Any], bool]] = {
    ConditionOperator.EQUALS.value: lambda value, cmp, cmp2: values_equal(value, cmp),
    ConditionOperator.NOT_EQUALS.value: lambda value, cmp, cmp2: not values_equal(value, cmp),
    ConditionOperator.GT.value: _ordered(lambda c: c > 0),
    ConditionOperator.GTE.value: _ordered(lambda c: c >= 0),
    ConditionOperator.LT.value: _ordered(lambda c: c < 0),
    ConditionOperator.LTE.value: _ordered(lambda c: c <= 0),
    ConditionOperator.CONTAINS.value: _contains,
    ConditionOperator.NOT_CONTAINS.value: _not_contains,
    ConditionOperator.IN.value: _in,
    ConditionOperator.NOT_IN.value: _not_in,
    ConditionOperator.BETWEEN.value: _between,
}


def evaluate_condition(value: Any, operator: str, cmp: Any, cmp2: Any = None) -> bool:
    """Apply one operator to a resolved field value."""
    check = _OPERATORS.get(getattr(operator, "value", operator))
    if check is None:
        logger.debug("Unknown condition operator", operator=operator)
        return False

    try:
        return bool(check(value, cmp, cmp2))
    except Exception as e:
        logger.debug("Error evaluating condition", operator=operator, error=str(e))
        return False


def _condition_matches(condition: Condition, payload: Any) -> bool:
    try:
        field_value = get_field(payload, condition.field)
        return evaluate_condition(field_value, condition.operator, condition.value, condition.value2)
    except Exception as e:
        logger.debug("Malformed condition", condition=repr(condition), error=str(e))
        return False


def _joins_with_or(condition: Condition) -> bool:
    logical = getattr(condition, "logical_operator", None)
    return str(getattr(logical, "value", logical) or "").upper() == LogicalOperator.OR.value


def fold_conditions(conditions: Sequence[Condition], payload: Any) -> Tuple[bool, List[bool]]:
    """Fold conditions left to right.

    Returns the overall result together with each condition's own result, in
    declaration order, for trace logging.
    """
    if not conditions:
        return True, []

    results = [_condition_matches(condition, payload) for condition in conditions]

    outcome = results[0]
    for previous, matched in zip(conditions, results[1:]):
        if _joins_with_or(previous):
            outcome = outcome or matched
        else:
            outcome = outcome and matched

    return outcome, results


def evaluate_conditions(conditions: Sequence[Condition], payload: Any) -> bool:
    """Evaluate a condition list against a payload. Empty lists match."""
    return fold_conditions(conditions, payload)[0]
