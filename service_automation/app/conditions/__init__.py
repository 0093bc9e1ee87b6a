"""
Condition evaluation package.

- values: tagged value union with explicit coercion rules per operator.
- evaluator: dot-path lookup, single-operator checks and the left-to-right
  condition fold.
"""

from .evaluator import evaluate_condition, evaluate_conditions, fold_conditions, get_field
from .values import ABSENT, ValueKind, compare, kind_of, stringify, values_equal

__all__ = [
    "ABSENT",
    "ValueKind",
    "compare",
    "evaluate_condition",
    "evaluate_conditions",
    "fold_conditions",
    "get_field",
    "kind_of",
    "stringify",
    "values_equal",
]
