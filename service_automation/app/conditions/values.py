"""
Tagged values for condition evaluation.

Payload documents and condition operands are untyped JSON-like values. Every
value is classified into one of a small set of kinds, and each operator
states which kinds it accepts:

- equality: kinds must match (a bool never equals a number); arrays and
  objects compare structurally.
- ordering: number against number, or string against string. Anything else
  is incomparable.
- substring tests: both operands are stringified (see ``stringify``). A null
  or absent comparison value makes both contains and not_contains false.
"""

import json
import math
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional


class ValueKind(str, Enum):
    """Kinds of the tagged value union."""
    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    ARRAY = "array"
    OBJECT = "object"
    NULL = "null"
    ABSENT = "absent"


class _Absent:
    """Marker for a dot path that does not resolve."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


def kind_of(value: Any) -> ValueKind:
    """Classify a value."""
    if value is ABSENT:
        return ValueKind.ABSENT
    if value is None:
        return ValueKind.NULL
    # bool is a subclass of int, check it first
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, (int, float, Decimal)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, (list, tuple)):
        return ValueKind.ARRAY
    return ValueKind.OBJECT


def values_equal(left: Any, right: Any) -> bool:
    """Structural equality that never crosses kinds."""
    left_kind, right_kind = kind_of(left), kind_of(right)
    if left_kind != right_kind:
        return False

    if left_kind == ValueKind.ARRAY:
        return len(left) == len(right) and all(
            values_equal(a, b) for a, b in zip(left, right)
        )

    if left_kind == ValueKind.OBJECT and isinstance(left, Mapping) and isinstance(right, Mapping):
        if set(left.keys()) != set(right.keys()):
            return False
        return all(values_equal(left[key], right[key]) for key in left)

    if left_kind in (ValueKind.NULL, ValueKind.ABSENT):
        return True

    return left == right


def compare(left: Any, right: Any) -> Optional[int]:
    """Order two values.

    Returns -1, 0 or 1, or None when the pair is not comparable (mixed kinds,
    non-orderable kinds, NaN).
    """
    left_kind, right_kind = kind_of(left), kind_of(right)
    if left_kind != right_kind or left_kind not in (ValueKind.NUMBER, ValueKind.STRING):
        return None

    if left_kind == ValueKind.NUMBER and (_is_nan(left) or _is_nan(right)):
        return None

    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def stringify(value: Any) -> str:
    """Render a value for substring tests.

    null and absent render as the empty string, booleans as ``true``/``false``,
    integral floats without a fractional part, arrays comma-joined.
    """
    kind = kind_of(value)
    if kind in (ValueKind.NULL, ValueKind.ABSENT):
        return ""
    if kind == ValueKind.BOOL:
        return "true" if value else "false"
    if kind == ValueKind.NUMBER:
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    if kind == ValueKind.STRING:
        return value
    if kind == ValueKind.ARRAY:
        return ",".join(stringify(item) for item in value)
    if isinstance(value, Mapping):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def _is_nan(value: Any) -> bool:
    if isinstance(value, float):
        return math.isnan(value)
    if isinstance(value, Decimal):
        return value.is_nan()
    return False
