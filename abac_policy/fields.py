"""Attribute path resolution, transforms and typed comparisons.

All attribute access goes through resolve_path() so that missing data is
handled uniformly: an absent path yields UNDEFINED, which no comparison
can ever satisfy. Malformed paths are an authoring defect and raise
EvaluationError instead.
"""

import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .errors import EvaluationError
from .types import Transform

# Dotted path: segments of letters, digits, '_' or '-'. Numeric segments index lists.
PATH_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+(\.[A-Za-z0-9_\-]+)*$")

# Nested map consulted by the target matcher after direct fields
NESTED_ATTRIBUTES_KEY = "attributes"


class _Undefined:
    """Sentinel for an attribute that could not be resolved."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNDEFINED"


UNDEFINED = _Undefined()


def is_valid_path(path: Optional[str]) -> bool:
    return bool(path) and PATH_PATTERN.match(path) is not None


def resolve_path(root: Dict[str, Any], path: Optional[str]) -> Any:
    """Get a value from an attribute map by dotted path.

    Args:
        root: Subject, object or environment attribute map
        path: Dot-separated path like "profile.department"

    Returns:
        The value, or UNDEFINED if any segment is missing

    Raises:
        EvaluationError: If the path is empty or syntactically invalid
    """
    if not is_valid_path(path):
        raise EvaluationError(f"Malformed attribute path: {path!r}")

    current: Any = root
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return UNDEFINED
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return UNDEFINED
            current = current[index]
        else:
            return UNDEFINED
        if current is None:
            return UNDEFINED

    return current


def lookup_attribute(attrs: Dict[str, Any], key: str) -> Any:
    """Direct field first, then the nested attributes map."""
    if key in attrs:
        return attrs[key]
    nested = attrs.get(NESTED_ATTRIBUTES_KEY)
    if isinstance(nested, dict) and key in nested:
        return nested[key]
    return UNDEFINED


# ============== TRANSFORMS ==============

def to_timestamp(value: Any) -> Optional[datetime]:
    """Coerce datetime, ISO-8601 string or epoch seconds to a datetime.

    Aware timestamps are normalized to UTC; naive ones are left as-is.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, (int, float)):
        try:
            ts = datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        try:
            ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return ts


def apply_transform(value: Any, transform: Optional[str]) -> Any:
    """Post-process a resolved value.

    A transform on a value of the wrong type yields UNDEFINED.

    Raises:
        EvaluationError: If the transform name is not supported
    """
    if transform is None:
        return value

    try:
        kind = Transform(transform)
    except ValueError:
        raise EvaluationError(f"Unsupported transform: {transform!r}") from None

    if value is UNDEFINED:
        return UNDEFINED

    if kind in (Transform.HOUR, Transform.DAY_OF_WEEK):
        ts = to_timestamp(value)
        if ts is None:
            return UNDEFINED
        if kind == Transform.HOUR:
            return ts.hour
        # 0 = Sunday .. 6 = Saturday
        return ts.isoweekday() % 7

    if kind == Transform.LOWERCASE:
        return value.lower() if isinstance(value, str) else UNDEFINED

    if isinstance(value, (str, list, tuple, dict)):
        return len(value)
    return UNDEFINED


# ============== TYPED COMPARISON ==============

def value_kind(value: Any) -> Optional[str]:
    """Variant tag of an attribute value; None for anything outside the variant."""
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        # NaN is unordered and unequal to itself
        if isinstance(value, float) and math.isnan(value):
            return None
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, datetime):
        return "timestamp"
    if isinstance(value, (list, tuple)):
        return "list"
    if isinstance(value, dict):
        return "map"
    return None


def _coerce_pair(left: Any, right: Any):
    """Coerce an ISO string to a timestamp when compared against one."""
    if isinstance(left, datetime) and isinstance(right, str):
        coerced = to_timestamp(right)
        if coerced is not None:
            return to_timestamp(left), coerced
    elif isinstance(right, datetime) and isinstance(left, str):
        coerced = to_timestamp(left)
        if coerced is not None:
            return coerced, to_timestamp(right)
    elif isinstance(left, datetime) and isinstance(right, datetime):
        return to_timestamp(left), to_timestamp(right)
    return left, right


def same_kind(left: Any, right: Any) -> bool:
    """True when both values (after timestamp coercion) share a variant tag."""
    if left is UNDEFINED or right is UNDEFINED:
        return False
    left, right = _coerce_pair(left, right)
    kind = value_kind(left)
    return kind is not None and kind == value_kind(right)


def values_equal(left: Any, right: Any) -> bool:
    """Kind-aware equality. UNDEFINED and mismatched kinds are never equal."""
    if left is UNDEFINED or right is UNDEFINED:
        return False

    left, right = _coerce_pair(left, right)
    kind = value_kind(left)
    if kind is None or kind != value_kind(right):
        return False

    if kind == "list":
        return len(left) == len(right) and all(
            values_equal(a, b) for a, b in zip(left, right)
        )
    if kind == "map":
        return left.keys() == right.keys() and all(
            values_equal(left[k], right[k]) for k in left
        )
    return left == right


def compare_order(left: Any, right: Any) -> Optional[int]:
    """Three-way comparison for ordered kinds (number, string, timestamp).

    Returns:
        -1, 0 or 1; None when the pair is not comparable
    """
    if left is UNDEFINED or right is UNDEFINED:
        return None

    left, right = _coerce_pair(left, right)
    kind = value_kind(left)
    if kind not in ("number", "string", "timestamp") or kind != value_kind(right):
        return None

    try:
        if left < right:
            return -1
        if left > right:
            return 1
        return 0
    except TypeError:
        # naive vs aware timestamps
        return None
