"""Target matching.

Decides whether a policy's declared scope applies to a request. Pure
predicate; conjunctive over whichever target sections are present.
"""

from typing import Any, Dict, Optional

from .fields import lookup_attribute, values_equal
from .types import DecisionRequest, Target


def matches(target: Optional[Target], request: DecisionRequest) -> bool:
    """Check if a target applies to a request.

    - No target: matches everything
    - actions: request.action must be a member (an empty list matches nothing)
    - subjects / objects: every declared key must equal the request attribute,
      looked up as a direct field first, then in the nested 'attributes' map
    """
    if target is None:
        return True

    if target.actions is not None and request.action not in target.actions:
        return False

    if not _attributes_match(target.subjects, request.subject):
        return False

    return _attributes_match(target.objects, request.object)


def _attributes_match(expected: Optional[Dict[str, Any]], actual: Dict[str, Any]) -> bool:
    if not expected:
        return True
    for key, value in expected.items():
        if not values_equal(lookup_attribute(actual, key), value):
            return False
    return True
