"""Condition evaluation.

Recursive, pure evaluation of condition trees against a DecisionRequest.

Missing data vs. malformed policy:
- an absent attribute resolves to UNDEFINED and the comparison is False
- an unknown operator, source or transform, or a bad path, raises
  EvaluationError; it is never silently treated as False
"""

import re
from functools import lru_cache
from typing import Any, Dict, Union

from .errors import EvaluationError
from .fields import (
    UNDEFINED, apply_transform, compare_order, resolve_path, same_kind, values_equal
)
from .types import (
    Comparison, DecisionRequest, Logical, LogicalOperator, Operator, Source, ValueRef
)

DEFAULT_MAX_DEPTH = 64


def evaluate_condition(
    condition: Union[Comparison, Logical],
    request: DecisionRequest,
    max_depth: int = DEFAULT_MAX_DEPTH
) -> bool:
    """Evaluate a condition tree against a request.

    Logical nodes:
    - and: True iff every child is True. An EMPTY 'and' is True (vacuous
      truth); a policy whose condition is all_of() with no children matches
      every request in its target.
    - or: True iff any child is True. An EMPTY 'or' is False.
    - not: negates its single child.

    Children are evaluated left to right and short-circuit.

    Args:
        condition: Root of the condition tree
        request: Request whose attributes are referenced
        max_depth: Maximum nesting depth before the tree is rejected

    Returns:
        True if the condition holds

    Raises:
        EvaluationError: If the tree is malformed
    """
    return _evaluate(condition, request, 1, max_depth)


def _evaluate(node: Any, request: DecisionRequest, depth: int, max_depth: int) -> bool:
    if depth > max_depth:
        raise EvaluationError(f"Condition tree exceeds maximum depth {max_depth}")

    if isinstance(node, Comparison):
        return _evaluate_comparison(node, request)
    if isinstance(node, Logical):
        return _evaluate_logical(node, request, depth, max_depth)

    raise EvaluationError(f"Unknown condition node: {type(node).__name__}")


def _evaluate_logical(node: Logical, request: DecisionRequest, depth: int, max_depth: int) -> bool:
    try:
        op = LogicalOperator(node.op)
    except ValueError:
        raise EvaluationError(f"Unknown logical operator: {node.op!r}") from None

    if op == LogicalOperator.AND:
        return all(_evaluate(child, request, depth + 1, max_depth) for child in node.children)
    if op == LogicalOperator.OR:
        return any(_evaluate(child, request, depth + 1, max_depth) for child in node.children)

    if len(node.children) != 1:
        raise EvaluationError(f"'not' requires exactly one child, got {len(node.children)}")
    return not _evaluate(node.children[0], request, depth + 1, max_depth)


def _evaluate_comparison(node: Comparison, request: DecisionRequest) -> bool:
    try:
        op = Operator(node.op)
    except ValueError:
        raise EvaluationError(f"Unknown operator: {node.op!r}") from None

    left = resolve_ref(node.left, request)
    right = resolve_ref(node.right, request)

    # Missing data never satisfies any comparison, including notEquals
    if left is UNDEFINED or right is UNDEFINED:
        return False

    if op == Operator.EQUALS:
        return values_equal(left, right)
    elif op == Operator.NOT_EQUALS:
        return same_kind(left, right) and not values_equal(left, right)
    elif op == Operator.GREATER_OR_EQUAL:
        order = compare_order(left, right)
        return order is not None and order >= 0
    elif op == Operator.LESS_OR_EQUAL:
        order = compare_order(left, right)
        return order is not None and order <= 0
    elif op == Operator.IN:
        if not isinstance(right, (list, tuple)):
            return False
        return any(values_equal(left, item) for item in right)
    elif op == Operator.CONTAINS:
        if not isinstance(left, (list, tuple)):
            return False
        return any(values_equal(item, right) for item in left)
    elif op == Operator.MATCHES:
        if not isinstance(left, str) or not isinstance(right, str):
            return False
        return _compile(right).search(left) is not None

    raise EvaluationError(f"Unhandled operator: {op.value}")


@lru_cache(maxsize=256)
def _compile(pattern: str) -> "re.Pattern[str]":
    try:
        return re.compile(pattern)
    except re.error as e:
        raise EvaluationError(f"Invalid regular expression {pattern!r}: {e}") from None


def resolve_ref(ref: ValueRef, request: DecisionRequest) -> Any:
    """Resolve an operand to a value, UNDEFINED, or raise on a malformed reference."""
    try:
        source = Source(ref.source)
    except ValueError:
        raise EvaluationError(f"Unknown reference source: {ref.source!r}") from None

    if source == Source.LITERAL:
        value = ref.value if ref.value is not None else UNDEFINED
    else:
        roots: Dict[Source, Dict[str, Any]] = {
            Source.SUBJECT: request.subject,
            Source.OBJECT: request.object,
            Source.ENVIRONMENT: request.environment,
        }
        value = resolve_path(roots[source], ref.path)

    return apply_transform(value, ref.transform)


def explain_condition(condition: Union[Comparison, Logical]) -> str:
    """Render a condition tree as readable text for logs."""
    if isinstance(condition, Comparison):
        return f"({condition.left.describe()} {condition.op} {condition.right.describe()})"

    parts = [explain_condition(child) for child in condition.children]
    if condition.op == LogicalOperator.NOT.value:
        return f"not {parts[0] if parts else '()'}"
    if not parts:
        return "true" if condition.op == LogicalOperator.AND.value else "false"
    return "(" + f" {condition.op} ".join(parts) + ")"
