"""Policy set loader and linter.

Loads policy sets from JSON, validates structure, computes set hashes, and
reports authoring defects (unknown operators, transforms, sources, bad
paths) before the policies ever reach evaluation.
"""

import hashlib
import json
import re
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as SchemaError

from .errors import ValidationError
from .fields import is_valid_path
from .store import PolicySnapshot, PolicyStore, validate_policy
from .types import (
    Comparison, Logical, LogicalOperator, Operator, Policy, Source, Transform, ValueRef
)


class PolicySet(BaseModel):
    """A versioned collection of policies as stored on disk."""
    policy_set_version: str = Field(..., pattern=r"^\d+\.\d+\.\d+$")
    set_hash: str = Field(default="", description="SHA256 of canonical JSON (filled by loader)")
    policies: List[Policy] = Field(default_factory=list)

    @field_validator("policies")
    @classmethod
    def validate_unique_policy_ids(cls, v: List[Policy]) -> List[Policy]:
        dups = [item for item, count in Counter(p.id for p in v).items() if count > 1]
        if dups:
            raise ValueError(f"Duplicate policy ids: {dups}")
        return v


def parse_policy(data: Dict[str, Any]) -> Policy:
    """Build one policy from its JSON form and lint its condition.

    Raises:
        ValidationError: If the structure is invalid or the condition has
            authoring defects.
    """
    policy = validate_policy(data)
    problems = lint_condition(policy.condition)
    if problems:
        raise ValidationError(
            f"Policy '{policy.id}' failed lint",
            validation_errors=problems,
            policy_id=policy.id,
        )
    return policy


def load_policy_set(path: Union[str, Path]) -> PolicySet:
    """Load and validate a policy set from a JSON file.

    Args:
        path: Path to policy set JSON file

    Returns:
        Validated PolicySet with computed hash

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If validation or lint fails, or the stored hash is wrong
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Policy set not found: {path}")

    with open(path, "r") as f:
        data = json.load(f)

    try:
        policy_set = PolicySet.model_validate(data)
    except SchemaError as e:
        raise ValueError(f"Invalid policy set {path}: {e}") from e

    problems = lint_policy_set(policy_set)
    if problems:
        raise ValueError(f"Policy set {path} has authoring defects: {'; '.join(problems)}")

    computed_hash = compute_policy_set_hash(policy_set)
    if not policy_set.set_hash:
        policy_set.set_hash = computed_hash
    elif policy_set.set_hash != computed_hash:
        raise ValueError(
            f"Policy set hash mismatch: expected {computed_hash}, got {policy_set.set_hash}"
        )

    return policy_set


def compute_policy_set_hash(policy_set: PolicySet) -> str:
    """SHA256 of the canonical JSON form, excluding the set_hash field itself."""
    data = policy_set.model_dump(mode="json", exclude={"set_hash"})
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def load_into_store(store: PolicyStore, path: Union[str, Path]) -> PolicySnapshot:
    """Hot reload: replace the store's contents with the policy set at path."""
    policy_set = load_policy_set(path)
    return store.replace_all(policy_set.policies)


# ============== LINT ==============

def lint_policy_set(policy_set: PolicySet) -> List[str]:
    problems: List[str] = []
    for policy in policy_set.policies:
        problems.extend(f"policy '{policy.id}': {p}" for p in lint_condition(policy.condition))
    return problems


def lint_condition(condition: Union[Comparison, Logical], where: str = "condition") -> List[str]:
    """Static checks for defects that would raise EvaluationError at runtime."""
    problems: List[str] = []

    if isinstance(condition, Logical):
        if condition.op not in [o.value for o in LogicalOperator]:
            problems.append(f"{where}: unknown logical operator '{condition.op}'")
        elif condition.op == LogicalOperator.NOT.value and len(condition.children) != 1:
            problems.append(f"{where}: 'not' requires exactly one child")
        for i, child in enumerate(condition.children):
            problems.extend(lint_condition(child, f"{where}.children[{i}]"))
        return problems

    if condition.op not in [o.value for o in Operator]:
        problems.append(f"{where}: operator '{condition.op}' not allowed")
    problems.extend(_lint_ref(condition.left, f"{where}.left"))
    problems.extend(_lint_ref(condition.right, f"{where}.right"))

    if (condition.op == Operator.MATCHES.value
            and condition.right.source == Source.LITERAL.value
            and isinstance(condition.right.value, str)):
        try:
            re.compile(condition.right.value)
        except re.error as e:
            problems.append(f"{where}.right: invalid regular expression ({e})")

    return problems


def _lint_ref(ref: ValueRef, where: str) -> List[str]:
    problems: List[str] = []
    if ref.source not in [s.value for s in Source]:
        problems.append(f"{where}: unknown source '{ref.source}'")
    elif ref.source != Source.LITERAL.value and not is_valid_path(ref.path):
        problems.append(f"{where}: malformed path {ref.path!r}")
    if ref.transform is not None and ref.transform not in [t.value for t in Transform]:
        problems.append(f"{where}: unsupported transform '{ref.transform}'")
    return problems


def validate_policy_file(path: Union[str, Path]) -> Tuple[bool, str]:
    """Validate a policy set file without touching any store.

    Returns:
        (is_valid, message)
    """
    try:
        policy_set = load_policy_set(path)
    except FileNotFoundError:
        return False, f"File not found: {path}"
    except json.JSONDecodeError as e:
        return False, f"Invalid JSON: {e}"
    except ValueError as e:
        return False, str(e)

    if not policy_set.policies:
        return False, "No policies defined"

    return True, "Valid"


def policy_to_dict(policy: Policy) -> Dict[str, Any]:
    """JSON-ready form of a policy, as written in policy set files."""
    return policy.model_dump(mode="json", exclude_none=True)
