"""Policy engine type definitions (Pydantic models).

Defines attribute values, decision requests, targets, condition trees,
policies, decisions and audit records. All structures are JSON-serializable
for reproducibility and audit trails.

Operators, sources and transforms are stored as plain strings on the
condition models. The enums below are what the evaluator dispatches on; an
unknown string is an authoring defect reported as EvaluationError at
evaluation time, not a construction failure.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

from pydantic import (
    BaseModel, ConfigDict, Discriminator, Field, StrictInt, Tag, field_validator
)


class Effect(str, Enum):
    """Outcome a policy produces when its condition holds."""
    PERMIT = "permit"
    DENY = "deny"


class Operator(str, Enum):
    """Comparison operators."""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    GREATER_OR_EQUAL = "greaterOrEqual"
    LESS_OR_EQUAL = "lessOrEqual"
    IN = "in"
    CONTAINS = "contains"
    MATCHES = "matches"


class LogicalOperator(str, Enum):
    AND = "and"
    OR = "or"
    NOT = "not"


class Source(str, Enum):
    """Where a value reference reads from."""
    LITERAL = "literal"
    SUBJECT = "subject"
    OBJECT = "object"
    ENVIRONMENT = "environment"


class Transform(str, Enum):
    """Post-processing applied to a resolved value."""
    HOUR = "hour"
    DAY_OF_WEEK = "dayOfWeek"
    LOWERCASE = "lowercase"
    LENGTH = "length"


# ============== ATTRIBUTES ==============

AttributeMap = Dict[str, Any]

_SCALAR_TYPES = (str, bool, int, float, datetime)


def check_attribute_value(value: Any, path: str = "") -> None:
    """Reject anything outside the closed attribute variant.

    Allowed: string, finite number, boolean, timestamp, list of allowed values,
    and nested maps of allowed values.
    """
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"Attribute '{path or '<root>'}' is not a finite number")
    if isinstance(value, _SCALAR_TYPES):
        return
    if isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            check_attribute_value(item, f"{path}[{i}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"Attribute key {key!r} at '{path}' is not a string")
            check_attribute_value(item, f"{path}.{key}" if path else key)
        return
    raise ValueError(
        f"Attribute '{path or '<root>'}' has unsupported type {type(value).__name__}"
    )


class DecisionRequest(BaseModel):
    """One authorization question. Never mutated during evaluation."""
    model_config = ConfigDict(frozen=True)

    subject: AttributeMap = Field(default_factory=dict)
    object: AttributeMap = Field(default_factory=dict)
    action: str
    environment: AttributeMap = Field(default_factory=dict)

    @field_validator("subject", "object", "environment")
    @classmethod
    def validate_attributes(cls, v: AttributeMap) -> AttributeMap:
        check_attribute_value(v)
        return v


# ============== CONDITIONS ==============

class ValueRef(BaseModel):
    """Operand of a comparison: a literal or a dotted path into the request."""
    model_config = ConfigDict(frozen=True)

    source: str = Field(..., description="literal | subject | object | environment")
    path: Optional[str] = Field(default=None, description="Dot-separated path for non-literal sources")
    value: Any = Field(default=None, description="Constant for literal sources")
    transform: Optional[str] = Field(default=None, description="hour | dayOfWeek | lowercase | length")

    @classmethod
    def literal(cls, value: Any, transform: Optional[str] = None) -> "ValueRef":
        return cls(source=Source.LITERAL.value, value=value, transform=transform)

    @classmethod
    def attr(cls, ref: str, transform: Optional[str] = None) -> "ValueRef":
        """Build a reference from 'source.path', e.g. 'subject.department'."""
        source, _, path = ref.partition(".")
        return cls(source=source, path=path or None, transform=transform)

    def describe(self) -> str:
        if self.source == Source.LITERAL.value:
            text = repr(self.value)
        else:
            text = f"{self.source}.{self.path}"
        if self.transform:
            text = f"{self.transform}({text})"
        return text


class Comparison(BaseModel):
    """Leaf condition: left OP right."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["comparison"] = "comparison"
    op: str
    left: ValueRef
    right: ValueRef


class Logical(BaseModel):
    """Inner condition: and/or/not over child conditions."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["logical"] = "logical"
    op: str
    children: Tuple["Condition", ...] = Field(default_factory=tuple)


def _condition_kind(value: Any) -> Optional[str]:
    """Tag for the condition union; JSON nodes may omit 'kind'."""
    if isinstance(value, dict):
        if "kind" in value:
            return value["kind"]
        return "logical" if "children" in value else "comparison"
    return getattr(value, "kind", None)


Condition = Annotated[
    Union[
        Annotated[Comparison, Tag("comparison")],
        Annotated[Logical, Tag("logical")],
    ],
    Discriminator(_condition_kind),
]

Logical.model_rebuild()


def all_of(*children: Union[Comparison, Logical]) -> Logical:
    return Logical(op=LogicalOperator.AND.value, children=children)


def any_of(*children: Union[Comparison, Logical]) -> Logical:
    return Logical(op=LogicalOperator.OR.value, children=children)


def not_(child: Union[Comparison, Logical]) -> Logical:
    return Logical(op=LogicalOperator.NOT.value, children=(child,))


def compare(left: ValueRef, op: str, right: ValueRef) -> Comparison:
    return Comparison(op=op, left=left, right=right)


# ============== POLICIES ==============

class Target(BaseModel):
    """Scope clause. An absent section matches everything."""
    model_config = ConfigDict(frozen=True)

    subjects: Optional[AttributeMap] = None
    objects: Optional[AttributeMap] = None
    actions: Optional[Tuple[str, ...]] = None


class Policy(BaseModel):
    """A registered rule. Immutable once constructed."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Unique policy identifier")
    name: str = ""
    description: str = ""
    target: Optional[Target] = None
    condition: Condition
    effect: Effect
    priority: StrictInt = Field(default=0, description="Higher = evaluated first")


# ============== DECISIONS ==============

class Decision(BaseModel):
    """Result of one evaluate() call."""
    model_config = ConfigDict(frozen=True)

    effect: Effect
    matched_policy_id: Optional[str] = None
    reason: str = ""
    skipped_policy_ids: Tuple[str, ...] = ()

    @property
    def permitted(self) -> bool:
        return self.effect == Effect.PERMIT


class DecisionRecord(BaseModel):
    """Audit record handed to the sink after every evaluate() call."""
    timestamp: datetime
    subject_id: Optional[str] = None
    action: str
    object_id: Optional[str] = None
    decision: Effect
    matched_policy_id: Optional[str] = None
    request_id: Optional[str] = None
    reason: str = ""
    error_code: Optional[str] = None
