"""ABAC Policy Engine v1.0 - Deterministic + Fail-Closed.

Attribute-based policy decisions: target matching, recursive condition
evaluation, priority-ordered first match, default deny.
"""

from .errors import PolicyError, ValidationError, EvaluationError
from .types import (
    Effect, Operator, LogicalOperator, Source, Transform,
    DecisionRequest, ValueRef, Comparison, Logical, Condition, Target, Policy,
    Decision, DecisionRecord, all_of, any_of, not_, compare
)
from .fields import UNDEFINED, resolve_path
from .target import matches
from .evaluator import evaluate_condition, explain_condition
from .store import PolicyStore, PolicySnapshot
from .audit import AuditSink, LogAuditSink, MemoryAuditSink, QueueAuditSink
from .config import EngineConfig, ErrorMode
from .engine import DecisionEngine, evaluate_fail_closed
from .compiler import (
    PolicySet, parse_policy, load_policy_set, load_into_store, compute_policy_set_hash,
    lint_condition, validate_policy_file
)

__version__ = "1.0.0"

__all__ = [
    "PolicyError",
    "ValidationError",
    "EvaluationError",
    "Effect",
    "Operator",
    "LogicalOperator",
    "Source",
    "Transform",
    "DecisionRequest",
    "ValueRef",
    "Comparison",
    "Logical",
    "Condition",
    "Target",
    "Policy",
    "Decision",
    "DecisionRecord",
    "all_of",
    "any_of",
    "not_",
    "compare",
    "UNDEFINED",
    "resolve_path",
    "matches",
    "evaluate_condition",
    "explain_condition",
    "PolicyStore",
    "PolicySnapshot",
    "AuditSink",
    "LogAuditSink",
    "MemoryAuditSink",
    "QueueAuditSink",
    "EngineConfig",
    "ErrorMode",
    "DecisionEngine",
    "evaluate_fail_closed",
    "PolicySet",
    "parse_policy",
    "load_policy_set",
    "load_into_store",
    "compute_policy_set_hash",
    "lint_condition",
    "validate_policy_file",
]
