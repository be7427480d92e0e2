"""
abac_policy/errors.py

Policy engine errors. All errors include structured data for logging.

Two kinds matter to callers:
- ValidationError: a policy was rejected at registration; the store is unchanged.
- EvaluationError: a policy is malformed in a way only detected while
  evaluating it. Fatal to that evaluate() call; callers must treat it as deny.

A missing attribute is NOT an error (see fields.UNDEFINED).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class PolicyError(Exception):
    """Base class for policy engine errors."""
    message: str
    error_code: str
    policy_id: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "policy_id": self.policy_id,
            "context": self.context
        }

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


@dataclass
class ValidationError(PolicyError):
    """Policy failed registration checks.

    error_code is POLICY_DUPLICATE for an id that is already registered,
    POLICY_INVALID for everything else.
    """
    validation_errors: List[str] = field(default_factory=list)

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        error_code: str = "POLICY_INVALID",
        **kwargs
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            **kwargs
        )
        self.validation_errors = validation_errors or []

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base["validation_errors"] = list(self.validation_errors)
        return base


@dataclass
class EvaluationError(PolicyError):
    """Condition tree could not be evaluated (unknown operator, bad path, bad transform)."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_code="EVALUATION_ERROR",
            **kwargs
        )
