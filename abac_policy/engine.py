"""Decision engine.

Deterministic decision with default deny:
1. Take a priority-sorted snapshot from the store
2. Keep policies whose target matches the request
3. None applicable -> deny ("no applicable policies")
4. First policy whose condition holds decides (its effect, id and name)
5. None holds -> deny ("no matching conditions")

Every call hands a DecisionRecord to the audit sink, including calls that
end in EvaluationError.
"""

from typing import List, Optional, Union

from .audit import AuditSink, build_record, deliver
from .config import EngineConfig, ErrorMode
from .errors import EvaluationError
from .evaluator import DEFAULT_MAX_DEPTH, evaluate_condition, explain_condition
from .log import log_decision
from .store import PolicySnapshot, PolicyStore
from .target import matches
from .types import Decision, DecisionRequest, Effect, Policy

NO_APPLICABLE_POLICIES = "no applicable policies"
NO_MATCHING_CONDITIONS = "no matching conditions"
EVALUATION_FAILED = "policy evaluation failed"


class DecisionEngine:
    """Evaluates requests against the store's current snapshot.

    Stateless per call; safe to share across threads.
    """

    def __init__(
        self,
        store: PolicyStore,
        audit_sink: Optional[AuditSink] = None,
        on_evaluation_error: Union[ErrorMode, str] = ErrorMode.ABORT,
        max_condition_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self.store = store
        self.audit_sink = audit_sink
        self.on_evaluation_error = ErrorMode(on_evaluation_error)
        self.max_condition_depth = max_condition_depth

    @classmethod
    def from_config(
        cls,
        store: PolicyStore,
        config: EngineConfig,
        audit_sink: Optional[AuditSink] = None
    ) -> "DecisionEngine":
        return cls(
            store,
            audit_sink=audit_sink,
            on_evaluation_error=config.on_evaluation_error,
            max_condition_depth=config.max_condition_depth,
        )

    def evaluate(self, request: DecisionRequest, request_id: Optional[str] = None) -> Decision:
        """Decide a request.

        Raises:
            EvaluationError: In abort mode, if any candidate's condition is
                malformed. Callers must treat this as deny.
        """
        snapshot = self.store.snapshot()
        try:
            decision = self.decide(request, snapshot, request_id=request_id)
        except EvaluationError as e:
            log_decision(
                "error", "Policy evaluation failed",
                request_id=request_id,
                policy_id=e.policy_id,
                event_type="EVALUATION_ERROR",
                error=e.message,
                condition=e.context.get("condition"),
                snapshot_version=snapshot.version,
            )
            deliver(self.audit_sink, build_record(
                request, None, request_id=request_id,
                error_code=e.error_code, reason=EVALUATION_FAILED,
            ))
            raise

        log_decision(
            "info", "Decision made",
            request_id=request_id,
            policy_id=decision.matched_policy_id,
            event_type="DECISION_MADE",
            effect=decision.effect.value,
            reason=decision.reason,
            snapshot_version=snapshot.version,
        )
        deliver(self.audit_sink, build_record(request, decision, request_id=request_id))
        return decision

    def decide(
        self,
        request: DecisionRequest,
        snapshot: PolicySnapshot,
        request_id: Optional[str] = None
    ) -> Decision:
        """Pure decision over a given snapshot; no logging of the outcome, no audit."""
        candidates = [p for p in snapshot if matches(p.target, request)]
        if not candidates:
            return Decision(effect=Effect.DENY, reason=NO_APPLICABLE_POLICIES)

        skipped: List[str] = []
        for policy in candidates:
            try:
                holds = evaluate_condition(policy.condition, request, self.max_condition_depth)
            except EvaluationError as e:
                if e.policy_id is None:
                    e.policy_id = policy.id
                e.context.setdefault("condition", explain_condition(policy.condition))
                if self.on_evaluation_error == ErrorMode.ABORT:
                    raise
                log_decision(
                    "warning", "Skipping policy after evaluation error",
                    request_id=request_id,
                    policy_id=policy.id,
                    event_type="POLICY_SKIPPED",
                    error=e.message,
                    condition=e.context["condition"],
                )
                skipped.append(policy.id)
                continue

            if holds:
                return _policy_decision(policy, skipped)

        return Decision(
            effect=Effect.DENY,
            reason=NO_MATCHING_CONDITIONS,
            skipped_policy_ids=tuple(skipped),
        )


def _policy_decision(policy: Policy, skipped: List[str]) -> Decision:
    return Decision(
        effect=Effect(policy.effect),
        matched_policy_id=policy.id,
        reason=policy.name or policy.id,
        skipped_policy_ids=tuple(skipped),
    )


def evaluate_fail_closed(
    engine: DecisionEngine,
    request: DecisionRequest,
    request_id: Optional[str] = None
) -> Decision:
    """Boundary helper for hosting applications: an error is never permit.

    EvaluationError becomes a generic deny. The detail has already been
    logged by the engine and is not returned to the caller.
    """
    try:
        return engine.evaluate(request, request_id=request_id)
    except EvaluationError:
        return Decision(effect=Effect.DENY, reason=EVALUATION_FAILED)
