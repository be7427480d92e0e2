"""Policy store.

Holds the registered policy set and publishes immutable, priority-sorted
snapshots. Writers serialize on a lock and publish a freshly built tuple by
a single reference assignment (copy-on-write); readers never lock and never
see a half-built collection.
"""

import threading
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError as SchemaError

from .errors import ValidationError
from .log import log_decision
from .types import Effect, Policy

INVALID_POLICY = "POLICY_INVALID"
DUPLICATE_POLICY = "POLICY_DUPLICATE"

PolicyInput = Union[Policy, Mapping[str, Any]]


@dataclass(frozen=True)
class PolicySnapshot:
    """Point-in-time view of the policy set, in evaluation order.

    Sorted by priority descending, ties by registration order.
    """
    policies: Tuple[Policy, ...] = ()
    version: int = 0

    def __iter__(self) -> Iterator[Policy]:
        return iter(self.policies)

    def __len__(self) -> int:
        return len(self.policies)

    def ids(self) -> List[str]:
        return [p.id for p in self.policies]


class PolicyStore:
    """Registered policies plus the published snapshot."""

    def __init__(self, policies: Optional[Iterable[PolicyInput]] = None):
        self._lock = threading.Lock()
        # (registration sequence, policy) in registration order
        self._entries: Tuple[Tuple[int, Policy], ...] = ()
        self._next_seq = 0
        self._snapshot = PolicySnapshot()
        if policies is not None:
            self.register_all(policies)

    def snapshot(self) -> PolicySnapshot:
        return self._snapshot

    def get(self, policy_id: str) -> Optional[Policy]:
        for policy in self._snapshot:
            if policy.id == policy_id:
                return policy
        return None

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, policy_id: str) -> bool:
        return self.get(policy_id) is not None

    # ============== WRITERS ==============

    def register(self, policy: PolicyInput) -> Policy:
        """Validate and add one policy.

        Raises:
            ValidationError: duplicate id, non-integer priority, unknown effect,
                or otherwise malformed policy; the store is unchanged
        """
        return self.register_all([policy])[0]

    def register_all(self, policies: Iterable[PolicyInput]) -> List[Policy]:
        """Add a batch of policies; all or nothing."""
        with self._lock:
            existing = {p.id for _, p in self._entries}
            validated = _validate_batch(policies, existing)

            entries = list(self._entries)
            for policy in validated:
                entries.append((self._next_seq, policy))
                self._next_seq += 1
            self._publish(tuple(entries))

        for policy in validated:
            log_decision(
                "info", "Policy registered",
                policy_id=policy.id,
                event_type="POLICY_REGISTERED",
                priority=policy.priority,
                effect=policy.effect.value,
            )
        return validated

    def replace_all(self, policies: Iterable[PolicyInput]) -> PolicySnapshot:
        """Hot reload: validate a whole new set, then swap it in atomically."""
        with self._lock:
            validated = _validate_batch(policies, set())
            entries = tuple(enumerate(validated))
            self._next_seq = len(entries)
            self._publish(entries)
            snapshot = self._snapshot

        log_decision(
            "info", "Policy set reloaded",
            event_type="POLICY_SET_RELOADED",
            policy_count=len(snapshot),
            snapshot_version=snapshot.version,
        )
        return snapshot

    def remove(self, policy_id: str) -> bool:
        """Remove a policy by id. Returns False if it was not registered."""
        with self._lock:
            entries = tuple(e for e in self._entries if e[1].id != policy_id)
            if len(entries) == len(self._entries):
                return False
            self._publish(entries)

        log_decision("info", "Policy removed", policy_id=policy_id, event_type="POLICY_REMOVED")
        return True

    def _publish(self, entries: Tuple[Tuple[int, Policy], ...]) -> None:
        # Caller holds the lock
        ordered = sorted(entries, key=lambda e: (-e[1].priority, e[0]))
        self._entries = entries
        self._snapshot = PolicySnapshot(
            policies=tuple(p for _, p in ordered),
            version=self._snapshot.version + 1,
        )


def _validate_batch(policies: Iterable[PolicyInput], existing: set) -> List[Policy]:
    validated: List[Policy] = []
    seen = set(existing)
    for item in policies:
        policy = validate_policy(item)
        if policy.id in seen:
            _reject(
                policy.id,
                f"Duplicate policy id: {policy.id}",
                [f"id: '{policy.id}' already registered"],
                error_code=DUPLICATE_POLICY,
            )
        seen.add(policy.id)
        validated.append(policy)
    return validated


def validate_policy(item: PolicyInput) -> Policy:
    """Coerce a mapping to a Policy and check registration rules.

    Raises:
        ValidationError: If the policy is malformed
    """
    policy_id = item.get("id") if isinstance(item, Mapping) else getattr(item, "id", None)

    if isinstance(item, Policy):
        policy = item
    elif isinstance(item, Mapping):
        try:
            policy = Policy.model_validate(dict(item))
        except SchemaError as e:
            problems = [
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            ]
            _reject(policy_id, f"Policy '{policy_id}' failed validation", problems)
    else:
        _reject(None, f"Cannot register object of type {type(item).__name__}", [])

    # Re-check instances that may have been built with model_construct()
    problems = []
    if not isinstance(policy.id, str) or not policy.id:
        problems.append("id: must be a non-empty string")
    if isinstance(policy.priority, bool) or not isinstance(policy.priority, int):
        problems.append(f"priority: must be an integer, got {policy.priority!r}")
    if policy.effect not in (Effect.PERMIT, Effect.DENY):
        problems.append(f"effect: must be 'permit' or 'deny', got {policy.effect!r}")
    if problems:
        _reject(policy_id, f"Policy '{policy_id}' failed validation", problems)

    return policy


def _reject(
    policy_id: Optional[str],
    message: str,
    problems: List[str],
    error_code: str = INVALID_POLICY
) -> None:
    log_decision(
        "warning", message,
        policy_id=policy_id,
        event_type="POLICY_REJECTED",
        validation_errors=problems,
    )
    raise ValidationError(
        message, validation_errors=problems, error_code=error_code, policy_id=policy_id
    )
