"""Tests for policy set loading, hashing and lint."""

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from abac_policy import (
    DecisionEngine, DecisionRequest, Effect, Logical, PolicySet, PolicyStore, ValueRef,
    all_of, compare, compute_policy_set_hash, lint_condition, load_into_store,
    load_policy_set, parse_policy, validate_policy_file
)
from abac_policy.errors import ValidationError

SHIPPED_SET = Path(__file__).parent.parent / "policy" / "policy_set_v1.json"


def comparison(op="equals", left=None, right=None):
    return {
        "kind": "comparison",
        "op": op,
        "left": left or {"source": "subject", "path": "id"},
        "right": right or {"source": "literal", "value": "u1"},
    }


def write_set(tmp_path, policies, **extra):
    data = {"policy_set_version": "1.0.0", "set_hash": "", "policies": policies}
    data.update(extra)
    path = tmp_path / "policies.json"
    with open(path, "w") as f:
        json.dump(data, f)
    return path


class TestLoadPolicySet:

    def test_load_shipped_set(self):
        policy_set = load_policy_set(SHIPPED_SET)

        assert policy_set.policy_set_version == "1.0.0"
        assert len(policy_set.set_hash) == 64
        assert len(policy_set.policies) == 4

    def test_hash_filled_on_load(self, tmp_path):
        path = write_set(tmp_path, [{"id": "p", "effect": "permit", "condition": comparison()}])

        policy_set = load_policy_set(path)

        assert policy_set.set_hash == compute_policy_set_hash(policy_set)

    def test_matching_hash_accepted(self, tmp_path):
        path = write_set(tmp_path, [{"id": "p", "effect": "permit", "condition": comparison()}])
        expected = load_policy_set(path).set_hash
        path = write_set(tmp_path, [{"id": "p", "effect": "permit", "condition": comparison()}], set_hash=expected)

        assert load_policy_set(path).set_hash == expected

    def test_hash_mismatch_rejected(self, tmp_path):
        path = write_set(
            tmp_path,
            [{"id": "p", "effect": "permit", "condition": comparison()}],
            set_hash="0" * 64,
        )

        with pytest.raises(ValueError, match="hash mismatch"):
            load_policy_set(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_policy_set(tmp_path / "nope.json")

    def test_duplicate_ids_rejected(self, tmp_path):
        path = write_set(tmp_path, [
            {"id": "p", "effect": "permit", "condition": comparison()},
            {"id": "p", "effect": "deny", "condition": comparison()},
        ])

        with pytest.raises(ValueError, match="Duplicate policy ids"):
            load_policy_set(path)

    def test_bad_version_rejected(self, tmp_path):
        path = write_set(tmp_path, [], policy_set_version="v1")

        with pytest.raises(ValueError):
            load_policy_set(path)

    def test_unknown_operator_rejected_at_load(self, tmp_path):
        path = write_set(tmp_path, [
            {"id": "p", "effect": "permit", "condition": comparison(op="greaterThan")},
        ])

        with pytest.raises(ValueError) as exc_info:
            load_policy_set(path)

        assert "greaterThan" in str(exc_info.value)


class TestParsePolicy:

    def test_parses_json_form(self):
        policy = parse_policy({"id": "p", "effect": "deny", "condition": comparison()})

        assert policy.effect == Effect.DENY
        assert policy.condition.left.path == "id"

    def test_lint_defect_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_policy({"id": "p", "effect": "permit", "condition": comparison(op="greaterThan")})

        assert exc_info.value.policy_id == "p"
        assert exc_info.value.validation_errors == ["condition: operator 'greaterThan' not allowed"]

    def test_structural_defect_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_policy({"id": "p", "effect": "allow", "condition": comparison()})

        assert any(e.startswith("effect") for e in exc_info.value.validation_errors)


class TestHash:

    def _set(self, priority=1):
        return PolicySet(
            policy_set_version="1.0.0",
            policies=[{"id": "p", "priority": priority, "effect": "permit", "condition": comparison()}],
        )

    def test_hash_deterministic(self):
        assert compute_policy_set_hash(self._set()) == compute_policy_set_hash(self._set())

    def test_hash_changes_with_content(self):
        assert compute_policy_set_hash(self._set(1)) != compute_policy_set_hash(self._set(2))

    def test_hash_ignores_stored_hash(self):
        policy_set = self._set()
        before = compute_policy_set_hash(policy_set)
        policy_set.set_hash = "abc"

        assert compute_policy_set_hash(policy_set) == before


class TestLint:

    def test_clean_condition(self):
        cond = all_of(compare(ValueRef.attr("subject.id"), "equals", ValueRef.attr("object.ownerId")))
        assert lint_condition(cond) == []

    def test_reports_each_defect(self):
        cond = all_of(
            compare(ValueRef.attr("subject.id"), "greaterThan", ValueRef.literal(1)),
            compare(ValueRef(source="session", path="id"), "equals", ValueRef.literal(1)),
            compare(ValueRef.attr("subject.a..b"), "equals", ValueRef.literal(1)),
            compare(ValueRef.attr("subject.name", transform="upper"), "equals", ValueRef.literal("X")),
            compare(ValueRef.attr("subject.name"), "matches", ValueRef.literal("(")),
            Logical(op="not", children=()),
            Logical(op="xor", children=()),
        )

        problems = lint_condition(cond)

        assert len(problems) == 7
        assert any("greaterThan" in p for p in problems)
        assert any("session" in p for p in problems)
        assert any("malformed path" in p for p in problems)
        assert any("upper" in p for p in problems)
        assert any("regular expression" in p for p in problems)
        assert any("exactly one child" in p for p in problems)
        assert any("xor" in p for p in problems)

    def test_problem_locations(self):
        cond = all_of(all_of(), compare(ValueRef.attr("subject.id"), "bogus", ValueRef.literal(1)))

        assert lint_condition(cond) == ["condition.children[1]: operator 'bogus' not allowed"]


class TestValidatePolicyFile:

    def test_valid(self):
        assert validate_policy_file(SHIPPED_SET) == (True, "Valid")

    def test_missing(self, tmp_path):
        ok, message = validate_policy_file(tmp_path / "missing.json")
        assert ok is False
        assert "not found" in message

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        ok, message = validate_policy_file(path)

        assert ok is False
        assert "Invalid JSON" in message

    def test_no_policies(self, tmp_path):
        ok, message = validate_policy_file(write_set(tmp_path, []))

        assert ok is False
        assert message == "No policies defined"


class TestLoadIntoStore:

    @pytest.fixture
    def engine(self):
        store = PolicyStore()
        load_into_store(store, SHIPPED_SET)
        return DecisionEngine(store)

    def test_snapshot_order(self):
        store = PolicyStore()
        snapshot = load_into_store(store, SHIPPED_SET)

        assert snapshot.ids() == [
            "owner-full-access",
            "confidential-after-hours",
            "same-department-read",
            "auditors-read",
        ]

    def test_owner_reads_confidential_at_night(self, engine):
        decision = engine.evaluate(DecisionRequest(
            subject={"id": "u1", "department": "eng"},
            object={"ownerId": "u1", "department": "eng", "classification": "confidential"},
            action="read",
            environment={"time": "2024-01-10T22:00:00"},
        ))

        assert decision.effect == Effect.PERMIT
        assert decision.matched_policy_id == "owner-full-access"

    def test_colleague_denied_confidential_at_night(self, engine):
        decision = engine.evaluate(DecisionRequest(
            subject={"id": "u2", "department": "eng"},
            object={"ownerId": "u1", "department": "eng", "classification": "confidential"},
            action="read",
            environment={"time": "2024-01-10T22:00:00"},
        ))

        assert decision.effect == Effect.DENY
        assert decision.matched_policy_id == "confidential-after-hours"

    def test_auditor_weekday_only(self, engine):
        def auditor_request(when):
            return DecisionRequest(
                subject={"id": "a1", "role": "auditor", "department": "audit"},
                object={"ownerId": "u1", "department": "eng", "classification": "internal"},
                action="read",
                environment={"time": when},
            )

        wednesday = engine.evaluate(auditor_request("2024-01-10T11:00:00"))
        sunday = engine.evaluate(auditor_request("2024-01-07T11:00:00"))

        assert wednesday.matched_policy_id == "auditors-read"
        assert sunday.effect == Effect.DENY
        assert sunday.reason == "no matching conditions"

    def test_reload_replaces_set(self, tmp_path):
        store = PolicyStore()
        load_into_store(store, SHIPPED_SET)

        path = write_set(tmp_path, [{"id": "only", "effect": "deny", "condition": comparison()}])
        snapshot = load_into_store(store, path)

        assert snapshot.ids() == ["only"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
