"""Tests for target matching."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from abac_policy import DecisionRequest, Target, matches


@pytest.fixture
def req():
    return DecisionRequest(
        subject={"id": "u1", "role": "editor", "attributes": {"department": "eng", "clearance": 2}},
        object={"id": "doc-1", "type": "report", "attributes": {"classification": "internal"}},
        action="read",
    )


class TestTargetMatching:

    def test_absent_target_matches_everything(self, req):
        assert matches(None, req) is True

    def test_empty_target_matches_everything(self, req):
        assert matches(Target(), req) is True

    def test_action_membership(self, req):
        assert matches(Target(actions=("read", "list")), req) is True
        assert matches(Target(actions=("write",)), req) is False

    def test_empty_action_list_matches_nothing(self, req):
        assert matches(Target(actions=()), req) is False

    def test_direct_subject_field(self, req):
        assert matches(Target(subjects={"role": "editor"}), req) is True
        assert matches(Target(subjects={"role": "admin"}), req) is False

    def test_nested_attributes_map(self, req):
        assert matches(Target(subjects={"department": "eng"}), req) is True
        assert matches(Target(objects={"classification": "internal"}), req) is True

    def test_direct_field_takes_precedence(self):
        request = DecisionRequest(
            subject={"department": "ops", "attributes": {"department": "eng"}},
            action="read",
        )
        assert matches(Target(subjects={"department": "ops"}), request) is True
        assert matches(Target(subjects={"department": "eng"}), request) is False

    def test_missing_key_fails(self, req):
        assert matches(Target(objects={"owner": "u1"}), req) is False

    def test_typed_equality(self, req):
        assert matches(Target(subjects={"clearance": 2.0}), req) is True
        assert matches(Target(subjects={"clearance": "2"}), req) is False

    def test_conjunction_of_sections(self, req):
        target = Target(
            actions=("read",),
            subjects={"role": "editor"},
            objects={"type": "report"},
        )
        assert matches(target, req) is True

        assert matches(target.model_copy(update={"objects": {"type": "invoice"}}), req) is False
        assert matches(target.model_copy(update={"actions": ("delete",)}), req) is False

    def test_all_subject_keys_required(self, req):
        assert matches(Target(subjects={"role": "editor", "department": "ops"}), req) is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
