"""
Tests for data model helpers.
"""

import pytest
from datetime import datetime, timezone

from abac_authz.exceptions import AttributeStoreError
from abac_authz.models import (
    AuthorizationResult,
    Decision,
    LogicalOperator,
    Policy,
    PolicyEffect,
    PolicyEvaluation,
    PolicyRule,
    PolicyTarget,
    runtime_type_name,
    stringify_value,
)


class TestModelHelpers:
    """Test cases for value conversion helpers."""

    @pytest.mark.parametrize("value,expected", [
        (None, ""),
        (True, "true"),
        (False, "false"),
        (2, "2"),
        (2.5, "2.5"),
        (2.0, "2"),
        (-0.0, "0"),
        (float("inf"), "inf"),
        (["a", 1, True], "a,1,true"),
        ("text", "text"),
        (datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc), "2024-01-02T03:04:05+00:00"),
    ])
    def test_stringify_value(self, value, expected):
        assert stringify_value(value) == expected

    @pytest.mark.parametrize("value,expected", [
        (None, "null"),
        (False, "boolean"),
        (3, "number"),
        (0.5, "number"),
        ("x", "string"),
        ([1], "array"),
        ({"a": 1}, "object"),
    ])
    def test_runtime_type_name(self, value, expected):
        assert runtime_type_name(value) == expected

    @pytest.mark.parametrize("value,expected", [
        (None, LogicalOperator.AND),
        ("", LogicalOperator.AND),
        ("and", LogicalOperator.AND),
        (" OR ", LogicalOperator.OR),
        ("XOR", None),
    ])
    def test_logical_operator_parse(self, value, expected):
        assert LogicalOperator.parse(value) is expected


class TestPolicyModels:
    """Test cases for policy dataclasses."""

    def test_effect_string_is_converted(self):
        assert Policy(id="p1", name="p1", effect="DENY").effect is PolicyEffect.DENY

    def test_is_empty(self):
        assert Policy(id="p1", name="p1", effect="permit").is_empty
        assert not Policy(id="p1", name="p1", effect="permit", rules=[PolicyRule("a", "exists")]).is_empty
        assert not Policy(
            id="p1", name="p1", effect="permit", targets=[PolicyTarget("subject", "a", "exists")]
        ).is_empty

    def test_rule_group_defaults(self):
        assert PolicyRule("a", "exists").group == "default"
        assert PolicyRule("a", "exists", group_id="g1").group == "g1"

    def test_evaluation_summary(self):
        evaluation = PolicyEvaluation(
            policy_id="id-1", policy_name="p1", effect=PolicyEffect.PERMIT, matches=False, priority=5
        )
        assert evaluation.to_dict() == {"id": "id-1", "name": "p1", "effect": "permit", "matches": False}

    def test_result_to_dict(self):
        result = AuthorizationResult(Decision.PERMIT, "ok", ["p1"], 1.25)
        assert result.permitted
        assert result.to_dict() == {
            "decision": "permit",
            "reason": "ok",
            "applied_policies": ["p1"],
            "processing_time_ms": 1.25,
        }


class TestExceptions:
    """Test cases for the exception hierarchy."""

    def test_to_dict(self):
        cause = ConnectionError("refused")
        error = AttributeStoreError("lookup failed", operation="get_subject_attributes",
                                    subject_id="u1", cause=cause)
        data = error.to_dict()

        assert data["error_type"] == "AttributeStoreError"
        assert data["error_code"] == "AttributeStoreError"
        assert data["details"] == {"operation": "get_subject_attributes", "subject_id": "u1"}
        assert data["cause"] == "refused"
