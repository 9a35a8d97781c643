"""Tests for policy_logic.exceptions — shared error shape."""

from datetime import datetime

import pytest

from policy_logic.exceptions import (
    ErrorCategory,
    PolicyLogicError,
    SchemaValidationError,
    ScopeViolationError,
    StructuralInconsistencyError,
    UnknownPolicyError,
)


class TestErrorShape:

    def test_keys(self):
        data = SchemaValidationError("bad rule").to_dict()
        assert set(data) == {
            "error", "error_code", "error_message", "error_category", "details", "timestamp",
        }
        assert data["error"] is True
        assert data["error_message"] == "bad rule"

    def test_timestamp_is_iso(self):
        data = ScopeViolationError("x").to_dict()
        assert datetime.fromisoformat(data["timestamp"]).tzinfo is not None

    @pytest.mark.parametrize("error,category,code", [
        (SchemaValidationError("x"), ErrorCategory.SCHEMA_VALIDATION, "INVALID_RULE"),
        (StructuralInconsistencyError("x", ["c1"]), ErrorCategory.STRUCTURAL_INCONSISTENCY,
         "CONTRADICTORY_CONDITIONS"),
        (ScopeViolationError("x"), ErrorCategory.SCOPE_VIOLATION, "OUT_OF_SCOPE"),
        (UnknownPolicyError("p"), ErrorCategory.QUERY, "UNKNOWN_POLICY"),
    ])
    def test_default_codes(self, error, category, code):
        assert isinstance(error, PolicyLogicError)
        assert error.error_category == category.value
        assert error.error_code == code

    def test_explicit_code_wins(self):
        assert SchemaValidationError("x", error_code="MISSING_FIELD").error_code == "MISSING_FIELD"


class TestDetails:

    def test_schema_error_names_rule_and_field(self):
        error = SchemaValidationError("x", rule_id="r1", field="value", details={"extra": 1})
        assert error.details == {"extra": 1, "rule_id": "r1", "field": "value"}
        assert error.rule_id == "r1"

    def test_explicit_details_not_overwritten(self):
        error = SchemaValidationError("x", rule_id="r1", details={"rule_id": "outer"})
        assert error.details["rule_id"] == "outer"

    def test_structural_error_lists_clauses(self):
        error = StructuralInconsistencyError("x", ["c1", "c2"], details={"variable": "age"})
        assert error.clause_references == ["c1", "c2"]
        assert error.to_dict()["details"] == {"variable": "age", "clause_references": ["c1", "c2"]}

    def test_unknown_policy(self):
        error = UnknownPolicyError("housing")
        assert error.policy_id == "housing"
        assert error.details == {"policy_id": "housing"}
        assert "housing" in str(error)
