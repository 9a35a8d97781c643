"""
Error taxonomy shared by every component of the core.

All errors serialise to the same response shape so callers can dispatch on
``error_category`` alone::

    {error, error_code, error_message, error_category, details, timestamp}
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Top-level error categories."""
    SCHEMA_VALIDATION = "SCHEMA_VALIDATION"
    STRUCTURAL_INCONSISTENCY = "STRUCTURAL_INCONSISTENCY"
    SCOPE_VIOLATION = "SCOPE_VIOLATION"
    QUERY = "QUERY"


class PolicyLogicError(Exception):
    """Base class for errors raised by the core."""

    category: ErrorCategory = ErrorCategory.SCHEMA_VALIDATION
    default_code: str = "POLICY_LOGIC_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)

    @property
    def error_category(self) -> str:
        return self.category.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": True,
            "error_code": self.error_code,
            "error_message": self.message,
            "error_category": self.error_category,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class SchemaValidationError(PolicyLogicError):
    """Missing/invalid IR field, operator/value type mismatch, or rule-tree cycle."""
    category = ErrorCategory.SCHEMA_VALIDATION
    default_code = "INVALID_RULE"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        rule_id: str | None = None,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = dict(details or {})
        if rule_id is not None:
            details.setdefault("rule_id", rule_id)
        if field is not None:
            details.setdefault("field", field)
        super().__init__(message, error_code=error_code, details=details)
        self.rule_id = rule_id
        self.field = field


class StructuralInconsistencyError(PolicyLogicError):
    """The rule graph contradicts itself and cannot be evaluated."""
    category = ErrorCategory.STRUCTURAL_INCONSISTENCY
    default_code = "CONTRADICTORY_CONDITIONS"

    def __init__(
        self,
        message: str,
        clause_references: list[str],
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = dict(details or {})
        details.setdefault("clause_references", list(clause_references))
        super().__init__(message, error_code=error_code, details=details)
        self.clause_references = list(clause_references)


class ScopeViolationError(PolicyLogicError):
    """Two clauses are not active in the same evaluation context."""
    category = ErrorCategory.SCOPE_VIOLATION
    default_code = "OUT_OF_SCOPE"


class UnknownPolicyError(PolicyLogicError):
    """A query named a policy that is not in the graph."""
    category = ErrorCategory.QUERY
    default_code = "UNKNOWN_POLICY"

    def __init__(self, policy_id: str):
        super().__init__(
            f"Policy '{policy_id}' is not present in the policy graph",
            details={"policy_id": policy_id},
        )
        self.policy_id = policy_id
