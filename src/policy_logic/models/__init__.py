"""
Pydantic models for policy-logic.

- Rule models for the Intermediate Representation
- Reasoning models for eligibility queries and results
- Complexity and conflict report models
"""

from policy_logic.models.rules import (
    BooleanValue,
    ClauseRecord,
    IntermediateRepresentation,
    LogicalRule,
    NumericValue,
    Operator,
    PolicyDocument,
    RuleValue,
    StringSetValue,
    StringValue,
    ValueKind,
)
from policy_logic.models.reasoning import (
    AnalysisWarning,
    EligibilityQuery,
    EligibilityResult,
    EligibilityStatus,
    ReasoningStep,
    WarningCategory,
)
from policy_logic.models.complexity import (
    ComplexityCategory,
    ComplexityFactors,
    ComplexityScore,
    categorize,
)
from policy_logic.models.conflicts import (
    Conflict,
    ConflictReport,
    ConflictSeverity,
    ConflictType,
)

__all__ = [
    # Rule models
    "BooleanValue",
    "ClauseRecord",
    "IntermediateRepresentation",
    "LogicalRule",
    "NumericValue",
    "Operator",
    "PolicyDocument",
    "RuleValue",
    "StringSetValue",
    "StringValue",
    "ValueKind",
    # Reasoning models
    "AnalysisWarning",
    "EligibilityQuery",
    "EligibilityResult",
    "EligibilityStatus",
    "ReasoningStep",
    "WarningCategory",
    # Complexity models
    "ComplexityCategory",
    "ComplexityFactors",
    "ComplexityScore",
    "categorize",
    # Conflict models
    "Conflict",
    "ConflictReport",
    "ConflictSeverity",
    "ConflictType",
]
