"""
Eligibility query and result models.

Queries and results are request scoped: they are built per call and never
stored by the core.
"""

from enum import Enum
from typing import Union

from pydantic import BaseModel, Field, StrictBool, StrictFloat, StrictInt, StrictStr


InputValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr, list[StrictStr]]


class EligibilityStatus(str, Enum):
    """Outcome of evaluating a policy."""
    ELIGIBLE = "ELIGIBLE"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    CONDITIONAL = "CONDITIONAL"


class WarningCategory(str, Enum):
    """Non-fatal conditions attached to results."""
    MISSING_INPUT = "MissingInputWarning"
    LOW_CONFIDENCE = "LowConfidenceWarning"


class AnalysisWarning(BaseModel):
    """A non-fatal warning attached to an output."""

    category: WarningCategory
    message: str
    details: dict[str, str | float | list[str]] = Field(default_factory=dict)


class EligibilityQuery(BaseModel):
    """Request to evaluate one policy against user-supplied facts."""

    policy_id: str = Field(..., min_length=1)
    user_inputs: dict[str, InputValue] = Field(default_factory=dict)


class ReasoningStep(BaseModel):
    """One evaluated node of the policy graph."""

    step_number: int = Field(..., ge=1)
    node_id: str
    rule_id: str | None = None
    clause_reference: str | None = None
    operator: str
    inputs_consulted: dict[str, InputValue] = Field(default_factory=dict)
    result: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    explanation: str
    pending_inputs: list[str] = Field(
        default_factory=list,
        description="Missing inputs that could still change this node's outcome",
    )


class EligibilityResult(BaseModel):
    """Decision for one policy with its complete reasoning trace."""

    policy_id: str
    status: EligibilityStatus
    reasoning_trace: list[ReasoningStep] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0, le=1.0)
    conditional_requirements: list[str] | None = None
    warnings: list[AnalysisWarning] = Field(default_factory=list)

    @property
    def is_eligible(self) -> bool:
        return self.status == EligibilityStatus.ELIGIBLE
