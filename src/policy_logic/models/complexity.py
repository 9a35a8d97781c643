"""
Complexity score models.
"""

from enum import Enum

from pydantic import BaseModel, Field


# Category boundaries on the 0-100 scale
LOW_UPPER_BOUND = 33.0
MODERATE_UPPER_BOUND = 67.0


class ComplexityCategory(str, Enum):
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"


def categorize(score: float) -> ComplexityCategory:
    """Map a 0-100 score to its category (LOW < 33 <= MODERATE < 67 <= HIGH)."""
    if score < LOW_UPPER_BOUND:
        return ComplexityCategory.LOW
    if score < MODERATE_UPPER_BOUND:
        return ComplexityCategory.MODERATE
    return ComplexityCategory.HIGH


class ComplexityFactors(BaseModel):
    """Raw factor values (before normalization and weighting)."""

    condition_count: int = Field(default=0, ge=0)
    operator_density: float = Field(default=0.0, ge=0.0)
    nesting_depth: int = Field(default=0, ge=0)
    cross_reference_count: int = Field(default=0, ge=0)
    readability_score: float = Field(default=0.0, ge=0.0, le=1.0)
    ambiguity_count: int = Field(default=0, ge=0)


class ComplexityScore(BaseModel):
    """Structural/linguistic complexity of a policy graph."""

    overall_score: float = Field(..., ge=0.0, le=100.0)
    category: ComplexityCategory
    factors: ComplexityFactors
    contributions: dict[str, float] = Field(
        default_factory=dict, description="Weighted contribution of each factor, in points"
    )
    explanation: str = Field(..., min_length=1)
