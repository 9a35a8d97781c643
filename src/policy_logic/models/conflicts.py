"""
Conflict report models.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field


class ConflictType(str, Enum):
    """Kinds of logical conflict between clauses."""
    DIRECT_CONTRADICTION = "DIRECT_CONTRADICTION"
    MUTUAL_EXCLUSION = "MUTUAL_EXCLUSION"
    CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
    INCOMPATIBLE_THRESHOLD = "INCOMPATIBLE_THRESHOLD"
    LOGICAL_IMPOSSIBILITY = "LOGICAL_IMPOSSIBILITY"


class ConflictSeverity(str, Enum):
    """Conflict severity levels."""
    CRITICAL = "CRITICAL"  # Policy cannot be evaluated
    HIGH = "HIGH"          # Affects broad populations
    MEDIUM = "MEDIUM"      # Narrow scenarios
    LOW = "LOW"            # Documentation-level inconsistency

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    ConflictSeverity.LOW: 1,
    ConflictSeverity.MEDIUM: 2,
    ConflictSeverity.HIGH: 3,
    ConflictSeverity.CRITICAL: 4,
}


class Conflict(BaseModel):
    """A detected conflict, traceable to the clauses involved."""

    conflict_id: str
    conflict_type: ConflictType
    severity: ConflictSeverity
    involved_clauses: list[str] = Field(default_factory=list)
    involved_policies: list[str] = Field(default_factory=list)
    explanation: str
    evidence: dict[str, Any] = Field(default_factory=dict)


class ConflictReport(BaseModel):
    """Result of running the detection passes."""

    conflicts: list[Conflict] = Field(default_factory=list)
    suppressed_count: int = Field(default=0, description="Candidates dropped by the scope check")
    passes_run: list[ConflictType] = Field(default_factory=list)
    terminated_early: bool = False

    @computed_field
    @property
    def conflict_count(self) -> int:
        return len(self.conflicts)

    def by_type(self, conflict_type: ConflictType) -> list[Conflict]:
        return [c for c in self.conflicts if c.conflict_type == conflict_type]
