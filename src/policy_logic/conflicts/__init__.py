"""Conflict detection across policy graphs."""

from .impossibility import IMPOSSIBILITY_RULES, ImpossibilityRule
from .scope import ScopeResolver
from .detector import PASS_ORDER, ConflictDetector, conflict_id

__all__ = [
    "IMPOSSIBILITY_RULES",
    "ImpossibilityRule",
    "ScopeResolver",
    "PASS_ORDER",
    "ConflictDetector",
    "conflict_id",
]
