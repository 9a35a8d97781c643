"""Complexity scoring of policy graphs."""

from .scorer import FACTOR_LABELS, ComplexityScorer

__all__ = ["FACTOR_LABELS", "ComplexityScorer"]
