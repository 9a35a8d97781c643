"""Eligibility reasoning (backward and forward chaining)."""

from .engine import ReasoningEngine

__all__ = ["ReasoningEngine"]
