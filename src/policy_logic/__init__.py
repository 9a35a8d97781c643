"""
policy-logic: symbolic core for policy eligibility analysis.

Turns a validated Intermediate Representation of extracted policy clauses
into an immutable policy graph, then answers eligibility questions, scores
structural complexity and detects logical conflicts, deterministically and
with every output traceable to a source clause.
"""

__version__ = "0.1.0"

from policy_logic.config import get_settings

__all__ = ["get_settings", "__version__"]
