"""Shared pytest fixtures for the policy-logic test suite."""

import pytest
import structlog

from policy_logic.complexity import ComplexityScorer
from policy_logic.config import Settings, get_settings
from policy_logic.conflicts import ConflictDetector
from policy_logic.graph import PolicyGraphBuilder
from policy_logic.pipeline import PolicyPipeline
from policy_logic.reasoning import ReasoningEngine
from policy_logic.validation import IRValidator


# ---------------------------------------------------------------------------
# Settings cache clearing (autouse)
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Clear the @lru_cache settings singleton between tests."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo any logging configuration a CLI test installed."""
    yield
    structlog.reset_defaults()


# ---------------------------------------------------------------------------
# Rule factory
# ---------------------------------------------------------------------------

class RuleFactory:
    """Builds raw IR payloads the way the upstream extractor emits them."""

    def leaf(self, rule_id, variable, operator, value, clause="c1", confidence=0.9, **extra):
        rule = {
            "rule_id": rule_id,
            "variable": variable,
            "operator": operator,
            "value": value,
            "clause_reference": clause,
            "confidence": confidence,
        }
        rule.update(extra)
        return rule

    def logical(self, rule_id, operator, children, clause="c1", confidence=0.9, variable=None):
        return {
            "rule_id": rule_id,
            "variable": variable or operator.lower(),
            "operator": operator,
            "clause_reference": clause,
            "confidence": confidence,
            "children": list(children),
        }

    def document(self, policy_id, clauses, requires=(), applies_to=(), entity_type=None, **extra):
        doc = {
            "policy_id": policy_id,
            "clauses": [c if isinstance(c, dict) else {"clause_id": c} for c in clauses],
            "requires": list(requires),
            "applies_to": list(applies_to),
        }
        if entity_type is not None:
            doc["entity_type"] = entity_type
        doc.update(extra)
        return doc

    def ir(self, rules, documents=None, **extra):
        payload = {"schema_version": "1.0", "rules": list(rules)}
        if documents is not None:
            payload["documents"] = list(documents)
        payload.update(extra)
        return payload


@pytest.fixture
def rules():
    return RuleFactory()


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def validator(settings):
    return IRValidator(settings)


@pytest.fixture
def builder(settings):
    return PolicyGraphBuilder(settings)


@pytest.fixture
def engine(settings):
    return ReasoningEngine(settings)


@pytest.fixture
def scorer(settings):
    return ComplexityScorer(settings)


@pytest.fixture
def detector(settings):
    return ConflictDetector(settings)


@pytest.fixture
def pipeline(settings):
    return PolicyPipeline(settings)


# ---------------------------------------------------------------------------
# Sample IR payloads
# ---------------------------------------------------------------------------

@pytest.fixture
def eligibility_ir(rules):
    """AND(age >= 18, income < 50000) as a single policy 'benefit'."""
    return rules.ir(
        [
            rules.logical("benefit", "AND", [
                rules.leaf("age-min", "age", "GTE", 18, clause="c1", confidence=0.9),
                rules.leaf("income-max", "income", "LT", 50000, clause="c2", confidence=0.8),
            ], clause="c1", confidence=0.95),
        ]
    )


@pytest.fixture
def contradictory_ir(rules):
    """age >= 18 and age < 18 on the same conjunctive path."""
    return rules.ir(
        [
            rules.logical("adult-minor", "AND", [
                rules.leaf("adult", "age", "GTE", 18, clause="c1"),
                rules.leaf("minor", "age", "LT", 18, clause="c2"),
            ], clause="c1"),
        ]
    )


@pytest.fixture
def linked_policies_ir(rules):
    """Two linked policies with incompatible income requirements."""
    return rules.ir(
        [
            rules.leaf("low-income", "income", "LT", 50000, clause="housing-1"),
            rules.leaf("high-income", "income", "GT", 60000, clause="tax-1"),
        ],
        documents=[
            rules.document("housing", ["housing-1"]),
            rules.document("tax-relief", ["tax-1"], applies_to=["housing"]),
        ],
    )


@pytest.fixture
def circular_ir(rules):
    """Policy P requires B, B requires A, A requires B."""
    return rules.ir(
        [
            rules.leaf("p-age", "age", "GTE", 18, clause="p-1"),
            rules.leaf("a-res", "resident", "EQ", True, clause="a-1"),
            rules.leaf("b-inc", "income", "LT", 30000, clause="b-1"),
        ],
        documents=[
            rules.document("P", ["p-1"], requires=["B"]),
            rules.document("A", ["a-1"], requires=["B"]),
            rules.document("B", ["b-1"], requires=["A"]),
        ],
    )
