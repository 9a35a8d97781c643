"""Tests for policy_logic.complexity — factors, normalization, category."""

import pytest
from structlog.testing import capture_logs

from policy_logic.complexity import FACTOR_LABELS, ComplexityScorer
from policy_logic.config import ComplexityWeights
from policy_logic.exceptions import UnknownPolicyError
from policy_logic.models import ComplexityCategory, IntermediateRepresentation


def _graph(builder, payload):
    return builder.build(IntermediateRepresentation.model_validate(payload))


@pytest.fixture
def graph(builder, eligibility_ir):
    return _graph(builder, eligibility_ir)


def _nested(rules, depth):
    """A chain of AND nodes ``depth`` levels deep ending in one leaf."""
    node = rules.leaf("leaf", "age", "GTE", 18)
    for level in range(depth - 1):
        node = rules.logical(f"and-{level}", "AND", [node])
    return node


class TestFactors:

    def test_raw_values(self, scorer, graph):
        factors = scorer.score(graph).factors
        assert factors.condition_count == 2
        assert factors.operator_density == pytest.approx(0.5)
        assert factors.nesting_depth == 2
        assert factors.cross_reference_count == 0
        assert factors.readability_score == pytest.approx(0.5)
        assert factors.ambiguity_count == 0

    def test_ambiguity_counts_flags(self, scorer, builder, rules):
        graph = _graph(builder, rules.ir(
            [rules.leaf("r1", "age", "GTE", 18, confidence=0.3)],
            documents=[rules.document("p1", [{"clause_id": "c1", "ambiguous": True}])],
        ))
        assert scorer.score(graph).factors.ambiguity_count == 2

    def test_readability_from_clause(self, scorer, builder, rules):
        graph = _graph(builder, rules.ir(
            [rules.leaf("r1", "age", "GTE", 18)],
            documents=[rules.document("p1", [{"clause_id": "c1", "readability": 0.9}])],
        ))
        assert scorer.score(graph).factors.readability_score == pytest.approx(0.9)

    def test_readability_function(self, settings, builder, rules):
        seen = []

        def readability(text):
            seen.append(text)
            return 1.0

        graph = _graph(builder, rules.ir(
            [rules.leaf("r1", "age", "GTE", 18)],
            documents=[rules.document("p1", [{"clause_id": "c1", "text": "Applicants must be adults."}])],
        ))
        result = ComplexityScorer(settings, readability_fn=readability).score(graph)
        assert seen == ["Applicants must be adults."]
        assert result.contributions["readability_score"] == 0.0

    def test_cross_references_per_policy(self, scorer, builder, linked_policies_ir):
        graph = _graph(builder, linked_policies_ir)
        assert scorer.score(graph, "tax-relief").factors.cross_reference_count == 1
        assert scorer.score(graph, "housing").factors.cross_reference_count == 0

    def test_per_policy_scope_follows_rule_trees(self, scorer, builder, rules):
        """A condition counts for the policy whose tree holds it, even when its clause is another document's."""
        graph = _graph(builder, rules.ir(
            [
                rules.logical("a-root", "AND", [
                    rules.leaf("a-age", "age", "GTE", 18, clause="a-1"),
                    rules.leaf("a-inc", "income", "LT", 100, clause="b-1"),
                ], clause="a-1"),
                rules.leaf("b-res", "resident", "EQ", True, clause="b-2"),
            ],
            documents=[
                rules.document("A", ["a-1"]),
                rules.document("B", ["b-1", "b-2"]),
            ],
        ))
        first = scorer.score(graph, "A").factors
        assert first.condition_count == 2
        assert first.operator_density == pytest.approx(1.0)
        assert first.cross_reference_count == 1

        second = scorer.score(graph, "B").factors
        assert second.condition_count == 1
        assert second.operator_density == 0.0
        assert second.cross_reference_count == 0


class TestScore:

    def test_overall(self, scorer, graph):
        result = scorer.score(graph)
        assert result.overall_score == pytest.approx(25.8)
        assert result.category == ComplexityCategory.LOW

    def test_contributions_sum_to_overall(self, scorer, graph):
        result = scorer.score(graph)
        assert sum(result.contributions.values()) == pytest.approx(result.overall_score, abs=0.1)
        assert set(result.contributions) == set(FACTOR_LABELS)

    def test_explanation_names_dominant_factors(self, scorer, graph):
        explanation = scorer.score(graph).explanation
        assert explanation.startswith("LOW complexity (25.8); dominated by nesting depth (depth 2")
        assert "operator density" in explanation
        assert "condition count" not in explanation

    def test_empty_policy(self, scorer, builder, rules):
        graph = _graph(builder, rules.ir([], documents=[rules.document("blank", [])]))
        result = scorer.score(graph)
        assert result.overall_score == 0.0
        assert result.category == ComplexityCategory.LOW
        assert "no conditions" in result.explanation

    def test_nesting_capped(self, scorer, builder, rules):
        graph = _graph(builder, rules.ir([_nested(rules, 9)]))
        result = scorer.score(graph)
        assert result.factors.nesting_depth == 9
        assert result.contributions["nesting_depth"] == pytest.approx(25.0)

    def test_deeper_trees_score_higher(self, scorer, builder, rules):
        shallow = scorer.score(_graph(builder, rules.ir([_nested(rules, 2)])))
        deep = scorer.score(_graph(builder, rules.ir([_nested(rules, 4)])))
        assert deep.overall_score > shallow.overall_score

    def test_score_bounded(self, scorer, builder, rules):
        leaves = [rules.leaf(f"r{i}", f"v{i}", "GTE", i, confidence=0.1) for i in range(60)]
        graph = _graph(builder, rules.ir([rules.logical("all", "AND", leaves)]))
        result = scorer.score(graph)
        assert 0.0 <= result.overall_score <= 100.0

    def test_custom_weights(self, settings, graph):
        weights = ComplexityWeights(
            condition_count=0.0, operator_density=0.0, nesting_depth=1.0,
            cross_reference_count=0.0, readability_score=0.0, ambiguity_count=0.0,
        )
        scorer = ComplexityScorer(settings.model_copy(update={"complexity_weights": weights}))
        result = scorer.score(graph)
        assert result.overall_score == pytest.approx(40.0)
        assert result.category == ComplexityCategory.MODERATE

    def test_unknown_policy(self, scorer, graph):
        with pytest.raises(UnknownPolicyError):
            scorer.score(graph, "missing")

    def test_logs_score(self, scorer, graph):
        with capture_logs() as logs:
            scorer.score(graph)
        (event,) = [e for e in logs if e["event"] == "complexity_scored"]
        assert event["category"] == "LOW"
