"""Tests for policy_logic.pipeline — end-to-end wiring of the components."""

import pytest

from policy_logic.exceptions import SchemaValidationError
from policy_logic.graph import PolicyGraph
from policy_logic.models import ComplexityCategory, ConflictType, EligibilityStatus
from policy_logic.pipeline import PolicyPipeline, get_policy_pipeline


class TestCompilation:

    def test_compile(self, pipeline, eligibility_ir):
        graph = pipeline.compile(eligibility_ir)
        assert isinstance(graph, PolicyGraph)
        assert graph.policy_ids() == ["benefit"]

    def test_compile_rejects_invalid_ir(self, pipeline, rules):
        with pytest.raises(SchemaValidationError):
            pipeline.compile(rules.ir([rules.leaf("r1", "", "GTE", 18)]))

    def test_load_graph_from_ir(self, pipeline, eligibility_ir):
        assert pipeline.load_graph(eligibility_ir).node_count == 8

    def test_load_graph_from_serialized(self, pipeline, eligibility_ir):
        graph = pipeline.compile(eligibility_ir)
        restored = pipeline.load_graph(graph.to_dict())
        assert restored.to_dict() == graph.to_dict()

    def test_get_policy_pipeline(self):
        assert isinstance(get_policy_pipeline(), PolicyPipeline)


class TestAnalysis:

    def test_evaluate(self, pipeline, eligibility_ir):
        graph = pipeline.compile(eligibility_ir)
        result = pipeline.evaluate(graph, "benefit", {"age": 20, "income": 40000})
        assert result.status == EligibilityStatus.ELIGIBLE
        assert len(result.reasoning_trace) == 3

    def test_evaluate_without_inputs(self, pipeline, eligibility_ir):
        graph = pipeline.compile(eligibility_ir)
        assert pipeline.evaluate(graph, "benefit").status == EligibilityStatus.CONDITIONAL

    def test_evaluate_rejects_bad_inputs(self, pipeline, eligibility_ir):
        graph = pipeline.compile(eligibility_ir)
        with pytest.raises(SchemaValidationError) as exc:
            pipeline.evaluate(graph, "benefit", {"age": [1, 2]})
        assert exc.value.error_code == "INVALID_QUERY"

    def test_simulate(self, pipeline, linked_policies_ir):
        graph = pipeline.compile(linked_policies_ir)
        results = pipeline.simulate(graph, {"income": 70000})
        assert results["tax-relief"].status == EligibilityStatus.ELIGIBLE
        assert results["housing"].status == EligibilityStatus.NOT_ELIGIBLE

    def test_score(self, pipeline, eligibility_ir):
        graph = pipeline.compile(eligibility_ir)
        assert pipeline.score(graph).category == ComplexityCategory.LOW
        assert pipeline.score(graph, "benefit").overall_score == pipeline.score(graph).overall_score

    def test_detect_across_graphs(self, pipeline, rules):
        housing = pipeline.compile(rules.ir(
            [rules.leaf("low-income", "income", "LT", 50000, clause="housing-1")],
            documents=[rules.document("housing", ["housing-1"])],
        ))
        tax = pipeline.compile(rules.ir(
            [rules.leaf("high-income", "income", "GT", 60000, clause="tax-1")],
            documents=[rules.document("tax-relief", ["tax-1"], applies_to=["housing"])],
        ))
        report = pipeline.detect([housing, tax])
        assert [c.conflict_type for c in report.conflicts] == [ConflictType.MUTUAL_EXCLUSION]

    def test_readability_function_passed_through(self, settings, rules):
        pipeline = PolicyPipeline(settings, readability_fn=lambda text: 0.0)
        graph = pipeline.compile(rules.ir(
            [rules.leaf("r1", "age", "GTE", 18)],
            documents=[rules.document("p1", [{"clause_id": "c1", "text": "Dense legal prose."}])],
        ))
        assert pipeline.score(graph).factors.readability_score == 0.0
