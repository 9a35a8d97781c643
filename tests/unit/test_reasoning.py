"""Tests for policy_logic.reasoning — backward/forward chaining, status, trace."""

import gc
import weakref

import pytest
from structlog.testing import capture_logs

from policy_logic.exceptions import (
    SchemaValidationError,
    StructuralInconsistencyError,
    UnknownPolicyError,
)
from policy_logic.models import (
    EligibilityQuery,
    EligibilityStatus,
    IntermediateRepresentation,
    WarningCategory,
)
from policy_logic.reasoning import ReasoningEngine


def _graph(builder, payload):
    return builder.build(IntermediateRepresentation.model_validate(payload))


@pytest.fixture
def graph(builder, eligibility_ir):
    return _graph(builder, eligibility_ir)


def _query(inputs, policy_id="benefit"):
    return {"policy_id": policy_id, "user_inputs": inputs}


class _Inputs(dict):
    """A dict that can be weakly referenced."""


# ---- Backward chaining ----

class TestEvaluate:

    def test_eligible(self, engine, graph):
        result = engine.evaluate(graph, _query({"age": 20, "income": 40000}))
        assert result.status == EligibilityStatus.ELIGIBLE
        assert result.confidence == pytest.approx(0.8)
        assert result.conditional_requirements is None
        assert result.warnings == []

    def test_trace_has_leaf_steps_then_and(self, engine, graph):
        result = engine.evaluate(graph, _query({"age": 20, "income": 40000}))
        trace = result.reasoning_trace
        assert [s.step_number for s in trace] == [1, 2, 3]
        assert [s.rule_id for s in trace] == ["age-min", "income-max", "benefit"]
        assert trace[0].inputs_consulted == {"age": 20}
        assert trace[0].clause_reference == "c1"
        assert trace[1].clause_reference == "c2"
        assert trace[2].operator == "AND"
        assert trace[2].inputs_consulted == {}
        assert all(s.result for s in trace)

    def test_accepts_query_model(self, engine, graph):
        query = EligibilityQuery(policy_id="benefit", user_inputs={"age": 20, "income": 40000})
        assert engine.evaluate(graph, query).is_eligible

    def test_not_eligible(self, engine, graph):
        result = engine.evaluate(graph, _query({"age": 20, "income": 90000}))
        assert result.status == EligibilityStatus.NOT_ELIGIBLE
        assert result.reasoning_trace[1].result is False
        assert "not satisfied" in result.reasoning_trace[1].explanation

    def test_deterministic(self, engine, graph):
        query = _query({"age": 20, "income": 40000})
        first = engine.evaluate(graph, query).model_dump()
        second = engine.evaluate(graph, query).model_dump()
        assert first == second

    def test_type_mismatch_is_not_satisfied(self, engine, graph):
        result = engine.evaluate(graph, _query({"age": "twenty", "income": 40000}))
        assert result.status == EligibilityStatus.NOT_ELIGIBLE
        assert "cannot be compared" in result.reasoning_trace[0].explanation

    def test_not_inverts(self, engine, builder, rules):
        graph = _graph(builder, rules.ir([
            rules.logical("adult", "NOT", [rules.leaf("minor", "age", "LT", 18)]),
        ]))
        result = engine.evaluate(graph, _query({"age": 30}, "adult"))
        assert result.status == EligibilityStatus.ELIGIBLE
        assert [s.operator for s in result.reasoning_trace] == ["LT", "NOT"]
        assert result.reasoning_trace[0].result is False
        assert result.reasoning_trace[1].result is True

    def test_or_takes_highest_confidence(self, engine, builder, rules):
        graph = _graph(builder, rules.ir([
            rules.logical("either", "OR", [
                rules.leaf("senior", "age", "GTE", 65, confidence=0.95),
                rules.leaf("poor", "income", "LT", 100, confidence=0.75),
            ]),
        ]))
        result = engine.evaluate(graph, _query({"age": 70, "income": 50}, "either"))
        assert result.status == EligibilityStatus.ELIGIBLE
        assert result.confidence == pytest.approx(0.95)

    def test_or_alternatives_are_not_contradictions(self, engine, builder, rules):
        graph = _graph(builder, rules.ir([
            rules.logical("either", "OR", [
                rules.leaf("senior", "age", "GTE", 65),
                rules.leaf("minor", "age", "LT", 18),
            ]),
        ]))
        result = engine.evaluate(graph, _query({"age": 10}, "either"))
        assert result.status == EligibilityStatus.ELIGIBLE

    def test_policy_without_rules(self, engine, builder, rules):
        graph = _graph(builder, rules.ir(
            [rules.leaf("r1", "age", "GTE", 18)],
            documents=[rules.document("p1", ["c1"]), rules.document("open", ["c9"])],
        ))
        result = engine.evaluate(graph, _query({}, "open"))
        assert result.status == EligibilityStatus.ELIGIBLE
        assert result.confidence == 1.0
        assert len(result.reasoning_trace) == 1
        assert result.reasoning_trace[0].clause_reference == "c9"


class TestMissingInputs:

    def test_missing_input_is_conditional(self, engine, graph):
        result = engine.evaluate(graph, _query({"age": 20}))
        assert result.status == EligibilityStatus.CONDITIONAL
        assert result.conditional_requirements == ["income"]
        step = result.reasoning_trace[1]
        assert step.rule_id == "income-max"
        assert step.explanation.startswith("Missing input 'income'")
        assert step.pending_inputs == ["income"]

    def test_missing_input_warning(self, engine, graph):
        result = engine.evaluate(graph, _query({"age": 20}))
        assert [w.category for w in result.warnings] == [WarningCategory.MISSING_INPUT]
        assert result.warnings[0].details == {"variable": "income"}

    def test_false_dominates_missing(self, engine, graph):
        result = engine.evaluate(graph, _query({"age": 10}))
        assert result.status == EligibilityStatus.NOT_ELIGIBLE
        assert result.conditional_requirements is None
        assert [w.category for w in result.warnings] == [WarningCategory.MISSING_INPUT]

    def test_satisfied_alternative_needs_nothing_else(self, engine, builder, rules):
        graph = _graph(builder, rules.ir([
            rules.logical("either", "OR", [
                rules.leaf("senior", "age", "GTE", 65),
                rules.leaf("poor", "income", "LT", 100),
            ]),
        ]))
        result = engine.evaluate(graph, _query({"age": 70}, "either"))
        assert result.status == EligibilityStatus.ELIGIBLE

    def test_no_inputs_lists_every_requirement(self, engine, graph):
        result = engine.evaluate(graph, _query({}))
        assert result.status == EligibilityStatus.CONDITIONAL
        assert result.conditional_requirements == ["age", "income"]


class TestConfidenceBands:

    def _single(self, builder, rules, confidence):
        return _graph(builder, rules.ir([rules.leaf("r1", "age", "GTE", 18, confidence=confidence)]))

    def test_moderate_confidence_is_conditional(self, engine, builder, rules):
        graph = self._single(builder, rules, 0.65)
        result = engine.evaluate(graph, _query({"age": 30}, "r1"))
        assert result.status == EligibilityStatus.CONDITIONAL
        assert result.conditional_requirements is None
        assert result.warnings == []

    def test_low_confidence_is_not_eligible_with_warning(self, engine, builder, rules):
        graph = self._single(builder, rules, 0.5)
        result = engine.evaluate(graph, _query({"age": 30}, "r1"))
        assert result.status == EligibilityStatus.NOT_ELIGIBLE
        assert [w.category for w in result.warnings] == [WarningCategory.LOW_CONFIDENCE]

    def test_thresholds_from_settings(self, settings, builder, rules):
        strict = ReasoningEngine(settings.model_copy(update={"eligible_confidence": 0.95}))
        graph = self._single(builder, rules, 0.9)
        assert strict.evaluate(graph, _query({"age": 30}, "r1")).status == EligibilityStatus.CONDITIONAL


class TestStructuralErrors:

    def test_contradiction_raises(self, engine, builder, contradictory_ir):
        graph = _graph(builder, contradictory_ir)
        with pytest.raises(StructuralInconsistencyError) as exc:
            engine.evaluate(graph, _query({"age": 20}, "adult-minor"))
        assert set(exc.value.clause_references) == {"c1", "c2"}
        assert exc.value.details["variable"] == "age"
        assert exc.value.to_dict()["error_category"] == "STRUCTURAL_INCONSISTENCY"

    def test_precheck_passes_consistent_policy(self, engine, graph):
        engine.precheck(graph, "benefit")

    def test_circular_requirement(self, engine, builder, circular_ir):
        graph = _graph(builder, circular_ir)
        with pytest.raises(StructuralInconsistencyError) as exc:
            engine.evaluate(graph, _query({"age": 30, "resident": True, "income": 10}, "P"))
        assert exc.value.error_code == "CIRCULAR_REQUIREMENT"
        assert exc.value.details["cycle"] == ["B", "A", "B"]
        assert exc.value.clause_references == ["a-1", "b-1"]

    def test_unknown_policy(self, engine, graph):
        with pytest.raises(UnknownPolicyError) as exc:
            engine.evaluate(graph, _query({}, "missing"))
        assert exc.value.to_dict()["error_category"] == "QUERY"

    def test_external_policy_cannot_be_queried(self, engine, builder, rules):
        graph = _graph(builder, rules.ir(
            [rules.leaf("r1", "age", "GTE", 18)],
            documents=[rules.document("p1", ["c1"], requires=["ext"])],
        ))
        with pytest.raises(UnknownPolicyError):
            engine.evaluate(graph, _query({}, "ext"))

    def test_external_requirement_is_pending(self, engine, builder, rules):
        graph = _graph(builder, rules.ir(
            [rules.leaf("r1", "age", "GTE", 18)],
            documents=[rules.document("p1", ["c1"], requires=["ext"])],
        ))
        result = engine.evaluate(graph, _query({"age": 30}, "p1"))
        assert result.status == EligibilityStatus.CONDITIONAL
        assert result.conditional_requirements == ["policy:ext"]

    def test_policy_level_steps_cite_clauses(self, engine, builder, rules):
        """Steps for the requirement and the policy conjunction point back to p1's clause."""
        graph = _graph(builder, rules.ir(
            [rules.leaf("r1", "age", "GTE", 18, clause="c2")],
            documents=[rules.document("p1", ["c1", "c2"], requires=["ext"])],
        ))
        trace = engine.evaluate(graph, _query({"age": 30}, "p1")).reasoning_trace
        assert [s.node_id for s in trace] == ["condition:r1", "policy:ext", "policy:p1"]
        assert [s.clause_reference for s in trace] == ["c2", "c1", "c1"]
        assert trace[1].rule_id is None

    @pytest.mark.parametrize("query", [
        {"policy_id": "", "user_inputs": {}},
        {"policy_id": "benefit", "user_inputs": {"age": {"years": 20}}},
        {"user_inputs": {}},
    ])
    def test_malformed_query(self, engine, graph, query):
        with pytest.raises(SchemaValidationError) as exc:
            engine.evaluate(graph, query)
        assert exc.value.error_code == "INVALID_QUERY"


# ---- Forward chaining ----

class TestSimulate:

    def test_every_policy_evaluated(self, engine, builder, linked_policies_ir):
        graph = _graph(builder, linked_policies_ir)
        results = engine.simulate(graph, {"income": 55000})
        assert set(results) == {"housing", "tax-relief"}
        assert results["housing"].status == EligibilityStatus.NOT_ELIGIBLE
        assert results["tax-relief"].status == EligibilityStatus.NOT_ELIGIBLE

    def test_partial_inputs(self, engine, builder, linked_policies_ir):
        graph = _graph(builder, linked_policies_ir)
        results = engine.simulate(graph, {})
        assert {r.status for r in results.values()} == {EligibilityStatus.CONDITIONAL}

    def test_malformed_inputs(self, engine, graph):
        with pytest.raises(SchemaValidationError):
            engine.simulate(graph, {"age": None})

    def test_logs_status_counts(self, engine, graph):
        with capture_logs() as logs:
            engine.simulate(graph, {"age": 20, "income": 40000})
        (event,) = [e for e in logs if e["event"] == "simulation_completed"]
        assert event["ELIGIBLE"] == 1

    def test_sweep(self, engine, graph):
        inputs = {"age": 30}
        outcomes = engine.sweep(graph, inputs, "income", [10000, 70000])
        assert [value for value, _ in outcomes] == [10000, 70000]
        assert [r["benefit"].status for _, r in outcomes] == [
            EligibilityStatus.ELIGIBLE, EligibilityStatus.NOT_ELIGIBLE,
        ]
        assert inputs == {"age": 30}


class TestRequestScope:

    def test_inputs_never_logged(self, engine, graph):
        with capture_logs() as logs:
            engine.evaluate(graph, _query({"age": 37, "income": 41234}))
            engine.simulate(graph, {"age": 37, "income": 41234})
        assert logs
        rendered = repr(logs)
        assert "41234" not in rendered

    def test_engine_keeps_no_request_state(self, engine, graph, settings):
        engine.evaluate(graph, _query({"age": 20, "income": 40000}))
        assert vars(engine) == {"settings": settings}

    def test_graph_unchanged(self, engine, graph):
        before = graph.to_dict()
        engine.simulate(graph, {"age": 20})
        assert graph.to_dict() == before

    def test_inputs_released_after_call(self, engine, graph):
        """Nothing the engine returns or keeps holds on to the caller's inputs."""
        inputs = _Inputs(age=20, income=40000)
        ref = weakref.ref(inputs)
        result = engine.evaluate(graph, _query(inputs))
        results = engine.simulate(graph, inputs)
        del inputs
        gc.collect()
        assert ref() is None
        assert result.is_eligible
        assert results["benefit"].is_eligible
