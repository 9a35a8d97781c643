"""
Policy pipeline

Coordinates validation and graph compilation, then exposes the three
analysis components over the compiled graph.
"""

from collections.abc import Callable, Iterable, Mapping
from typing import Any

from policy_logic.complexity import ComplexityScorer
from policy_logic.config import Settings, get_settings
from policy_logic.conflicts import ConflictDetector
from policy_logic.graph import PolicyGraph, PolicyGraphBuilder
from policy_logic.models.complexity import ComplexityScore
from policy_logic.models.conflicts import ConflictReport, ConflictType
from policy_logic.models.reasoning import EligibilityResult
from policy_logic.models.rules import IntermediateRepresentation
from policy_logic.reasoning import ReasoningEngine
from policy_logic.validation import IRValidator


class PolicyPipeline:
    """IR -> validator -> graph builder -> {reasoning, scoring, conflicts}."""

    def __init__(
        self,
        settings: Settings | None = None,
        readability_fn: Callable[[str], float] | None = None,
    ):
        self.settings = settings or get_settings()
        self.validator = IRValidator(self.settings)
        self.builder = PolicyGraphBuilder(self.settings)
        self.engine = ReasoningEngine(self.settings)
        self.scorer = ComplexityScorer(self.settings, readability_fn=readability_fn)
        self.detector = ConflictDetector(self.settings)

    # =========================================================================
    # Compilation
    # =========================================================================

    def validate(self, payload: IntermediateRepresentation | Mapping[str, Any]) -> IntermediateRepresentation:
        return self.validator.validate(payload)

    def compile(self, payload: IntermediateRepresentation | Mapping[str, Any]) -> PolicyGraph:
        """Validate an IR and build its graph."""
        ir = self.validator.validate(payload)
        return self.builder.build(ir)

    def load_graph(self, payload: Mapping[str, Any]) -> PolicyGraph:
        """Accept either a serialized graph or an IR payload."""
        if "nodes" in payload and "edges" in payload:
            return PolicyGraph.from_dict(payload)
        return self.compile(payload)

    # =========================================================================
    # Analysis
    # =========================================================================

    def evaluate(
        self,
        graph: PolicyGraph,
        policy_id: str,
        user_inputs: Mapping[str, Any] | None = None,
    ) -> EligibilityResult:
        query = {"policy_id": policy_id, "user_inputs": dict(user_inputs or {})}
        return self.engine.evaluate(graph, query)

    def simulate(self, graph: PolicyGraph, partial_inputs: Mapping[str, Any]) -> dict[str, EligibilityResult]:
        return self.engine.simulate(graph, partial_inputs)

    def score(self, graph: PolicyGraph, policy_id: str | None = None) -> ComplexityScore:
        return self.scorer.score(graph, policy_id)

    def detect(
        self,
        graphs: PolicyGraph | Iterable[PolicyGraph],
        passes: Iterable[ConflictType] | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> ConflictReport:
        return self.detector.detect(graphs, passes=passes, should_stop=should_stop)


def get_policy_pipeline() -> PolicyPipeline:
    """Get a pipeline configured from the cached settings."""
    return PolicyPipeline()
