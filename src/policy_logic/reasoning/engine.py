"""
Eligibility reasoning over a policy graph.

- Backward chaining: ``evaluate`` resolves one policy from its POLICY node
  down to the leaf conditions and back, recording a step per node.
- Forward chaining: ``simulate`` runs the same primitive for every policy
  with a shared set of partial inputs.

Evaluation is three-valued internally (true / false / unknown) so a
missing input degrades a result to CONDITIONAL instead of aborting.
User inputs live only for the duration of a call and are never logged.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import TypeAdapter, ValidationError

from policy_logic.config import Settings, get_settings
from policy_logic.constraints import Constraint, jointly_satisfiable
from policy_logic.exceptions import (
    SchemaValidationError,
    StructuralInconsistencyError,
    UnknownPolicyError,
)
from policy_logic.graph import GraphNode, PolicyGraph, condition_paths, policy_node_id
from policy_logic.models.reasoning import (
    AnalysisWarning,
    EligibilityQuery,
    EligibilityResult,
    EligibilityStatus,
    InputValue,
    ReasoningStep,
    WarningCategory,
)
from policy_logic.models.rules import Operator

logger = structlog.get_logger(__name__)

_INPUTS = TypeAdapter(dict[str, InputValue])


@dataclass(frozen=True)
class _Outcome:
    """Three-valued result of one node: ``value`` is None when unknown."""
    value: bool | None
    confidence: float
    pending: frozenset[str] = frozenset()

    def negate(self) -> "_Outcome":
        value = None if self.value is None else not self.value
        return _Outcome(value, self.confidence, self.pending)


def _conjoin(outcomes: list[_Outcome]) -> _Outcome:
    confidence = min(o.confidence for o in outcomes)
    if any(o.value is False for o in outcomes):
        return _Outcome(False, confidence)
    unknown = [o for o in outcomes if o.value is None]
    if unknown:
        return _Outcome(None, confidence, frozenset().union(*(o.pending for o in unknown)))
    return _Outcome(True, confidence)


def _disjoin(outcomes: list[_Outcome]) -> _Outcome:
    confidence = max(o.confidence for o in outcomes)
    if any(o.value is True for o in outcomes):
        return _Outcome(True, confidence)
    unknown = [o for o in outcomes if o.value is None]
    if unknown:
        return _Outcome(None, confidence, frozenset().union(*(o.pending for o in unknown)))
    return _Outcome(False, confidence)


def _first_clause(graph: PolicyGraph, policy_id: str) -> str | None:
    """Clause a policy-level step cites; None for a policy without clauses."""
    clauses = graph.clauses_of_policy(policy_id)
    return clauses[0] if clauses else None


@dataclass
class _Evaluation:
    """Per-request scratch state. Discarded when the call returns."""
    graph: PolicyGraph
    inputs: Mapping[str, Any]
    steps: list[ReasoningStep] = field(default_factory=list)
    missing: set[str] = field(default_factory=set)
    external: set[str] = field(default_factory=set)
    policy_stack: list[str] = field(default_factory=list)

    def record(self, node: GraphNode, outcome: _Outcome, explanation: str, **extra) -> None:
        self.steps.append(ReasoningStep(
            step_number=len(self.steps) + 1,
            node_id=node.node_id,
            confidence=outcome.confidence,
            result=outcome.value is True,
            explanation=explanation,
            pending_inputs=sorted(outcome.pending),
            **extra,
        ))


class ReasoningEngine:
    """Backward and forward chaining over an immutable policy graph."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    # =========================================================================
    # Public API
    # =========================================================================

    def evaluate(
        self,
        graph: PolicyGraph,
        query: EligibilityQuery | Mapping[str, Any],
    ) -> EligibilityResult:
        """Decide eligibility for one policy.

        Raises:
            UnknownPolicyError: If the policy is not in the graph.
            StructuralInconsistencyError: If the policy's rules contradict
                each other or its REQUIRES chain is circular.
        """
        if not isinstance(query, EligibilityQuery):
            try:
                query = EligibilityQuery.model_validate(query)
            except ValidationError as exc:
                raise SchemaValidationError(
                    f"Malformed eligibility query: {exc.errors()[0]['msg']}",
                    error_code="INVALID_QUERY",
                    field=".".join(str(p) for p in exc.errors()[0]["loc"]),
                ) from exc
        return self._run(graph, query.policy_id, query.user_inputs)

    def simulate(
        self,
        graph: PolicyGraph,
        partial_inputs: Mapping[str, Any],
    ) -> dict[str, EligibilityResult]:
        """Evaluate every policy of the graph against the same partial inputs."""
        inputs = self._validate_inputs(partial_inputs)
        results = {
            policy_id: self._run(graph, policy_id, inputs)
            for policy_id in graph.policy_ids()
        }
        counts: dict[str, int] = {}
        for result in results.values():
            counts[result.status.value] = counts.get(result.status.value, 0) + 1
        logger.info("simulation_completed", policies=len(results), **counts)
        return results

    def sweep(
        self,
        graph: PolicyGraph,
        inputs: Mapping[str, Any],
        variable: str,
        values: Iterable[Any],
    ) -> list[tuple[Any, dict[str, EligibilityResult]]]:
        """Re-run ``simulate`` once per candidate value of ``variable``.

        Shows which policies change status as one input varies.
        """
        base = dict(inputs)
        outcomes = []
        for value in values:
            base[variable] = value
            outcomes.append((value, self.simulate(graph, base)))
        return outcomes

    def precheck(self, graph: PolicyGraph, policy_id: str) -> None:
        """Reject a policy whose conjunctive paths contain a contradiction.

        Raises:
            StructuralInconsistencyError: Naming both clause references.
        """
        for path in condition_paths(graph, policy_id):
            leaf = path.leaf.constraint
            for other in path.context:
                if other.variable != path.leaf.variable:
                    continue
                if jointly_satisfiable(leaf, other.constraint):
                    continue
                first, second = sorted(
                    [path.leaf, other], key=lambda lit: (lit.clause_reference, lit.rule_id)
                )
                raise StructuralInconsistencyError(
                    f"Policy '{policy_id}' requires both '{first.constraint.describe()}' "
                    f"(clause {first.clause_reference}) and '{second.constraint.describe()}' "
                    f"(clause {second.clause_reference}); no value satisfies both",
                    clause_references=[first.clause_reference, second.clause_reference],
                    details={
                        "policy_id": policy_id,
                        "rule_ids": [first.rule_id, second.rule_id],
                        "variable": path.leaf.variable,
                    },
                )

    # =========================================================================
    # Evaluation
    # =========================================================================

    def _validate_inputs(self, inputs: Mapping[str, Any]) -> dict[str, Any]:
        try:
            return _INPUTS.validate_python(dict(inputs))
        except ValidationError as exc:
            raise SchemaValidationError(
                f"Malformed user inputs: {exc.errors()[0]['msg']}",
                error_code="INVALID_QUERY",
                field="user_inputs",
            ) from exc

    def _run(self, graph: PolicyGraph, policy_id: str, inputs: Mapping[str, Any]) -> EligibilityResult:
        node = graph.policy_node(policy_id)
        if node is None or node.prop("external"):
            raise UnknownPolicyError(policy_id)

        run = _Evaluation(graph=graph, inputs=inputs)
        outcome = self._evaluate_policy(run, node)
        result = self._conclude(policy_id, outcome, run)

        logger.info(
            "policy_evaluated",
            policy_id=policy_id,
            status=result.status.value,
            steps=len(result.reasoning_trace),
            confidence=result.confidence,
        )
        return result

    def _evaluate_policy(self, run: _Evaluation, node: GraphNode) -> _Outcome:
        policy_id = node.prop("policy_id")
        if policy_id in run.policy_stack:
            cycle = run.policy_stack[run.policy_stack.index(policy_id):] + [policy_id]
            clauses = sorted({
                clause
                for pid in cycle
                for clause in run.graph.clauses_of_policy(pid)
            })
            raise StructuralInconsistencyError(
                f"Circular policy requirement: {' -> '.join(cycle)}",
                clause_references=clauses,
                error_code="CIRCULAR_REQUIREMENT",
                details={"cycle": cycle},
            )

        self.precheck(run.graph, policy_id)
        run.policy_stack.append(policy_id)

        operands = [
            self._evaluate_rule(run, root)
            for root, _ in run.graph.policy_roots(policy_id)
        ]
        for required in run.graph.required_policies(policy_id):
            required_node = run.graph.node(policy_node_id(required))
            if required_node.prop("external"):
                operands.append(self._external_requirement(run, required_node, policy_id))
            else:
                operands.append(self._evaluate_policy(run, required_node))

        run.policy_stack.pop()

        if len(operands) == 1:
            return operands[0]
        if not operands:
            outcome = _Outcome(True, 1.0)
            run.record(
                node,
                outcome,
                f"Policy '{policy_id}' has no conditions",
                clause_reference=_first_clause(run.graph, policy_id),
                operator=Operator.AND.value,
            )
            return outcome

        outcome = _conjoin(operands)
        run.record(
            node,
            outcome,
            f"Policy '{policy_id}': {self._describe_combination('AND', operands, outcome)}",
            clause_reference=_first_clause(run.graph, policy_id),
            operator=Operator.AND.value,
        )
        return outcome

    def _external_requirement(self, run: _Evaluation, node: GraphNode, required_by: str) -> _Outcome:
        """Unknown outcome for a policy the graph only names; the step cites
        the requiring policy's clause since the external one has none."""
        policy_id = node.prop("policy_id")
        run.external.add(policy_id)
        outcome = _Outcome(None, 1.0, frozenset({f"policy:{policy_id}"}))
        run.record(
            node,
            outcome,
            f"Required policy '{policy_id}' is not part of this graph; "
            "its eligibility cannot be established",
            clause_reference=_first_clause(run.graph, required_by),
            operator=Operator.AND.value,
        )
        return outcome

    def _evaluate_rule(self, run: _Evaluation, node: GraphNode) -> _Outcome:
        """Post-order evaluation of a rule node; records one step."""
        if node.is_leaf_condition:
            return self._evaluate_leaf(run, node)

        outcomes = []
        for child, edge in run.graph.rule_children(node.node_id):
            child_outcome = self._evaluate_rule(run, child)
            outcomes.append(child_outcome.negate() if edge.negated else child_outcome)

        op = node.operator
        if op == Operator.AND:
            outcome = _conjoin(outcomes)
        elif op == Operator.OR:
            outcome = _disjoin(outcomes)
        else:
            # NOT: the negated edge already flipped the child
            outcome = outcomes[0]

        run.record(
            node,
            outcome,
            self._describe_combination(op.value, outcomes, outcome),
            rule_id=node.rule_id,
            clause_reference=node.clause_reference,
            operator=op.value,
        )
        return outcome

    def _evaluate_leaf(self, run: _Evaluation, node: GraphNode) -> _Outcome:
        variable = node.variable
        constraint = Constraint.from_node(node)
        text = constraint.describe()
        step = {
            "rule_id": node.rule_id,
            "clause_reference": node.clause_reference,
            "operator": node.operator.value,
        }

        if variable not in run.inputs:
            run.missing.add(variable)
            outcome = _Outcome(None, node.confidence, frozenset({variable}))
            run.record(
                node,
                outcome,
                f"Missing input '{variable}': requirement '{text}' not demonstrated",
                **step,
            )
            return outcome

        supplied = run.inputs[variable]
        consulted = {variable: list(supplied) if isinstance(supplied, list) else supplied}
        try:
            holds = constraint.satisfied_by(supplied)
        except TypeError as exc:
            outcome = _Outcome(False, node.confidence)
            run.record(
                node,
                outcome,
                f"Input '{variable}' cannot be compared with '{text}': {exc}",
                inputs_consulted=consulted,
                **step,
            )
            return outcome

        outcome = _Outcome(holds, node.confidence)
        verdict = "satisfied" if holds else "not satisfied"
        run.record(
            node,
            outcome,
            f"'{text}' {verdict} by supplied {variable}",
            inputs_consulted=consulted,
            **step,
        )
        return outcome

    @staticmethod
    def _describe_combination(op: str, outcomes: list[_Outcome], outcome: _Outcome) -> str:
        total = len(outcomes)
        if op == Operator.NOT.value:
            if outcome.value is None:
                return "NOT of an undetermined condition is undetermined"
            return f"NOT inverts the condition; result is {str(outcome.value).lower()}"
        if outcome.value is None:
            pending = ", ".join(sorted(outcome.pending))
            return f"{op} of {total} conditions is pending input(s): {pending}"
        if op == Operator.AND.value:
            if outcome.value:
                return f"All {total} conditions of AND are satisfied"
            failed = sum(1 for o in outcomes if o.value is False)
            return f"{failed} of {total} conditions of AND are not satisfied"
        if outcome.value:
            held = sum(1 for o in outcomes if o.value is True)
            return f"{held} of {total} alternatives of OR are satisfied"
        return f"None of the {total} alternatives of OR are satisfied"

    # =========================================================================
    # Status
    # =========================================================================

    def _conclude(self, policy_id: str, outcome: _Outcome, run: _Evaluation) -> EligibilityResult:
        requirements = None
        if outcome.value is None:
            status = EligibilityStatus.CONDITIONAL
            requirements = sorted(outcome.pending)
        elif outcome.value and outcome.confidence >= self.settings.eligible_confidence:
            status = EligibilityStatus.ELIGIBLE
        elif outcome.value and outcome.confidence >= self.settings.conditional_confidence:
            status = EligibilityStatus.CONDITIONAL
        else:
            status = EligibilityStatus.NOT_ELIGIBLE

        warnings = [
            AnalysisWarning(
                category=WarningCategory.MISSING_INPUT,
                message=f"Input '{variable}' was not supplied",
                details={"variable": variable},
            )
            for variable in sorted(run.missing)
        ]
        if outcome.confidence < self.settings.low_confidence_warning:
            warnings.append(AnalysisWarning(
                category=WarningCategory.LOW_CONFIDENCE,
                message=(
                    f"Result confidence {outcome.confidence:.2f} is below "
                    f"{self.settings.low_confidence_warning:.2f}"
                ),
                details={"confidence": outcome.confidence},
            ))

        return EligibilityResult(
            policy_id=policy_id,
            status=status,
            reasoning_trace=list(run.steps),
            confidence=outcome.confidence,
            conditional_requirements=requirements,
            warnings=warnings,
        )
