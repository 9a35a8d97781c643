"""Conflict detection over one or more policy graphs.

Five independent passes, each producing candidates that must pass the
scope check before they are reported:

1. DIRECT_CONTRADICTION   same-variable conditions on one conjunctive path
2. MUTUAL_EXCLUSION       requirement sets of two linked policies
3. CIRCULAR_DEPENDENCY    cycles over DEPENDS_ON/REQUIRES edges
4. INCOMPATIBLE_THRESHOLD overlapping ranges with opposite outcomes
5. LOGICAL_IMPOSSIBILITY  domain-incompatible pairs from a fixed table

Conflict ids hash the type and the involved node ids, so the report does
not depend on the order in which candidates are found.
"""

import hashlib
from collections import defaultdict
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from itertools import combinations
from typing import Any

import networkx as nx
import structlog

from policy_logic.config import Settings, get_settings
from policy_logic.constraints import Constraint, implies, jointly_satisfiable
from policy_logic.exceptions import ScopeViolationError
from policy_logic.graph import (
    ConditionLiteral,
    NodeType,
    PolicyGraph,
    RelationshipType,
    condition_paths,
    policy_requirements,
)
from policy_logic.models.conflicts import (
    Conflict,
    ConflictReport,
    ConflictSeverity,
    ConflictType,
)
from .impossibility import IMPOSSIBILITY_RULES, ImpossibilityRule
from .scope import ScopeResolver

logger = structlog.get_logger(__name__)

PASS_ORDER = [
    ConflictType.DIRECT_CONTRADICTION,
    ConflictType.MUTUAL_EXCLUSION,
    ConflictType.CIRCULAR_DEPENDENCY,
    ConflictType.INCOMPATIBLE_THRESHOLD,
    ConflictType.LOGICAL_IMPOSSIBILITY,
]


def conflict_id(conflict_type: ConflictType, node_ids: Iterable[str]) -> str:
    """Stable id from the conflict type and the involved node ids."""
    key = "|".join([conflict_type.value] + sorted(set(node_ids)))
    return "CF-" + hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


@dataclass
class _Candidate:
    """A conflict found by a pass, not yet scope-checked."""
    conflict_type: ConflictType
    severity: ConflictSeverity
    node_ids: list[str]
    policies: list[str]
    clauses: list[str]
    explanation: str
    evidence: dict[str, Any] = field(default_factory=dict)
    check_entity: bool = True


@dataclass
class _PassResult:
    conflict_type: ConflictType
    conflicts: list[Conflict] = field(default_factory=list)
    suppressed: int = 0


def _literal_evidence(literal: ConditionLiteral) -> dict[str, Any]:
    return {
        "rule_id": literal.rule_id,
        "clause_reference": literal.clause_reference,
        "policy_id": literal.node.policy_id,
        "constraint": literal.constraint.describe(),
    }


class ConflictDetector:
    """Runs the detection passes and assembles a ConflictReport."""

    def __init__(
        self,
        settings: Settings | None = None,
        max_workers: int | None = None,
        impossibility_rules: list[ImpossibilityRule] | None = None,
    ):
        self.settings = settings or get_settings()
        self.max_workers = max_workers or self.settings.conflict_max_workers
        self.impossibility_rules = (
            IMPOSSIBILITY_RULES if impossibility_rules is None else impossibility_rules
        )
        self._passes: dict[ConflictType, Callable[[PolicyGraph, ScopeResolver], list[_Candidate]]] = {
            ConflictType.DIRECT_CONTRADICTION: self._direct_contradictions,
            ConflictType.MUTUAL_EXCLUSION: self._mutual_exclusions,
            ConflictType.CIRCULAR_DEPENDENCY: self._circular_dependencies,
            ConflictType.INCOMPATIBLE_THRESHOLD: self._incompatible_thresholds,
            ConflictType.LOGICAL_IMPOSSIBILITY: self._logical_impossibilities,
        }

    def detect(
        self,
        graphs: PolicyGraph | Iterable[PolicyGraph],
        passes: Iterable[ConflictType] | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> ConflictReport:
        """Run the selected passes (all five by default).

        Args:
            graphs: A graph, or several graphs to compose before analysis.
            passes: Subset of passes to run; always executed in the fixed order.
            should_stop: Polled between passes; returning True ends detection
                early with the passes completed so far.
        """
        graph = graphs if isinstance(graphs, PolicyGraph) else PolicyGraph.compose(graphs)
        selected = set(passes) if passes is not None else set(PASS_ORDER)
        ordered = [p for p in PASS_ORDER if p in selected]
        scope = ScopeResolver(graph)

        if self.max_workers > 1 and len(ordered) > 1:
            results, terminated = self._run_parallel(graph, ordered, should_stop)
        else:
            results, terminated = self._run_sequential(graph, scope, ordered, should_stop)

        conflicts: dict[str, Conflict] = {}
        suppressed = 0
        for result in results:
            suppressed += result.suppressed
            for conflict in result.conflicts:
                conflicts.setdefault(conflict.conflict_id, conflict)

        report = ConflictReport(
            conflicts=sorted(
                conflicts.values(), key=lambda c: (-c.severity.rank, c.conflict_id)
            ),
            suppressed_count=suppressed,
            passes_run=[p for p in PASS_ORDER if p in {r.conflict_type for r in results}],
            terminated_early=terminated,
        )
        logger.info(
            "conflict_detection_completed",
            conflicts=report.conflict_count,
            suppressed=suppressed,
            passes=len(report.passes_run),
            terminated_early=terminated,
        )
        return report

    # =========================================================================
    # Pass execution
    # =========================================================================

    def _run_sequential(self, graph, scope, ordered, should_stop):
        results = []
        for conflict_type in ordered:
            if should_stop is not None and should_stop():
                return results, True
            results.append(self._run_pass(graph, scope, conflict_type))
        return results, False

    def _run_parallel(self, graph, ordered, should_stop):
        # ScopeResolver caches links, so each pass gets its own
        results = []
        terminated = False
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._run_pass, graph, ScopeResolver(graph), conflict_type): conflict_type
                for conflict_type in ordered
            }
            for future in as_completed(futures):
                results.append(future.result())
                if should_stop is not None and should_stop() and len(results) < len(ordered):
                    terminated = True
                    for pending in futures:
                        pending.cancel()
                    break
        return results, terminated

    def _run_pass(self, graph: PolicyGraph, scope: ScopeResolver, conflict_type: ConflictType) -> _PassResult:
        result = _PassResult(conflict_type)
        for candidate in self._passes[conflict_type](graph, scope):
            try:
                for first, second in combinations(sorted(set(candidate.policies)), 2):
                    scope.check(first, second, check_entity=candidate.check_entity)
            except ScopeViolationError as exc:
                result.suppressed += 1
                logger.debug(
                    "conflict_suppressed",
                    conflict_type=conflict_type.value,
                    reason=exc.details.get("reason"),
                    policies=exc.details.get("policies"),
                )
                continue
            result.conflicts.append(self._to_conflict(graph, candidate))

        logger.debug(
            "conflict_pass_completed",
            conflict_type=conflict_type.value,
            found=len(result.conflicts),
            suppressed=result.suppressed,
        )
        return result

    def _to_conflict(self, graph: PolicyGraph, candidate: _Candidate) -> Conflict:
        return Conflict(
            conflict_id=conflict_id(candidate.conflict_type, candidate.node_ids),
            conflict_type=candidate.conflict_type,
            severity=candidate.severity,
            involved_clauses=sorted({c for c in candidate.clauses if graph.has_clause(c)}),
            involved_policies=sorted(set(candidate.policies)),
            explanation=candidate.explanation,
            evidence=candidate.evidence,
        )

    # =========================================================================
    # Passes
    # =========================================================================

    def _direct_contradictions(self, graph: PolicyGraph, scope: ScopeResolver) -> list[_Candidate]:
        candidates = []
        seen: set[tuple[str, str]] = set()
        for policy_id in graph.policy_ids():
            for path in condition_paths(graph, policy_id):
                by_variable: dict[str, list[ConditionLiteral]] = defaultdict(list)
                for literal in path.context:
                    by_variable[literal.variable].append(literal)
                for other in by_variable.get(path.leaf.variable, []):
                    pair = tuple(sorted([path.leaf.node.node_id, other.node.node_id]))
                    if pair in seen or pair[0] == pair[1]:
                        continue
                    if jointly_satisfiable(path.leaf.constraint, other.constraint):
                        continue
                    seen.add(pair)
                    candidates.append(_Candidate(
                        conflict_type=ConflictType.DIRECT_CONTRADICTION,
                        severity=ConflictSeverity.CRITICAL,
                        node_ids=list(pair),
                        policies=[policy_id],
                        clauses=[path.leaf.clause_reference, other.clause_reference],
                        explanation=(
                            f"Policy '{policy_id}' requires both "
                            f"'{path.leaf.constraint.describe()}' and "
                            f"'{other.constraint.describe()}' on the same path; "
                            "no value satisfies both"
                        ),
                        evidence={
                            "variable": path.leaf.variable,
                            "conditions": [_literal_evidence(path.leaf), _literal_evidence(other)],
                        },
                    ))
        return candidates

    def _mutual_exclusions(self, graph: PolicyGraph, scope: ScopeResolver) -> list[_Candidate]:
        required: dict[str, list[tuple[str, ConditionLiteral]]] = defaultdict(list)
        for policy_id in graph.policy_ids():
            for literal in policy_requirements(graph, policy_id):
                required[literal.node.node_id].append((policy_id, literal))

        candidates = []
        for variable in graph.variables():
            entries = [
                entry
                for node in graph.conditions_for_variable(variable)
                for entry in required.get(node.node_id, ())
            ]
            for (pa, la), (pb, lb) in combinations(entries, 2):
                if pa == pb or jointly_satisfiable(la.constraint, lb.constraint):
                    continue
                requires = RelationshipType.REQUIRES in scope.linked_by(pa, pb)
                candidates.append(_Candidate(
                    conflict_type=ConflictType.MUTUAL_EXCLUSION,
                    severity=ConflictSeverity.HIGH if requires else ConflictSeverity.MEDIUM,
                    node_ids=[la.node.node_id, lb.node.node_id],
                    policies=[pa, pb],
                    clauses=[la.clause_reference, lb.clause_reference],
                    explanation=(
                        f"Policies '{pa}' and '{pb}' cannot both be satisfied: "
                        f"'{la.constraint.describe()}' excludes '{lb.constraint.describe()}'"
                    ),
                    evidence={
                        "variable": variable,
                        "conditions": [_literal_evidence(la), _literal_evidence(lb)],
                        "linked_by_requires": requires,
                    },
                ))
        return candidates

    def _circular_dependencies(self, graph: PolicyGraph, scope: ScopeResolver) -> list[_Candidate]:
        dependency = nx.DiGraph(graph.dependency_view())
        candidates = []
        for cycle in nx.simple_cycles(dependency):
            start = cycle.index(min(cycle))
            cycle = cycle[start:] + cycle[:start]
            policies = [
                graph.node(node_id).policy_id
                for node_id in cycle
                if graph.node(node_id).node_type == NodeType.POLICY
            ]
            clauses = [c for p in policies for c in graph.clauses_of_policy(p)]
            names = [graph.node(n).policy_id or graph.node(n).rule_id for n in cycle]
            candidates.append(_Candidate(
                conflict_type=ConflictType.CIRCULAR_DEPENDENCY,
                severity=ConflictSeverity.CRITICAL,
                node_ids=cycle,
                policies=policies,
                clauses=clauses,
                explanation=(
                    f"Circular dependency {' -> '.join(names + names[:1])}; "
                    "none of these policies can be evaluated"
                ),
                evidence={"cycle": cycle},
                check_entity=False,
            ))
        return candidates

    def _incompatible_thresholds(self, graph: PolicyGraph, scope: ScopeResolver) -> list[_Candidate]:
        # leaf node id -> (policy, literal with its polarity)
        leaves: dict[str, tuple[str, ConditionLiteral]] = {}
        for policy_id in graph.policy_ids():
            for path in condition_paths(graph, policy_id):
                leaves.setdefault(path.leaf.node.node_id, (policy_id, path.leaf))

        candidates = []
        for variable in graph.variables():
            ranges = []
            for node in graph.conditions_for_variable(variable):
                if node.node_id not in leaves:
                    continue
                interval = Constraint.from_node(node).interval
                if interval is not None:
                    policy_id, literal = leaves[node.node_id]
                    ranges.append((interval, policy_id, literal))

            entries = sorted(
                ranges,
                key=lambda e: (e[0].low, not e[0].low_closed, e[2].node.node_id),
            )
            active: list = []
            for entry in entries:
                interval, policy_id, literal = entry
                active = [a for a in active if a[0].reaches(interval)]
                for other_interval, other_policy, other in active:
                    if other_policy == policy_id or other.positive == literal.positive:
                        continue
                    overlap = interval.intersect(other_interval)
                    if overlap.is_empty:
                        continue
                    candidates.append(_Candidate(
                        conflict_type=ConflictType.INCOMPATIBLE_THRESHOLD,
                        severity=ConflictSeverity.LOW if overlap.is_point else ConflictSeverity.HIGH,
                        node_ids=[literal.node.node_id, other.node.node_id],
                        policies=[policy_id, other_policy],
                        clauses=[literal.clause_reference, other.clause_reference],
                        explanation=(
                            f"'{variable}' in {overlap.describe()} qualifies under one of "
                            f"'{other_policy}' / '{policy_id}' and disqualifies under the other"
                        ),
                        evidence={
                            "variable": variable,
                            "overlap": overlap.describe(),
                            "conditions": [_literal_evidence(other), _literal_evidence(literal)],
                        },
                    ))
                active.append(entry)
        return candidates

    def _logical_impossibilities(self, graph: PolicyGraph, scope: ScopeResolver) -> list[_Candidate]:
        candidates = []
        seen: set[tuple] = set()
        for policy_id in graph.policy_ids():
            for path in condition_paths(graph, policy_id):
                literals = path.literals()
                variables = {lit.variable for lit in literals}
                for index, rule in enumerate(self.impossibility_rules):
                    if rule.first.variable not in variables or rule.second.variable not in variables:
                        continue
                    firsts = [lit for lit in literals if implies(lit.constraint, rule.first)]
                    if not firsts:
                        continue
                    seconds = [lit for lit in literals if implies(lit.constraint, rule.second)]
                    for a in firsts:
                        for b in seconds:
                            if a.node.node_id == b.node.node_id:
                                continue
                            key = (index, a.node.node_id, b.node.node_id)
                            if key in seen:
                                continue
                            seen.add(key)
                            candidates.append(_Candidate(
                                conflict_type=ConflictType.LOGICAL_IMPOSSIBILITY,
                                severity=rule.severity,
                                node_ids=[a.node.node_id, b.node.node_id],
                                policies=[policy_id],
                                clauses=[a.clause_reference, b.clause_reference],
                                explanation=(
                                    f"Policy '{policy_id}' combines "
                                    f"'{a.constraint.describe()}' with "
                                    f"'{b.constraint.describe()}': {rule.reason}"
                                ),
                                evidence={
                                    "rule": [rule.first.describe(), rule.second.describe()],
                                    "conditions": [_literal_evidence(a), _literal_evidence(b)],
                                },
                            ))
        return candidates
