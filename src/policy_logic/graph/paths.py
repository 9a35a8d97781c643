"""Conjunctive path analysis over a policy's rule trees.

A condition only matters when everything conjoined with it along the way
from the policy root also holds. For each leaf condition this module yields
that context: the literals forced by AND parents, by NOT (negated edges) and
by OR under negation (De Morgan).
"""

from dataclasses import dataclass

from policy_logic.constraints import Constraint
from policy_logic.models.rules import Operator
from .policy_graph import PolicyGraph
from .types import GraphNode


@dataclass(frozen=True)
class ConditionLiteral:
    """A leaf condition together with the polarity it must take."""
    node: GraphNode
    positive: bool = True

    @property
    def constraint(self) -> Constraint:
        return Constraint.from_node(self.node, self.positive)

    @property
    def variable(self) -> str:
        return self.node.variable

    @property
    def clause_reference(self) -> str:
        return self.node.clause_reference

    @property
    def rule_id(self) -> str:
        return self.node.rule_id


@dataclass(frozen=True)
class ConditionPath:
    """A leaf literal and the literals that must hold alongside it."""
    leaf: ConditionLiteral
    context: tuple[ConditionLiteral, ...]
    trail: tuple[str, ...]

    def literals(self) -> tuple[ConditionLiteral, ...]:
        return (self.leaf,) + self.context


def _is_conjunctive(node: GraphNode, positive: bool) -> bool:
    op = node.operator
    if op == Operator.NOT:
        return True
    return (op == Operator.AND) == positive


def must_hold(graph: PolicyGraph, node: GraphNode, positive: bool = True) -> list[ConditionLiteral]:
    """Leaf literals that are necessary for ``node`` to take ``positive``."""
    if node.is_leaf_condition:
        return [ConditionLiteral(node, positive)]
    if not _is_conjunctive(node, positive):
        return []
    literals: list[ConditionLiteral] = []
    for child, edge in graph.rule_children(node.node_id):
        literals.extend(must_hold(graph, child, positive != edge.negated))
    return literals


def policy_requirements(graph: PolicyGraph, policy_id: str) -> list[ConditionLiteral]:
    """Top-level requirement set of a policy (its roots are conjoined)."""
    literals: list[ConditionLiteral] = []
    for root, _ in graph.policy_roots(policy_id):
        literals.extend(must_hold(graph, root, True))
    return literals


def condition_paths(graph: PolicyGraph, policy_id: str) -> list[ConditionPath]:
    """Every leaf of the policy with its conjunctive context."""
    paths: list[ConditionPath] = []
    branches = [(node, True) for node, _ in graph.policy_roots(policy_id)]
    _descend_conjunction(graph, branches, (), (), paths)
    return paths


def _descend_conjunction(graph, branches, context, trail, paths) -> None:
    forced = [must_hold(graph, node, positive) for node, positive in branches]
    for i, (node, positive) in enumerate(branches):
        siblings = tuple(lit for j, lits in enumerate(forced) if j != i for lit in lits)
        _descend(graph, node, positive, context + siblings, trail, paths)


def _descend(graph, node, positive, context, trail, paths) -> None:
    trail = trail + (node.node_id,)
    if node.is_leaf_condition:
        paths.append(ConditionPath(ConditionLiteral(node, positive), context, trail))
        return

    branches = [
        (child, positive != edge.negated)
        for child, edge in graph.rule_children(node.node_id)
    ]
    if _is_conjunctive(node, positive):
        _descend_conjunction(graph, branches, context, trail, paths)
    else:
        for child, child_positive in branches:
            _descend(graph, child, child_positive, context, trail, paths)
