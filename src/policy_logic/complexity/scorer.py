"""Structural and linguistic complexity scoring.

The score is a weighted linear combination of six factors, each normalized
to [0, 1]:

    condition_count        leaf conditions / condition_count_ceiling
    operator_density       AND/OR/NOT nodes per clause
    nesting_depth          deepest rule tree, capped at nesting_depth_ceiling
    cross_reference_count  policy-to-policy links per clause
    readability_score      1 - mean clause readability (1 = easiest)
    ambiguity_count        low-confidence conditions + ambiguous clauses, per clause

Ratios are capped at 1 and the weighted sum is scaled to 0-100.
"""

from collections.abc import Callable

import structlog

from policy_logic.config import Settings, get_settings
from policy_logic.exceptions import UnknownPolicyError
from policy_logic.graph import GraphNode, NodeType, PolicyGraph, RelationshipType, policy_node_id
from policy_logic.models.complexity import ComplexityFactors, ComplexityScore, categorize

logger = structlog.get_logger(__name__)

FACTOR_LABELS = {
    "condition_count": "condition count",
    "operator_density": "operator density",
    "nesting_depth": "nesting depth",
    "cross_reference_count": "cross-references",
    "readability_score": "readability",
    "ambiguity_count": "ambiguity",
}

# A factor is named in the explanation when it contributes at least this
# share of the overall score.
DOMINANT_SHARE = 0.25


def _ratio(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    return min(1.0, numerator / denominator)


class ComplexityScorer:
    """Computes a ComplexityScore from a policy graph."""

    def __init__(
        self,
        settings: Settings | None = None,
        readability_fn: Callable[[str], float] | None = None,
    ):
        self.settings = settings or get_settings()
        self.readability_fn = readability_fn

    def score(self, graph: PolicyGraph, policy_id: str | None = None) -> ComplexityScore:
        """Score the whole graph, or a single policy of it.

        Raises:
            UnknownPolicyError: If ``policy_id`` is given and not in the graph.
        """
        if policy_id is not None:
            node = graph.policy_node(policy_id)
            if node is None or node.prop("external"):
                raise UnknownPolicyError(policy_id)
            policies = [policy_id]
        else:
            policies = graph.policy_ids()

        factors = self.compute_factors(graph, policies)
        normalized = self.normalize(factors, graph, policies)
        weights = self.settings.complexity_weights.as_dict()

        contributions = {name: 100.0 * weights[name] * normalized[name] for name in weights}
        overall = round(min(100.0, max(0.0, sum(contributions.values()))), 1)
        category = categorize(overall)

        result = ComplexityScore(
            overall_score=overall,
            category=category,
            factors=factors,
            contributions={k: round(v, 2) for k, v in contributions.items()},
            explanation=self._explain(overall, category.value, factors, contributions),
        )
        logger.info(
            "complexity_scored",
            policy_id=policy_id,
            score=overall,
            category=category.value,
        )
        return result

    # =========================================================================
    # Factors
    # =========================================================================

    def compute_factors(self, graph: PolicyGraph, policies: list[str]) -> ComplexityFactors:
        """Raw factor values for the given policies."""
        conditions: list[GraphNode] = []
        clauses: list[GraphNode] = []
        depth = 0
        for policy in policies:
            for root, _ in graph.policy_roots(policy):
                depth = max(depth, self._depth(graph, root))
                conditions.extend(self._walk(graph, root))
            for clause_id in graph.clauses_of_policy(policy):
                clauses.extend(
                    n for n in graph.nodes_for_clause(clause_id) if n.node_type == NodeType.CLAUSE
                )

        return ComplexityFactors(
            condition_count=sum(1 for n in conditions if n.is_leaf_condition),
            operator_density=_ratio_raw(sum(1 for n in conditions if n.is_compound), len(clauses)),
            nesting_depth=depth,
            cross_reference_count=self._cross_references(graph, policies),
            readability_score=self._readability(clauses),
            ambiguity_count=(
                sum(1 for n in conditions if n.prop("low_confidence"))
                + sum(1 for n in clauses if n.prop("ambiguous"))
            ),
        )

    def normalize(self, factors: ComplexityFactors, graph: PolicyGraph, policies: list[str]) -> dict[str, float]:
        clause_total = sum(len(graph.clauses_of_policy(p)) for p in policies)
        ceiling = self.settings.nesting_depth_ceiling
        return {
            "condition_count": _ratio(factors.condition_count, self.settings.condition_count_ceiling),
            "operator_density": min(1.0, factors.operator_density),
            "nesting_depth": min(factors.nesting_depth, ceiling) / ceiling,
            "cross_reference_count": _ratio(factors.cross_reference_count, clause_total),
            "readability_score": 1.0 - factors.readability_score,
            "ambiguity_count": _ratio(factors.ambiguity_count, clause_total),
        }

    def _depth(self, graph: PolicyGraph, node: GraphNode) -> int:
        children = graph.rule_children(node.node_id)
        if not children:
            return 1
        return 1 + max(self._depth(graph, child) for child, _ in children)

    def _walk(self, graph: PolicyGraph, node: GraphNode) -> list[GraphNode]:
        """The rule node and every condition below it."""
        nodes = [node]
        for child, _ in graph.rule_children(node.node_id):
            nodes.extend(self._walk(graph, child))
        return nodes

    def _cross_references(self, graph: PolicyGraph, policies: list[str]) -> int:
        count = 0
        for policy in policies:
            for edge in graph.out_edges(policy_node_id(policy)):
                if edge.relationship not in (RelationshipType.APPLIES_TO, RelationshipType.REQUIRES):
                    continue
                if graph.node(edge.target_node).node_type == NodeType.POLICY:
                    count += 1
        return count

    def _readability(self, clauses: list[GraphNode]) -> float:
        """Mean readability of the clauses; 1.0 when there is nothing to read."""
        if not clauses:
            return 1.0
        values = []
        for clause in clauses:
            value = clause.prop("readability")
            if value is None and self.readability_fn is not None and clause.prop("text"):
                value = self.readability_fn(clause.prop("text"))
            if value is None:
                value = self.settings.default_readability
            values.append(min(1.0, max(0.0, float(value))))
        return sum(values) / len(values)

    # =========================================================================
    # Explanation
    # =========================================================================

    def _explain(
        self,
        overall: float,
        category: str,
        factors: ComplexityFactors,
        contributions: dict[str, float],
    ) -> str:
        if overall <= 0:
            return f"{category} complexity (0.0): no conditions, clauses or links contribute"

        ranked = sorted(contributions.items(), key=lambda kv: (-kv[1], kv[0]))
        top = ranked[0][1]
        dominant = [
            name for name, points in ranked
            if points > 0 and (points == top or points >= DOMINANT_SHARE * overall)
        ][:3]
        parts = [
            f"{FACTOR_LABELS[name]} ({_describe_raw(name, factors)}, {contributions[name]:.1f} pts)"
            for name in dominant
        ]
        return f"{category} complexity ({overall:.1f}); dominated by " + " and ".join(parts)


def _ratio_raw(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator else 0.0


def _describe_raw(name: str, factors: ComplexityFactors) -> str:
    value = getattr(factors, name)
    if name == "condition_count":
        return f"{value} conditions"
    if name == "operator_density":
        return f"{value:.2f} logical operators per clause"
    if name == "nesting_depth":
        return f"depth {value}"
    if name == "cross_reference_count":
        return f"{value} policy links"
    if name == "readability_score":
        return f"mean readability {value:.2f}"
    return f"{value} ambiguity flags"
