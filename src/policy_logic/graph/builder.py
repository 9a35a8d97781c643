"""Compiles a validated IR into a PolicyGraph.

Compilation is deterministic: nodes are keyed by content-derived ids and
edges are numbered in build order, so identical IR always yields an
identical graph. A builder holds no state between builds.
"""

from dataclasses import dataclass, field

import structlog

from policy_logic.config import Settings, get_settings
from policy_logic.exceptions import SchemaValidationError
from policy_logic.models.rules import (
    ClauseRecord,
    IntermediateRepresentation,
    LogicalRule,
    NumericValue,
    Operator,
    PolicyDocument,
    StringSetValue,
    StringValue,
    format_number,
)
from .policy_graph import (
    PolicyGraph,
    clause_node_id,
    condition_node_id,
    policy_node_id,
)
from .types import GraphEdge, GraphNode, NodeType, RelationshipType

logger = structlog.get_logger(__name__)


def threshold_node_id(variable: str, operator: Operator, value: float) -> str:
    return f"threshold:{variable}:{operator.value}:{format_number(value)}"


def entity_node_id(name: str) -> str:
    return f"entity:{name}"


@dataclass
class _BuildState:
    """Mutable scratch space of a single build."""
    nodes: dict[str, GraphNode] = field(default_factory=dict)
    edges: list[GraphEdge] = field(default_factory=list)
    edge_keys: set[tuple] = field(default_factory=set)
    clause_owner: dict[str, str] = field(default_factory=dict)
    low_confidence: int = 0

    def add_node(self, node: GraphNode) -> None:
        self.nodes.setdefault(node.node_id, node)

    def add_edge(self, source: str, target: str, relationship: RelationshipType, **properties) -> None:
        key = (source, target, relationship, tuple(sorted(properties.items())))
        if key in self.edge_keys:
            return
        self.edge_keys.add(key)
        self.edges.append(GraphEdge(
            edge_id=f"E{len(self.edges) + 1:05d}",
            source_node=source,
            target_node=target,
            relationship=relationship,
            properties=properties,
        ))


class PolicyGraphBuilder:
    """Builds the policy graph from validated rules and their documents."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def build(self, ir: IntermediateRepresentation) -> PolicyGraph:
        """Compile an IR into an immutable graph.

        Args:
            ir: An IR that already passed ``IRValidator``.

        Returns:
            PolicyGraph with variable and clause indexes.
        """
        documents = list(ir.documents) or self._synthesize_documents(ir.rules)
        state = _BuildState()
        for doc in documents:
            for clause in doc.clauses:
                state.clause_owner.setdefault(clause.clause_id, doc.policy_id)

        roots_by_policy = self._assign_roots(ir.rules, documents, state, synthesized=not ir.documents)
        known = {doc.policy_id for doc in documents}

        for doc in documents:
            self._add_policy(state, doc, roots_by_policy[doc.policy_id])

        for doc in documents:
            for target in list(doc.requires) + list(doc.applies_to):
                if target not in known:
                    state.add_node(GraphNode(
                        node_id=policy_node_id(target),
                        node_type=NodeType.POLICY,
                        properties={
                            "policy_id": target,
                            "title": "",
                            "entity_type": None,
                            "external": True,
                            "root_rule_ids": (),
                        },
                    ))

        for doc in documents:
            for position, root in enumerate(roots_by_policy[doc.policy_id]):
                state.add_edge(
                    policy_node_id(doc.policy_id),
                    condition_node_id(root.rule_id),
                    RelationshipType.DEPENDS_ON,
                    operator=Operator.AND.value,
                    position=position,
                )
                self._add_rule(state, root, doc.policy_id)

        for doc in documents:
            source = policy_node_id(doc.policy_id)
            for target in dict.fromkeys(doc.requires):
                state.add_edge(source, policy_node_id(target), RelationshipType.REQUIRES)
            for target in dict.fromkeys(doc.applies_to):
                if target != doc.policy_id:
                    state.add_edge(source, policy_node_id(target), RelationshipType.APPLIES_TO)

        metadata = {
            "schema_version": ir.schema_version,
            "fingerprint": ir.fingerprint(),
            "policy_count": len(documents),
            "clause_count": len(state.clause_owner),
            "condition_count": sum(1 for n in state.nodes.values() if n.is_condition),
            "low_confidence_count": state.low_confidence,
            "node_count": len(state.nodes),
            "edge_count": len(state.edges),
        }
        graph = PolicyGraph(state.nodes.values(), state.edges, metadata)

        if state.low_confidence:
            logger.warning(
                "low_confidence_conditions_flagged",
                count=state.low_confidence,
                threshold=self.settings.extraction_confidence_threshold,
            )
        logger.info(
            "graph_built",
            policies=metadata["policy_count"],
            nodes=graph.node_count,
            edges=graph.edge_count,
        )
        return graph

    # =========================================================================
    # Policy and clause layout
    # =========================================================================

    def _synthesize_documents(self, rules: tuple[LogicalRule, ...]) -> list[PolicyDocument]:
        """One policy per top-level rule when no document set was supplied.

        A clause belongs to the first policy whose tree references it.
        """
        owned: set[str] = set()
        documents = []
        for root in rules:
            clauses = []
            for rule in root.walk():
                ref = rule.clause_reference
                if ref not in owned:
                    owned.add(ref)
                    clauses.append(ClauseRecord(clause_id=ref))
            documents.append(PolicyDocument(policy_id=root.rule_id, clauses=tuple(clauses)))
        return documents

    def _assign_roots(
        self,
        rules: tuple[LogicalRule, ...],
        documents: list[PolicyDocument],
        state: _BuildState,
        synthesized: bool,
    ) -> dict[str, list[LogicalRule]]:
        roots: dict[str, list[LogicalRule]] = {doc.policy_id: [] for doc in documents}
        for root in rules:
            if synthesized:
                roots[root.rule_id].append(root)
                continue
            owner = state.clause_owner.get(root.clause_reference)
            if owner is None:
                raise SchemaValidationError(
                    f"Rule '{root.rule_id}' references unknown clause '{root.clause_reference}'",
                    error_code="UNRESOLVED_CLAUSE",
                    rule_id=root.rule_id,
                    field="clause_reference",
                )
            roots[owner].append(root)
        return roots

    def _add_policy(self, state: _BuildState, doc: PolicyDocument, roots: list[LogicalRule]) -> None:
        node_id = policy_node_id(doc.policy_id)
        state.add_node(GraphNode(
            node_id=node_id,
            node_type=NodeType.POLICY,
            properties={
                "policy_id": doc.policy_id,
                "title": doc.title,
                "entity_type": doc.entity_type or self.settings.default_entity_type,
                "external": False,
                "root_rule_ids": tuple(r.rule_id for r in roots),
            },
        ))
        for clause in doc.clauses:
            state.add_node(GraphNode(
                node_id=clause_node_id(clause.clause_id),
                node_type=NodeType.CLAUSE,
                properties={
                    "clause_id": clause.clause_id,
                    "policy_id": doc.policy_id,
                    "text": clause.text,
                    "readability": clause.readability,
                    "ambiguous": clause.ambiguous,
                },
            ))
            state.add_edge(node_id, clause_node_id(clause.clause_id), RelationshipType.CONTAINS)

    # =========================================================================
    # Rule trees
    # =========================================================================

    def _add_rule(self, state: _BuildState, rule: LogicalRule, policy_id: str) -> None:
        """Add a rule node, its operand nodes and its subtree (pre-order)."""
        node_id = condition_node_id(rule.rule_id)
        low_confidence = rule.confidence < self.settings.extraction_confidence_threshold
        if low_confidence:
            state.low_confidence += 1

        state.add_node(GraphNode(
            node_id=node_id,
            node_type=NodeType.CONDITION,
            properties={
                "rule_id": rule.rule_id,
                "variable": rule.variable,
                "operator": rule.operator.value,
                "value": rule.value,
                "clause_reference": rule.clause_reference,
                "policy_id": policy_id,
                "logical_group": rule.logical_group,
                "low_confidence": low_confidence,
                "compound": rule.operator.is_logical,
            },
            confidence=rule.confidence,
        ))

        clause_owner = state.clause_owner.get(rule.clause_reference)
        if clause_owner is None:
            raise SchemaValidationError(
                f"Rule '{rule.rule_id}' references unknown clause '{rule.clause_reference}'",
                error_code="UNRESOLVED_CLAUSE",
                rule_id=rule.rule_id,
                field="clause_reference",
            )
        state.add_edge(clause_node_id(rule.clause_reference), node_id, RelationshipType.CONTAINS)
        if clause_owner != policy_id:
            state.add_edge(
                policy_node_id(policy_id),
                policy_node_id(clause_owner),
                RelationshipType.APPLIES_TO,
                via_clause=rule.clause_reference,
            )

        self._add_operands(state, rule, node_id)

        for position, child in enumerate(rule.children):
            state.add_edge(
                node_id,
                condition_node_id(child.rule_id),
                RelationshipType.DEPENDS_ON,
                operator=rule.operator.value,
                position=position,
                negated=rule.operator == Operator.NOT,
            )
            self._add_rule(state, child, policy_id)

    def _add_operands(self, state: _BuildState, rule: LogicalRule, node_id: str) -> None:
        value = rule.value
        if isinstance(value, NumericValue):
            target = threshold_node_id(rule.variable, rule.operator, value.value)
            state.add_node(GraphNode(
                node_id=target,
                node_type=NodeType.THRESHOLD,
                properties={
                    "variable": rule.variable,
                    "operator": rule.operator.value,
                    "value": value,
                },
            ))
            state.add_edge(node_id, target, RelationshipType.REQUIRES)
        elif isinstance(value, (StringValue, StringSetValue)):
            names = [value.value] if isinstance(value, StringValue) else sorted(value.value)
            for name in names:
                target = entity_node_id(name)
                state.add_node(GraphNode(
                    node_id=target,
                    node_type=NodeType.ENTITY,
                    properties={"name": name},
                ))
                state.add_edge(node_id, target, RelationshipType.APPLIES_TO)
