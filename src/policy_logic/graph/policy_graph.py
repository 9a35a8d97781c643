"""Immutable policy graph.

Nodes and edges are stored in dense tuples addressed by integer index;
adjacency and the two lookup tables (variable -> condition nodes,
clause id -> nodes) are index lists built once at construction. A frozen
NetworkX view is kept for graph algorithms.
"""

import json
from collections import defaultdict
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any

import networkx as nx

from policy_logic.exceptions import SchemaValidationError
from .types import GraphEdge, GraphNode, NodeType, RelationshipType

DEPENDENCY_RELATIONSHIPS = frozenset({RelationshipType.DEPENDS_ON, RelationshipType.REQUIRES})
LINK_RELATIONSHIPS = frozenset({RelationshipType.APPLIES_TO, RelationshipType.REQUIRES})


def policy_node_id(policy_id: str) -> str:
    return f"policy:{policy_id}"


def clause_node_id(clause_id: str) -> str:
    return f"clause:{clause_id}"


def condition_node_id(rule_id: str) -> str:
    return f"condition:{rule_id}"


class PolicyGraph:
    """Compiled, read-only node/edge structure shared by all analysis components."""

    def __init__(
        self,
        nodes: Iterable[GraphNode],
        edges: Iterable[GraphEdge],
        metadata: Mapping[str, Any] | None = None,
    ):
        self._nodes: tuple[GraphNode, ...] = tuple(nodes)
        self._edges: tuple[GraphEdge, ...] = tuple(edges)
        self._metadata = MappingProxyType(dict(metadata or {}))

        index: dict[str, int] = {}
        for i, node in enumerate(self._nodes):
            if node.node_id in index:
                raise SchemaValidationError(
                    f"Duplicate node id '{node.node_id}' in policy graph",
                    error_code="INVALID_GRAPH",
                    details={"node_id": node.node_id},
                )
            index[node.node_id] = i
        self._index = MappingProxyType(index)

        out_edges: list[list[int]] = [[] for _ in self._nodes]
        in_edges: list[list[int]] = [[] for _ in self._nodes]
        for j, edge in enumerate(self._edges):
            for endpoint in (edge.source_node, edge.target_node):
                if endpoint not in index:
                    raise SchemaValidationError(
                        f"Edge '{edge.edge_id}' references unknown node '{endpoint}'",
                        error_code="INVALID_GRAPH",
                        details={"edge_id": edge.edge_id, "node_id": endpoint},
                    )
            out_edges[index[edge.source_node]].append(j)
            in_edges[index[edge.target_node]].append(j)
        self._out = tuple(tuple(e) for e in out_edges)
        self._in = tuple(tuple(e) for e in in_edges)

        by_variable: dict[str, list[int]] = defaultdict(list)
        by_clause: dict[str, list[int]] = defaultdict(list)
        for i, node in enumerate(self._nodes):
            if node.is_leaf_condition:
                by_variable[node.variable].append(i)
            if node.node_type == NodeType.CLAUSE:
                by_clause[node.prop("clause_id")].append(i)
            elif node.is_condition:
                by_clause[node.clause_reference].append(i)
        self._by_variable = MappingProxyType({k: tuple(v) for k, v in by_variable.items()})
        self._by_clause = MappingProxyType({k: tuple(v) for k, v in by_clause.items()})

        self._nx = self._build_networkx()

    # =========================================================================
    # Basic access
    # =========================================================================

    @property
    def nodes(self) -> tuple[GraphNode, ...]:
        return self._nodes

    @property
    def edges(self) -> tuple[GraphEdge, ...]:
        return self._edges

    @property
    def metadata(self) -> Mapping[str, Any]:
        return self._metadata

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._index

    def node(self, node_id: str) -> GraphNode:
        return self._nodes[self._index[node_id]]

    def node_index(self, node_id: str) -> int:
        return self._index[node_id]

    def node_at(self, index: int) -> GraphNode:
        return self._nodes[index]

    def nodes_of_type(self, node_type: NodeType) -> list[GraphNode]:
        return [n for n in self._nodes if n.node_type == node_type]

    def out_edges(self, node_id: str, relationship: RelationshipType | None = None) -> list[GraphEdge]:
        edges = (self._edges[j] for j in self._out[self._index[node_id]])
        return [e for e in edges if relationship is None or e.relationship == relationship]

    def in_edges(self, node_id: str, relationship: RelationshipType | None = None) -> list[GraphEdge]:
        edges = (self._edges[j] for j in self._in[self._index[node_id]])
        return [e for e in edges if relationship is None or e.relationship == relationship]

    # =========================================================================
    # Lookup tables
    # =========================================================================

    def variables(self) -> list[str]:
        return sorted(self._by_variable)

    def conditions_for_variable(self, variable: str) -> list[GraphNode]:
        return [self._nodes[i] for i in self._by_variable.get(variable, ())]

    def clause_ids(self) -> list[str]:
        return sorted(
            n.prop("clause_id") for n in self._nodes if n.node_type == NodeType.CLAUSE
        )

    def nodes_for_clause(self, clause_id: str) -> list[GraphNode]:
        return [self._nodes[i] for i in self._by_clause.get(clause_id, ())]

    def has_clause(self, clause_id: str) -> bool:
        return self.has_node(clause_node_id(clause_id))

    # =========================================================================
    # Policy structure
    # =========================================================================

    def policies(self, include_external: bool = False) -> list[GraphNode]:
        return [
            n for n in self._nodes
            if n.node_type == NodeType.POLICY and (include_external or not n.prop("external"))
        ]

    def policy_ids(self, include_external: bool = False) -> list[str]:
        return [n.prop("policy_id") for n in self.policies(include_external)]

    def policy_node(self, policy_id: str) -> GraphNode | None:
        node_id = policy_node_id(policy_id)
        return self.node(node_id) if node_id in self._index else None

    def policy_roots(self, policy_id: str) -> list[tuple[GraphNode, GraphEdge]]:
        """Root rule nodes of a policy with their DEPENDS_ON edges, in order."""
        return self.rule_children(policy_node_id(policy_id))

    def rule_children(self, node_id: str) -> list[tuple[GraphNode, GraphEdge]]:
        """Condition children reached over DEPENDS_ON edges, ordered by position."""
        pairs = [
            (self.node(e.target_node), e)
            for e in self.out_edges(node_id, RelationshipType.DEPENDS_ON)
            if self.node(e.target_node).is_condition
        ]
        return sorted(pairs, key=lambda pair: pair[1].position)

    def required_policies(self, policy_id: str) -> list[str]:
        """Policies this policy REQUIRES, in declaration order."""
        return [
            self.node(e.target_node).prop("policy_id")
            for e in self.out_edges(policy_node_id(policy_id), RelationshipType.REQUIRES)
            if self.node(e.target_node).node_type == NodeType.POLICY
        ]

    def linked_policies(self, policy_id: str) -> dict[str, set[RelationshipType]]:
        """Policies directly linked by APPLIES_TO/REQUIRES in either direction."""
        node_id = policy_node_id(policy_id)
        links: dict[str, set[RelationshipType]] = defaultdict(set)
        if node_id not in self._index:
            return {}
        for edge in self.out_edges(node_id) + self.in_edges(node_id):
            if edge.relationship not in LINK_RELATIONSHIPS:
                continue
            other = edge.target_node if edge.source_node == node_id else edge.source_node
            other_node = self.node(other)
            if other_node.node_type == NodeType.POLICY and other != node_id:
                links[other_node.prop("policy_id")].add(edge.relationship)
        return dict(links)

    def clauses_of_policy(self, policy_id: str) -> list[str]:
        return [
            self.node(e.target_node).prop("clause_id")
            for e in self.out_edges(policy_node_id(policy_id), RelationshipType.CONTAINS)
            if self.node(e.target_node).node_type == NodeType.CLAUSE
        ]

    # =========================================================================
    # NetworkX views
    # =========================================================================

    def _build_networkx(self) -> nx.MultiDiGraph:
        graph = nx.MultiDiGraph()
        for node in self._nodes:
            graph.add_node(node.node_id, node_type=node.node_type.value)
        for edge in self._edges:
            graph.add_edge(
                edge.source_node,
                edge.target_node,
                key=edge.edge_id,
                relationship=edge.relationship.value,
                negated=edge.negated,
            )
        return nx.freeze(graph)

    def to_networkx(self) -> nx.MultiDiGraph:
        """Frozen NetworkX multigraph of the whole policy graph."""
        return self._nx

    def dependency_view(self) -> nx.MultiDiGraph:
        """Read-only view restricted to DEPENDS_ON/REQUIRES edges."""
        allowed = {r.value for r in DEPENDENCY_RELATIONSHIPS}
        graph = self._nx

        def keep(u, v, k):
            return graph.edges[u, v, k]["relationship"] in allowed

        return nx.subgraph_view(graph, filter_edge=keep)

    # =========================================================================
    # Serialization / composition
    # =========================================================================

    def to_dict(self) -> dict:
        return {
            "nodes": [n.to_dict() for n in self._nodes],
            "edges": [e.to_dict() for e in self._edges],
            "metadata": dict(self._metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PolicyGraph":
        try:
            nodes = [GraphNode.from_dict(n) for n in data.get("nodes", [])]
            edges = [GraphEdge.from_dict(e) for e in data.get("edges", [])]
        except (KeyError, ValueError, TypeError) as exc:
            raise SchemaValidationError(
                f"Malformed policy graph payload: {exc}",
                error_code="INVALID_GRAPH",
            ) from exc
        return cls(nodes, edges, data.get("metadata", {}))

    @classmethod
    def compose(cls, graphs: Iterable["PolicyGraph"]) -> "PolicyGraph":
        """Merge several graphs into a new one for cross-graph analysis.

        Nodes are unified by id (a real policy replaces an external
        placeholder); duplicate edges are dropped and edge ids renumbered.

        Raises:
            SchemaValidationError: If two graphs define the same node id with
                different content, e.g. two rule sets reusing a rule id.
        """
        graphs = list(graphs)
        if len(graphs) == 1:
            return graphs[0]

        nodes: dict[str, GraphNode] = {}
        for position, graph in enumerate(graphs):
            for node in graph.nodes:
                existing = nodes.get(node.node_id)
                if existing is None or (existing.prop("external") and not node.prop("external")):
                    nodes[node.node_id] = node
                elif node.prop("external"):
                    continue
                elif existing.to_dict() != node.to_dict():
                    raise SchemaValidationError(
                        f"Node '{node.node_id}' is defined differently by two of the "
                        "composed graphs",
                        error_code="INVALID_GRAPH",
                        details={"node_id": node.node_id, "graph_index": position},
                    )

        edges: list[GraphEdge] = []
        seen: set[tuple] = set()
        for graph in graphs:
            for edge in graph.edges:
                key = (
                    edge.source_node,
                    edge.target_node,
                    edge.relationship.value,
                    json.dumps(edge.to_dict()["properties"], sort_keys=True),
                )
                if key in seen:
                    continue
                seen.add(key)
                edges.append(GraphEdge(
                    edge_id=f"E{len(edges) + 1:05d}",
                    source_node=edge.source_node,
                    target_node=edge.target_node,
                    relationship=edge.relationship,
                    properties=edge.properties,
                ))

        metadata = {
            "composed_from": [g.metadata.get("fingerprint") for g in graphs],
            "graph_count": len(graphs),
            "node_count": len(nodes),
            "edge_count": len(edges),
        }
        return cls(nodes.values(), edges, metadata)
