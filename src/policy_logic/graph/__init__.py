"""Policy graph construction and traversal."""

from .types import GraphEdge, GraphNode, NodeType, RelationshipType
from .policy_graph import (
    PolicyGraph,
    clause_node_id,
    condition_node_id,
    policy_node_id,
)
from .builder import PolicyGraphBuilder, entity_node_id, threshold_node_id
from .paths import (
    ConditionLiteral,
    ConditionPath,
    condition_paths,
    must_hold,
    policy_requirements,
)

__all__ = [
    "GraphEdge",
    "GraphNode",
    "NodeType",
    "RelationshipType",
    "PolicyGraph",
    "PolicyGraphBuilder",
    "clause_node_id",
    "condition_node_id",
    "policy_node_id",
    "entity_node_id",
    "threshold_node_id",
    "ConditionLiteral",
    "ConditionPath",
    "condition_paths",
    "must_hold",
    "policy_requirements",
]
