"""Node and edge types of the compiled policy graph.

Nodes and edges are frozen; their property mappings are read-only views so
that a graph handed to several analysis components cannot drift.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, TypeAdapter

from policy_logic.models.rules import Operator, RuleValue

_RULE_VALUE = TypeAdapter(RuleValue)


class NodeType(str, Enum):
    """Kinds of node in a policy graph."""
    POLICY = "POLICY"
    CLAUSE = "CLAUSE"
    CONDITION = "CONDITION"
    ENTITY = "ENTITY"
    THRESHOLD = "THRESHOLD"


class RelationshipType(str, Enum):
    """Kinds of edge in a policy graph."""
    CONTAINS = "CONTAINS"
    DEPENDS_ON = "DEPENDS_ON"
    CONFLICTS_WITH = "CONFLICTS_WITH"
    MODIFIES = "MODIFIES"
    APPLIES_TO = "APPLIES_TO"
    REQUIRES = "REQUIRES"


def _freeze(properties: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(properties))


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (tuple, list)):
        return [_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass(frozen=True)
class GraphNode:
    """A node of the policy graph."""
    node_id: str
    node_type: NodeType
    properties: Mapping[str, Any] = field(default_factory=dict)
    confidence: float = 1.0

    def __post_init__(self):
        object.__setattr__(self, "properties", _freeze(self.properties))

    def __hash__(self) -> int:
        return hash(self.node_id)

    def prop(self, key: str, default: Any = None) -> Any:
        return self.properties.get(key, default)

    @property
    def operator(self) -> Operator | None:
        raw = self.properties.get("operator")
        return Operator(raw) if raw is not None else None

    @property
    def value(self):
        return self.properties.get("value")

    @property
    def variable(self) -> str | None:
        return self.properties.get("variable")

    @property
    def clause_reference(self) -> str | None:
        return self.properties.get("clause_reference")

    @property
    def rule_id(self) -> str | None:
        return self.properties.get("rule_id")

    @property
    def policy_id(self) -> str | None:
        return self.properties.get("policy_id")

    @property
    def is_condition(self) -> bool:
        return self.node_type == NodeType.CONDITION

    @property
    def is_leaf_condition(self) -> bool:
        return self.node_type == NodeType.CONDITION and not self.properties.get("compound", False)

    @property
    def is_compound(self) -> bool:
        return self.node_type == NodeType.CONDITION and bool(self.properties.get("compound", False))

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "node_type": self.node_type.value,
            "properties": {k: _jsonable(v) for k, v in self.properties.items()},
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GraphNode":
        properties = dict(data.get("properties", {}))
        if properties.get("value") is not None:
            properties["value"] = _RULE_VALUE.validate_python(properties["value"])
        if isinstance(properties.get("root_rule_ids"), list):
            properties["root_rule_ids"] = tuple(properties["root_rule_ids"])
        return cls(
            node_id=data["node_id"],
            node_type=NodeType(data["node_type"]),
            properties=properties,
            confidence=float(data.get("confidence", 1.0)),
        )


@dataclass(frozen=True)
class GraphEdge:
    """A directed, typed relationship between two nodes."""
    edge_id: str
    source_node: str
    target_node: str
    relationship: RelationshipType
    properties: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "properties", _freeze(self.properties))

    def __hash__(self) -> int:
        return hash(self.edge_id)

    @property
    def negated(self) -> bool:
        return bool(self.properties.get("negated", False))

    @property
    def position(self) -> int:
        return int(self.properties.get("position", 0))

    def to_dict(self) -> dict:
        return {
            "edge_id": self.edge_id,
            "source_node": self.source_node,
            "target_node": self.target_node,
            "relationship": self.relationship.value,
            "properties": {k: _jsonable(v) for k, v in self.properties.items()},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GraphEdge":
        return cls(
            edge_id=data["edge_id"],
            source_node=data["source_node"],
            target_node=data["target_node"],
            relationship=RelationshipType(data["relationship"]),
            properties=dict(data.get("properties", {})),
        )
