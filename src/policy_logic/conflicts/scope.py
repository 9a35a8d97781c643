"""Evaluation-scope check applied to every conflict candidate."""

from policy_logic.exceptions import ScopeViolationError
from policy_logic.graph import PolicyGraph, RelationshipType


class ScopeResolver:
    """Decides whether two policies share an evaluation context.

    Two clauses are in scope when they belong to the same policy, or to
    policies joined by a direct APPLIES_TO/REQUIRES edge (either direction)
    that apply to the same entity type.
    """

    def __init__(self, graph: PolicyGraph):
        self.graph = graph
        self._links: dict[str, dict[str, set[RelationshipType]]] = {}

    def links(self, policy_id: str) -> dict[str, set[RelationshipType]]:
        if policy_id not in self._links:
            self._links[policy_id] = self.graph.linked_policies(policy_id)
        return self._links[policy_id]

    def linked_by(self, first: str, second: str) -> set[RelationshipType]:
        return self.links(first).get(second, set())

    def check(self, first: str, second: str, check_entity: bool = True) -> None:
        """Raise ScopeViolationError unless both policies share a context."""
        if first == second:
            return
        if not self.linked_by(first, second):
            raise ScopeViolationError(
                f"Policies '{first}' and '{second}' are not linked",
                details={"policies": sorted([first, second]), "reason": "unlinked"},
            )
        if check_entity:
            first_entity = self.graph.policy_node(first).prop("entity_type")
            second_entity = self.graph.policy_node(second).prop("entity_type")
            if first_entity != second_entity:
                raise ScopeViolationError(
                    f"Policies '{first}' ({first_entity}) and '{second}' ({second_entity}) "
                    "apply to different entity types",
                    details={"policies": sorted([first, second]), "reason": "entity_type"},
                )

    def in_scope(self, first: str, second: str, check_entity: bool = True) -> bool:
        try:
            self.check(first, second, check_entity)
        except ScopeViolationError:
            return False
        return True
