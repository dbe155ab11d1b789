"""
Reference Graph Validation
==========================

Cross-entity references form a directed graph:

- use case -> use case   (dependency, extension, inclusion, alternative)
- scenario -> scenario or use case   (includes, extends, depends_on, alternative_to)
- use case -> use case   through linked pre/postconditions

Validation rules:
1. The target must exist when the edge is added
2. An entity cannot reference itself
3. Cycle-sensitive kinds (see CYCLE_POLICY) must stay acyclic: adding
   source -> target is rejected when source is reachable from target
   through cycle-sensitive edges. Condition links are descriptive: they are
   never traversed and never cycle-checked, whatever relationship note
   they carry
4. Deleting an entity that is still the target of edges from outside the
   deleted set is rejected unless the caller asks for cascading removal

All traversals are iterative with visited sets so malformed stored data
(e.g. a cycle written by hand into the text store) cannot loop forever.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

from ucm.errors import (
    CycleDetectedError,
    DanglingTargetError,
    ReferencedEntityInUseError,
    SelfReferenceError,
)
from ucm.models import (
    SCENARIO,
    USE_CASE,
    ScenarioRelationship,
    TargetType,
    UseCaseRelationship,
)

if TYPE_CHECKING:
    from ucm.repository import Repository

_logger = logging.getLogger(__name__)


# =============================================================================
# Policy
# =============================================================================

# Per-kind cycle policy. Inclusion and alternative links are not transitive
# and never need a cycle check.
CYCLE_POLICY: dict[str, bool] = {
    UseCaseRelationship.DEPENDENCY.value: True,
    UseCaseRelationship.EXTENSION.value: True,
    UseCaseRelationship.INCLUSION.value: False,
    UseCaseRelationship.ALTERNATIVE.value: False,
    ScenarioRelationship.DEPENDS_ON.value: True,
    ScenarioRelationship.EXTENDS.value: True,
    ScenarioRelationship.INCLUDES.value: False,
    ScenarioRelationship.ALTERNATIVE_TO.value: False,
}

# Edge origins
USE_CASE_REFERENCE = "use_case_reference"
SCENARIO_REFERENCE = "scenario_reference"
PRECONDITION = "precondition"
POSTCONDITION = "postcondition"

REFERENCE_ORIGINS = frozenset({USE_CASE_REFERENCE, SCENARIO_REFERENCE})

# Safety limit for whole-graph cycle enumeration
MAX_TRAVERSAL_STEPS = 100_000


def is_cycle_sensitive(relationship: str) -> bool:
    """Return True if edges of this relationship kind must stay acyclic."""
    value = getattr(relationship, "value", relationship)
    return CYCLE_POLICY.get(value, False)


def edge_is_cycle_sensitive(origin: str, relationship: str) -> bool:
    """Return True if an edge of this origin and kind takes part in cycle checks."""
    return origin in REFERENCE_ORIGINS and is_cycle_sensitive(relationship)


@dataclass(frozen=True)
class Edge:
    """A directed, typed link between two entities."""

    source_id: str
    target_id: str
    relationship: str
    origin: str
    target_type: str = TargetType.USE_CASE.value
    description: str | None = None

    @property
    def cycle_sensitive(self) -> bool:
        return edge_is_cycle_sensitive(self.origin, self.relationship)

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "target_id": self.target_id,
            "relationship": self.relationship,
            "origin": self.origin,
            "target_type": self.target_type,
            "description": self.description,
        }


def collect_edges(repository: "Repository") -> list[Edge]:
    """Read every reference edge stored in a repository."""
    edges: list[Edge] = []
    for use_case in repository.list(USE_CASE):
        for ref in use_case.references:
            edges.append(Edge(
                source_id=use_case.id,
                target_id=ref.target_id,
                relationship=ref.relationship.value,
                origin=USE_CASE_REFERENCE,
                description=ref.description,
            ))
        for origin, conditions in ((PRECONDITION, use_case.preconditions),
                                   (POSTCONDITION, use_case.postconditions)):
            for condition in conditions:
                if condition.target_id:
                    edges.append(Edge(
                        source_id=use_case.id,
                        target_id=condition.target_id,
                        relationship=condition.relationship or origin,
                        origin=origin,
                        description=condition.text,
                    ))
    for scenario in repository.list(SCENARIO):
        for ref in scenario.references:
            edges.append(Edge(
                source_id=scenario.id,
                target_id=ref.target_id,
                relationship=ref.relationship.value,
                origin=SCENARIO_REFERENCE,
                target_type=ref.target_type.value,
                description=ref.description,
            ))
    return edges


# =============================================================================
# Graph
# =============================================================================

class ReferenceGraph:
    """In-memory adjacency view over a set of edges."""

    def __init__(self, edges: Iterable[Edge]):
        self.edges: list[Edge] = list(edges)
        self._outgoing: dict[str, list[Edge]] = {}
        self._incoming: dict[str, list[Edge]] = {}
        for edge in self.edges:
            self._outgoing.setdefault(edge.source_id, []).append(edge)
            self._incoming.setdefault(edge.target_id, []).append(edge)

    @classmethod
    def from_repository(cls, repository: "Repository") -> "ReferenceGraph":
        return cls(collect_edges(repository))

    def outgoing(self, source_id: str) -> list[Edge]:
        return list(self._outgoing.get(source_id, []))

    def incoming(self, target_id: str) -> list[Edge]:
        return list(self._incoming.get(target_id, []))

    def path(self, start: str, goal: str) -> list[str] | None:
        """
        Find a path start -> ... -> goal through cycle-sensitive edges.

        Returns:
            The node sequence including both ends, or None if unreachable
        """
        parents: dict[str, str | None] = {start: None}
        stack = [start]
        while stack:
            current = stack.pop()
            if current == goal:
                route = [current]
                while parents[route[-1]] is not None:
                    route.append(parents[route[-1]])
                return list(reversed(route))
            for edge in self._outgoing.get(current, []):
                if not edge.cycle_sensitive:
                    continue
                if edge.target_id not in parents:
                    parents[edge.target_id] = current
                    stack.append(edge.target_id)
        return None

    def find_cycles(self) -> list[list[str]]:
        """
        Enumerate cycles among cycle-sensitive edges.

        Uses depth-first search with visited and recursion-stack sets and an
        iteration limit. Each cycle is reported once, as the node sequence
        starting and ending with the same id.
        """
        visited: set[str] = set()
        cycles: list[list[str]] = []
        seen_cycles: set[frozenset[str]] = set()
        steps = 0

        nodes = sorted(self._outgoing)
        for root in nodes:
            if root in visited:
                continue
            path: list[str] = []
            on_path: set[str] = set()
            stack: list[tuple[str, int]] = [(root, 0)]
            while stack:
                steps += 1
                if steps > MAX_TRAVERSAL_STEPS:
                    _logger.warning(
                        "Cycle enumeration stopped after %d steps", MAX_TRAVERSAL_STEPS
                    )
                    return cycles
                node, index = stack.pop()
                if index == 0:
                    visited.add(node)
                    path.append(node)
                    on_path.add(node)
                neighbours = [
                    e.target_id for e in self._outgoing.get(node, []) if e.cycle_sensitive
                ]
                if index < len(neighbours):
                    stack.append((node, index + 1))
                    nxt = neighbours[index]
                    if nxt in on_path:
                        cycle = path[path.index(nxt):] + [nxt]
                        key = frozenset(cycle)
                        if key not in seen_cycles:
                            seen_cycles.add(key)
                            cycles.append(cycle)
                    elif nxt not in visited:
                        stack.append((nxt, 0))
                else:
                    path.pop()
                    on_path.discard(node)
        return cycles


# =============================================================================
# Validator
# =============================================================================

class ReferenceValidator:
    """
    Checks reference additions and deletions against stored entities.

    The validator reads through the repository it is given, so inside a
    repository transaction it sees the writer's staged state.
    """

    def __init__(self, repository: "Repository"):
        self.repository = repository

    def target_exists(self, target_id: str, target_type: TargetType | str = TargetType.USE_CASE) -> bool:
        kind = TargetType(getattr(target_type, "value", target_type))
        if kind is TargetType.SCENARIO:
            return self.repository.get(SCENARIO, target_id) is not None
        return self.repository.get(USE_CASE, target_id) is not None

    def validate_add(
        self,
        source_id: str,
        target_id: str,
        relationship: str,
        target_type: TargetType | str = TargetType.USE_CASE,
        origin: str = USE_CASE_REFERENCE,
    ) -> None:
        """
        Validate adding the edge source -> target of the given kind.

        Only reference edges (not condition links) are cycle-checked, the
        same edges the graph traverses.

        Raises:
            SelfReferenceError: source == target
            DanglingTargetError: target does not exist
            CycleDetectedError: the kind is cycle-sensitive and target already
                reaches source
        """
        relationship = getattr(relationship, "value", relationship)
        if source_id == target_id:
            raise SelfReferenceError(source_id, relationship)
        if not self.target_exists(target_id, target_type):
            raise DanglingTargetError(source_id, target_id, relationship)
        if edge_is_cycle_sensitive(origin, relationship):
            graph = ReferenceGraph.from_repository(self.repository)
            route = graph.path(target_id, source_id)
            if route is not None:
                cycle = [source_id] + route
                _logger.debug("Rejected %s edge %s -> %s: cycle %s",
                              relationship, source_id, target_id, cycle)
                raise CycleDetectedError(source_id, target_id, relationship, cycle)

    def blocking_edges(self, target_id: str, owned_ids: Iterable[str] = ()) -> list[Edge]:
        """
        Edges that would dangle if target (and the entities it owns) were deleted.

        Edges whose source is itself being deleted are not blocking.
        """
        removed = {target_id, *owned_ids}
        graph = ReferenceGraph.from_repository(self.repository)
        blocking = []
        for removed_id in sorted(removed):
            for edge in graph.incoming(removed_id):
                if edge.source_id not in removed:
                    blocking.append(edge)
        return blocking

    def validate_delete(self, target_id: str, owned_ids: Iterable[str] = ()) -> None:
        """
        Raises:
            ReferencedEntityInUseError: other entities still reference target
                or one of the entities it owns
        """
        blocking = self.blocking_edges(target_id, owned_ids)
        if blocking:
            referrers = sorted({e.source_id for e in blocking})
            raise ReferencedEntityInUseError(target_id, referrers)

    def find_dangling(self) -> list[Edge]:
        """Return every stored edge whose target no longer exists."""
        dangling = []
        cache: dict[tuple[str, str], bool] = {}
        for edge in collect_edges(self.repository):
            key = (edge.target_type, edge.target_id)
            if key not in cache:
                cache[key] = self.target_exists(edge.target_id, edge.target_type)
            if not cache[key]:
                dangling.append(edge)
        return dangling

    def find_cycles(self) -> list[list[str]]:
        return ReferenceGraph.from_repository(self.repository).find_cycles()


__all__ = [
    "CYCLE_POLICY",
    "Edge",
    "ReferenceGraph",
    "ReferenceValidator",
    "collect_edges",
    "edge_is_cycle_sensitive",
    "is_cycle_sensitive",
]
