"""
Repository Contract
===================

The capability set every storage backend satisfies:

- create(entity) -> id
- get(kind, id) -> entity | None
- list(kind, filters) -> entities sorted by id
- update(kind, id, mutation) -> entity
- delete(kind, id)
- transaction() -> all-or-nothing unit of work

Two independent implementations exist (ucm.file_repository and
ucm.sql_repository). They share no base class; tests/test_repository_contract.py
runs one suite against both.

Helpers in this module hold the behavior both backends must agree on
(filter matching, mutation application), so they cannot drift apart.
"""
from __future__ import annotations

import copy
from enum import Enum
from typing import Any, Callable, ContextManager, Mapping, Optional, Protocol, runtime_checkable

from ucm.errors import InvariantViolationError
from ucm.models import ENTITY_KINDS, Entity

# A mutation receives a copy of the stored entity and either mutates it in
# place (returning None) or returns a replacement.
Mutation = Callable[[Any], Optional[Any]]


@runtime_checkable
class Repository(Protocol):
    """Uniform persistence contract for use cases, scenarios and actors."""

    backend_name: str

    def create(self, entity: Entity) -> str: ...

    def get(self, kind: str, entity_id: str) -> Entity | None: ...

    def list(self, kind: str, filters: Mapping[str, Any] | None = None) -> list: ...

    def update(self, kind: str, entity_id: str, mutation: Mutation) -> Entity: ...

    def delete(self, kind: str, entity_id: str) -> None: ...

    def transaction(self) -> ContextManager[None]: ...

    def health_check(self) -> None: ...

    def close(self) -> None: ...


def check_kind(kind: str) -> str:
    if kind not in ENTITY_KINDS:
        raise ValueError(f"Unknown entity kind '{kind}'. Valid kinds: {', '.join(ENTITY_KINDS)}")
    return kind


def _comparable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def matches_filters(entity: Entity, filters: Mapping[str, Any] | None) -> bool:
    """
    Attribute equality match shared by both backends.

    Enum members and their string values compare equal, so
    {"status": Status.TESTED} and {"status": "tested"} select the same rows.
    """
    if not filters:
        return True
    for key, expected in filters.items():
        if not hasattr(entity, key):
            return False
        if _comparable(getattr(entity, key)) != _comparable(expected):
            return False
    return True


def apply_mutation(entity: Entity, mutation: Mutation) -> Entity:
    """
    Run a mutation against a copy of entity and return the result.

    Raises:
        InvariantViolationError: the mutation changed the identifier or the kind
    """
    working = copy.deepcopy(entity)
    result = mutation(working)
    updated = working if result is None else result
    if updated.kind != entity.kind:
        raise InvariantViolationError(
            f"Mutation changed entity kind of '{entity.id}' from {entity.kind} to {updated.kind}"
        )
    if updated.id != entity.id:
        raise InvariantViolationError(
            f"Identifier '{entity.id}' is immutable (mutation set '{updated.id}')",
            {"id": entity.id},
        )
    owner = getattr(entity, "use_case_id", None)
    if owner is not None and updated.use_case_id != owner:
        raise InvariantViolationError(
            f"Scenario '{entity.id}' belongs to '{owner}' and cannot be moved",
            {"id": entity.id, "use_case_id": owner},
        )
    return updated
