"""
Use Case Service
================

The entity-level API external collaborators (CLI, interactive shell,
template engine, HTTP server) call.

Every mutating operation:
1. takes the service lock (one writer per project within a process)
2. opens one repository transaction
3. performs the mutation through the repository
4. re-validates the affected invariants (reference graph, derived status,
   scenario ownership, dense step order)
5. commits, or rolls back entirely when anything raises

Errors from the allocator, validator and repositories propagate unchanged.
"""
from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator, Mapping, Sequence

from ucm.errors import InvariantViolationError, NotFoundError
from ucm.identifiers import IdentifierAllocator, category_key
from ucm.models import (
    ACTOR,
    RESERVED_USE_CASE_KEYS,
    SCENARIO,
    USE_CASE,
    ActorType,
    Condition,
    Persona,
    Priority,
    Scenario,
    ScenarioReference,
    ScenarioRelationship,
    ScenarioStep,
    ScenarioType,
    Status,
    SystemActor,
    TargetType,
    UseCase,
    UseCaseReference,
    UseCaseRelationship,
    standard_system_actors,
)
from ucm.reference_graph import (
    POSTCONDITION,
    PRECONDITION,
    SCENARIO_REFERENCE,
    Edge,
    ReferenceGraph,
    ReferenceValidator,
)
from ucm.status_aggregator import StatusSummary, aggregate

if TYPE_CHECKING:
    from ucm.config import ProjectConfig
    from ucm.repository import Repository

_logger = logging.getLogger(__name__)

# Marks an optional argument that was not passed (None is a valid value)
_UNSET: Any = object()

StepInput = Any  # str, (description, actor_id), dict or ScenarioStep
ConditionInput = Any  # str, dict or Condition


@dataclass
class ValidationReport:
    """Result of a whole-project consistency check."""

    dangling_references: list[Edge] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)
    status_drift: list[dict[str, str]] = field(default_factory=list)
    step_order_gaps: list[str] = field(default_factory=list)
    missing_actors: list[dict[str, str]] = field(default_factory=list)
    ownership_mismatches: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not (
            self.dangling_references
            or self.cycles
            or self.status_drift
            or self.step_order_gaps
            or self.missing_actors
            or self.ownership_mismatches
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "dangling_references": [e.to_dict() for e in self.dangling_references],
            "cycles": self.cycles,
            "status_drift": self.status_drift,
            "step_order_gaps": self.step_order_gaps,
            "missing_actors": self.missing_actors,
            "ownership_mismatches": self.ownership_mismatches,
        }


def _check_extra(extra: Mapping[str, Any]) -> dict[str, Any]:
    clashing = sorted(set(extra) & RESERVED_USE_CASE_KEYS)
    if clashing:
        raise InvariantViolationError(
            f"Extra field(s) {', '.join(clashing)} clash with use case fields",
            {"fields": clashing},
        )
    return copy.deepcopy(dict(extra))


def _require_text(value: str | None, name: str) -> str:
    if value is None or not str(value).strip():
        raise InvariantViolationError(f"{name} cannot be empty", {"field": name})
    return str(value).strip()


def _to_condition(value: ConditionInput) -> Condition:
    if isinstance(value, Condition):
        return Condition(value.text, value.target_id, value.relationship)
    condition = Condition.from_dict(value)
    _require_text(condition.text, "Condition text")
    return condition


def _to_step(value: StepInput) -> ScenarioStep:
    if isinstance(value, ScenarioStep):
        return ScenarioStep(value.order, value.description, value.actor_id)
    if isinstance(value, str):
        return ScenarioStep(0, _require_text(value, "Step description"))
    if isinstance(value, dict):
        return ScenarioStep(
            0,
            _require_text(value.get("description"), "Step description"),
            value.get("actor_id"),
        )
    description, actor_id = value
    return ScenarioStep(0, _require_text(description, "Step description"), actor_id)


class UseCaseService:
    """
    Domain service over a repository.

    Usage:
        service = UseCaseService(FileRepository(root))
        uc = service.create_use_case("User Login", "Security")
        sc = service.add_scenario(uc.id, "Successful login")
        service.update_scenario_status(sc.id, Status.TESTED)
    """

    def __init__(
        self,
        repository: "Repository",
        allocator: IdentifierAllocator | None = None,
    ):
        self.repository = repository
        self.allocator = allocator or IdentifierAllocator(repository)
        self.validator = ReferenceValidator(repository)
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, repository: "Repository", config: "ProjectConfig") -> "UseCaseService":
        allocator = IdentifierAllocator(
            repository,
            prefix=config.use_case_prefix,
            token_strategy=config.token_strategy,
            category_tokens=config.category_tokens,
        )
        return cls(repository, allocator)

    @property
    def backend_name(self) -> str:
        return self.repository.backend_name

    # ------------------------------------------------------------------ #
    #  Transaction boundary and shared helpers
    # ------------------------------------------------------------------ #

    @contextmanager
    def _mutation(self, operation: str) -> Iterator[None]:
        with self._lock:
            try:
                with self.repository.transaction():
                    yield
            except Exception as exc:
                _logger.debug("%s rolled back: %s", operation, exc)
                raise

    def _require(self, kind: str, entity_id: str) -> Any:
        entity = self.repository.get(kind, entity_id)
        if entity is None:
            raise NotFoundError(kind, entity_id)
        return entity

    def _require_actor(self, actor_id: str | None) -> None:
        if actor_id:
            self._require(ACTOR, actor_id)

    def _scenarios_of(self, use_case_id: str) -> list[Scenario]:
        return self.repository.list(SCENARIO, {"use_case_id": use_case_id})

    def _refresh_use_case(
        self,
        use_case_id: str,
        change: Callable[[UseCase], None] | None = None,
    ) -> UseCase:
        """Apply change (if any) and re-derive the status in a single update."""
        expected = aggregate(s.status for s in self._scenarios_of(use_case_id))
        current = self._require(USE_CASE, use_case_id)
        if change is None and current.status == expected:
            return current

        def mutate(uc: UseCase) -> None:
            if change is not None:
                change(uc)
            uc.status = expected
            uc.metadata.touch()

        updated = self.repository.update(USE_CASE, use_case_id, mutate)
        if updated.status != current.status:
            _logger.debug("%s status %s -> %s", use_case_id,
                          current.status.value, updated.status.value)
        return updated

    def _verify_use_case(self, use_case_id: str) -> None:
        """Re-check the invariants of a use case and its scenarios before commit."""
        use_case = self._require(USE_CASE, use_case_id)
        scenarios = self._scenarios_of(use_case_id)
        stored_ids = sorted(s.id for s in scenarios)
        if sorted(use_case.scenario_ids) != stored_ids or len(set(use_case.scenario_ids)) != len(use_case.scenario_ids):
            raise InvariantViolationError(
                f"Scenario list of '{use_case_id}' does not match its stored scenarios",
                {"id": use_case_id, "listed": use_case.scenario_ids, "stored": stored_ids},
            )
        expected = aggregate(s.status for s in scenarios)
        if use_case.status != expected:
            raise InvariantViolationError(
                f"Status of '{use_case_id}' is {use_case.status.value}, expected {expected.value}",
                {"id": use_case_id},
            )
        for scenario in scenarios:
            if not scenario.has_dense_steps():
                raise InvariantViolationError(
                    f"Steps of '{scenario.id}' are not numbered 1..{len(scenario.steps)}",
                    {"id": scenario.id},
                )

    def _detach_references(self, removed_ids: set[str], edges: Iterable[Edge]) -> None:
        """Remove every edge from a surviving source into removed_ids."""
        sources: dict[str, str] = {}
        for edge in edges:
            kind = SCENARIO if edge.origin == SCENARIO_REFERENCE else USE_CASE
            sources[edge.source_id] = kind

        for source_id, kind in sorted(sources.items()):
            def mutate(entity: Any) -> None:
                entity.references = [r for r in entity.references if r.target_id not in removed_ids]
                if kind == USE_CASE:
                    for condition in (*entity.preconditions, *entity.postconditions):
                        if condition.target_id in removed_ids:
                            condition.target_id = None
                            condition.relationship = None
                entity.metadata.touch()

            self.repository.update(kind, source_id, mutate)
            _logger.debug("Removed references from %s into %s", source_id, sorted(removed_ids))

    # ------------------------------------------------------------------ #
    #  Use cases
    # ------------------------------------------------------------------ #

    def create_use_case(
        self,
        title: str,
        category: str,
        description: str = "",
        priority: Priority | str = Priority.MEDIUM,
        preconditions: Sequence[ConditionInput] = (),
        postconditions: Sequence[ConditionInput] = (),
        extra: Mapping[str, Any] | None = None,
    ) -> UseCase:
        """
        Create a use case with an allocated identifier.

        extra carries methodology-specific fields (business_value, ...).

        Raises:
            CapacityExceededError, TokenCollisionError: allocation failed
            DanglingTargetError: a linked condition names a missing use case
            InvariantViolationError: an extra field clashes with a use case field
        """
        title = _require_text(title, "Title")
        category = _require_text(category, "Category")
        extra_fields = _check_extra(extra or {})
        pre = [_to_condition(c) for c in preconditions]
        post = [_to_condition(c) for c in postconditions]

        with self._mutation("create_use_case"):
            use_case_id = self.allocator.allocate(category)
            for origin, conditions in ((PRECONDITION, pre), (POSTCONDITION, post)):
                for condition in conditions:
                    if condition.target_id:
                        self.validator.validate_add(
                            use_case_id, condition.target_id, condition.relationship or origin,
                            origin=origin,
                        )
            use_case = UseCase(
                id=use_case_id,
                title=title,
                category=category,
                priority=Priority.parse(priority),
                description=description or "",
                preconditions=pre,
                postconditions=post,
                extra=extra_fields,
            )
            self.repository.create(use_case)
        _logger.info("Created use case %s: %s", use_case.id, title)
        return use_case

    def get_use_case(self, use_case_id: str) -> UseCase:
        return self._require(USE_CASE, use_case_id)

    def update_use_case(
        self,
        use_case_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        priority: Priority | str | None = None,
        category: str | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> UseCase:
        """
        Update editable fields. A category change keeps the identifier.

        extra entries are merged into the stored extra fields; an entry whose
        value is None removes that field.
        """
        if title is not None:
            title = _require_text(title, "Title")
        if category is not None:
            category = _require_text(category, "Category")
        if extra is not None:
            _check_extra(extra)

        def mutate(uc: UseCase) -> None:
            if title is not None:
                uc.title = title
            if description is not None:
                uc.description = description
            if priority is not None:
                uc.priority = Priority.parse(priority)
            if category is not None:
                uc.category = category
            if extra is not None:
                for key, value in extra.items():
                    if value is None:
                        uc.extra.pop(key, None)
                    else:
                        uc.extra[key] = copy.deepcopy(value)
            uc.metadata.touch()

        with self._mutation("update_use_case"):
            self._require(USE_CASE, use_case_id)
            updated = self.repository.update(USE_CASE, use_case_id, mutate)
        return updated

    def delete_use_case(self, use_case_id: str, cascade_references: bool = False) -> None:
        """
        Delete a use case and its scenarios.

        Raises:
            ReferencedEntityInUseError: another entity references the use case
                or one of its scenarios and cascade_references is False
        """
        with self._mutation("delete_use_case"):
            self._require(USE_CASE, use_case_id)
            owned = [s.id for s in self._scenarios_of(use_case_id)]
            if cascade_references:
                blocking = self.validator.blocking_edges(use_case_id, owned)
                self._detach_references({use_case_id, *owned}, blocking)
            else:
                self.validator.validate_delete(use_case_id, owned)
            self.repository.delete(USE_CASE, use_case_id)
        _logger.info("Deleted use case %s (%d scenario(s))", use_case_id, len(owned))

    def list_use_cases(self) -> list[UseCase]:
        return self.repository.list(USE_CASE)

    def list_by_category(self, category: str) -> list[UseCase]:
        key = category_key(category)
        return [uc for uc in self.repository.list(USE_CASE) if category_key(uc.category) == key]

    def list_by_status(self, status: Status | str) -> list[UseCase]:
        return self.repository.list(USE_CASE, {"status": Status.parse(status)})

    def list_by_priority(self, priority: Priority | str) -> list[UseCase]:
        return self.repository.list(USE_CASE, {"priority": Priority.parse(priority)})

    def search_by_title(self, query: str) -> list[UseCase]:
        needle = query.strip().lower()
        return [uc for uc in self.repository.list(USE_CASE) if needle in uc.title.lower()]

    def query_use_cases(
        self,
        *,
        category: str | None = None,
        status: Status | str | None = None,
        priority: Priority | str | None = None,
        title: str | None = None,
    ) -> list[UseCase]:
        """
        Use cases matching every given filter, ordered by id.

        Each filter goes through its dedicated query (list_by_category,
        list_by_status, list_by_priority, search_by_title) and the results
        are intersected. No filter lists everything.
        """
        selections = []
        if category is not None:
            selections.append(self.list_by_category(category))
        if status is not None:
            selections.append(self.list_by_status(status))
        if priority is not None:
            selections.append(self.list_by_priority(priority))
        if title:
            selections.append(self.search_by_title(title))
        if not selections:
            return self.list_use_cases()
        keep = set.intersection(*({uc.id for uc in selection} for selection in selections))
        return [uc for uc in selections[0] if uc.id in keep]

    def list_categories(self) -> list[str]:
        """Distinct category names, in first-seen order of use case ids."""
        seen: dict[str, str] = {}
        for uc in self.repository.list(USE_CASE):
            seen.setdefault(category_key(uc.category), uc.category)
        return list(seen.values())

    def recompute_status(self, use_case_id: str) -> UseCase:
        """Re-derive the status of a use case; a no-op when it is already current."""
        with self._mutation("recompute_status"):
            use_case = self._refresh_use_case(use_case_id)
        return use_case

    def get_status_summary(self, use_case_id: str) -> StatusSummary:
        self._require(USE_CASE, use_case_id)
        return StatusSummary.from_statuses(s.status for s in self._scenarios_of(use_case_id))

    # ------------------------------------------------------------------ #
    #  Pre/postconditions
    # ------------------------------------------------------------------ #

    def _add_condition(
        self, use_case_id: str, attr: str, origin: str,
        text: str, target_id: str | None, relationship: str | None,
    ) -> UseCase:
        condition = Condition(_require_text(text, "Condition text"), target_id, relationship)
        with self._mutation(f"add_{origin}"):
            self._require(USE_CASE, use_case_id)
            if target_id:
                self.validator.validate_add(use_case_id, target_id, relationship or origin, origin=origin)

            def mutate(uc: UseCase) -> None:
                getattr(uc, attr).append(condition)
                uc.metadata.touch()

            updated = self.repository.update(USE_CASE, use_case_id, mutate)
        return updated

    def _remove_condition(self, use_case_id: str, attr: str, origin: str, index: int) -> UseCase:
        with self._mutation(f"remove_{origin}"):
            use_case = self._require(USE_CASE, use_case_id)
            if not 1 <= index <= len(getattr(use_case, attr)):
                raise NotFoundError(origin, f"{use_case_id}#{index}")

            def mutate(uc: UseCase) -> None:
                del getattr(uc, attr)[index - 1]
                uc.metadata.touch()

            updated = self.repository.update(USE_CASE, use_case_id, mutate)
        return updated

    def add_precondition(
        self, use_case_id: str, text: str,
        target_id: str | None = None, relationship: str | None = None,
    ) -> UseCase:
        return self._add_condition(use_case_id, "preconditions", PRECONDITION,
                                   text, target_id, relationship)

    def remove_precondition(self, use_case_id: str, index: int) -> UseCase:
        """Remove the precondition at a 1-based position."""
        return self._remove_condition(use_case_id, "preconditions", PRECONDITION, index)

    def add_postcondition(
        self, use_case_id: str, text: str,
        target_id: str | None = None, relationship: str | None = None,
    ) -> UseCase:
        return self._add_condition(use_case_id, "postconditions", POSTCONDITION,
                                   text, target_id, relationship)

    def remove_postcondition(self, use_case_id: str, index: int) -> UseCase:
        """Remove the postcondition at a 1-based position."""
        return self._remove_condition(use_case_id, "postconditions", POSTCONDITION, index)

    # ------------------------------------------------------------------ #
    #  References
    # ------------------------------------------------------------------ #

    def add_reference(
        self,
        source_id: str,
        target_id: str,
        relationship: UseCaseRelationship | str,
        description: str | None = None,
    ) -> UseCase:
        """
        Add a use case -> use case reference. Adding an identical edge again
        is a no-op.

        Raises:
            NotFoundError: source missing
            SelfReferenceError, DanglingTargetError, CycleDetectedError
        """
        relationship = UseCaseRelationship(getattr(relationship, "value", relationship))
        with self._mutation("add_reference"):
            source = self._require(USE_CASE, source_id)
            if source.find_reference(target_id, relationship) is not None:
                return source
            self.validator.validate_add(source_id, target_id, relationship.value, TargetType.USE_CASE)

            def mutate(uc: UseCase) -> None:
                uc.references.append(UseCaseReference(target_id, relationship, description))
                uc.metadata.touch()

            updated = self.repository.update(USE_CASE, source_id, mutate)
        _logger.debug("Added %s reference %s -> %s", relationship.value, source_id, target_id)
        return updated

    def remove_reference(
        self,
        source_id: str,
        target_id: str,
        relationship: UseCaseRelationship | str | None = None,
    ) -> UseCase:
        """Remove matching reference(s); every kind when relationship is None."""
        if relationship is not None:
            relationship = UseCaseRelationship(getattr(relationship, "value", relationship))
        with self._mutation("remove_reference"):
            source = self._require(USE_CASE, source_id)
            if source.find_reference(target_id, relationship) is None:
                raise NotFoundError("reference", f"{source_id}->{target_id}")

            def mutate(uc: UseCase) -> None:
                uc.references = [
                    r for r in uc.references
                    if not (r.target_id == target_id
                            and (relationship is None or r.relationship == relationship))
                ]
                uc.metadata.touch()

            updated = self.repository.update(USE_CASE, source_id, mutate)
        return updated

    def add_scenario_reference(
        self,
        scenario_id: str,
        target_id: str,
        relationship: ScenarioRelationship | str,
        target_type: TargetType | str | None = None,
        description: str | None = None,
    ) -> Scenario:
        """
        Add a scenario -> scenario or scenario -> use case reference.

        When target_type is omitted it is inferred from which kind of entity
        the target id names.
        """
        relationship = ScenarioRelationship(getattr(relationship, "value", relationship))
        with self._mutation("add_scenario_reference"):
            source = self._require(SCENARIO, scenario_id)
            if target_type is None:
                is_scenario = self.repository.get(SCENARIO, target_id) is not None
                target_type = TargetType.SCENARIO if is_scenario else TargetType.USE_CASE
            target_type = TargetType(getattr(target_type, "value", target_type))
            existing = source.find_reference(target_id, relationship)
            if existing is not None and existing.target_type == target_type:
                return source
            self.validator.validate_add(
                scenario_id, target_id, relationship.value, target_type, origin=SCENARIO_REFERENCE
            )

            def mutate(sc: Scenario) -> None:
                sc.references.append(
                    ScenarioReference(target_type, target_id, relationship, description)
                )
                sc.metadata.touch()

            updated = self.repository.update(SCENARIO, scenario_id, mutate)
            self._refresh_use_case(updated.use_case_id)
        return updated

    def remove_scenario_reference(
        self,
        scenario_id: str,
        target_id: str,
        relationship: ScenarioRelationship | str | None = None,
    ) -> Scenario:
        if relationship is not None:
            relationship = ScenarioRelationship(getattr(relationship, "value", relationship))
        with self._mutation("remove_scenario_reference"):
            source = self._require(SCENARIO, scenario_id)
            if source.find_reference(target_id, relationship) is None:
                raise NotFoundError("reference", f"{scenario_id}->{target_id}")

            def mutate(sc: Scenario) -> None:
                sc.references = [
                    r for r in sc.references
                    if not (r.target_id == target_id
                            and (relationship is None or r.relationship == relationship))
                ]
                sc.metadata.touch()

            updated = self.repository.update(SCENARIO, scenario_id, mutate)
        return updated

    def _require_node(self, entity_id: str) -> None:
        if self.repository.get(USE_CASE, entity_id) is None and \
                self.repository.get(SCENARIO, entity_id) is None:
            raise NotFoundError(USE_CASE, entity_id)

    def get_references(self, entity_id: str) -> list[Edge]:
        """Outgoing edges of a use case or scenario (references and condition links)."""
        self._require_node(entity_id)
        return ReferenceGraph.from_repository(self.repository).outgoing(entity_id)

    def get_referrers(self, entity_id: str) -> list[Edge]:
        """Incoming edges of a use case or scenario."""
        self._require_node(entity_id)
        return ReferenceGraph.from_repository(self.repository).incoming(entity_id)

    # ------------------------------------------------------------------ #
    #  Scenarios
    # ------------------------------------------------------------------ #

    def add_scenario(
        self,
        use_case_id: str,
        title: str,
        scenario_type: ScenarioType | str = ScenarioType.MAIN,
        description: str = "",
        actor_id: str | None = None,
        steps: Sequence[StepInput] = (),
        status: Status | str = Status.PLANNED,
        preconditions: Sequence[str] = (),
        postconditions: Sequence[str] = (),
    ) -> Scenario:
        """
        Add a scenario to a use case and re-derive the use case status.

        Raises:
            NotFoundError: use case or a named actor missing
            CapacityExceededError: the use case has no free scenario number
        """
        title = _require_text(title, "Title")
        step_list = [_to_step(s) for s in steps]
        for index, step in enumerate(step_list, start=1):
            step.order = index

        with self._mutation("add_scenario"):
            self._require(USE_CASE, use_case_id)
            self._require_actor(actor_id)
            for step in step_list:
                self._require_actor(step.actor_id)

            scenario = Scenario(
                id=self.allocator.allocate_scenario(use_case_id),
                use_case_id=use_case_id,
                title=title,
                scenario_type=ScenarioType.parse(scenario_type),
                status=Status.parse(status),
                description=description or "",
                actor_id=actor_id,
                steps=step_list,
                preconditions=[_require_text(p, "Precondition") for p in preconditions],
                postconditions=[_require_text(p, "Postcondition") for p in postconditions],
            )
            self.repository.create(scenario)
            self._refresh_use_case(use_case_id, lambda uc: uc.scenario_ids.append(scenario.id))
            self._verify_use_case(use_case_id)
        _logger.info("Added scenario %s to %s", scenario.id, use_case_id)
        return scenario

    def get_scenario(self, scenario_id: str) -> Scenario:
        return self._require(SCENARIO, scenario_id)

    def list_scenarios(self, use_case_id: str) -> list[Scenario]:
        """Scenarios of a use case in the use case's order."""
        use_case = self._require(USE_CASE, use_case_id)
        by_id = {s.id: s for s in self._scenarios_of(use_case_id)}
        ordered = [by_id.pop(sid) for sid in use_case.scenario_ids if sid in by_id]
        return ordered + sorted(by_id.values(), key=lambda s: s.id)

    def find_scenario_by_title(self, use_case_id: str, title: str) -> Scenario | None:
        """Case-insensitive exact title match within a use case."""
        wanted = title.strip().lower()
        for scenario in self.list_scenarios(use_case_id):
            if scenario.title.strip().lower() == wanted:
                return scenario
        return None

    def _update_scenario(
        self,
        operation: str,
        scenario_id: str,
        mutate: Callable[[Scenario], None],
        check: Callable[[Scenario], None] | None = None,
    ) -> Scenario:
        """Run check against the stored scenario, then mutate it, under one lock and transaction."""
        with self._mutation(operation):
            current = self._require(SCENARIO, scenario_id)
            if check is not None:
                check(current)

            def apply(sc: Scenario) -> None:
                mutate(sc)
                sc.renumber_steps()
                sc.metadata.touch()

            updated = self.repository.update(SCENARIO, scenario_id, apply)
            self._refresh_use_case(updated.use_case_id)
            self._verify_use_case(updated.use_case_id)
        return updated

    def update_scenario(
        self,
        scenario_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        scenario_type: ScenarioType | str | None = None,
        actor_id: str | None = _UNSET,
    ) -> Scenario:
        """Update editable scenario fields; pass actor_id=None to clear the actor."""
        if title is not None:
            title = _require_text(title, "Title")

        def check(scenario: Scenario) -> None:
            if actor_id is not _UNSET:
                self._require_actor(actor_id)

        def mutate(sc: Scenario) -> None:
            if title is not None:
                sc.title = title
            if description is not None:
                sc.description = description
            if scenario_type is not None:
                sc.scenario_type = ScenarioType.parse(scenario_type)
            if actor_id is not _UNSET:
                sc.actor_id = actor_id

        return self._update_scenario("update_scenario", scenario_id, mutate, check)

    def update_scenario_status(self, scenario_id: str, status: Status | str) -> Scenario:
        """Set a scenario's status and re-derive the owning use case status."""
        new_status = Status.parse(status)

        def mutate(sc: Scenario) -> None:
            sc.status = new_status

        return self._update_scenario("update_scenario_status", scenario_id, mutate)

    def delete_scenario(self, scenario_id: str, cascade_references: bool = False) -> None:
        """
        Raises:
            ReferencedEntityInUseError: another entity references the scenario
                and cascade_references is False
        """
        with self._mutation("delete_scenario"):
            scenario = self._require(SCENARIO, scenario_id)
            if cascade_references:
                self._detach_references({scenario_id}, self.validator.blocking_edges(scenario_id))
            else:
                self.validator.validate_delete(scenario_id)
            self.repository.delete(SCENARIO, scenario_id)

            def unlink(uc: UseCase) -> None:
                uc.scenario_ids = [sid for sid in uc.scenario_ids if sid != scenario_id]

            self._refresh_use_case(scenario.use_case_id, unlink)
            self._verify_use_case(scenario.use_case_id)
        _logger.info("Deleted scenario %s", scenario_id)

    def add_step(
        self,
        scenario_id: str,
        description: str,
        actor_id: str | None = None,
        position: int | None = None,
    ) -> Scenario:
        """Insert a step at a 1-based position (append when None)."""
        description = _require_text(description, "Step description")

        def check(scenario: Scenario) -> None:
            self._require_actor(actor_id)
            if position is not None and not 1 <= position <= len(scenario.steps) + 1:
                raise InvariantViolationError(
                    f"Step position {position} is outside 1..{len(scenario.steps) + 1}",
                    {"id": scenario_id, "position": position},
                )

        def mutate(sc: Scenario) -> None:
            step = ScenarioStep(0, description, actor_id)
            if position is None:
                sc.steps.append(step)
            else:
                sc.steps.insert(position - 1, step)

        return self._update_scenario("add_step", scenario_id, mutate, check)

    def remove_step(self, scenario_id: str, order: int) -> Scenario:
        def check(scenario: Scenario) -> None:
            if not 1 <= order <= len(scenario.steps):
                raise NotFoundError("step", f"{scenario_id}#{order}")

        def mutate(sc: Scenario) -> None:
            del sc.steps[order - 1]

        return self._update_scenario("remove_step", scenario_id, mutate, check)

    def move_step(self, scenario_id: str, from_order: int, to_order: int) -> Scenario:
        def check(scenario: Scenario) -> None:
            count = len(scenario.steps)
            if not 1 <= from_order <= count:
                raise NotFoundError("step", f"{scenario_id}#{from_order}")
            if not 1 <= to_order <= count:
                raise InvariantViolationError(
                    f"Step position {to_order} is outside 1..{count}",
                    {"id": scenario_id, "position": to_order},
                )

        def mutate(sc: Scenario) -> None:
            sc.steps.insert(to_order - 1, sc.steps.pop(from_order - 1))

        return self._update_scenario("move_step", scenario_id, mutate, check)

    # ------------------------------------------------------------------ #
    #  Actors
    # ------------------------------------------------------------------ #

    @staticmethod
    def _check_actor_id(actor_id: str) -> str:
        try:
            Persona.validate_id(actor_id)
        except ValueError as exc:
            raise InvariantViolationError(str(exc), {"id": actor_id}) from None
        return actor_id

    def create_persona(
        self,
        actor_id: str,
        name: str,
        emoji: str = "",
        background: str = "",
        role: str = "",
        education: str = "",
        technical_experience: str = "",
        motivation: str = "",
    ) -> Persona:
        persona = Persona(
            id=self._check_actor_id(actor_id),
            name=_require_text(name, "Name"),
            emoji=emoji,
            background=background,
            role=role,
            education=education,
            technical_experience=technical_experience,
            motivation=motivation,
        )
        with self._mutation("create_persona"):
            self.repository.create(persona)
        _logger.info("Created persona %s", actor_id)
        return persona

    def create_system_actor(
        self,
        actor_id: str,
        name: str,
        actor_type: ActorType | str = ActorType.SYSTEM,
        emoji: str = "",
        description: str = "",
    ) -> SystemActor:
        try:
            actor = SystemActor(
                id=self._check_actor_id(actor_id),
                name=_require_text(name, "Name"),
                emoji=emoji,
                actor_type=ActorType(getattr(actor_type, "value", actor_type)),
                description=description,
            )
        except ValueError as exc:
            raise InvariantViolationError(str(exc), {"id": actor_id}) from None
        with self._mutation("create_system_actor"):
            self.repository.create(actor)
        _logger.info("Created system actor %s", actor_id)
        return actor

    def get_actor(self, actor_id: str) -> Persona | SystemActor:
        return self._require(ACTOR, actor_id)

    def list_actors(self, actor_type: ActorType | str | None = None) -> list:
        if actor_type is None:
            return self.repository.list(ACTOR)
        kind = ActorType(getattr(actor_type, "value", actor_type))
        return self.repository.list(ACTOR, {"actor_type": kind})

    def update_actor(self, actor_id: str, **fields: Any) -> Persona | SystemActor:
        """
        Update variant fields of an actor (name, emoji, role, description, ...).

        Raises:
            InvariantViolationError: unknown field, empty name or an actor type
                the variant cannot take
        """
        with self._mutation("update_actor"):
            actor = self._require(ACTOR, actor_id)
            editable = set(actor.to_dict()) - {"id", "metadata"}
            if isinstance(actor, Persona):
                editable.discard("actor_type")
            unknown = sorted(set(fields) - editable)
            if unknown:
                raise InvariantViolationError(
                    f"Cannot update field(s) {', '.join(unknown)} of actor '{actor_id}'",
                    {"id": actor_id, "fields": unknown},
                )
            if "name" in fields:
                fields["name"] = _require_text(fields["name"], "Name")
            if "actor_type" in fields:
                new_type = ActorType(getattr(fields["actor_type"], "value", fields["actor_type"]))
                if new_type is ActorType.PERSONA:
                    raise InvariantViolationError(
                        "A system actor cannot become a persona", {"id": actor_id}
                    )
                fields["actor_type"] = new_type

            def mutate(a: Any) -> None:
                for key, value in fields.items():
                    setattr(a, key, value)
                a.metadata.touch()

            updated = self.repository.update(ACTOR, actor_id, mutate)
        return updated

    def delete_actor(self, actor_id: str) -> None:
        """Delete an actor, clearing scenario and step back-references."""
        with self._mutation("delete_actor"):
            self._require(ACTOR, actor_id)
            cleared = []
            for scenario in self.repository.list(SCENARIO):
                if actor_id not in scenario.referenced_actor_ids():
                    continue

                def mutate(sc: Scenario) -> None:
                    if sc.actor_id == actor_id:
                        sc.actor_id = None
                    for step in sc.steps:
                        if step.actor_id == actor_id:
                            step.actor_id = None
                    sc.metadata.touch()

                self.repository.update(SCENARIO, scenario.id, mutate)
                cleared.append(scenario.id)
            self.repository.delete(ACTOR, actor_id)
        _logger.info("Deleted actor %s (cleared %d scenario(s))", actor_id, len(cleared))

    def find_use_cases_referencing_actor(self, actor_id: str) -> list[UseCase]:
        """Use cases with a scenario (or scenario step) naming the actor."""
        owners = sorted({
            s.use_case_id
            for s in self.repository.list(SCENARIO)
            if actor_id in s.referenced_actor_ids()
        })
        return [uc for uc in (self.repository.get(USE_CASE, i) for i in owners) if uc is not None]

    def init_standard_actors(self) -> list[SystemActor]:
        """Create the missing starter system actors; returns those created."""
        created = []
        with self._mutation("init_standard_actors"):
            for actor in standard_system_actors():
                if self.repository.get(ACTOR, actor.id) is None:
                    self.repository.create(actor)
                    created.append(actor)
        if created:
            _logger.info("Created %d standard system actor(s)", len(created))
        return created

    # ------------------------------------------------------------------ #
    #  Project-wide checks
    # ------------------------------------------------------------------ #

    def validate_project(self) -> ValidationReport:
        """Check every stored entity against the invariants; never mutates."""
        report = ValidationReport(
            dangling_references=self.validator.find_dangling(),
            cycles=self.validator.find_cycles(),
        )
        scenarios = self.repository.list(SCENARIO)
        actor_ids = {a.id for a in self.repository.list(ACTOR)}
        by_owner: dict[str, list[Scenario]] = {}
        for scenario in scenarios:
            by_owner.setdefault(scenario.use_case_id, []).append(scenario)
            if not scenario.has_dense_steps():
                report.step_order_gaps.append(scenario.id)
            for missing in sorted(scenario.referenced_actor_ids() - actor_ids):
                report.missing_actors.append({"scenario_id": scenario.id, "actor_id": missing})

        for use_case in self.repository.list(USE_CASE):
            owned = by_owner.get(use_case.id, [])
            expected = aggregate(s.status for s in owned)
            if use_case.status != expected:
                report.status_drift.append({
                    "id": use_case.id,
                    "stored": use_case.status.value,
                    "expected": expected.value,
                })
            if sorted(use_case.scenario_ids) != sorted(s.id for s in owned):
                report.ownership_mismatches.append(use_case.id)

        if not report.is_valid:
            _logger.warning("Project validation found problems: %s", report.to_dict())
        return report
