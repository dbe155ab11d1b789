"""
Domain Models
=============

Entities of a use case documentation project:

- UseCase: top-level documented behavior, owns scenarios
- Scenario: one concrete path through a use case (main/alternative/exception)
- Persona / SystemActor: participants referenced by scenarios and steps
- UseCaseReference / ScenarioReference / Condition: typed links between entities

All entities are plain dataclasses. Storage backends never construct them
from user input directly; the domain service does, and backends persist the
dict shape produced by to_dict() (the exact shape of the text-store files).
"""
from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union


def _utc_now() -> datetime:
    """Return current UTC time."""
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    """Parse a stored timestamp (ISO string or datetime) into an aware datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _normalize_token(value: str) -> str:
    return re.sub(r"[\s\-]+", "_", value.strip().lower())


# =============================================================================
# Enumerations
# =============================================================================

class Status(str, Enum):
    """Lifecycle status of a scenario, and the derived status of a use case."""

    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    IMPLEMENTED = "implemented"
    TESTED = "tested"
    DEPLOYED = "deployed"
    DEPRECATED = "deprecated"

    @property
    def rank(self) -> int | None:
        """Position in the total order, None for the terminal deprecated value."""
        return _STATUS_RANK.get(self)

    @property
    def is_terminal(self) -> bool:
        return self is Status.DEPRECATED

    @property
    def display_name(self) -> str:
        return self.value.upper()

    @property
    def emoji(self) -> str:
        return _STATUS_EMOJI[self]

    @classmethod
    def parse(cls, value: Union[str, "Status"]) -> "Status":
        """Parse user or file input such as 'In Progress', 'in-progress' or 'IN_PROGRESS'."""
        if isinstance(value, Status):
            return value
        token = _normalize_token(value)
        if token == "inprogress":
            token = "in_progress"
        try:
            return cls(token)
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValueError(f"Invalid status: {value}. Valid options: {valid}") from None


_STATUS_RANK: dict[Status, int] = {
    Status.PLANNED: 0,
    Status.IN_PROGRESS: 1,
    Status.IMPLEMENTED: 2,
    Status.TESTED: 3,
    Status.DEPLOYED: 4,
}

_STATUS_EMOJI: dict[Status, str] = {
    Status.PLANNED: "📋",
    Status.IN_PROGRESS: "🔄",
    Status.IMPLEMENTED: "⚡",
    Status.TESTED: "✅",
    Status.DEPLOYED: "🚀",
    Status.DEPRECATED: "⚠️",
}


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def parse(cls, value: Union[str, "Priority"]) -> "Priority":
        if isinstance(value, Priority):
            return value
        try:
            return cls(_normalize_token(value))
        except ValueError:
            raise ValueError(f"Invalid priority: {value}") from None


class ScenarioType(str, Enum):
    MAIN = "main"
    ALTERNATIVE = "alternative"
    EXCEPTION = "exception"

    @classmethod
    def parse(cls, value: Union[str, "ScenarioType"]) -> "ScenarioType":
        """Parse a scenario type, accepting the long-form aliases used in older files."""
        if isinstance(value, ScenarioType):
            return value
        token = _normalize_token(value)
        aliases = {
            "happy_path": "main",
            "happy": "main",
            "alternative_flow": "alternative",
            "alt": "alternative",
            "exception_flow": "exception",
            "error": "exception",
        }
        try:
            return cls(aliases.get(token, token))
        except ValueError:
            raise ValueError(f"Invalid scenario type: {value}") from None


class UseCaseRelationship(str, Enum):
    """Relationship kinds between use cases."""

    DEPENDENCY = "dependency"
    EXTENSION = "extension"
    INCLUSION = "inclusion"
    ALTERNATIVE = "alternative"


class ScenarioRelationship(str, Enum):
    """Relationship kinds from a scenario to another scenario or use case."""

    INCLUDES = "includes"
    EXTENDS = "extends"
    DEPENDS_ON = "depends_on"
    ALTERNATIVE_TO = "alternative_to"


class TargetType(str, Enum):
    USE_CASE = "use_case"
    SCENARIO = "scenario"


class ActorType(str, Enum):
    PERSONA = "persona"
    SYSTEM = "system"
    DATABASE = "database"
    EXTERNAL_SERVICE = "external_service"


# Entity kinds understood by the repositories
USE_CASE = "use_case"
SCENARIO = "scenario"
ACTOR = "actor"
ENTITY_KINDS = (USE_CASE, SCENARIO, ACTOR)

DEFAULT_EMOJI: dict[ActorType, str] = {
    ActorType.PERSONA: "🙂",
    ActorType.SYSTEM: "🖥️",
    ActorType.DATABASE: "💾",
    ActorType.EXTERNAL_SERVICE: "🌐",
}

ACTOR_ID_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9_\-]*[a-z0-9])?$")


# =============================================================================
# Value objects
# =============================================================================

@dataclass
class Metadata:
    """Creation/update timestamps and a version counter bumped on every update."""

    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)
    version: int = 1

    @classmethod
    def new(cls) -> "Metadata":
        now = _utc_now()
        return cls(created_at=now, updated_at=now, version=1)

    def touch(self) -> None:
        self.updated_at = _utc_now()
        self.version += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Metadata":
        if not data:
            return cls.new()
        return cls(
            created_at=_parse_timestamp(data["created_at"]),
            updated_at=_parse_timestamp(data["updated_at"]),
            version=int(data.get("version", 1)),
        )


@dataclass
class Condition:
    """
    A precondition or postcondition.

    When target_id is set the condition mentions another use case and is
    validated (and protected on delete) like any other reference edge.
    """

    text: str
    target_id: str | None = None
    relationship: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "target_id": self.target_id,
            "relationship": self.relationship,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | str) -> "Condition":
        if isinstance(data, str):
            return cls(text=data)
        return cls(
            text=data["text"],
            target_id=data.get("target_id"),
            relationship=data.get("relationship"),
        )


@dataclass
class UseCaseReference:
    target_id: str
    relationship: UseCaseRelationship
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "relationship": self.relationship.value,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UseCaseReference":
        return cls(
            target_id=data["target_id"],
            relationship=UseCaseRelationship(data["relationship"]),
            description=data.get("description"),
        )


@dataclass
class ScenarioReference:
    target_type: TargetType
    target_id: str
    relationship: ScenarioRelationship
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_type": self.target_type.value,
            "target_id": self.target_id,
            "relationship": self.relationship.value,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScenarioReference":
        return cls(
            target_type=TargetType(data["target_type"]),
            target_id=data["target_id"],
            relationship=ScenarioRelationship(data["relationship"]),
            description=data.get("description"),
        )


@dataclass
class ScenarioStep:
    order: int
    description: str
    actor_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": self.order,
            "description": self.description,
            "actor_id": self.actor_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScenarioStep":
        return cls(
            order=int(data["order"]),
            description=data["description"],
            actor_id=data.get("actor_id"),
        )


# =============================================================================
# Entities
# =============================================================================

# Keys a use case dict uses for its own fields; "kind" is the file marker
RESERVED_USE_CASE_KEYS = frozenset({
    "id", "title", "category", "priority", "status", "description",
    "preconditions", "postconditions", "references", "scenario_ids",
    "metadata", "extra", "kind",
})


@dataclass
class UseCase:
    """
    Top-level documented unit of system behavior.

    The status field is derived from the owned scenarios by the domain
    service; callers never set it directly.

    extra holds methodology-specific fields (business_value,
    acceptance_criteria, ...). They are stored flattened next to the
    regular fields and any key the model does not know lands there on load.
    """

    id: str
    title: str
    category: str
    priority: Priority = Priority.MEDIUM
    status: Status = Status.PLANNED
    description: str = ""
    preconditions: list[Condition] = field(default_factory=list)
    postconditions: list[Condition] = field(default_factory=list)
    references: list[UseCaseReference] = field(default_factory=list)
    scenario_ids: list[str] = field(default_factory=list)
    metadata: Metadata = field(default_factory=Metadata.new)
    extra: dict[str, Any] = field(default_factory=dict)

    kind = USE_CASE

    def __post_init__(self) -> None:
        clashing = sorted(set(self.extra) & RESERVED_USE_CASE_KEYS)
        if clashing:
            raise ValueError(f"Extra field(s) {', '.join(clashing)} clash with use case fields")

    def find_reference(
        self, target_id: str, relationship: UseCaseRelationship | None = None
    ) -> UseCaseReference | None:
        for ref in self.references:
            if ref.target_id == target_id and (relationship is None or ref.relationship == relationship):
                return ref
        return None

    def linked_condition_targets(self) -> list[str]:
        """Use case ids mentioned by linked pre/postconditions."""
        return [
            c.target_id
            for c in (*self.preconditions, *self.postconditions)
            if c.target_id
        ]

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "priority": self.priority.value,
            "status": self.status.value,
            "description": self.description,
            "preconditions": [c.to_dict() for c in self.preconditions],
            "postconditions": [c.to_dict() for c in self.postconditions],
            "references": [r.to_dict() for r in self.references],
            "scenario_ids": list(self.scenario_ids),
            "metadata": self.metadata.to_dict(),
        }
        data.update(copy.deepcopy(self.extra))
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UseCase":
        return cls(
            id=data["id"],
            title=data["title"],
            category=data["category"],
            priority=Priority.parse(data.get("priority", Priority.MEDIUM.value)),
            status=Status.parse(data.get("status", Status.PLANNED.value)),
            description=data.get("description") or "",
            preconditions=[Condition.from_dict(c) for c in data.get("preconditions") or []],
            postconditions=[Condition.from_dict(c) for c in data.get("postconditions") or []],
            references=[UseCaseReference.from_dict(r) for r in data.get("references") or []],
            scenario_ids=list(data.get("scenario_ids") or []),
            metadata=Metadata.from_dict(data.get("metadata")),
            extra={k: v for k, v in data.items() if k not in RESERVED_USE_CASE_KEYS},
        )


@dataclass
class Scenario:
    """One concrete path through a use case, exclusively owned by it."""

    id: str
    use_case_id: str
    title: str
    scenario_type: ScenarioType = ScenarioType.MAIN
    status: Status = Status.PLANNED
    description: str = ""
    actor_id: str | None = None
    steps: list[ScenarioStep] = field(default_factory=list)
    preconditions: list[str] = field(default_factory=list)
    postconditions: list[str] = field(default_factory=list)
    references: list[ScenarioReference] = field(default_factory=list)
    metadata: Metadata = field(default_factory=Metadata.new)

    kind = SCENARIO

    def renumber_steps(self) -> None:
        """Restore the dense 1-based step order after a mutation."""
        for index, step in enumerate(self.steps, start=1):
            step.order = index

    def has_dense_steps(self) -> bool:
        return [s.order for s in self.steps] == list(range(1, len(self.steps) + 1))

    def referenced_actor_ids(self) -> set[str]:
        ids = {s.actor_id for s in self.steps if s.actor_id}
        if self.actor_id:
            ids.add(self.actor_id)
        return ids

    def find_reference(
        self, target_id: str, relationship: ScenarioRelationship | None = None
    ) -> ScenarioReference | None:
        for ref in self.references:
            if ref.target_id == target_id and (relationship is None or ref.relationship == relationship):
                return ref
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "use_case_id": self.use_case_id,
            "title": self.title,
            "scenario_type": self.scenario_type.value,
            "status": self.status.value,
            "description": self.description,
            "actor_id": self.actor_id,
            "steps": [s.to_dict() for s in self.steps],
            "preconditions": list(self.preconditions),
            "postconditions": list(self.postconditions),
            "references": [r.to_dict() for r in self.references],
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Scenario":
        return cls(
            id=data["id"],
            use_case_id=data["use_case_id"],
            title=data["title"],
            scenario_type=ScenarioType.parse(data.get("scenario_type", ScenarioType.MAIN.value)),
            status=Status.parse(data.get("status", Status.PLANNED.value)),
            description=data.get("description") or "",
            actor_id=data.get("actor_id"),
            steps=[ScenarioStep.from_dict(s) for s in data.get("steps") or []],
            preconditions=list(data.get("preconditions") or []),
            postconditions=list(data.get("postconditions") or []),
            references=[ScenarioReference.from_dict(r) for r in data.get("references") or []],
            metadata=Metadata.from_dict(data.get("metadata")),
        )


@dataclass
class Actor:
    """Participant in scenarios. Independently owned, weakly referenced by id."""

    id: str
    name: str
    emoji: str = ""
    metadata: Metadata = field(default_factory=Metadata.new)

    kind = ACTOR

    @staticmethod
    def validate_id(actor_id: str) -> None:
        """
        Check that an actor id is usable as a file name and stable reference.

        Raises:
            ValueError: with a message explaining the rule that failed
        """
        if not actor_id:
            raise ValueError("Actor ID cannot be empty")
        if any(c.isupper() for c in actor_id):
            raise ValueError(
                f"Actor ID '{actor_id}' should use lowercase letters "
                "(e.g. 'primary-teacher', 'payment-gateway')"
            )
        if not ACTOR_ID_PATTERN.match(actor_id):
            raise ValueError(
                f"Actor ID '{actor_id}' may only contain lowercase letters, numbers, "
                "hyphens and underscores, and cannot start or end with '-' or '_'"
            )

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Actor":
        actor_type = ActorType(data.get("actor_type", ActorType.PERSONA.value))
        if actor_type is ActorType.PERSONA:
            return Persona.from_dict(data)
        return SystemActor.from_dict(data)


@dataclass
class Persona(Actor):
    """Human user archetype."""

    background: str = ""
    role: str = ""
    education: str = ""
    technical_experience: str = ""
    motivation: str = ""

    def __post_init__(self) -> None:
        if not self.emoji:
            self.emoji = DEFAULT_EMOJI[ActorType.PERSONA]

    @property
    def actor_type(self) -> ActorType:
        return ActorType.PERSONA

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "actor_type": ActorType.PERSONA.value,
            "name": self.name,
            "emoji": self.emoji,
            "background": self.background,
            "role": self.role,
            "education": self.education,
            "technical_experience": self.technical_experience,
            "motivation": self.motivation,
            "metadata": self.metadata.to_dict(),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Persona":
        return Persona(
            id=data["id"],
            name=data["name"],
            emoji=data.get("emoji") or "",
            metadata=Metadata.from_dict(data.get("metadata")),
            background=data.get("background") or "",
            role=data.get("role") or "",
            education=data.get("education") or "",
            technical_experience=data.get("technical_experience") or "",
            motivation=data.get("motivation") or "",
        )


@dataclass
class SystemActor(Actor):
    """Technical participant: a system, a database or an external service."""

    actor_type: ActorType = ActorType.SYSTEM
    description: str = ""

    def __post_init__(self) -> None:
        if self.actor_type is ActorType.PERSONA:
            raise ValueError("SystemActor cannot have actor_type 'persona'")
        if not self.emoji:
            self.emoji = DEFAULT_EMOJI[self.actor_type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "actor_type": self.actor_type.value,
            "name": self.name,
            "emoji": self.emoji,
            "description": self.description,
            "metadata": self.metadata.to_dict(),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "SystemActor":
        return SystemActor(
            id=data["id"],
            name=data["name"],
            emoji=data.get("emoji") or "",
            metadata=Metadata.from_dict(data.get("metadata")),
            actor_type=ActorType(data.get("actor_type", ActorType.SYSTEM.value)),
            description=data.get("description") or "",
        )


Entity = Union[UseCase, Scenario, Persona, SystemActor]


def entity_kind(entity: Entity) -> str:
    """Return the repository kind ('use_case', 'scenario' or 'actor') of an entity."""
    return entity.kind


def entity_from_dict(kind: str, data: dict[str, Any]) -> Entity:
    """Rebuild an entity of the given kind from its dict shape."""
    if kind == USE_CASE:
        return UseCase.from_dict(data)
    if kind == SCENARIO:
        return Scenario.from_dict(data)
    if kind == ACTOR:
        return Actor.from_dict(data)
    raise ValueError(f"Unknown entity kind: {kind}")


def standard_system_actors() -> list[SystemActor]:
    """Commonly used system actors a project can start with."""
    return [
        SystemActor(id="database", name="Database", emoji="💾", actor_type=ActorType.DATABASE),
        SystemActor(id="webserver", name="Web Server", emoji="🖥️"),
        SystemActor(id="api", name="API", emoji="🌐"),
        SystemActor(
            id="payment-gateway", name="Payment Gateway", emoji="💳",
            actor_type=ActorType.EXTERNAL_SERVICE,
        ),
        SystemActor(
            id="email-service", name="Email Service", emoji="📧",
            actor_type=ActorType.EXTERNAL_SERVICE,
        ),
        SystemActor(id="cache", name="Cache", emoji="⚡"),
        SystemActor(id="message-queue", name="Message Queue", emoji="📬"),
        SystemActor(
            id="auth-service", name="Auth Service", emoji="🔐",
            actor_type=ActorType.EXTERNAL_SERVICE,
        ),
        SystemActor(id="storage", name="Storage", emoji="🗄️"),
    ]
