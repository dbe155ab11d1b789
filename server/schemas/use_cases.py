"""
Use Case Pydantic Schemas
=========================

Request/Response schemas for the use case, scenario and actor endpoints.

Mirrors the dataclasses in ucm/models.py; responses are built from the
entities' dict shape.
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

# =============================================================================
# Constants (must match ucm/models.py)
# =============================================================================

STATUSES = Literal["planned", "in_progress", "implemented", "tested", "deployed", "deprecated"]
PRIORITIES = Literal["low", "medium", "high", "critical"]
SCENARIO_TYPES = Literal["main", "alternative", "exception"]
USE_CASE_RELATIONSHIPS = Literal["dependency", "extension", "inclusion", "alternative"]
SCENARIO_RELATIONSHIPS = Literal["includes", "extends", "depends_on", "alternative_to"]
TARGET_TYPES = Literal["use_case", "scenario"]
SYSTEM_ACTOR_TYPES = Literal["system", "database", "external_service"]


def _strip_required(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("must not be blank")
    return v


# =============================================================================
# Nested Schemas
# =============================================================================

class ConditionIn(BaseModel):
    """Pre/postcondition, optionally linked to another use case."""

    text: str = Field(..., min_length=1, max_length=1000)
    target_id: str | None = Field(default=None, description="Use case the condition mentions")
    relationship: str | None = Field(default=None, max_length=50)


class StepIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=2000)
    actor_id: str | None = None


class MetadataOut(BaseModel):
    created_at: str
    updated_at: str
    version: int


# =============================================================================
# Use Cases
# =============================================================================

class UseCaseCreate(BaseModel):
    """Request schema for creating a use case; the id is allocated."""

    title: str = Field(..., min_length=1, max_length=255)
    category: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=10000)
    priority: PRIORITIES = "medium"
    preconditions: list[ConditionIn] = Field(default_factory=list)
    postconditions: list[ConditionIn] = Field(default_factory=list)
    extra: dict[str, Any] = Field(
        default_factory=dict,
        description="Methodology-specific fields (business_value, acceptance_criteria, ...)",
    )

    @field_validator("title", "category")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _strip_required(v)


class UseCaseUpdate(BaseModel):
    """Request schema for updating a use case. Omitted fields are unchanged."""

    title: str | None = Field(default=None, min_length=1, max_length=255)
    category: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=10000)
    priority: PRIORITIES | None = None
    extra: dict[str, Any] | None = Field(
        default=None,
        description="Merged into the stored extra fields; a null value removes the field",
    )


class ReferenceCreate(BaseModel):
    target_id: str = Field(..., min_length=1)
    relationship: USE_CASE_RELATIONSHIPS
    description: str | None = None


class UseCaseReferenceOut(BaseModel):
    target_id: str
    relationship: str
    description: str | None = None


class ConditionOut(BaseModel):
    text: str
    target_id: str | None = None
    relationship: str | None = None


class UseCaseResponse(BaseModel):
    """Response schema for a use case."""

    id: str
    title: str
    category: str
    priority: str
    status: str
    description: str
    preconditions: list[ConditionOut]
    postconditions: list[ConditionOut]
    references: list[UseCaseReferenceOut]
    scenario_ids: list[str]
    metadata: MetadataOut
    extra: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_entity(cls, use_case: Any) -> "UseCaseResponse":
        return cls.model_validate({**use_case.to_dict(), "extra": use_case.extra})


class StatusSummaryResponse(BaseModel):
    counts: dict[str, int]
    aggregate: str
    total: int
    completion_ratio: float


# =============================================================================
# Scenarios
# =============================================================================

class ScenarioCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    scenario_type: SCENARIO_TYPES = "main"
    description: str = Field(default="", max_length=10000)
    actor_id: str | None = None
    status: STATUSES = "planned"
    steps: list[StepIn] = Field(default_factory=list)
    preconditions: list[str] = Field(default_factory=list)
    postconditions: list[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _strip_required(v)


class ScenarioUpdate(BaseModel):
    """
    Request schema for updating a scenario.

    Send "actor_id": null to clear the actor; omit it to leave it unchanged.
    """

    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=10000)
    scenario_type: SCENARIO_TYPES | None = None
    actor_id: str | None = None


class ScenarioStatusUpdate(BaseModel):
    status: STATUSES


class StepCreate(StepIn):
    position: int | None = Field(default=None, ge=1, description="1-based insert position")


class StepMove(BaseModel):
    from_order: int = Field(..., ge=1)
    to_order: int = Field(..., ge=1)


class ScenarioReferenceCreate(BaseModel):
    target_id: str = Field(..., min_length=1)
    relationship: SCENARIO_RELATIONSHIPS
    target_type: TARGET_TYPES | None = None
    description: str | None = None


class ScenarioReferenceOut(BaseModel):
    target_type: str
    target_id: str
    relationship: str
    description: str | None = None


class StepOut(BaseModel):
    order: int
    description: str
    actor_id: str | None = None


class ScenarioResponse(BaseModel):
    id: str
    use_case_id: str
    title: str
    scenario_type: str
    status: str
    description: str
    actor_id: str | None = None
    steps: list[StepOut]
    preconditions: list[str]
    postconditions: list[str]
    references: list[ScenarioReferenceOut]
    metadata: MetadataOut

    @classmethod
    def from_entity(cls, scenario: Any) -> "ScenarioResponse":
        return cls.model_validate(scenario.to_dict())


class EdgeResponse(BaseModel):
    """A reference edge as seen by the graph validator."""

    source_id: str
    target_id: str
    relationship: str
    origin: str
    target_type: str
    description: str | None = None


# =============================================================================
# Actors
# =============================================================================

class PersonaCreate(BaseModel):
    id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    emoji: str = ""
    background: str = ""
    role: str = ""
    education: str = ""
    technical_experience: str = ""
    motivation: str = ""


class SystemActorCreate(BaseModel):
    id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    actor_type: SYSTEM_ACTOR_TYPES = "system"
    emoji: str = ""
    description: str = ""


class ActorResponse(BaseModel):
    """Persona or system actor; variant fields are None when not applicable."""

    id: str
    actor_type: str
    name: str
    emoji: str
    background: str | None = None
    role: str | None = None
    education: str | None = None
    technical_experience: str | None = None
    motivation: str | None = None
    description: str | None = None
    metadata: MetadataOut

    @classmethod
    def from_entity(cls, actor: Any) -> "ActorResponse":
        return cls.model_validate(actor.to_dict())
