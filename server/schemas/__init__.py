"""
Pydantic Schemas Package
========================

Request/response schemas for the use case manager API.
"""

from .use_cases import (
    ActorResponse,
    ConditionIn,
    EdgeResponse,
    PersonaCreate,
    ReferenceCreate,
    ScenarioCreate,
    ScenarioReferenceCreate,
    ScenarioResponse,
    ScenarioStatusUpdate,
    ScenarioUpdate,
    StatusSummaryResponse,
    StepCreate,
    StepIn,
    StepMove,
    SystemActorCreate,
    UseCaseCreate,
    UseCaseResponse,
    UseCaseUpdate,
)

__all__ = [
    "ActorResponse",
    "ConditionIn",
    "EdgeResponse",
    "PersonaCreate",
    "ReferenceCreate",
    "ScenarioCreate",
    "ScenarioReferenceCreate",
    "ScenarioResponse",
    "ScenarioStatusUpdate",
    "ScenarioUpdate",
    "StatusSummaryResponse",
    "StepCreate",
    "StepIn",
    "StepMove",
    "SystemActorCreate",
    "UseCaseCreate",
    "UseCaseResponse",
    "UseCaseUpdate",
]
