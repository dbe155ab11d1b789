"""
Actors Router
=============

API endpoints for personas and system actors.

Implements:
- GET    /api/actors - List actors (optional actor_type filter)
- POST   /api/actors/personas - Create persona
- POST   /api/actors/system - Create system actor
- POST   /api/actors/standard - Create missing starter system actors
- GET    /api/actors/:id - Get actor
- PUT    /api/actors/:id - Update actor fields
- DELETE /api/actors/:id - Delete actor (clears scenario back-references)
- GET    /api/actors/:id/use-cases - Use cases whose scenarios name the actor
"""

import logging
from typing import Any, Literal, Optional

from fastapi import APIRouter, Body, Depends, Query, Response, status

from ucm.service import UseCaseService
from server.dependencies import get_service
from server.schemas.use_cases import (
    ActorResponse,
    PersonaCreate,
    SystemActorCreate,
    UseCaseResponse,
)

_logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/actors", tags=["actors"])


@router.get("", response_model=list[ActorResponse])
def list_actors(
    actor_type: Optional[Literal["persona", "system", "database", "external_service"]] = Query(None),
    service: UseCaseService = Depends(get_service),
):
    return [ActorResponse.from_entity(a) for a in service.list_actors(actor_type)]


@router.post("/personas", response_model=ActorResponse, status_code=status.HTTP_201_CREATED)
def create_persona(data: PersonaCreate, service: UseCaseService = Depends(get_service)):
    fields = data.model_dump()
    actor_id = fields.pop("id")
    return ActorResponse.from_entity(service.create_persona(actor_id, **fields))


@router.post("/system", response_model=ActorResponse, status_code=status.HTTP_201_CREATED)
def create_system_actor(data: SystemActorCreate, service: UseCaseService = Depends(get_service)):
    actor = service.create_system_actor(
        data.id, data.name, data.actor_type, emoji=data.emoji, description=data.description
    )
    return ActorResponse.from_entity(actor)


@router.post("/standard", response_model=list[ActorResponse])
def init_standard_actors(service: UseCaseService = Depends(get_service)):
    """Create the starter system actors that do not exist yet; returns those created."""
    return [ActorResponse.from_entity(a) for a in service.init_standard_actors()]


@router.get("/{actor_id}", response_model=ActorResponse)
def get_actor(actor_id: str, service: UseCaseService = Depends(get_service)):
    return ActorResponse.from_entity(service.get_actor(actor_id))


@router.put("/{actor_id}", response_model=ActorResponse)
def update_actor(
    actor_id: str,
    fields: dict[str, Any] = Body(..., examples=[{"role": "Teacher", "emoji": "👩‍🏫"}]),
    service: UseCaseService = Depends(get_service),
):
    """
    Update actor fields.

    Raises:
        422: unknown field for the actor's variant
    """
    return ActorResponse.from_entity(service.update_actor(actor_id, **fields))


@router.delete("/{actor_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_actor(actor_id: str, service: UseCaseService = Depends(get_service)) -> Response:
    service.delete_actor(actor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{actor_id}/use-cases", response_model=list[UseCaseResponse])
def find_use_cases_referencing_actor(actor_id: str, service: UseCaseService = Depends(get_service)):
    return [UseCaseResponse.from_entity(uc) for uc in service.find_use_cases_referencing_actor(actor_id)]
