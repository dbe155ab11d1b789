"""
Scenarios Router
================

API endpoints for individual scenarios.

Implements:
- GET    /api/scenarios/:id - Get scenario
- PUT    /api/scenarios/:id - Update title, description, type, actor
- PUT    /api/scenarios/:id/status - Set status (re-derives the use case status)
- DELETE /api/scenarios/:id - Delete scenario
- POST   /api/scenarios/:id/steps - Insert step
- DELETE /api/scenarios/:id/steps/:order - Remove step
- POST   /api/scenarios/:id/steps/move - Move step
- POST   /api/scenarios/:id/references - Add scenario reference
- DELETE /api/scenarios/:id/references/:target_id - Remove scenario reference
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from ucm.service import UseCaseService
from server.dependencies import get_service
from server.schemas.use_cases import (
    SCENARIO_RELATIONSHIPS,
    ScenarioReferenceCreate,
    ScenarioResponse,
    ScenarioStatusUpdate,
    ScenarioUpdate,
    StepCreate,
    StepMove,
)

router = APIRouter(prefix="/api/scenarios", tags=["scenarios"])


@router.get("/{scenario_id}", response_model=ScenarioResponse)
def get_scenario(scenario_id: str, service: UseCaseService = Depends(get_service)):
    return ScenarioResponse.from_entity(service.get_scenario(scenario_id))


@router.put("/{scenario_id}", response_model=ScenarioResponse)
def update_scenario(
    scenario_id: str,
    data: ScenarioUpdate,
    service: UseCaseService = Depends(get_service),
):
    changes = {
        "title": data.title,
        "description": data.description,
        "scenario_type": data.scenario_type,
    }
    if "actor_id" in data.model_fields_set:
        changes["actor_id"] = data.actor_id
    return ScenarioResponse.from_entity(service.update_scenario(scenario_id, **changes))


@router.put("/{scenario_id}/status", response_model=ScenarioResponse)
def update_scenario_status(
    scenario_id: str,
    data: ScenarioStatusUpdate,
    service: UseCaseService = Depends(get_service),
):
    return ScenarioResponse.from_entity(service.update_scenario_status(scenario_id, data.status))


@router.delete("/{scenario_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_scenario(
    scenario_id: str,
    cascade_references: bool = Query(False),
    service: UseCaseService = Depends(get_service),
) -> Response:
    service.delete_scenario(scenario_id, cascade_references=cascade_references)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{scenario_id}/steps", response_model=ScenarioResponse, status_code=status.HTTP_201_CREATED)
def add_step(
    scenario_id: str,
    data: StepCreate,
    service: UseCaseService = Depends(get_service),
):
    scenario = service.add_step(scenario_id, data.description, data.actor_id, data.position)
    return ScenarioResponse.from_entity(scenario)


@router.delete("/{scenario_id}/steps/{order}", response_model=ScenarioResponse)
def remove_step(scenario_id: str, order: int, service: UseCaseService = Depends(get_service)):
    return ScenarioResponse.from_entity(service.remove_step(scenario_id, order))


@router.post("/{scenario_id}/steps/move", response_model=ScenarioResponse)
def move_step(
    scenario_id: str,
    data: StepMove,
    service: UseCaseService = Depends(get_service),
):
    return ScenarioResponse.from_entity(service.move_step(scenario_id, data.from_order, data.to_order))


@router.post(
    "/{scenario_id}/references",
    response_model=ScenarioResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_scenario_reference(
    scenario_id: str,
    data: ScenarioReferenceCreate,
    service: UseCaseService = Depends(get_service),
):
    scenario = service.add_scenario_reference(
        scenario_id, data.target_id, data.relationship, data.target_type, data.description
    )
    return ScenarioResponse.from_entity(scenario)


@router.delete("/{scenario_id}/references/{target_id}", response_model=ScenarioResponse)
def remove_scenario_reference(
    scenario_id: str,
    target_id: str,
    relationship: Optional[SCENARIO_RELATIONSHIPS] = Query(None),
    service: UseCaseService = Depends(get_service),
):
    return ScenarioResponse.from_entity(
        service.remove_scenario_reference(scenario_id, target_id, relationship)
    )
