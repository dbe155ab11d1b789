"""
Use Cases Router
================

API endpoints for use cases, their conditions and references.

Implements:
- POST   /api/use-cases - Create use case (id allocated from category)
- GET    /api/use-cases - List use cases (category, status, priority, q filters)
- GET    /api/use-cases/:id - Get single use case
- PUT    /api/use-cases/:id - Update use case
- DELETE /api/use-cases/:id - Delete use case and its scenarios
- POST   /api/use-cases/:id/references - Add reference
- DELETE /api/use-cases/:id/references/:target_id - Remove reference
- GET    /api/use-cases/:id/references - Outgoing edges
- GET    /api/use-cases/:id/referrers - Incoming edges
- POST   /api/use-cases/:id/preconditions (and postconditions) - Add condition
- DELETE /api/use-cases/:id/preconditions/:index (and postconditions) - Remove condition
- GET    /api/use-cases/:id/scenarios - List scenarios in order
- POST   /api/use-cases/:id/scenarios - Add scenario
- GET    /api/use-cases/:id/status-summary - Per-status counts
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from ucm.service import UseCaseService
from server.dependencies import get_service
from server.schemas.use_cases import (
    PRIORITIES,
    STATUSES,
    USE_CASE_RELATIONSHIPS,
    ConditionIn,
    EdgeResponse,
    ReferenceCreate,
    ScenarioCreate,
    ScenarioResponse,
    StatusSummaryResponse,
    UseCaseCreate,
    UseCaseResponse,
    UseCaseUpdate,
)

_logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/use-cases", tags=["use-cases"])


@router.post("", response_model=UseCaseResponse, status_code=status.HTTP_201_CREATED)
def create_use_case(
    data: UseCaseCreate,
    service: UseCaseService = Depends(get_service),
) -> UseCaseResponse:
    """
    Create a new use case.

    Raises:
        422: blank fields or a linked condition naming a missing use case
        409: category token collision under the strict strategy
        507: identifier space of the category exhausted
    """
    use_case = service.create_use_case(
        title=data.title,
        category=data.category,
        description=data.description,
        priority=data.priority,
        preconditions=[c.model_dump() for c in data.preconditions],
        postconditions=[c.model_dump() for c in data.postconditions],
        extra=data.extra,
    )
    return UseCaseResponse.from_entity(use_case)


@router.get("", response_model=list[UseCaseResponse])
def list_use_cases(
    category: Optional[str] = Query(None, description="Filter by category (case-insensitive)"),
    status_filter: Optional[STATUSES] = Query(None, alias="status"),
    priority: Optional[PRIORITIES] = Query(None),
    q: Optional[str] = Query(None, description="Title substring search"),
    service: UseCaseService = Depends(get_service),
) -> list[UseCaseResponse]:
    """List use cases ordered by id; filters combine with AND."""
    use_cases = service.query_use_cases(
        category=category,
        status=status_filter,
        priority=priority,
        title=q,
    )
    return [UseCaseResponse.from_entity(uc) for uc in use_cases]


@router.get("/{use_case_id}", response_model=UseCaseResponse)
def get_use_case(use_case_id: str, service: UseCaseService = Depends(get_service)):
    return UseCaseResponse.from_entity(service.get_use_case(use_case_id))


@router.put("/{use_case_id}", response_model=UseCaseResponse)
def update_use_case(
    use_case_id: str,
    data: UseCaseUpdate,
    service: UseCaseService = Depends(get_service),
):
    use_case = service.update_use_case(
        use_case_id,
        title=data.title,
        description=data.description,
        priority=data.priority,
        category=data.category,
        extra=data.extra,
    )
    return UseCaseResponse.from_entity(use_case)


@router.delete("/{use_case_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_use_case(
    use_case_id: str,
    cascade_references: bool = Query(False, description="Remove references into the deleted entities"),
    service: UseCaseService = Depends(get_service),
) -> Response:
    """
    Delete a use case and its scenarios.

    Raises:
        409: still referenced and cascade_references is false
    """
    service.delete_use_case(use_case_id, cascade_references=cascade_references)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# References
# =============================================================================

@router.post(
    "/{use_case_id}/references",
    response_model=UseCaseResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_reference(
    use_case_id: str,
    data: ReferenceCreate,
    service: UseCaseService = Depends(get_service),
):
    """
    Raises:
        409: the edge would close a cycle
        422: self reference or missing target
    """
    use_case = service.add_reference(use_case_id, data.target_id, data.relationship, data.description)
    return UseCaseResponse.from_entity(use_case)


@router.delete("/{use_case_id}/references/{target_id}", response_model=UseCaseResponse)
def remove_reference(
    use_case_id: str,
    target_id: str,
    relationship: Optional[USE_CASE_RELATIONSHIPS] = Query(None),
    service: UseCaseService = Depends(get_service),
):
    return UseCaseResponse.from_entity(service.remove_reference(use_case_id, target_id, relationship))


@router.get("/{use_case_id}/references", response_model=list[EdgeResponse])
def get_references(use_case_id: str, service: UseCaseService = Depends(get_service)):
    return [EdgeResponse(**e.to_dict()) for e in service.get_references(use_case_id)]


@router.get("/{use_case_id}/referrers", response_model=list[EdgeResponse])
def get_referrers(use_case_id: str, service: UseCaseService = Depends(get_service)):
    return [EdgeResponse(**e.to_dict()) for e in service.get_referrers(use_case_id)]


# =============================================================================
# Conditions
# =============================================================================

@router.post(
    "/{use_case_id}/preconditions",
    response_model=UseCaseResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_precondition(
    use_case_id: str,
    data: ConditionIn,
    service: UseCaseService = Depends(get_service),
):
    use_case = service.add_precondition(use_case_id, data.text, data.target_id, data.relationship)
    return UseCaseResponse.from_entity(use_case)


@router.delete("/{use_case_id}/preconditions/{index}", response_model=UseCaseResponse)
def remove_precondition(use_case_id: str, index: int, service: UseCaseService = Depends(get_service)):
    return UseCaseResponse.from_entity(service.remove_precondition(use_case_id, index))


@router.post(
    "/{use_case_id}/postconditions",
    response_model=UseCaseResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_postcondition(
    use_case_id: str,
    data: ConditionIn,
    service: UseCaseService = Depends(get_service),
):
    use_case = service.add_postcondition(use_case_id, data.text, data.target_id, data.relationship)
    return UseCaseResponse.from_entity(use_case)


@router.delete("/{use_case_id}/postconditions/{index}", response_model=UseCaseResponse)
def remove_postcondition(use_case_id: str, index: int, service: UseCaseService = Depends(get_service)):
    return UseCaseResponse.from_entity(service.remove_postcondition(use_case_id, index))


# =============================================================================
# Scenarios of a use case
# =============================================================================

@router.get("/{use_case_id}/scenarios", response_model=list[ScenarioResponse])
def list_scenarios(use_case_id: str, service: UseCaseService = Depends(get_service)):
    return [ScenarioResponse.from_entity(s) for s in service.list_scenarios(use_case_id)]


@router.post(
    "/{use_case_id}/scenarios",
    response_model=ScenarioResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_scenario(
    use_case_id: str,
    data: ScenarioCreate,
    service: UseCaseService = Depends(get_service),
):
    scenario = service.add_scenario(
        use_case_id,
        data.title,
        scenario_type=data.scenario_type,
        description=data.description,
        actor_id=data.actor_id,
        steps=[s.model_dump() for s in data.steps],
        status=data.status,
        preconditions=data.preconditions,
        postconditions=data.postconditions,
    )
    return ScenarioResponse.from_entity(scenario)


@router.get("/{use_case_id}/status-summary", response_model=StatusSummaryResponse)
def get_status_summary(use_case_id: str, service: UseCaseService = Depends(get_service)):
    return StatusSummaryResponse(**service.get_status_summary(use_case_id).to_dict())
