"""
Use Case Manager core
=====================

Entity model, identifier allocation, status aggregation, reference-graph
validation and two interchangeable storage backends behind one service.
"""

from ucm.errors import UcmError
from ucm.file_repository import FileRepository
from ucm.models import (
    ActorType,
    Persona,
    Priority,
    Scenario,
    ScenarioRelationship,
    ScenarioType,
    Status,
    SystemActor,
    TargetType,
    UseCase,
    UseCaseRelationship,
)
from ucm.service import UseCaseService, ValidationReport
from ucm.sql_repository import SqlRepository

__version__ = "1.0.0"

__all__ = [
    "ActorType",
    "FileRepository",
    "Persona",
    "Priority",
    "Scenario",
    "ScenarioRelationship",
    "ScenarioType",
    "SqlRepository",
    "Status",
    "SystemActor",
    "TargetType",
    "UcmError",
    "UseCase",
    "UseCaseRelationship",
    "UseCaseService",
    "ValidationReport",
]
