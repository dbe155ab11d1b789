"""
Repository Factory
==================

Builds the active backend from project configuration.
"""
from __future__ import annotations

import logging
from pathlib import Path

from ucm.config import ProjectConfig, load_config
from ucm.errors import ConfigurationError
from ucm.file_repository import FileRepository
from ucm.repository import Repository
from ucm.service import UseCaseService
from ucm.sql_repository import SqlRepository

_logger = logging.getLogger(__name__)


def create_repository(config: ProjectConfig, project_dir: str | Path) -> Repository:
    """
    Create the repository selected by config.backend.

    Raises:
        ConfigurationError: unknown backend
        StorageIOError: the backend could not be opened
    """
    storage_dir = config.resolve_storage_dir(Path(project_dir))
    if config.backend == "file":
        repository = FileRepository(storage_dir)
    elif config.backend == "sqlite":
        repository = SqlRepository(storage_dir)
    else:
        raise ConfigurationError(f"Unknown backend '{config.backend}'")
    _logger.debug("Using %s backend at %s", repository.backend_name, storage_dir)
    return repository


def create_service(
    project_dir: str | Path,
    config: ProjectConfig | None = None,
) -> UseCaseService:
    """Load the project's configuration (unless given) and build a service over its backend."""
    if config is None:
        config = load_config(project_dir)
    repository = create_repository(config, project_dir)
    repository.health_check()
    return UseCaseService.from_config(repository, config)
