"""
Project Configuration
=====================

Per-project settings stored in <project>/.ucm/config.yaml:

    backend: file            # file | sqlite, fixed at init time
    storage_dir: docs/data   # relative to the project directory
    token_strategy: extend   # extend | strict
    category_tokens: {}      # category name -> identifier token
    use_case_prefix: UC

UCM_STORAGE_DIR overrides the storage directory at load time. UCM_BACKEND
never changes the backend of an initialized project: a value that disagrees
with the stored backend is rejected. A .env file in the project directory is
honored.
"""
from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ucm.errors import ConfigurationError

_logger = logging.getLogger(__name__)

CONFIG_DIR = ".ucm"
CONFIG_FILENAME = "config.yaml"
DEFAULT_STORAGE_DIR = "docs/data"

ENV_BACKEND = "UCM_BACKEND"
ENV_STORAGE_DIR = "UCM_STORAGE_DIR"

BACKENDS = ("file", "sqlite")


class ProjectConfig(BaseModel):
    """Validated, immutable project settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    backend: Literal["file", "sqlite"] = "file"
    storage_dir: str = DEFAULT_STORAGE_DIR
    token_strategy: Literal["extend", "strict"] = "extend"
    category_tokens: dict[str, str] = Field(default_factory=dict)
    use_case_prefix: str = "UC"

    @field_validator("use_case_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if not re.fullmatch(r"[A-Za-z]{1,8}", v):
            raise ValueError("use_case_prefix must be 1-8 letters")
        return v.upper()

    @field_validator("category_tokens")
    @classmethod
    def validate_tokens(cls, v: dict[str, str]) -> dict[str, str]:
        for category, token in v.items():
            if not re.fullmatch(r"[A-Za-z0-9]{1,8}", token):
                raise ValueError(
                    f"Token '{token}' for category '{category}' must be 1-8 letters or digits"
                )
        return {category: token.upper() for category, token in v.items()}

    def resolve_storage_dir(self, project_dir: Path) -> Path:
        storage = Path(self.storage_dir)
        if storage.is_absolute():
            return storage
        return Path(project_dir) / storage


def get_config_path(project_dir: Path) -> Path:
    """Return the path to the project's config file."""
    return Path(project_dir) / CONFIG_DIR / CONFIG_FILENAME


def _env_overrides(project_dir: Path) -> dict[str, Any]:
    env_file = Path(project_dir) / ".env"
    if env_file.is_file():
        load_dotenv(env_file, override=False)
    overrides: dict[str, Any] = {}
    if os.getenv(ENV_STORAGE_DIR):
        overrides["storage_dir"] = os.environ[ENV_STORAGE_DIR].strip()
    return overrides


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(
            f"Project is not initialized: {path} not found",
            {"path": str(path)},
        ) from None
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Malformed YAML in config file {path}: {e}",
            {"path": str(path)},
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read config file {path}: {e}",
            {"path": str(path)},
        ) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {path} must contain a mapping, got {type(data).__name__}",
            {"path": str(path)},
        )
    return data


def _build(data: dict[str, Any], path: Path) -> ProjectConfig:
    try:
        return ProjectConfig(**data)
    except ValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ConfigurationError(
            f"Invalid configuration in {path}",
            {"path": str(path), "validation_errors": errors},
        ) from e


def _check_env_backend(stored: Any, path: Path) -> None:
    requested = os.getenv(ENV_BACKEND, "").strip().lower()
    if requested and requested != stored:
        raise ConfigurationError(
            f"{ENV_BACKEND}='{requested}' conflicts with the '{stored}' backend "
            f"the project was initialized with",
            {"path": str(path), "backend": stored, "requested": requested},
        )


def load_config(project_dir: str | Path, *, use_env: bool = True) -> ProjectConfig:
    """
    Load the project configuration.

    Raises:
        ConfigurationError: config file missing, malformed or invalid, or
            $UCM_BACKEND names a different backend than the stored one
    """
    path = get_config_path(Path(project_dir))
    data = _read_config_file(path)
    if use_env:
        overrides = _env_overrides(Path(project_dir))
        _check_env_backend(data.get("backend", ProjectConfig.model_fields["backend"].default), path)
        if overrides:
            _logger.debug("Config overrides from environment: %s", overrides)
        data.update(overrides)
    return _build(data, path)


def save_config(project_dir: str | Path, config: ProjectConfig) -> Path:
    """Write config to <project>/.ucm/config.yaml and return the path."""
    path = get_config_path(Path(project_dir))
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            yaml.safe_dump(config.model_dump(), sort_keys=False, allow_unicode=True),
            encoding="utf-8",
        )
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file {path}: {e}", {"path": str(path)}) from e
    return path


def init_project(
    project_dir: str | Path,
    backend: str = "file",
    **settings: Any,
) -> ProjectConfig:
    """
    Initialize a project, or return the existing configuration unchanged.

    The backend is fixed once chosen.

    Raises:
        ConfigurationError: the project already uses a different backend, or
            the settings are invalid
    """
    project_dir = Path(project_dir)
    path = get_config_path(project_dir)

    if path.exists():
        existing = load_config(project_dir, use_env=False)
        if existing.backend != backend:
            raise ConfigurationError(
                f"Project already uses the '{existing.backend}' backend; "
                f"cannot switch to '{backend}'",
                {"backend": existing.backend, "requested": backend},
            )
        return existing

    config = _build({"backend": backend, **settings}, path)
    save_config(project_dir, config)
    try:
        config.resolve_storage_dir(project_dir).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"Cannot create storage directory: {e}") from e
    _logger.info("Initialized project at %s (backend=%s)", project_dir, backend)
    return config
