"""
File Repository
===============

Plain-text backend: one human-editable YAML file per entity.

Layout under the storage root:

    use-cases/<category_slug>/<UC-ID>.yaml
    use-cases/<category_slug>/<UC-ID>/<SCENARIO-ID>.yaml
    actors/<actor-id>.yaml

Each file is a YAML mapping: a `kind` key followed by the entity's fields in
declaration order, so diffs stay readable.

Transactions:
- Writes and deletes are staged in memory; the writing thread reads its own
  staged state, other threads keep reading committed files.
- Commit phase 1 writes every staged file to a temp file next to its target
  (mkstemp + fsync). Phase 2 renames each temp file into place (os.replace)
  and removes deleted files, keeping the previous bytes of every touched path.
- If anything fails, every touched path is restored from its previous bytes
  and newly created files are removed, then StorageIOError is raised.
- Readers are excluded from the commit window by a lock, so a multi-file
  commit is never observed half-applied.
"""
from __future__ import annotations

import logging
import os
import re
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Mapping

import yaml

from ucm.errors import DuplicateIdentifierError, NotFoundError, StorageIOError
from ucm.models import (
    ACTOR,
    SCENARIO,
    USE_CASE,
    Entity,
    Scenario,
    UseCase,
    entity_from_dict,
)
from ucm.repository import Mutation, apply_mutation, check_kind, matches_filters

_logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

USE_CASES_DIR = "use-cases"
ACTORS_DIR = "actors"
FILE_SUFFIX = ".yaml"
TEMP_SUFFIX = ".tmp"
HEALTH_CHECK_FILE = ".health_check.tmp"

BACKEND_NAME = "file"


def category_slug(category: str) -> str:
    """Directory name for a category: 'User Management' -> 'user_management'."""
    slug = re.sub(r"[^a-z0-9]+", "_", category.strip().lower()).strip("_")
    return slug or "general"


def dump_entity(entity: Entity) -> str:
    """Serialize an entity to the YAML text stored on disk."""
    document = {"kind": entity.kind}
    document.update(entity.to_dict())
    return yaml.safe_dump(
        document,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )


def load_entity(kind: str, text: str) -> Entity:
    """Parse YAML text back into an entity of the given kind."""
    document = yaml.safe_load(text)
    if not isinstance(document, dict):
        raise ValueError(f"expected a mapping, got {type(document).__name__}")
    stored_kind = document.pop("kind", kind)
    if stored_kind != kind:
        raise ValueError(f"file holds a {stored_kind}, expected {kind}")
    return entity_from_dict(kind, document)


def _write_temp(path: Path, content: bytes) -> Path:
    """Write content to a temp file in path's directory and fsync it."""
    fd, tmp_name = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=TEMP_SUFFIX,
    )
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return Path(tmp_name)


@dataclass
class _Transaction:
    """Staged state of one unit of work."""

    # path -> serialized content, or None for a delete; insertion ordered
    files: dict[Path, str | None] = field(default_factory=dict)
    # (kind, id) -> path, or None once deleted
    index: dict[tuple[str, str], Path | None] = field(default_factory=dict)

    def stage_write(self, kind: str, entity_id: str, path: Path, content: str) -> None:
        self.files[path] = content
        self.index[(kind, entity_id)] = path

    def stage_delete(self, kind: str, entity_id: str, path: Path) -> None:
        self.files[path] = None
        self.index[(kind, entity_id)] = None


class FileRepository:
    """
    Repository backed by one YAML file per entity.

    Usage:
        repo = FileRepository(project_dir / "docs" / "data")
        with repo.transaction():
            repo.create(use_case)
            repo.create(scenario)
    """

    backend_name = BACKEND_NAME

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self._lock = threading.RLock()
        self._local = threading.local()
        self._index: dict[tuple[str, str], Path] | None = None
        _logger.debug("FileRepository initialized: root=%s", self.root)

    # ------------------------------------------------------------------ #
    #  Paths and index
    # ------------------------------------------------------------------ #

    @property
    def use_cases_dir(self) -> Path:
        return self.root / USE_CASES_DIR

    @property
    def actors_dir(self) -> Path:
        return self.root / ACTORS_DIR

    def use_case_path(self, use_case: UseCase) -> Path:
        return self.use_cases_dir / category_slug(use_case.category) / f"{use_case.id}{FILE_SUFFIX}"

    def _scenario_path(self, owner_path: Path, owner_id: str, scenario_id: str) -> Path:
        return owner_path.parent / owner_id / f"{scenario_id}{FILE_SUFFIX}"

    def _build_index(self) -> dict[tuple[str, str], Path]:
        index: dict[tuple[str, str], Path] = {}
        if self.use_cases_dir.is_dir():
            for path in self.use_cases_dir.glob(f"*/*{FILE_SUFFIX}"):
                if not path.name.startswith("."):
                    index[(USE_CASE, path.stem)] = path
            for path in self.use_cases_dir.glob(f"*/*/*{FILE_SUFFIX}"):
                if not path.name.startswith("."):
                    index[(SCENARIO, path.stem)] = path
        if self.actors_dir.is_dir():
            for path in self.actors_dir.glob(f"*{FILE_SUFFIX}"):
                if not path.name.startswith("."):
                    index[(ACTOR, path.stem)] = path
        return index

    def _disk_index(self) -> dict[tuple[str, str], Path]:
        with self._lock:
            if self._index is None:
                self._index = self._build_index()
            return self._index

    @property
    def _tx(self) -> _Transaction | None:
        return getattr(self._local, "tx", None)

    def _resolve(self, kind: str, entity_id: str) -> Path | None:
        tx = self._tx
        if tx is not None and (kind, entity_id) in tx.index:
            return tx.index[(kind, entity_id)]
        return self._disk_index().get((kind, entity_id))

    def _known_ids(self, kind: str) -> set[str]:
        ids = {eid for (k, eid) in self._disk_index() if k == kind}
        tx = self._tx
        if tx is not None:
            for (k, eid), path in tx.index.items():
                if k != kind:
                    continue
                if path is None:
                    ids.discard(eid)
                else:
                    ids.add(eid)
        return ids

    def _read(self, kind: str, path: Path) -> Entity | None:
        """Load one entity file. Returns None when the file is gone from disk."""
        tx = self._tx
        try:
            if tx is not None and path in tx.files:
                text = tx.files[path]
            else:
                with self._lock:
                    text = path.read_text(encoding="utf-8")
            return load_entity(kind, text)
        except FileNotFoundError:
            return None
        except (OSError, yaml.YAMLError, ValueError, KeyError, TypeError) as exc:
            raise StorageIOError(self.backend_name, f"read {path}", exc) from exc

    # ------------------------------------------------------------------ #
    #  Transactions
    # ------------------------------------------------------------------ #

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        All-or-nothing unit of work. Nested calls join the outer transaction.
        """
        if self._tx is not None:
            yield
            return
        tx = _Transaction()
        self._local.tx = tx
        try:
            yield
            self._commit(tx)
        except BaseException:
            if tx.files:
                _logger.debug("Discarding %d staged file change(s)", len(tx.files))
            raise
        finally:
            self._local.tx = None

    def _commit(self, tx: _Transaction) -> None:
        if not tx.files:
            return
        with self._lock:
            touched: list[tuple[Path, bytes | None]] = []
            temps: list[tuple[Path, Path]] = []
            try:
                for path, content in tx.files.items():
                    if content is None:
                        continue
                    path.parent.mkdir(parents=True, exist_ok=True)
                    temps.append((path, _write_temp(path, content.encode("utf-8"))))

                for path, tmp in temps:
                    previous = path.read_bytes() if path.exists() else None
                    touched.append((path, previous))
                    os.replace(tmp, path)

                for path, content in tx.files.items():
                    if content is not None or not path.exists():
                        continue
                    touched.append((path, path.read_bytes()))
                    path.unlink()
            except OSError as exc:
                _logger.error("Commit failed, rolling back %d file(s): %s", len(touched), exc)
                self._restore(touched)
                for _, tmp in temps:
                    tmp.unlink(missing_ok=True)
                raise StorageIOError(self.backend_name, "commit", exc) from exc
            finally:
                self._index = None

            self._prune_empty_dirs(p for p, c in tx.files.items() if c is None)
            _logger.debug("Committed %d file change(s)", len(tx.files))

    def _restore(self, touched: list[tuple[Path, bytes | None]]) -> None:
        for path, previous in reversed(touched):
            try:
                if previous is None:
                    path.unlink(missing_ok=True)
                else:
                    path.parent.mkdir(parents=True, exist_ok=True)
                    os.replace(_write_temp(path, previous), path)
            except OSError as exc:
                _logger.warning("Could not restore %s during rollback: %s", path, exc)

    def _prune_empty_dirs(self, deleted: Iterator[Path]) -> None:
        stop = {self.root, self.use_cases_dir, self.actors_dir}
        for path in deleted:
            parent = path.parent
            while parent not in stop and self.root in parent.parents:
                try:
                    parent.rmdir()
                except OSError:
                    break
                parent = parent.parent

    # ------------------------------------------------------------------ #
    #  CRUD
    # ------------------------------------------------------------------ #

    def create(self, entity: Entity) -> str:
        kind = check_kind(entity.kind)
        with self.transaction():
            if self._resolve(kind, entity.id) is not None:
                raise DuplicateIdentifierError(kind, entity.id)
            path = self._path_for_new(entity)
            self._tx.stage_write(kind, entity.id, path, dump_entity(entity))
        _logger.debug("Created %s %s", kind, entity.id)
        return entity.id

    def _path_for_new(self, entity: Entity) -> Path:
        if entity.kind == USE_CASE:
            return self.use_case_path(entity)
        if entity.kind == SCENARIO:
            owner_path = self._resolve(USE_CASE, entity.use_case_id)
            if owner_path is None:
                raise NotFoundError(USE_CASE, entity.use_case_id)
            self._check_actor(entity)
            return self._scenario_path(owner_path, entity.use_case_id, entity.id)
        return self.actors_dir / f"{entity.id}{FILE_SUFFIX}"

    def _check_actor(self, scenario: Scenario) -> None:
        if scenario.actor_id and self._resolve(ACTOR, scenario.actor_id) is None:
            raise NotFoundError(ACTOR, scenario.actor_id)

    def get(self, kind: str, entity_id: str) -> Entity | None:
        check_kind(kind)
        with self._lock:
            path = self._resolve(kind, entity_id)
            if path is None:
                return None
            entity = self._read(kind, path)
            if entity is None:
                # removed outside the repository, the cached index is stale
                _logger.debug("File %s disappeared, rebuilding index", path)
                self._index = None
                path = self._resolve(kind, entity_id)
                entity = self._read(kind, path) if path is not None else None
            return entity

    def list(self, kind: str, filters: Mapping[str, Any] | None = None) -> list:
        check_kind(kind)
        entities = []
        with self._lock:
            for entity_id in sorted(self._known_ids(kind)):
                entity = self.get(kind, entity_id)
                if entity is not None and matches_filters(entity, filters):
                    entities.append(entity)
        return entities

    def update(self, kind: str, entity_id: str, mutation: Mutation) -> Entity:
        check_kind(kind)
        with self.transaction():
            current = self.get(kind, entity_id)
            if current is None:
                raise NotFoundError(kind, entity_id)
            updated = apply_mutation(current, mutation)
            old_path = self._resolve(kind, entity_id)
            tx = self._tx

            if kind == USE_CASE:
                new_path = self.use_case_path(updated)
                if new_path != old_path:
                    self._move_use_case(updated, old_path, new_path)
                tx.stage_write(kind, entity_id, new_path, dump_entity(updated))
            else:
                if kind == SCENARIO:
                    self._check_actor(updated)
                tx.stage_write(kind, entity_id, old_path, dump_entity(updated))
        return updated

    def _move_use_case(self, use_case: UseCase, old_path: Path, new_path: Path) -> None:
        """Stage moving a use case file and its scenario files to a new category directory."""
        tx = self._tx
        tx.files[old_path] = None
        for scenario in self.list(SCENARIO, {"use_case_id": use_case.id}):
            scenario_old = self._resolve(SCENARIO, scenario.id)
            scenario_new = self._scenario_path(new_path, use_case.id, scenario.id)
            tx.files[scenario_old] = None
            tx.stage_write(SCENARIO, scenario.id, scenario_new, dump_entity(scenario))
        _logger.debug("Moving %s from %s to %s", use_case.id, old_path, new_path)

    def delete(self, kind: str, entity_id: str) -> None:
        check_kind(kind)
        with self.transaction():
            if self.get(kind, entity_id) is None:
                raise NotFoundError(kind, entity_id)
            path = self._resolve(kind, entity_id)
            tx = self._tx
            if kind == USE_CASE:
                for scenario_id in sorted(self._known_ids(SCENARIO)):
                    scenario = self.get(SCENARIO, scenario_id)
                    if scenario is not None and scenario.use_case_id == entity_id:
                        tx.stage_delete(SCENARIO, scenario_id, self._resolve(SCENARIO, scenario_id))
            elif kind == ACTOR:
                for scenario in self.list(SCENARIO, {"actor_id": entity_id}):
                    scenario.actor_id = None
                    tx.stage_write(
                        SCENARIO, scenario.id, self._resolve(SCENARIO, scenario.id),
                        dump_entity(scenario),
                    )
            tx.stage_delete(kind, entity_id, path)
        _logger.debug("Deleted %s %s", kind, entity_id)

    # ------------------------------------------------------------------ #
    #  Lifecycle
    # ------------------------------------------------------------------ #

    def health_check(self) -> None:
        """Verify the storage root exists and is writable."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            probe = self.root / HEALTH_CHECK_FILE
            probe.write_text("ok", encoding="utf-8")
            probe.unlink()
        except OSError as exc:
            raise StorageIOError(self.backend_name, "health check", exc) from exc

    def close(self) -> None:
        with self._lock:
            self._index = None
