"""
SQL Repository
==============

Relational backend: SQLite through the SQLAlchemy ORM.

Every operation runs inside a session. Outside an explicit transaction()
each call gets its own short-lived session and commits on success; inside a
transaction all calls on the same thread share one session that is
committed or rolled back as a whole.

Referential integrity is enforced twice: the ORM removes owned scenarios
and clears actor back-references explicitly (so the session stays coherent
within a transaction), and the schema's foreign keys back this up.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Mapping

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ucm.database import (
    ActorRecord,
    ScenarioRecord,
    ScenarioReferenceRecord,
    UseCaseRecord,
    UseCaseReferenceRecord,
    create_database,
)
from ucm.errors import DuplicateIdentifierError, NotFoundError, StorageIOError
from ucm.models import ACTOR, RESERVED_USE_CASE_KEYS, SCENARIO, USE_CASE, Entity, entity_from_dict
from ucm.repository import Mutation, apply_mutation, check_kind, matches_filters

_logger = logging.getLogger(__name__)

BACKEND_NAME = "sqlite"

_RECORDS = {
    USE_CASE: UseCaseRecord,
    SCENARIO: ScenarioRecord,
    ACTOR: ActorRecord,
}

# Actor fields stored in dedicated columns; everything else goes to details
_ACTOR_COLUMNS = ("id", "actor_type", "name", "emoji", "metadata")


def _column_value(value: Any) -> Any:
    return getattr(value, "value", value)


def populate_record(record: Any, entity: Entity) -> None:
    """Copy an entity's dict shape onto an ORM record."""
    data = entity.to_dict()
    meta = data.pop("metadata")
    record.created_at = meta["created_at"]
    record.updated_at = meta["updated_at"]
    record.version = meta["version"]

    if entity.kind == ACTOR:
        record.id = data["id"]
        record.actor_type = data["actor_type"]
        record.name = data["name"]
        record.emoji = data["emoji"]
        record.details = {k: v for k, v in data.items() if k not in _ACTOR_COLUMNS}
        return

    references = data.pop("references")
    if entity.kind == USE_CASE:
        record.extra = {k: data.pop(k) for k in list(data) if k not in RESERVED_USE_CASE_KEYS}
    for key, value in data.items():
        setattr(record, key, value)

    if entity.kind == USE_CASE:
        record.references = [
            UseCaseReferenceRecord(position=i, **ref) for i, ref in enumerate(references)
        ]
    else:
        record.references = [
            ScenarioReferenceRecord(position=i, **ref) for i, ref in enumerate(references)
        ]


class SqlRepository:
    """
    Repository backed by a SQLite database.

    Usage:
        repo = SqlRepository(project_dir / "docs" / "data")
        with repo.transaction():
            repo.create(use_case)
    """

    backend_name = BACKEND_NAME

    def __init__(self, storage_dir: str | Path):
        self.storage_dir = Path(storage_dir)
        self._local = threading.local()
        try:
            self.engine, self._session_maker = create_database(self.storage_dir)
        except (SQLAlchemyError, OSError) as exc:
            raise StorageIOError(self.backend_name, "open database", exc) from exc
        _logger.debug("SqlRepository initialized: %s", self.storage_dir)

    # ------------------------------------------------------------------ #
    #  Sessions and transactions
    # ------------------------------------------------------------------ #

    @property
    def _session(self) -> Session | None:
        return getattr(self._local, "session", None)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        All-or-nothing unit of work. Nested calls join the outer transaction.
        """
        if self._session is not None:
            yield
            return
        session = self._session_maker()
        self._local.session = session
        try:
            yield
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            _logger.debug("Transaction rolled back: %s", exc)
            raise StorageIOError(self.backend_name, "commit", exc) from exc
        except BaseException:
            session.rollback()
            _logger.debug("Transaction rolled back")
            raise
        finally:
            session.close()
            self._local.session = None

    @contextmanager
    def _unit(self, operation: str) -> Iterator[Session]:
        """Run one repository call in the current (or a new) transaction."""
        with self.transaction():
            try:
                yield self._session
            except SQLAlchemyError as exc:
                raise StorageIOError(self.backend_name, operation, exc) from exc

    # ------------------------------------------------------------------ #
    #  CRUD
    # ------------------------------------------------------------------ #

    def create(self, entity: Entity) -> str:
        kind = check_kind(entity.kind)
        model = _RECORDS[kind]
        with self._unit(f"create {kind}") as session:
            if session.get(model, entity.id) is not None:
                raise DuplicateIdentifierError(kind, entity.id)
            if kind == SCENARIO:
                if session.get(UseCaseRecord, entity.use_case_id) is None:
                    raise NotFoundError(USE_CASE, entity.use_case_id)
                self._check_actor(session, entity.actor_id)
            record = model()
            populate_record(record, entity)
            session.add(record)
            session.flush()
        _logger.debug("Created %s %s", kind, entity.id)
        return entity.id

    def _check_actor(self, session: Session, actor_id: str | None) -> None:
        if actor_id and session.get(ActorRecord, actor_id) is None:
            raise NotFoundError(ACTOR, actor_id)

    def get(self, kind: str, entity_id: str) -> Entity | None:
        check_kind(kind)
        with self._unit(f"get {kind}") as session:
            record = session.get(_RECORDS[kind], entity_id)
            if record is None:
                return None
            return entity_from_dict(kind, record.to_dict())

    def list(self, kind: str, filters: Mapping[str, Any] | None = None) -> list:
        check_kind(kind)
        model = _RECORDS[kind]
        with self._unit(f"list {kind}") as session:
            query = session.query(model)
            for key, expected in (filters or {}).items():
                if key in model.__table__.columns:
                    query = query.filter(getattr(model, key) == _column_value(expected))
            entities = [entity_from_dict(kind, r.to_dict()) for r in query.order_by(model.id)]
        return [e for e in entities if matches_filters(e, filters)]

    def update(self, kind: str, entity_id: str, mutation: Mutation) -> Entity:
        check_kind(kind)
        with self._unit(f"update {kind}") as session:
            record = session.get(_RECORDS[kind], entity_id)
            if record is None:
                raise NotFoundError(kind, entity_id)
            updated = apply_mutation(entity_from_dict(kind, record.to_dict()), mutation)
            if kind == SCENARIO:
                self._check_actor(session, updated.actor_id)
            populate_record(record, updated)
            session.flush()
        return updated

    def delete(self, kind: str, entity_id: str) -> None:
        check_kind(kind)
        with self._unit(f"delete {kind}") as session:
            record = session.get(_RECORDS[kind], entity_id)
            if record is None:
                raise NotFoundError(kind, entity_id)
            if kind == USE_CASE:
                owned = session.query(ScenarioRecord).filter(ScenarioRecord.use_case_id == entity_id)
                for scenario in owned:
                    session.delete(scenario)
            elif kind == ACTOR:
                using = session.query(ScenarioRecord).filter(ScenarioRecord.actor_id == entity_id)
                for scenario in using:
                    scenario.actor_id = None
            session.flush()
            session.delete(record)
            session.flush()
        _logger.debug("Deleted %s %s", kind, entity_id)

    # ------------------------------------------------------------------ #
    #  Lifecycle
    # ------------------------------------------------------------------ #

    def health_check(self) -> None:
        """Verify the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise StorageIOError(self.backend_name, "health check", exc) from exc

    def close(self) -> None:
        self.engine.dispose()
