"""
Database Models and Connection
==============================

SQLite schema for the relational backend using SQLAlchemy.

Tables:
- use_cases: one row per use case; ordered collections as JSON columns
- scenarios: owned by a use case (ON DELETE CASCADE), optional actor
  (ON DELETE SET NULL)
- actors: personas and system actors; variant fields in a JSON column
- use_case_references / scenario_references: reference edges, ordered by
  position, removed with their source
- _metadata: key/value rows, holds the schema version

Timestamps are stored as ISO-8601 strings so timezone information survives
the round trip exactly.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    event,
    inspect,
    text,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.types import JSON

_logger = logging.getLogger(__name__)

Base = declarative_base()

SCHEMA_VERSION = 2
DATABASE_FILENAME = "usecases.db"


def _timestamps(record: Any) -> dict:
    return {
        "created_at": record.created_at,
        "updated_at": record.updated_at,
        "version": record.version,
    }


class UseCaseRecord(Base):
    """Use case row."""

    __tablename__ = "use_cases"

    id = Column(String(64), primary_key=True)
    title = Column(String(255), nullable=False)
    category = Column(String(100), nullable=False, index=True)
    priority = Column(String(20), nullable=False, default="medium", index=True)
    status = Column(String(20), nullable=False, default="planned", index=True)
    description = Column(Text, nullable=False, default="")
    preconditions = Column(JSON, nullable=False, default=list)
    postconditions = Column(JSON, nullable=False, default=list)
    # Scenario order of the use case, scenario rows hold the data
    scenario_ids = Column(JSON, nullable=False, default=list)
    # Methodology-specific fields, flattened into the entity dict
    extra = Column(JSON, nullable=True, default=dict)
    created_at = Column(String(40), nullable=False)
    updated_at = Column(String(40), nullable=False)
    version = Column(Integer, nullable=False, default=1)

    references = relationship(
        "UseCaseReferenceRecord",
        order_by="UseCaseReferenceRecord.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dict(self) -> dict:
        """Entity dict shape (see UseCase.from_dict)."""
        data = {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "priority": self.priority,
            "status": self.status,
            "description": self.description or "",
            "preconditions": list(self.preconditions or []),
            "postconditions": list(self.postconditions or []),
            "references": [r.to_dict() for r in self.references],
            "scenario_ids": list(self.scenario_ids or []),
            "metadata": _timestamps(self),
        }
        data.update(self.extra or {})
        return data


class ScenarioRecord(Base):
    """Scenario row, owned by a use case."""

    __tablename__ = "scenarios"

    __table_args__ = (
        Index("ix_scenario_use_case_status", "use_case_id", "status"),
    )

    id = Column(String(80), primary_key=True)
    use_case_id = Column(
        String(64), ForeignKey("use_cases.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String(255), nullable=False)
    scenario_type = Column(String(20), nullable=False, default="main")
    status = Column(String(20), nullable=False, default="planned")
    description = Column(Text, nullable=False, default="")
    actor_id = Column(
        String(100), ForeignKey("actors.id", ondelete="SET NULL"), nullable=True, index=True
    )
    steps = Column(JSON, nullable=False, default=list)
    preconditions = Column(JSON, nullable=False, default=list)
    postconditions = Column(JSON, nullable=False, default=list)
    created_at = Column(String(40), nullable=False)
    updated_at = Column(String(40), nullable=False)
    version = Column(Integer, nullable=False, default=1)

    references = relationship(
        "ScenarioReferenceRecord",
        order_by="ScenarioReferenceRecord.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dict(self) -> dict:
        """Entity dict shape (see Scenario.from_dict)."""
        return {
            "id": self.id,
            "use_case_id": self.use_case_id,
            "title": self.title,
            "scenario_type": self.scenario_type,
            "status": self.status,
            "description": self.description or "",
            "actor_id": self.actor_id,
            "steps": list(self.steps or []),
            "preconditions": list(self.preconditions or []),
            "postconditions": list(self.postconditions or []),
            "references": [r.to_dict() for r in self.references],
            "metadata": _timestamps(self),
        }


class ActorRecord(Base):
    """Persona or system actor row."""

    __tablename__ = "actors"

    id = Column(String(100), primary_key=True)
    actor_type = Column(String(30), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    emoji = Column(String(16), nullable=False, default="")
    # Variant fields: persona profile or system actor description
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(String(40), nullable=False)
    updated_at = Column(String(40), nullable=False)
    version = Column(Integer, nullable=False, default=1)

    def to_dict(self) -> dict:
        """Entity dict shape (see Actor.from_dict)."""
        data = {
            "id": self.id,
            "actor_type": self.actor_type,
            "name": self.name,
            "emoji": self.emoji or "",
        }
        data.update(self.details or {})
        data["metadata"] = _timestamps(self)
        return data


class UseCaseReferenceRecord(Base):
    """Use case -> use case reference edge."""

    __tablename__ = "use_case_references"

    __table_args__ = (
        Index("ix_uc_ref_source_position", "source_id", "position"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_id = Column(
        String(64), ForeignKey("use_cases.id", ondelete="CASCADE"), nullable=False
    )
    position = Column(Integer, nullable=False)
    target_id = Column(String(80), nullable=False, index=True)
    relationship = Column(String(30), nullable=False)
    description = Column(Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "target_id": self.target_id,
            "relationship": self.relationship,
            "description": self.description,
        }


class ScenarioReferenceRecord(Base):
    """Scenario -> scenario or use case reference edge."""

    __tablename__ = "scenario_references"

    __table_args__ = (
        Index("ix_sc_ref_source_position", "source_id", "position"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_id = Column(
        String(80), ForeignKey("scenarios.id", ondelete="CASCADE"), nullable=False
    )
    position = Column(Integer, nullable=False)
    target_type = Column(String(20), nullable=False)
    target_id = Column(String(80), nullable=False, index=True)
    relationship = Column(String(30), nullable=False)
    description = Column(Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "target_type": self.target_type,
            "target_id": self.target_id,
            "relationship": self.relationship,
            "description": self.description,
        }


class SchemaMetadata(Base):
    """Key/value store for database-level facts (schema version)."""

    __tablename__ = "_metadata"

    key = Column(String(64), primary_key=True)
    value = Column(String(255), nullable=False)


def get_database_path(storage_dir: Path) -> Path:
    """Return the path to the SQLite database inside a storage directory."""
    return storage_dir / DATABASE_FILENAME


def get_database_url(storage_dir: Path) -> str:
    """Return the SQLAlchemy database URL for a storage directory.

    Uses POSIX-style paths (forward slashes) for cross-platform compatibility.
    """
    db_path = get_database_path(storage_dir)
    return f"sqlite:///{db_path.as_posix()}"


def _is_network_path(path: Path) -> bool:
    """Detect if path is on a network filesystem.

    WAL mode doesn't work reliably on network filesystems (NFS, SMB, CIFS),
    so callers fall back to DELETE mode when this returns True.
    """
    path_str = str(path.resolve())

    if sys.platform == "win32":
        # UNC paths: \\server\share
        return path_str.startswith("\\\\")

    try:
        with open("/proc/mounts", "r") as f:
            mounts = f.read()
    except (FileNotFoundError, PermissionError):
        return False

    for line in mounts.splitlines():
        parts = line.split()
        if len(parts) >= 3:
            mount_point, fs_type = parts[1], parts[2]
            if path_str.startswith(mount_point) and fs_type in (
                "nfs", "nfs4", "cifs", "smbfs", "fuse.sshfs"
            ):
                return True
    return False


def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
    """SQLite disables FK enforcement by default, per connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _migrate_add_use_case_extra_column(engine) -> None:
    """Add the extra column to databases created before schema version 2.

    Existing rows keep NULL, which reads back as no extra fields.
    """
    with engine.connect() as conn:
        result = conn.execute(text("PRAGMA table_info(use_cases)"))
        columns = [row[1] for row in result.fetchall()]

        if "extra" not in columns:
            conn.execute(text("ALTER TABLE use_cases ADD COLUMN extra JSON DEFAULT NULL"))
            conn.commit()


def _ensure_schema_version(engine) -> int:
    """Record the schema version on first use and return the stored one."""
    with engine.connect() as conn:
        row = conn.execute(
            text("SELECT value FROM _metadata WHERE key = 'schema_version'")
        ).fetchone()
        if row is None:
            conn.execute(
                text("INSERT INTO _metadata (key, value) VALUES ('schema_version', :v)"),
                {"v": str(SCHEMA_VERSION)},
            )
            conn.commit()
            return SCHEMA_VERSION
        return int(row[0])


def get_schema_version(engine) -> int | None:
    if "_metadata" not in inspect(engine).get_table_names():
        return None
    with engine.connect() as conn:
        row = conn.execute(
            text("SELECT value FROM _metadata WHERE key = 'schema_version'")
        ).fetchone()
    return int(row[0]) if row else None


def create_database(storage_dir: Path) -> tuple:
    """
    Create database and return engine + session maker.

    Args:
        storage_dir: Directory holding the database file (created if missing)

    Returns:
        Tuple of (engine, SessionLocal)
    """
    storage_dir = Path(storage_dir)
    storage_dir.mkdir(parents=True, exist_ok=True)

    engine = create_engine(get_database_url(storage_dir), connect_args={
        "check_same_thread": False,
        "timeout": 30,  # Wait up to 30s for locks
    })
    event.listen(engine, "connect", _enable_foreign_keys)
    Base.metadata.create_all(bind=engine)
    _migrate_add_use_case_extra_column(engine)

    journal_mode = "DELETE" if _is_network_path(storage_dir) else "WAL"
    with engine.connect() as conn:
        conn.execute(text(f"PRAGMA journal_mode={journal_mode}"))
        conn.execute(text("PRAGMA busy_timeout=30000"))
        conn.commit()

    version = _ensure_schema_version(engine)
    if version < SCHEMA_VERSION:
        with engine.connect() as conn:
            conn.execute(
                text("UPDATE _metadata SET value = :v WHERE key = 'schema_version'"),
                {"v": str(SCHEMA_VERSION)},
            )
            conn.commit()
        _logger.info("Database schema upgraded from version %d to %d", version, SCHEMA_VERSION)
        version = SCHEMA_VERSION
    if version > SCHEMA_VERSION:
        _logger.warning(
            "Database schema version %d is newer than supported version %d",
            version, SCHEMA_VERSION,
        )
    _logger.debug("Database ready at %s (journal=%s)", storage_dir, journal_mode)

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine,
                                expire_on_commit=False)
    return engine, SessionLocal
