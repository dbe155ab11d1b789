"""
Error Taxonomy
==============

Typed exceptions raised by the use case manager core.

Every error carries:
- error_code: stable machine-readable identifier
- exit_code: stable process exit status for command-line collaborators
- details: optional structured context (ids, paths, cycle members)

Components raise these directly; the domain service lets them propagate
unchanged so callers can always tell the kinds apart.

Exit codes:
- 3  NOT_FOUND
- 4  DUPLICATE_IDENTIFIER
- 5  CAPACITY_EXCEEDED
- 6  DANGLING_TARGET
- 7  SELF_REFERENCE
- 8  CYCLE_DETECTED
- 9  REFERENCED_ENTITY_IN_USE
- 10 STORAGE_IO_ERROR
- 11 INVARIANT_VIOLATION
- 12 TOKEN_COLLISION
- 13 CONFIGURATION_ERROR
"""
from __future__ import annotations

from typing import Any


class UcmError(Exception):
    """
    Base class for all use case manager errors.

    Subclasses set error_code and exit_code as class attributes so the
    mapping stays stable regardless of the message.
    """

    error_code = "UCM_ERROR"
    exit_code = 1

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(UcmError):
    """Raised when an identifier does not resolve to any entity."""

    error_code = "NOT_FOUND"
    exit_code = 3

    def __init__(self, kind: str, entity_id: str, message: str | None = None):
        self.kind = kind
        self.entity_id = entity_id
        if message is None:
            message = f"{kind.replace('_', ' ').capitalize()} '{entity_id}' not found"
        super().__init__(message, {"kind": kind, "id": entity_id})


class DuplicateIdentifierError(UcmError):
    """Raised when an entity is created with an identifier that is already taken."""

    error_code = "DUPLICATE_IDENTIFIER"
    exit_code = 4

    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(
            f"{kind.replace('_', ' ').capitalize()} '{entity_id}' already exists",
            {"kind": kind, "id": entity_id},
        )


class CapacityExceededError(UcmError):
    """Raised when an identifier sequence has no free slot left."""

    error_code = "CAPACITY_EXCEEDED"
    exit_code = 5

    def __init__(self, scope: str, capacity: int):
        self.scope = scope
        self.capacity = capacity
        super().__init__(
            f"Identifier space for '{scope}' is exhausted ({capacity} slots in use)",
            {"scope": scope, "capacity": capacity},
        )


# =============================================================================
# Reference graph errors
# =============================================================================

class ReferenceGraphError(UcmError):
    """Base for reference validation failures."""

    error_code = "REFERENCE_ERROR"

    def __init__(
        self,
        message: str,
        source_id: str,
        target_id: str,
        relationship: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.source_id = source_id
        self.target_id = target_id
        self.relationship = relationship
        merged = {"source_id": source_id, "target_id": target_id}
        if relationship is not None:
            merged["relationship"] = relationship
        if details:
            merged.update(details)
        super().__init__(message, merged)


class DanglingTargetError(ReferenceGraphError):
    """Raised when a reference points at an entity that does not exist."""

    error_code = "DANGLING_TARGET"
    exit_code = 6

    def __init__(self, source_id: str, target_id: str, relationship: str | None = None):
        super().__init__(
            f"Reference from '{source_id}' targets missing entity '{target_id}'",
            source_id,
            target_id,
            relationship,
        )


class SelfReferenceError(ReferenceGraphError):
    """Raised when an entity references itself."""

    error_code = "SELF_REFERENCE"
    exit_code = 7

    def __init__(self, source_id: str, relationship: str | None = None):
        super().__init__(
            f"'{source_id}' cannot reference itself",
            source_id,
            source_id,
            relationship,
        )


class CycleDetectedError(ReferenceGraphError):
    """Raised when adding an edge would close a cycle of an acyclic relationship kind."""

    error_code = "CYCLE_DETECTED"
    exit_code = 8

    def __init__(
        self,
        source_id: str,
        target_id: str,
        relationship: str,
        cycle: list[str],
    ):
        self.cycle = cycle
        super().__init__(
            f"Adding '{relationship}' from '{source_id}' to '{target_id}' "
            f"would create a cycle: {' -> '.join(cycle)}",
            source_id,
            target_id,
            relationship,
            {"cycle": cycle},
        )


class ReferencedEntityInUseError(UcmError):
    """Raised when deleting an entity that other entities still reference."""

    error_code = "REFERENCED_ENTITY_IN_USE"
    exit_code = 9

    def __init__(self, entity_id: str, referrers: list[str]):
        self.entity_id = entity_id
        self.referrers = referrers
        super().__init__(
            f"'{entity_id}' is still referenced by: {', '.join(referrers)}",
            {"id": entity_id, "referrers": referrers},
        )


# =============================================================================
# Storage and invariants
# =============================================================================

class StorageIOError(UcmError):
    """Backend I/O or transaction failure, wrapped uniformly for both backends."""

    error_code = "STORAGE_IO_ERROR"
    exit_code = 10

    def __init__(self, backend: str, operation: str, cause: BaseException | None = None):
        self.backend = backend
        self.operation = operation
        self.cause = cause
        message = f"{backend} backend failed during {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message, {"backend": backend, "operation": operation})


class InvariantViolationError(UcmError):
    """Raised when a mutation would break an entity invariant."""

    error_code = "INVARIANT_VIOLATION"
    exit_code = 11


class TokenCollisionError(UcmError):
    """Raised when two categories collapse to one token and the strategy forbids extending it."""

    error_code = "TOKEN_COLLISION"
    exit_code = 12

    def __init__(self, category: str, token: str, owner: str):
        self.category = category
        self.token = token
        self.owner = owner
        super().__init__(
            f"Category '{category}' maps to token '{token}' already used by "
            f"category '{owner}'; add an explicit entry to category_tokens",
            {"category": category, "token": token, "owner": owner},
        )


class ConfigurationError(UcmError):
    """Raised when project configuration is missing, malformed or inconsistent."""

    error_code = "CONFIGURATION_ERROR"
    exit_code = 13


# Stable mapping used by command-line collaborators
EXIT_CODES: dict[str, int] = {
    cls.error_code: cls.exit_code
    for cls in (
        NotFoundError,
        DuplicateIdentifierError,
        CapacityExceededError,
        DanglingTargetError,
        SelfReferenceError,
        CycleDetectedError,
        ReferencedEntityInUseError,
        StorageIOError,
        InvariantViolationError,
        TokenCollisionError,
        ConfigurationError,
    )
}


def exit_code_for(exc: BaseException) -> int:
    """Return the process exit status a caller should use for an exception."""
    if isinstance(exc, UcmError):
        return exc.exit_code
    return 1
