"""
Error types for the workspace store.

This module defines every exception raised by the storage engine:
- WorkspaceStoreError: Base exception
- StorageOpenError: Database file could not be opened
- SchemaReadError / MigrationStepError / VersionWriteError: Migration failures
- EventAppendError: Event insert violated a constraint
- WorkspaceMismatchError: Event targets another workspace than the file owner
- ProjectionApplyError: Event could not be folded into a projection
- CloseError: Checkpoint or close failed on shutdown

Invariants:
    - All errors inherit from WorkspaceStoreError
    - Errors include context for debugging
    - Open and migration errors are fatal for the workspace
    - CloseError is logged by the connection manager, never raised to callers
"""

from __future__ import annotations

from typing import Any


class WorkspaceStoreError(Exception):
    """Base exception for all workspace store errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "WORKSPACE_STORE_ERROR"
        self.details = details or {}


class StorageOpenError(WorkspaceStoreError):
    """Workspace database could not be opened.

    Raised when:
    - The path is not absolute
    - The file or its directory is not writable
    - The file is not a SQLite database or is corrupt
    """

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message, code="STORAGE_OPEN_ERROR", details={"path": path})
        self.path = path


class SchemaReadError(WorkspaceStoreError):
    """Schema version metadata could not be read."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="SCHEMA_READ_ERROR")


class MigrationStepError(WorkspaceStoreError):
    """A migration step failed and the migration was rolled back."""

    def __init__(self, message: str, version: int, from_version: int) -> None:
        super().__init__(
            message,
            code="MIGRATION_STEP_ERROR",
            details={"version": version, "from_version": from_version},
        )
        self.version = version
        self.from_version = from_version


class VersionWriteError(WorkspaceStoreError):
    """Schema version could not be persisted after the steps ran."""

    def __init__(self, message: str, target_version: int) -> None:
        super().__init__(
            message,
            code="VERSION_WRITE_ERROR",
            details={"target_version": target_version},
        )
        self.target_version = target_version


class EventAppendError(WorkspaceStoreError):
    """Event insert violated a constraint (e.g. duplicate seq)."""

    def __init__(self, message: str, workspace_id: str, seq: int | None = None) -> None:
        super().__init__(
            message,
            code="EVENT_APPEND_ERROR",
            details={"workspace_id": workspace_id, "seq": seq},
        )
        self.workspace_id = workspace_id
        self.seq = seq


class ProjectionApplyError(WorkspaceStoreError):
    """Event could not be applied to its projection.

    Raised when:
    - A created event targets an id that already has a row
    - An updated or deleted event targets a missing row
    - An updated event targets a soft-deleted row
    - The payload does not validate for its entity type
    """

    def __init__(
        self,
        message: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        event_type: str | None = None,
        seq: int | None = None,
    ) -> None:
        super().__init__(
            message,
            code="PROJECTION_APPLY_ERROR",
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "event_type": event_type,
                "seq": seq,
            },
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.event_type = event_type
        self.seq = seq


class CloseError(WorkspaceStoreError):
    """Checkpoint or close failed during shutdown."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message, code="CLOSE_ERROR", details={"path": path})
        self.path = path


class EntityNotFoundError(WorkspaceStoreError):
    """No projection row exists for the requested entity."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(
            f"{entity_type.capitalize()} not found: {entity_id}",
            code="ENTITY_NOT_FOUND",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class EntityArchivedError(WorkspaceStoreError):
    """The requested entity has been soft-deleted."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(
            f"{entity_type.capitalize()} has been archived: {entity_id}",
            code="ENTITY_ARCHIVED",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class WorkspaceError(WorkspaceStoreError):
    """Workspace folder is missing, invalid or already exists."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message, code="WORKSPACE_ERROR", details={"path": path})
        self.path = path


class WorkspaceMismatchError(WorkspaceStoreError):
    """Event targets a workspace other than the one owning the database.

    A workspace database holds the events of exactly one workspace.
    """

    def __init__(self, workspace_id: str, owner_id: str) -> None:
        super().__init__(
            f"Workspace database belongs to workspace {owner_id}, not {workspace_id}",
            code="WORKSPACE_MISMATCH",
            details={"workspace_id": workspace_id, "owner_id": owner_id},
        )
        self.workspace_id = workspace_id
        self.owner_id = owner_id
