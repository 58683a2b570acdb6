"""
Workspace store - the single entry point to a workspace database.

WorkspaceStore owns one open handle and exposes the only operations other
code may use against a workspace's tables:
- append: record an event and apply it to projections atomically
- list_by_entity / list_by_workspace: read the event log
- find / find_active / list_active: read projections
- rebuild: replay the log into empty projections
- run_migrations / close: lifecycle

Invariants:
    - An event and its projection effect commit in one transaction
    - seq allocation and insert happen under the same write lock
    - Readers never see an event without its projection effect, or the reverse
    - No operation runs before the schema is migrated
    - close() checkpoints and never raises
    - A database holds the events of exactly one workspace; appends for any
      other workspace are rejected

How to change safely:
    - Keep every write inside handle.transaction()
    - Keep the bodies between lock acquisition and commit free of awaits
    - Add read methods here rather than querying tables elsewhere
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..config import StorageConfig
from ..errors import WorkspaceMismatchError, WorkspaceStoreError
from ..storage.connection import WorkspaceConnection, close_database, open_database
from ..storage.migrations import (
    CURRENT_SCHEMA_VERSION,
    MigrationResult,
    get_schema_version,
    run_migrations,
)
from .applier import Applier
from .event_log import Event, EventLog
from .projections import Projection

logger = logging.getLogger(__name__)


def system_clock() -> int:
    """Current wall-clock time in Unix milliseconds."""
    return int(time.time() * 1000)


@dataclass
class RebuildResult:
    """Result of a projection rebuild.

    Attributes:
        workspace_id: Rebuilt workspace
        events_replayed: Number of events folded
        rows_removed: Projection rows deleted before replay
        last_seq: Highest replayed seq (None for an empty log)
        duration_ms: Total rebuild duration
    """

    workspace_id: str
    events_replayed: int
    rows_removed: int
    last_seq: int | None
    duration_ms: int


class WorkspaceStore:
    """Event-sourced store over one workspace database file.

    Thread safety:
        Designed for a single asyncio event loop. Writes are serialized by
        an asyncio.Lock on top of SQLite's own writer lock.

    Example:
        >>> async with WorkspaceStore.open("/data/acme.cowork/workspace.db") as store:
        ...     event = await store.append(
        ...         workspace_id="w1",
        ...         actor="user:42",
        ...         entity_type="coworker",
        ...         entity_id="c1",
        ...         event_type="created",
        ...         payload={"name": "Ada"},
        ...     )
        ...     coworker = await store.find_active("w1", "c1")
    """

    def __init__(
        self,
        handle: WorkspaceConnection,
        applier: Applier | None = None,
        clock: Callable[[], int] | None = None,
        workspace_id: str | None = None,
    ) -> None:
        """Wrap an open handle.

        Prefer WorkspaceStore.open(), which also runs migrations.

        Args:
            handle: Open workspace database
            applier: Projection applier (all default projections if not provided)
            clock: Source of event timestamps in Unix ms
            workspace_id: Workspace owning the database; if None, the owner
                is taken from the stored events or the first append
        """
        self.handle = handle
        self.applier = applier or Applier()
        self.workspace_id = workspace_id
        self._clock = clock or system_clock
        self._write_lock = asyncio.Lock()
        self._schema_ready = get_schema_version(handle) >= CURRENT_SCHEMA_VERSION

    @classmethod
    def open(
        cls,
        path: str | Path,
        config: StorageConfig | None = None,
        applier: Applier | None = None,
        clock: Callable[[], int] | None = None,
        migrate: bool = True,
        workspace_id: str | None = None,
    ) -> WorkspaceStore:
        """Open a workspace database and bring its schema up to date.

        Args:
            path: Absolute path to the workspace database file
            config: SQLite settings
            applier: Projection applier
            clock: Source of event timestamps in Unix ms
            migrate: Run migrations before returning
            workspace_id: Workspace owning the database

        Returns:
            A ready WorkspaceStore

        Raises:
            StorageOpenError: If the file cannot be opened
            MigrationStepError, VersionWriteError: If migration fails; the
                handle is closed before the error propagates
        """
        handle = open_database(path, config)
        store = cls(handle, applier=applier, clock=clock, workspace_id=workspace_id)
        if migrate:
            try:
                store._migrate()
            except Exception:
                close_database(handle)
                raise
        return store

    async def __aenter__(self) -> WorkspaceStore:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def path(self) -> Path:
        return self.handle.path

    @property
    def closed(self) -> bool:
        return self.handle.closed

    def _migrate(self) -> MigrationResult:
        result = run_migrations(self.handle)
        self._schema_ready = True
        return result

    def _require_ready(self) -> None:
        if self.handle.closed:
            raise WorkspaceStoreError(f"Workspace database is closed: {self.path}", code="STORE_CLOSED")
        if not self._schema_ready:
            raise WorkspaceStoreError(
                f"Workspace database schema is not migrated: {self.path}", code="SCHEMA_NOT_READY"
            )

    def _projection(self, entity_type: str) -> Projection:
        projection = self.applier.projection_for(entity_type)
        if projection is None:
            raise ValueError(f"No projection for entity type: {entity_type}")
        return projection

    async def run_migrations(self) -> MigrationResult:
        """Bring the schema up to date. Safe to call repeatedly."""
        if self.handle.closed:
            raise WorkspaceStoreError(f"Workspace database is closed: {self.path}", code="STORE_CLOSED")
        async with self._write_lock:
            return self._migrate()

    async def schema_version(self) -> int:
        """Get the recorded schema version."""
        return get_schema_version(self.handle)

    async def close(self) -> bool:
        """Checkpoint and close the database. Never raises.

        Returns:
            True if the close was clean
        """
        async with self._write_lock:
            return close_database(self.handle)

    async def append(
        self,
        workspace_id: str,
        actor: str,
        entity_type: str,
        entity_id: str,
        event_type: str,
        payload: dict[str, Any] | None = None,
    ) -> Event:
        """Append an event and apply it to projections atomically.

        Args:
            workspace_id: Owning workspace
            actor: Who or what produced the event
            entity_type: Domain category ("coworker", "channel", ...)
            entity_id: Entity instance identifier
            event_type: "created", "updated", "deleted" (or "archived")
            payload: Change document

        Returns:
            The persisted event, with seq and ts assigned

        Raises:
            ValueError: If an identifier is empty
            WorkspaceMismatchError: If the database belongs to another workspace
            EventAppendError: If the insert violates a constraint
            ProjectionApplyError: If the projection rejects the event; the
                event is not persisted
        """
        self._require_ready()

        required = {
            "workspace_id": workspace_id,
            "actor": actor,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "event_type": event_type,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ValueError(f"Missing required fields: {missing}")

        async with self._write_lock:
            try:
                with self.handle.transaction("IMMEDIATE") as conn:
                    log = EventLog(conn)
                    for owner in (self.workspace_id, log.owner()):
                        if owner is not None and owner != workspace_id:
                            raise WorkspaceMismatchError(workspace_id, owner)
                    event = Event(
                        id=str(uuid.uuid4()),
                        workspace_id=workspace_id,
                        seq=log.next_seq(workspace_id),
                        ts=self._clock(),
                        actor=actor,
                        entity_type=entity_type,
                        entity_id=entity_id,
                        event_type=event_type,
                        payload=dict(payload or {}),
                    )
                    log.insert(event)
                    self.applier.apply(conn, event)
            except sqlite3.Error as e:
                raise WorkspaceStoreError(f"Error appending event: {e}", code="STORAGE_ERROR") from e
            self.workspace_id = workspace_id

        logger.debug(
            "Appended event",
            extra={
                "workspace_id": workspace_id,
                "seq": event.seq,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "event_type": event_type,
            },
        )
        return event

    async def list_by_entity(self, workspace_id: str, entity_type: str, entity_id: str) -> list[Event]:
        """Get one entity's full history, ascending seq."""
        self._require_ready()
        return EventLog(self.handle.conn).list_by_entity(workspace_id, entity_type, entity_id)

    async def list_by_workspace(self, workspace_id: str, since_seq: int | None = None) -> list[Event]:
        """Get a workspace's events after since_seq (all if None), ascending seq."""
        self._require_ready()
        return EventLog(self.handle.conn).list_by_workspace(workspace_id, since_seq)

    async def last_seq(self, workspace_id: str) -> int | None:
        """Get the highest committed seq of a workspace."""
        self._require_ready()
        return EventLog(self.handle.conn).last_seq(workspace_id)

    async def find_active(self, workspace_id: str, entity_id: str, entity_type: str = "coworker") -> Any | None:
        """Get a projection row that is not soft-deleted.

        Returns:
            The row's dataclass (e.g. Coworker) or None
        """
        self._require_ready()
        return self._projection(entity_type).find_active(self.handle.conn, workspace_id, entity_id)

    async def list_active(
        self, workspace_id: str, entity_type: str = "coworker", parent_id: str | None = None
    ) -> list[Any]:
        """List a workspace's projection rows that are not soft-deleted.

        parent_id narrows the list to one owner, e.g. the threads of a channel.
        """
        self._require_ready()
        return self._projection(entity_type).list_active(self.handle.conn, workspace_id, parent_id)

    async def find(self, workspace_id: str, entity_id: str, entity_type: str = "coworker") -> Any | None:
        """Get a projection row including soft-deleted ones."""
        self._require_ready()
        return self._projection(entity_type).find(self.handle.conn, workspace_id, entity_id)

    async def rebuild(self, workspace_id: str) -> RebuildResult:
        """Rebuild a workspace's projections by replaying its event log.

        Runs as a single transaction: on any failure the previous
        projection state is kept.

        Raises:
            ProjectionApplyError: If an event in the log cannot be applied
        """
        self._require_ready()
        start = time.monotonic()

        async with self._write_lock:
            try:
                with self.handle.transaction("IMMEDIATE") as conn:
                    removed = self.applier.truncate(conn, workspace_id)
                    events = EventLog(conn).list_by_workspace(workspace_id)
                    for event in events:
                        self.applier.apply(conn, event)
            except sqlite3.Error as e:
                raise WorkspaceStoreError(f"Error rebuilding projections: {e}", code="STORAGE_ERROR") from e

        result = RebuildResult(
            workspace_id=workspace_id,
            events_replayed=len(events),
            rows_removed=removed,
            last_seq=events[-1].seq if events else None,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        logger.info(
            "Rebuilt projections",
            extra={
                "workspace_id": workspace_id,
                "events_replayed": result.events_replayed,
                "duration_ms": result.duration_ms,
            },
        )
        return result

    async def workspace_ids(self) -> list[str]:
        """List workspace ids that have events in this file."""
        self._require_ready()
        return EventLog(self.handle.conn).workspace_ids()

    async def stats(self, workspace_id: str) -> dict[str, Any]:
        """Get statistics for a workspace.

        Returns:
            Dictionary with event count, last seq, schema version and
            active/deleted counts per projection
        """
        self._require_ready()
        conn = self.handle.conn
        log = EventLog(conn)
        return {
            "schema_version": get_schema_version(self.handle),
            "events": log.count(workspace_id),
            "last_seq": log.last_seq(workspace_id),
            "projections": {
                projection.table: projection.counts(conn, workspace_id)
                for projection in self.applier.projections
            },
        }
