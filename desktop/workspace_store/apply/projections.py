"""
Projection tables for the workspace store.

A projection is a materialized "current state" table derived from the event
log. Each Projection class owns one table and knows how to fold the
created / updated / deleted events of its entity type into it.

Table schema:
    coworkers:
        - id TEXT (primary key)
        - workspace_id TEXT
        - name TEXT
        - description TEXT (nullable)
        - role_prompt, defaults_json, template_id, template_version,
          template_description (nullable)
        - created_at, updated_at INTEGER (Unix ms, from event ts)
        - deleted_at INTEGER (nullable soft-delete marker)
        - INDEX (workspace_id, deleted_at)

    channels:
        - id TEXT (primary key)
        - workspace_id TEXT
        - name TEXT, purpose TEXT, pinned_json TEXT
        - is_default INTEGER, sort_order INTEGER
        - created_at, updated_at, deleted_at INTEGER
        - INDEX (workspace_id, deleted_at), INDEX (workspace_id, sort_order)

    threads:
        - id, workspace_id, channel_id TEXT
        - title, summary_ref TEXT (nullable)
        - created_at, updated_at, deleted_at INTEGER
        - INDEX (channel_id, deleted_at), INDEX (workspace_id, deleted_at)

    messages:
        - id, workspace_id, thread_id TEXT
        - author_type TEXT (user, coworker, system), author_id TEXT
        - content_ref, content_short TEXT (nullable)
        - status TEXT (pending, streaming, complete, error)
        - created_at, updated_at, deleted_at INTEGER
        - INDEX (thread_id, created_at)

Invariants:
    - Rows are only written while applying an event
    - Row timestamps come from the event, never from the wall clock, so a
      rebuild reproduces incremental state exactly
    - Deleted rows are kept with deleted_at set
    - An id is created at most once, even after soft delete

How to change safely:
    - New columns need a migration and a payload model field
    - New entity types subclass Projection and register with the Applier
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, fields
from typing import Any, ClassVar

from pydantic import ValidationError

from ..errors import ProjectionApplyError
from .event_log import Event
from .payloads import (
    ChannelCreatedPayload,
    ChannelUpdatedPayload,
    CoworkerCreatedPayload,
    CoworkerUpdatedPayload,
    DeletedPayload,
    MessageCreatedPayload,
    MessageUpdatedPayload,
    PayloadModel,
    ThreadCreatedPayload,
    ThreadUpdatedPayload,
)

logger = logging.getLogger(__name__)


@dataclass
class Coworker:
    """Current state of a coworker.

    Attributes:
        id: Coworker identifier
        workspace_id: Owning workspace
        name: Display name
        description: Optional description
        created_at: Creation timestamp (Unix ms)
        updated_at: Last update timestamp (Unix ms)
        deleted_at: Soft-delete timestamp, None while active
        role_prompt: Role prompt text
        defaults_json: Serialized default settings
        template_id: Template the coworker was created from
        template_version: Version of that template
        template_description: Description copied from the template
    """

    id: str
    workspace_id: str
    name: str
    description: str | None
    created_at: int
    updated_at: int
    deleted_at: int | None = None
    role_prompt: str | None = None
    defaults_json: str | None = None
    template_id: str | None = None
    template_version: int | None = None
    template_description: str | None = None


@dataclass
class Channel:
    """Current state of a channel.

    Attributes:
        id: Channel identifier
        workspace_id: Owning workspace
        name: Channel name
        purpose: Optional purpose text
        pinned_json: Serialized pinned items
        is_default: Whether this is the workspace's default channel
        sort_order: Position in the channel list
        created_at: Creation timestamp (Unix ms)
        updated_at: Last update timestamp (Unix ms)
        deleted_at: Soft-delete timestamp, None while active
    """

    id: str
    workspace_id: str
    name: str
    purpose: str | None
    pinned_json: str | None
    is_default: bool
    sort_order: int
    created_at: int
    updated_at: int
    deleted_at: int | None = None


@dataclass
class Thread:
    """Current state of a conversation thread.

    Attributes:
        id: Thread identifier
        workspace_id: Owning workspace
        channel_id: Channel the thread belongs to
        title: Optional title
        summary_ref: Blob reference of the thread summary
        created_at: Creation timestamp (Unix ms)
        updated_at: Last update timestamp (Unix ms)
        deleted_at: Soft-delete timestamp, None while active
    """

    id: str
    workspace_id: str
    channel_id: str
    title: str | None
    summary_ref: str | None
    created_at: int
    updated_at: int
    deleted_at: int | None = None


@dataclass
class Message:
    """Current state of a message in a thread."""

    id: str
    workspace_id: str
    thread_id: str
    author_type: str
    author_id: str | None
    content_ref: str | None
    content_short: str | None
    status: str
    created_at: int
    updated_at: int
    deleted_at: int | None = None


class Projection:
    """Base class for a projection table.

    Subclasses set the table name, entity type, row dataclass, payload
    models and list ordering.
    """

    entity_type: ClassVar[str]
    table: ClassVar[str]
    row_type: ClassVar[type]
    created_payload: ClassVar[type[PayloadModel]]
    updated_payload: ClassVar[type[PayloadModel]]
    order_by: ClassVar[str] = "created_at DESC, id ASC"
    # Column holding the owning entity's id (channel of a thread, ...)
    parent_column: ClassVar[str | None] = None

    def _fields(self, model: type[PayloadModel], event: Event, partial: bool) -> dict[str, Any]:
        try:
            return model.fields_from(event.payload, partial=partial)
        except ValidationError as e:
            raise ProjectionApplyError(
                f"Invalid {event.entity_type} {event.event_type} payload: {e}",
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                event_type=event.event_type,
                seq=event.seq,
            ) from e

    def _error(self, message: str, event: Event) -> ProjectionApplyError:
        return ProjectionApplyError(
            message,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            event_type=event.event_type,
            seq=event.seq,
        )

    def _get_row(self, conn: sqlite3.Connection, workspace_id: str, entity_id: str) -> sqlite3.Row | None:
        cursor = conn.execute(
            f"SELECT * FROM {self.table} WHERE id = ? AND workspace_id = ?",
            (entity_id, workspace_id),
        )
        return cursor.fetchone()

    def from_row(self, row: sqlite3.Row) -> Any:
        """Convert a table row to the projection's dataclass."""
        return self.row_type(**{f.name: row[f.name] for f in fields(self.row_type)})

    def apply_created(self, conn: sqlite3.Connection, event: Event) -> None:
        """Insert a new row for a created event."""
        values = self._fields(self.created_payload, event, partial=False)

        cursor = conn.execute(f"SELECT deleted_at FROM {self.table} WHERE id = ?", (event.entity_id,))
        existing = cursor.fetchone()
        if existing is not None:
            state = "soft-deleted" if existing["deleted_at"] is not None else "active"
            raise self._error(
                f"{self.entity_type} {event.entity_id} already exists ({state})", event
            )

        values.update(
            id=event.entity_id,
            workspace_id=event.workspace_id,
            created_at=event.ts,
            updated_at=event.ts,
        )
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        conn.execute(
            f"INSERT INTO {self.table} ({columns}) VALUES ({placeholders})",
            tuple(values.values()),
        )

    def apply_updated(self, conn: sqlite3.Connection, event: Event) -> None:
        """Merge the payload's fields into an existing row (PATCH semantics)."""
        changes = self._fields(self.updated_payload, event, partial=True)

        row = self._get_row(conn, event.workspace_id, event.entity_id)
        if row is None:
            raise self._error(f"Update before create for {self.entity_type} {event.entity_id}", event)
        if row["deleted_at"] is not None:
            raise self._error(f"Update of deleted {self.entity_type} {event.entity_id}", event)

        changes["updated_at"] = event.ts
        assignments = ", ".join(f"{column} = ?" for column in changes)
        conn.execute(
            f"UPDATE {self.table} SET {assignments} WHERE id = ? AND workspace_id = ?",
            (*changes.values(), event.entity_id, event.workspace_id),
        )

    def apply_deleted(self, conn: sqlite3.Connection, event: Event) -> None:
        """Soft-delete a row; the row itself is kept."""
        self._fields(DeletedPayload, event, partial=True)

        row = self._get_row(conn, event.workspace_id, event.entity_id)
        if row is None:
            raise self._error(f"Delete before create for {self.entity_type} {event.entity_id}", event)
        if row["deleted_at"] is not None:
            logger.debug(
                "Entity already deleted, keeping original deleted_at",
                extra={"entity_type": self.entity_type, "entity_id": event.entity_id},
            )
            return

        conn.execute(
            f"UPDATE {self.table} SET deleted_at = ?, updated_at = ? WHERE id = ? AND workspace_id = ?",
            (event.ts, event.ts, event.entity_id, event.workspace_id),
        )

    def truncate(self, conn: sqlite3.Connection, workspace_id: str) -> int:
        """Delete all of a workspace's rows. Only used by rebuild."""
        cursor = conn.execute(f"DELETE FROM {self.table} WHERE workspace_id = ?", (workspace_id,))
        return cursor.rowcount

    def find(self, conn: sqlite3.Connection, workspace_id: str, entity_id: str) -> Any | None:
        """Get a row whether or not it is soft-deleted."""
        row = self._get_row(conn, workspace_id, entity_id)
        return self.from_row(row) if row else None

    def find_active(self, conn: sqlite3.Connection, workspace_id: str, entity_id: str) -> Any | None:
        """Get a row only if it is not soft-deleted."""
        cursor = conn.execute(
            f"""
            SELECT * FROM {self.table}
            WHERE id = ? AND workspace_id = ? AND deleted_at IS NULL
            """,
            (entity_id, workspace_id),
        )
        row = cursor.fetchone()
        return self.from_row(row) if row else None

    def list_active(
        self, conn: sqlite3.Connection, workspace_id: str, parent_id: str | None = None
    ) -> list[Any]:
        """List a workspace's rows that are not soft-deleted.

        Args:
            conn: Open connection
            workspace_id: Workspace identifier
            parent_id: Only rows owned by this entity (requires parent_column)

        Raises:
            ValueError: If parent_id is given for a projection without parents
        """
        where = "workspace_id = ? AND deleted_at IS NULL"
        params: tuple[Any, ...] = (workspace_id,)
        if parent_id is not None:
            if self.parent_column is None:
                raise ValueError(f"{self.entity_type} rows have no parent")
            where += f" AND {self.parent_column} = ?"
            params += (parent_id,)

        cursor = conn.execute(
            f"SELECT * FROM {self.table} WHERE {where} ORDER BY {self.order_by}",
            params,
        )
        return [self.from_row(row) for row in cursor.fetchall()]

    def counts(self, conn: sqlite3.Connection, workspace_id: str) -> dict[str, int]:
        """Count active and deleted rows of a workspace."""
        cursor = conn.execute(
            f"""
            SELECT
                COALESCE(SUM(CASE WHEN deleted_at IS NULL THEN 1 ELSE 0 END), 0),
                COALESCE(SUM(CASE WHEN deleted_at IS NOT NULL THEN 1 ELSE 0 END), 0)
            FROM {self.table} WHERE workspace_id = ?
            """,
            (workspace_id,),
        )
        active, deleted = cursor.fetchone()
        return {"active": active, "deleted": deleted}


class CoworkerProjection(Projection):
    entity_type = "coworker"
    table = "coworkers"
    row_type = Coworker
    created_payload = CoworkerCreatedPayload
    updated_payload = CoworkerUpdatedPayload


class ChannelProjection(Projection):
    entity_type = "channel"
    table = "channels"
    row_type = Channel
    created_payload = ChannelCreatedPayload
    updated_payload = ChannelUpdatedPayload
    order_by = "sort_order ASC, created_at ASC, id ASC"

    def from_row(self, row: sqlite3.Row) -> Channel:
        channel = super().from_row(row)
        channel.is_default = bool(channel.is_default)
        return channel


class ThreadProjection(Projection):
    entity_type = "thread"
    table = "threads"
    row_type = Thread
    created_payload = ThreadCreatedPayload
    updated_payload = ThreadUpdatedPayload
    order_by = "updated_at DESC, id ASC"
    parent_column = "channel_id"


class MessageProjection(Projection):
    entity_type = "message"
    table = "messages"
    row_type = Message
    created_payload = MessageCreatedPayload
    updated_payload = MessageUpdatedPayload
    order_by = "created_at ASC, id ASC"
    parent_column = "thread_id"
