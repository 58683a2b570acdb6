"""
Append-only event log for workspace databases.

Every mutation in a workspace is recorded as an Event row. Events are
totally ordered per workspace by seq; ts is informational only.

Table schema:
    events:
        - id TEXT (UUID, primary key)
        - workspace_id TEXT
        - seq INTEGER (0-based, gap-free per workspace)
        - ts INTEGER (Unix ms)
        - actor TEXT
        - entity_type TEXT
        - entity_id TEXT
        - event_type TEXT
        - payload_json TEXT (JSON object)
        - UNIQUE INDEX (workspace_id, seq)
        - INDEX (workspace_id, entity_type, entity_id, seq)

Invariants:
    - Rows are never updated or deleted
    - seq is allocated as MAX(seq) + 1 inside the caller's write transaction
    - Listing is always ordered by seq, never by ts
    - A stored payload that is not a JSON object reads back as {}

How to change safely:
    - EventLog does not open transactions; WorkspaceStore owns them
    - Never add an UPDATE or DELETE against events
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any

from ..errors import EventAppendError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    """An immutable entry in a workspace's event log.

    Attributes:
        id: Globally unique event identifier (UUID)
        workspace_id: Owning workspace
        seq: Position in the workspace's log (0-based)
        ts: Event timestamp (Unix ms), informational only
        actor: Who or what produced the event
        entity_type: Domain category ("coworker", "channel", ...)
        entity_id: Entity instance the event concerns
        event_type: "created", "updated", "deleted" (or an alias)
        payload: Entity-type-specific change document
    """

    id: str
    workspace_id: str
    seq: int
    ts: int
    actor: str
    entity_type: str
    entity_id: str
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "seq": self.seq,
            "ts": self.ts,
            "actor": self.actor,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "event_type": self.event_type,
            "payload": self.payload,
        }


def decode_payload(raw: str | None, event_id: str | None = None) -> dict[str, Any]:
    """Parse a stored payload, treating anything malformed as absent.

    Args:
        raw: payload_json column value
        event_id: Event id, for the log message

    Returns:
        The payload dictionary, or {} if it cannot be parsed as an object
    """
    if raw is None:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning(f"Malformed event payload treated as empty: {e}", extra={"event_id": event_id})
        return {}
    if not isinstance(value, dict):
        logger.warning(
            "Event payload is not an object, treated as empty", extra={"event_id": event_id}
        )
        return {}
    return value


def _row_to_event(row: sqlite3.Row) -> Event:
    return Event(
        id=row["id"],
        workspace_id=row["workspace_id"],
        seq=row["seq"],
        ts=row["ts"],
        actor=row["actor"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        event_type=row["event_type"],
        payload=decode_payload(row["payload_json"], row["id"]),
    )


class EventLog:
    """Reads and appends rows of the events table on one connection.

    The log never begins or commits transactions itself. Appends must run
    inside a write transaction opened by the caller so that seq allocation
    and the insert are atomic.

    Example:
        >>> log = EventLog(handle.conn)
        >>> events = log.list_by_workspace("w1", since_seq=10)
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def next_seq(self, workspace_id: str) -> int:
        """Allocate the next sequence number for a workspace.

        Only meaningful inside a write transaction.
        """
        cursor = self.conn.execute(
            "SELECT COALESCE(MAX(seq), -1) + 1 FROM events WHERE workspace_id = ?",
            (workspace_id,),
        )
        return int(cursor.fetchone()[0])

    def insert(self, event: Event) -> None:
        """Persist an event row.

        Args:
            event: Fully populated event

        Raises:
            EventAppendError: If the payload cannot be serialized or the
                insert violates a constraint (duplicate id or seq)
        """
        try:
            payload_json = json.dumps(event.payload)
        except (TypeError, ValueError) as e:
            raise EventAppendError(
                f"Event payload is not serializable: {e}",
                workspace_id=event.workspace_id,
                seq=event.seq,
            ) from e

        try:
            self.conn.execute(
                """
                INSERT INTO events (id, workspace_id, seq, ts, actor,
                                    entity_type, entity_id, event_type, payload_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.workspace_id,
                    event.seq,
                    event.ts,
                    event.actor,
                    event.entity_type,
                    event.entity_id,
                    event.event_type,
                    payload_json,
                ),
            )
        except sqlite3.IntegrityError as e:
            raise EventAppendError(
                f"Event insert violated a constraint: {e}",
                workspace_id=event.workspace_id,
                seq=event.seq,
            ) from e

    def list_by_entity(self, workspace_id: str, entity_type: str, entity_id: str) -> list[Event]:
        """Get the full history of one entity, ascending seq.

        Args:
            workspace_id: Workspace identifier
            entity_type: Entity category
            entity_id: Entity identifier

        Returns:
            List of events
        """
        cursor = self.conn.execute(
            """
            SELECT * FROM events
            WHERE workspace_id = ? AND entity_type = ? AND entity_id = ?
            ORDER BY seq ASC
            """,
            (workspace_id, entity_type, entity_id),
        )
        return [_row_to_event(row) for row in cursor.fetchall()]

    def list_by_workspace(self, workspace_id: str, since_seq: int | None = None) -> list[Event]:
        """Get a workspace's events, ascending seq.

        Args:
            workspace_id: Workspace identifier
            since_seq: If given, only events with seq strictly greater

        Returns:
            List of events
        """
        if since_seq is not None:
            cursor = self.conn.execute(
                "SELECT * FROM events WHERE workspace_id = ? AND seq > ? ORDER BY seq ASC",
                (workspace_id, since_seq),
            )
        else:
            cursor = self.conn.execute(
                "SELECT * FROM events WHERE workspace_id = ? ORDER BY seq ASC",
                (workspace_id,),
            )
        return [_row_to_event(row) for row in cursor.fetchall()]

    def last_seq(self, workspace_id: str) -> int | None:
        """Get the highest committed seq of a workspace, or None if empty."""
        cursor = self.conn.execute(
            "SELECT MAX(seq) FROM events WHERE workspace_id = ?",
            (workspace_id,),
        )
        return cursor.fetchone()[0]

    def owner(self) -> str | None:
        """Get the workspace of the first event ever stored, or None if empty."""
        cursor = self.conn.execute("SELECT workspace_id FROM events ORDER BY rowid LIMIT 1")
        row = cursor.fetchone()
        return row[0] if row else None

    def workspace_ids(self) -> list[str]:
        """List workspace ids that have events."""
        cursor = self.conn.execute("SELECT DISTINCT workspace_id FROM events ORDER BY workspace_id")
        return [row[0] for row in cursor.fetchall()]

    def count(self, workspace_id: str) -> int:
        """Count a workspace's events."""
        cursor = self.conn.execute(
            "SELECT COUNT(*) FROM events WHERE workspace_id = ?",
            (workspace_id,),
        )
        return cursor.fetchone()[0]
