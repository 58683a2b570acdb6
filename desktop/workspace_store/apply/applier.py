"""
Event-to-projection applier for the workspace store.

The Applier folds events into projection tables. It is called by the
WorkspaceStore inside the same transaction that appended the event, and
by rebuild() when replaying the log from empty projection state.

Invariants:
    - apply() depends only on the event and the current projection row
    - apply() never opens or commits a transaction
    - Any failure raises ProjectionApplyError so the caller rolls back the
      event together with its effect
    - Entity types without a registered projection are log-only streams

How to change safely:
    - Register new projections instead of branching on entity_type
    - Add event type aliases to EVENT_TYPE_ALIASES, never rename stored ones
    - Test rebuild equivalence for every new projection
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable

from ..errors import ProjectionApplyError
from .event_log import Event
from .projections import (
    ChannelProjection,
    CoworkerProjection,
    MessageProjection,
    Projection,
    ThreadProjection,
)

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"

# Stored event types folded as one of the three lifecycle variants
EVENT_TYPE_ALIASES = {
    "archived": DELETED,
}


def canonical_event_type(event_type: str) -> str:
    """Map an event type to its lifecycle variant (created/updated/deleted)."""
    return EVENT_TYPE_ALIASES.get(event_type, event_type)


def default_projections() -> list[Projection]:
    """Projections registered on every store."""
    return [CoworkerProjection(), ChannelProjection(), ThreadProjection(), MessageProjection()]


class Applier:
    """Folds events into the registered projection tables.

    Example:
        >>> applier = Applier()
        >>> with handle.transaction() as conn:
        ...     applier.apply(conn, event)
    """

    def __init__(self, projections: Iterable[Projection] | None = None) -> None:
        """Initialize the applier.

        Args:
            projections: Projections to maintain (all default projections if
                not provided)

        Raises:
            ValueError: If two projections claim the same entity type
        """
        self._projections: dict[str, Projection] = {}
        for projection in projections if projections is not None else default_projections():
            if projection.entity_type in self._projections:
                raise ValueError(f"Duplicate projection for entity type: {projection.entity_type}")
            self._projections[projection.entity_type] = projection

    @property
    def projections(self) -> list[Projection]:
        return list(self._projections.values())

    def projection_for(self, entity_type: str) -> Projection | None:
        """Get the projection maintained for an entity type, if any."""
        return self._projections.get(entity_type)

    def apply(self, conn: sqlite3.Connection, event: Event) -> None:
        """Apply one event to its projection.

        Args:
            conn: Connection with the caller's write transaction open
            event: Event to fold

        Raises:
            ProjectionApplyError: If the event cannot be applied
        """
        projection = self._projections.get(event.entity_type)
        if projection is None:
            logger.debug(
                "No projection for entity type, event is log-only",
                extra={"entity_type": event.entity_type, "seq": event.seq},
            )
            return

        event_type = canonical_event_type(event.event_type)
        try:
            if event_type == CREATED:
                projection.apply_created(conn, event)
            elif event_type == UPDATED:
                projection.apply_updated(conn, event)
            elif event_type == DELETED:
                projection.apply_deleted(conn, event)
            else:
                raise ProjectionApplyError(
                    f"Unknown event type for {event.entity_type}: {event.event_type}",
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    event_type=event.event_type,
                    seq=event.seq,
                )
        except sqlite3.Error as e:
            raise ProjectionApplyError(
                f"Error applying {event.entity_type} {event.event_type}: {e}",
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                event_type=event.event_type,
                seq=event.seq,
            ) from e

    def truncate(self, conn: sqlite3.Connection, workspace_id: str) -> int:
        """Delete a workspace's rows from every projection table.

        Returns:
            Number of rows removed
        """
        return sum(projection.truncate(conn, workspace_id) for projection in self.projections)
