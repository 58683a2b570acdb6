"""
Apply module for the workspace store - event log and projections.

This module handles:
- The append-only events table
- Payload validation for projected entity types
- Coworker, channel, thread and message projection tables
- Folding events into projections, incrementally and by full rebuild

The projections are materialized views derived from the event log.
They can be rebuilt from scratch by replaying the log.

Invariants:
    - An event and its projection effect are committed together
    - Replaying a workspace's log from empty state reproduces its projections
    - Soft-deleted rows are retained
    - SQLite uses WAL mode for concurrent reads during writes

How to change safely:
    - Use handle.transaction() for all multi-statement writes
    - Verify rebuild equivalence when changing a projection
"""

from .applier import Applier, canonical_event_type
from .event_log import Event, EventLog
from .projections import (
    Channel,
    ChannelProjection,
    Coworker,
    CoworkerProjection,
    Message,
    MessageProjection,
    Projection,
    Thread,
    ThreadProjection,
)
from .workspace_store import RebuildResult, WorkspaceStore

__all__ = [
    "Applier",
    "canonical_event_type",
    "Event",
    "EventLog",
    "Channel",
    "ChannelProjection",
    "Coworker",
    "CoworkerProjection",
    "Message",
    "MessageProjection",
    "Projection",
    "Thread",
    "ThreadProjection",
    "RebuildResult",
    "WorkspaceStore",
]
