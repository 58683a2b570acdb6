"""
Workspace Store - embedded event-sourced storage for desktop workspaces.

This package implements the durable storage engine each workspace owns:
- An append-only event log as the source of truth
- Materialized projection tables (coworkers, channels) derived from it
- One SQLite file per workspace in WAL mode
- Versioned schema migrations tracked in PRAGMA user_version

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Service   │────▶│  Workspace  │────▶│    Event Log    │
    │ (commands)  │     │    Store    │     │    (events)     │
    └─────────────┘     └──────┬──────┘     └────────┬────────┘
                               │   same transaction  │
                               ▼                     ▼
                        ┌─────────────┐     ┌─────────────────┐
                        │   Readers   │◀────│     Applier     │
                        │ (find/list) │     │  (projections)  │
                        └─────────────┘     └─────────────────┘

Invariants:
    - The event log is the source of truth
    - Projection tables are derived and can be rebuilt from the log
    - An event and its projection effect commit together or not at all
    - seq is the only ordering key for events within a workspace

How to change safely:
    - Never edit a shipped migration; append a new one
    - New entity types register a Projection with the Applier
    - Verify rebuild equivalence for every new projection
"""

from ._version import __version__

__all__ = ["__version__"]
