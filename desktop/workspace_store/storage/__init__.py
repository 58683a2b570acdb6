"""
Storage module for the workspace store - connections and schema.

This module handles:
- Opening and closing per-workspace SQLite files (WAL mode)
- Versioned schema migrations recorded in PRAGMA user_version

Invariants:
    - One handle per workspace database in a process
    - Migrations run at open time, before any read or append
    - close_database() never raises

How to change safely:
    - Append migrations, never edit shipped ones
    - Keep pragma configuration in one place (connection._configure)
"""

from .connection import WorkspaceConnection, close_database, connect, open_database
from .migrations import (
    CURRENT_SCHEMA_VERSION,
    MIGRATIONS,
    Migration,
    MigrationResult,
    get_schema_version,
    run_migrations,
)

__all__ = [
    "WorkspaceConnection",
    "open_database",
    "close_database",
    "connect",
    "CURRENT_SCHEMA_VERSION",
    "MIGRATIONS",
    "Migration",
    "MigrationResult",
    "get_schema_version",
    "run_migrations",
]
