"""
Versioned schema migrations for workspace databases.

The schema version is a single integer kept in the database header
(PRAGMA user_version). It is 0 for a brand-new or pre-versioning file.
run_migrations() brings a file from its recorded version up to
CURRENT_SCHEMA_VERSION inside one exclusive transaction.

Invariants:
    - Steps run strictly in ascending version order, each at most once per
      successful migration
    - Steps and the version write commit together or not at all
    - Every step tolerates being applied again (IF NOT EXISTS, column
      existence checks), since a lost version write re-runs it
    - Statements are executed one at a time; executescript() would commit
      the open transaction

How to change safely:
    - Never edit a shipped step; append a new Migration with the next version
    - Guard ALTER TABLE ADD COLUMN with _has_column()
    - Add a test that migrates a file created at the previous version
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from ..errors import MigrationStepError, SchemaReadError, VersionWriteError
from .connection import WorkspaceConnection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    """One schema migration step.

    Attributes:
        version: Version this step brings the schema to
        description: Human-readable summary, logged when the step runs
        apply: Function executing the step's statements on a connection
    """

    version: int
    description: str
    apply: Callable[[sqlite3.Connection], None]


@dataclass
class MigrationResult:
    """Result of a run_migrations() call.

    Attributes:
        from_version: Version recorded before the call
        to_version: Version recorded after the call
        applied: Versions of the steps that ran (empty for a no-op)
        duration_ms: Time spent migrating
    """

    from_version: int
    to_version: int
    applied: list[int] = field(default_factory=list)
    duration_ms: int = 0


def _has_column(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return any(row[1] == column for row in rows)


def _migrate_v1(conn: sqlite3.Connection) -> None:
    """Initial schema: event log and coworkers projection."""
    # Append-only event log
    conn.execute("""
        CREATE TABLE IF NOT EXISTS events (
            id TEXT PRIMARY KEY,
            workspace_id TEXT NOT NULL,
            seq INTEGER NOT NULL,
            ts INTEGER NOT NULL,
            actor TEXT NOT NULL,
            entity_type TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            event_type TEXT NOT NULL,
            payload_json TEXT NOT NULL
        )
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_events_entity
        ON events (workspace_id, entity_type, entity_id, seq)
    """)
    # Unique: a duplicate seq is a constraint violation, not a silent fork
    conn.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_events_seq
        ON events (workspace_id, seq)
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS coworkers (
            id TEXT PRIMARY KEY,
            workspace_id TEXT NOT NULL,
            name TEXT NOT NULL,
            description TEXT,
            created_at INTEGER NOT NULL,
            updated_at INTEGER NOT NULL,
            deleted_at INTEGER
        )
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_coworkers_active
        ON coworkers (workspace_id, deleted_at)
    """)


def _migrate_v2(conn: sqlite3.Connection) -> None:
    """Coworker profile columns."""
    columns = {
        "role_prompt": "TEXT",
        "defaults_json": "TEXT",
        "template_id": "TEXT",
        "template_version": "INTEGER",
        "template_description": "TEXT",
    }
    for column, sql_type in columns.items():
        if not _has_column(conn, "coworkers", column):
            conn.execute(f"ALTER TABLE coworkers ADD COLUMN {column} {sql_type}")


def _migrate_v3(conn: sqlite3.Connection) -> None:
    """Channels projection."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS channels (
            id TEXT PRIMARY KEY,
            workspace_id TEXT NOT NULL,
            name TEXT NOT NULL,
            purpose TEXT,
            pinned_json TEXT,
            is_default INTEGER NOT NULL DEFAULT 0,
            sort_order INTEGER NOT NULL DEFAULT 0,
            created_at INTEGER NOT NULL,
            updated_at INTEGER NOT NULL,
            deleted_at INTEGER
        )
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_channels_workspace
        ON channels (workspace_id, deleted_at)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_channels_sort
        ON channels (workspace_id, sort_order)
    """)


def _migrate_v4(conn: sqlite3.Connection) -> None:
    """Threads and messages projections."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS threads (
            id TEXT PRIMARY KEY,
            workspace_id TEXT NOT NULL,
            channel_id TEXT NOT NULL,
            title TEXT,
            summary_ref TEXT,
            created_at INTEGER NOT NULL,
            updated_at INTEGER NOT NULL,
            deleted_at INTEGER
        )
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_threads_channel
        ON threads (channel_id, deleted_at)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_threads_workspace
        ON threads (workspace_id, deleted_at)
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS messages (
            id TEXT PRIMARY KEY,
            workspace_id TEXT NOT NULL,
            thread_id TEXT NOT NULL,
            author_type TEXT NOT NULL,
            author_id TEXT,
            content_ref TEXT,
            content_short TEXT,
            status TEXT NOT NULL DEFAULT 'complete',
            created_at INTEGER NOT NULL,
            updated_at INTEGER NOT NULL,
            deleted_at INTEGER
        )
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_messages_thread
        ON messages (thread_id, created_at)
    """)


MIGRATIONS: tuple[Migration, ...] = (
    Migration(1, "Initial schema", _migrate_v1),
    Migration(2, "Add coworker profile columns", _migrate_v2),
    Migration(3, "Add channels projection", _migrate_v3),
    Migration(4, "Add threads and messages projections", _migrate_v4),
)


def validate_migrations(migrations: Sequence[Migration]) -> int:
    """Check that versions start at 1 and are contiguous.

    Args:
        migrations: Migration steps in declaration order

    Returns:
        The target version (highest step version, 0 if empty)

    Raises:
        ValueError: If versions are out of order, duplicated or have gaps
    """
    for expected, migration in enumerate(migrations, start=1):
        if migration.version != expected:
            raise ValueError(
                f"Migration versions must be contiguous from 1: "
                f"expected {expected}, got {migration.version}"
            )
    return len(migrations)


CURRENT_SCHEMA_VERSION = validate_migrations(MIGRATIONS)


def get_schema_version(handle: WorkspaceConnection) -> int:
    """Read the persisted schema version.

    Unreadable metadata is logged and treated as version 0.

    Args:
        handle: Open workspace database

    Returns:
        Recorded schema version
    """
    try:
        return int(handle.conn.execute("PRAGMA user_version").fetchone()[0])
    except sqlite3.Error as e:
        error = SchemaReadError(f"Cannot read schema version of {handle.path}: {e}")
        logger.warning(error.message, extra={"path": str(handle.path), "code": error.code})
        return 0


def run_migrations(
    handle: WorkspaceConnection,
    migrations: Sequence[Migration] = MIGRATIONS,
) -> MigrationResult:
    """Bring a workspace database up to the target schema version.

    Safe to call on every open: a database already at (or past) the
    target version is left untouched.

    Args:
        handle: Open workspace database; no other operation may be in flight
        migrations: Migration steps (defaults to the shipped steps)

    Returns:
        MigrationResult describing what ran

    Raises:
        MigrationStepError: A step failed; nothing was committed
        VersionWriteError: The version could not be recorded; nothing was
            committed
    """
    target = validate_migrations(migrations)
    current = get_schema_version(handle)

    if current >= target:
        logger.info(
            f"Schema is up to date (version {current})",
            extra={"path": str(handle.path), "version": current},
        )
        return MigrationResult(from_version=current, to_version=current)

    pending = [m for m in migrations if current < m.version <= target]
    logger.info(
        f"Running migrations from version {current} to {target}",
        extra={"path": str(handle.path), "from_version": current, "to_version": target},
    )

    start = time.monotonic()
    conn = handle.conn

    try:
        conn.execute("BEGIN EXCLUSIVE")
    except sqlite3.Error as e:
        raise MigrationStepError(
            f"Cannot acquire exclusive lock to migrate {handle.path}: {e}",
            version=pending[0].version,
            from_version=current,
        ) from e

    try:
        for migration in pending:
            logger.info(f"Running migration V{migration.version}: {migration.description}")
            try:
                migration.apply(conn)
            except Exception as e:
                raise MigrationStepError(
                    f"Migration V{migration.version} ({migration.description}) failed: {e}",
                    version=migration.version,
                    from_version=current,
                ) from e

        try:
            conn.execute(f"PRAGMA user_version = {int(target)}")
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            raise VersionWriteError(
                f"Cannot record schema version {target} for {handle.path}: {e}",
                target_version=target,
            ) from e

    except Exception:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        logger.error(
            "Migration rolled back",
            extra={"path": str(handle.path), "from_version": current, "to_version": target},
        )
        raise

    duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        "Migrations complete",
        extra={"path": str(handle.path), "version": target, "duration_ms": duration_ms},
    )
    return MigrationResult(
        from_version=current,
        to_version=target,
        applied=[m.version for m in pending],
        duration_ms=duration_ms,
    )
