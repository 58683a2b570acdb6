"""
Storage connection manager for workspace databases.

Opens and closes the single SQLite file a workspace owns. Every handle is
configured the same way:
- journal_mode = WAL so readers proceed during a write
- foreign_keys = ON
- synchronous = NORMAL (configurable); the last few transactions may be lost
  on power failure, never on a clean process exit
- busy_timeout and cache_size from StorageConfig

Invariants:
    - One database file per workspace, never shared across workspaces
    - Paths are absolute
    - close() checkpoints the WAL into the main file before releasing the
      handle, and never raises
    - Transactions are explicit (isolation_level=None)

How to change safely:
    - Pragmas that must hold for every handle belong in _configure()
    - Never call executescript() on a handle inside a transaction; it
      commits the pending transaction first
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from ..config import StorageConfig
from ..errors import CloseError, StorageOpenError

logger = logging.getLogger(__name__)


@dataclass
class WorkspaceConnection:
    """An open handle to one workspace database.

    Attributes:
        path: Absolute path of the database file
        conn: Underlying SQLite connection
        checkpoint_mode: wal_checkpoint mode used on close
        closed: Whether close_database() has run
    """

    path: Path
    conn: sqlite3.Connection
    checkpoint_mode: str = "TRUNCATE"
    closed: bool = False

    @contextmanager
    def transaction(self, mode: str = "IMMEDIATE") -> Iterator[sqlite3.Connection]:
        """Run a block inside one SQLite transaction.

        Args:
            mode: DEFERRED, IMMEDIATE or EXCLUSIVE

        Yields:
            The SQLite connection, with the transaction open
        """
        self.conn.execute(f"BEGIN {mode}")
        try:
            yield self.conn
        except Exception:
            # SQLite rolls back on its own for some errors (e.g. SQLITE_FULL)
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
            raise
        self.conn.execute("COMMIT")


def _configure(conn: sqlite3.Connection, config: StorageConfig) -> None:
    conn.execute(f"PRAGMA busy_timeout = {config.busy_timeout_ms}")
    conn.execute(f"PRAGMA cache_size = {config.cache_size_pages}")

    mode = conn.execute("PRAGMA journal_mode = WAL").fetchone()[0]
    if str(mode).lower() != "wal":
        logger.warning(f"Could not enable WAL journal mode, using {mode}")

    conn.execute(f"PRAGMA synchronous = {config.synchronous}")
    conn.execute("PRAGMA foreign_keys = ON")

    # Probe for write access; read-only files only fail here
    conn.execute("BEGIN IMMEDIATE")
    conn.execute("ROLLBACK")


def open_database(path: str | Path, config: StorageConfig | None = None) -> WorkspaceConnection:
    """Open a workspace database with the standard pragmas.

    Creates the file (and its directory) if absent.

    Args:
        path: Absolute path to the workspace database file
        config: SQLite settings (defaults if not provided)

    Returns:
        An open WorkspaceConnection

    Raises:
        StorageOpenError: If the path is relative, not writable, or the file
            is not a readable SQLite database
    """
    config = config or StorageConfig()
    db_path = Path(path)

    if not db_path.is_absolute():
        raise StorageOpenError(f"Workspace database path must be absolute: {path}", path=str(path))

    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageOpenError(
            f"Cannot create directory for workspace database {db_path}: {e}", path=str(db_path)
        ) from e

    try:
        conn = sqlite3.connect(
            str(db_path),
            timeout=config.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
    except sqlite3.Error as e:
        raise StorageOpenError(f"Cannot open workspace database {db_path}: {e}", path=str(db_path)) from e

    conn.row_factory = sqlite3.Row

    try:
        _configure(conn, config)
    except sqlite3.Error as e:
        conn.close()
        raise StorageOpenError(
            f"Workspace database {db_path} is not writable or is corrupt: {e}", path=str(db_path)
        ) from e

    logger.debug("Opened workspace database", extra={"path": str(db_path)})
    return WorkspaceConnection(path=db_path, conn=conn, checkpoint_mode=config.checkpoint_mode)


def close_database(handle: WorkspaceConnection) -> bool:
    """Checkpoint the WAL into the main file and release the handle.

    A failed checkpoint is logged as a CloseError and the close still
    proceeds. A failure of the close itself is logged and ignored.

    Args:
        handle: Handle returned by open_database()

    Returns:
        True if checkpoint and close both succeeded, False otherwise
    """
    if handle.closed:
        return True

    clean = True
    conn = handle.conn

    try:
        if conn.in_transaction:
            logger.warning(
                "Rolling back open transaction before close", extra={"path": str(handle.path)}
            )
            conn.execute("ROLLBACK")

        busy, _, _ = conn.execute(f"PRAGMA wal_checkpoint({handle.checkpoint_mode})").fetchone()
        if busy:
            clean = False
            logger.warning(
                "WAL checkpoint could not complete, readers still active",
                extra={"path": str(handle.path)},
            )
    except sqlite3.Error as e:
        clean = False
        error = CloseError(f"WAL checkpoint failed for {handle.path}: {e}", path=str(handle.path))
        logger.error(error.message, extra={"path": str(handle.path), "code": error.code})

    try:
        conn.close()
    except sqlite3.Error as e:
        clean = False
        logger.warning(f"Ignoring secondary close error: {e}", extra={"path": str(handle.path)})

    handle.closed = True
    logger.debug("Closed workspace database", extra={"path": str(handle.path)})
    return clean


@contextmanager
def connect(path: str | Path, config: StorageConfig | None = None) -> Iterator[WorkspaceConnection]:
    """Open a workspace database for the duration of a block.

    The handle is checkpointed and closed on every exit path.

    Args:
        path: Absolute path to the workspace database file
        config: SQLite settings

    Yields:
        An open WorkspaceConnection
    """
    handle = open_database(path, config)
    try:
        yield handle
    finally:
        close_database(handle)
