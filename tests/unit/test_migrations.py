"""
Unit tests for schema migrations.

Tests cover:
- Fresh database migration
- Idempotent re-runs
- Rollback on a failing step
- Partial upgrades and step re-application
"""

import sqlite3
import tempfile
from pathlib import Path

import pytest

from desktop.workspace_store.errors import MigrationStepError
from desktop.workspace_store.storage.connection import close_database, open_database
from desktop.workspace_store.storage.migrations import (
    CURRENT_SCHEMA_VERSION,
    MIGRATIONS,
    Migration,
    get_schema_version,
    run_migrations,
    validate_migrations,
)


def _tables(conn: sqlite3.Connection) -> set[str]:
    cursor = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    return {row[0] for row in cursor.fetchall()}


def _index_columns(conn: sqlite3.Connection, index: str) -> list[str]:
    return [row[2] for row in conn.execute(f"PRAGMA index_info({index})").fetchall()]


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


class TestRunMigrations:
    """Tests for run_migrations()."""

    @pytest.fixture
    def handle(self):
        """Open a fresh workspace database."""
        with tempfile.TemporaryDirectory() as tmpdir:
            handle = open_database(Path(tmpdir) / "workspace.db")
            yield handle
            close_database(handle)

    def test_fresh_database_is_version_zero(self, handle):
        """A new file has no schema version."""
        assert get_schema_version(handle) == 0

    def test_migrates_fresh_database(self, handle):
        """All steps run on a fresh file."""
        result = run_migrations(handle)

        assert result.from_version == 0
        assert result.to_version == CURRENT_SCHEMA_VERSION
        assert result.applied == [1, 2, 3, 4]
        assert get_schema_version(handle) == CURRENT_SCHEMA_VERSION
        assert {"events", "coworkers", "channels", "threads", "messages"} <= _tables(handle.conn)
        assert not handle.conn.in_transaction

    def test_creates_indexes(self, handle):
        """Event and projection indexes exist with the expected columns."""
        run_migrations(handle)
        conn = handle.conn

        assert _index_columns(conn, "idx_events_entity") == [
            "workspace_id",
            "entity_type",
            "entity_id",
            "seq",
        ]
        assert _index_columns(conn, "idx_events_seq") == ["workspace_id", "seq"]
        assert _index_columns(conn, "idx_coworkers_active") == ["workspace_id", "deleted_at"]
        assert _index_columns(conn, "idx_channels_sort") == ["workspace_id", "sort_order"]
        assert _index_columns(conn, "idx_threads_channel") == ["channel_id", "deleted_at"]
        assert _index_columns(conn, "idx_threads_workspace") == ["workspace_id", "deleted_at"]
        assert _index_columns(conn, "idx_messages_thread") == ["thread_id", "created_at"]

    def test_upgrades_version_three_file(self, handle):
        """A file from before threads and messages gains both tables."""
        run_migrations(handle, MIGRATIONS[:3])
        handle.conn.execute(
            "INSERT INTO channels (id, workspace_id, name, created_at, updated_at) "
            "VALUES ('ch1', 'w1', 'general', 1, 1)"
        )

        result = run_migrations(handle)

        assert result.from_version == 3
        assert result.applied == [4]
        assert {"threads", "messages"} <= _tables(handle.conn)
        assert handle.conn.execute("SELECT name FROM channels").fetchone()[0] == "general"

    def test_coworker_profile_columns(self, handle):
        """Version 2 adds the coworker profile columns."""
        run_migrations(handle)

        assert {
            "role_prompt",
            "defaults_json",
            "template_id",
            "template_version",
            "template_description",
        } <= _columns(handle.conn, "coworkers")

    def test_second_run_is_noop(self, handle):
        """Re-running at the current version changes nothing."""
        run_migrations(handle)
        result = run_migrations(handle)

        assert result.applied == []
        assert result.from_version == result.to_version == CURRENT_SCHEMA_VERSION

    def test_failing_step_rolls_back(self, handle):
        """A failing step leaves no partial schema and the version unchanged."""

        def broken(conn):
            conn.execute("CREATE TABLE half_done (x INTEGER)")
            raise RuntimeError("step exploded")

        migrations = (MIGRATIONS[0], Migration(2, "Broken step", broken))

        with pytest.raises(MigrationStepError) as exc_info:
            run_migrations(handle, migrations)

        assert exc_info.value.version == 2
        assert exc_info.value.from_version == 0
        assert get_schema_version(handle) == 0
        assert "events" not in _tables(handle.conn)
        assert "half_done" not in _tables(handle.conn)
        assert not handle.conn.in_transaction

    def test_partial_upgrade(self, handle):
        """A file at version 1 only runs the later steps."""
        run_migrations(handle, MIGRATIONS[:1])
        assert get_schema_version(handle) == 1
        handle.conn.execute(
            "INSERT INTO coworkers (id, workspace_id, name, created_at, updated_at) "
            "VALUES ('c1', 'w1', 'Ada', 1, 1)"
        )

        result = run_migrations(handle)

        assert result.from_version == 1
        assert result.applied == [2, 3, 4]
        row = handle.conn.execute("SELECT name, role_prompt FROM coworkers WHERE id = 'c1'").fetchone()
        assert row["name"] == "Ada"
        assert row["role_prompt"] is None

    def test_steps_tolerate_reapplication(self, handle):
        """Steps re-run after a lost version write without failing."""
        run_migrations(handle)
        handle.conn.execute("PRAGMA user_version = 0")

        result = run_migrations(handle)

        assert result.applied == [1, 2, 3, 4]
        assert get_schema_version(handle) == CURRENT_SCHEMA_VERSION

    def test_future_version_is_left_alone(self, handle):
        """A file from a newer release is not downgraded."""
        handle.conn.execute("PRAGMA user_version = 99")

        result = run_migrations(handle)

        assert result.applied == []
        assert get_schema_version(handle) == 99


class TestValidateMigrations:
    """Tests for validate_migrations()."""

    def test_shipped_migrations_are_contiguous(self):
        assert validate_migrations(MIGRATIONS) == CURRENT_SCHEMA_VERSION == 4

    def test_empty_is_version_zero(self):
        assert validate_migrations(()) == 0

    def test_gap_rejected(self):
        """Versions must not skip."""
        migrations = (MIGRATIONS[0], Migration(3, "Skips two", lambda conn: None))

        with pytest.raises(ValueError, match="contiguous"):
            validate_migrations(migrations)

    def test_must_start_at_one(self):
        with pytest.raises(ValueError):
            validate_migrations((Migration(2, "No first step", lambda conn: None),))
