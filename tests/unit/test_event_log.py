"""
Unit tests for the event log.

Tests cover:
- Sequence allocation
- Ordering by seq regardless of ts
- Constraint violations
- Malformed stored payloads
"""

import tempfile
from pathlib import Path

import pytest

from desktop.workspace_store.apply.event_log import Event, EventLog, decode_payload
from desktop.workspace_store.errors import EventAppendError
from desktop.workspace_store.storage.connection import close_database, open_database
from desktop.workspace_store.storage.migrations import run_migrations


class TestEventLog:
    """Tests for EventLog."""

    @pytest.fixture
    def handle(self):
        """Open a migrated workspace database."""
        with tempfile.TemporaryDirectory() as tmpdir:
            handle = open_database(Path(tmpdir) / "workspace.db")
            run_migrations(handle)
            yield handle
            close_database(handle)

    def _make_event(
        self,
        seq: int,
        ts: int = 1000,
        workspace_id: str = "w1",
        entity_id: str = "c1",
        event_id: str | None = None,
        payload: dict | None = None,
    ) -> Event:
        return Event(
            id=event_id or f"evt-{workspace_id}-{seq}",
            workspace_id=workspace_id,
            seq=seq,
            ts=ts,
            actor="user:1",
            entity_type="coworker",
            entity_id=entity_id,
            event_type="created" if seq == 0 else "updated",
            payload=payload if payload is not None else {"name": f"v{seq}"},
        )

    def _append(self, handle, event: Event) -> None:
        with handle.transaction() as conn:
            EventLog(conn).insert(event)

    def test_next_seq_starts_at_zero(self, handle):
        """An empty workspace allocates seq 0."""
        log = EventLog(handle.conn)

        assert log.next_seq("w1") == 0
        assert log.last_seq("w1") is None

    def test_next_seq_follows_max(self, handle):
        """seq continues from the highest stored value."""
        for seq in range(3):
            self._append(handle, self._make_event(seq))

        log = EventLog(handle.conn)
        assert log.next_seq("w1") == 3
        assert log.last_seq("w1") == 2
        assert log.count("w1") == 3

    def test_workspaces_have_independent_sequences(self, handle):
        """Each workspace numbers its own events."""
        self._append(handle, self._make_event(0, workspace_id="w1"))
        self._append(handle, self._make_event(1, workspace_id="w1"))
        self._append(handle, self._make_event(0, workspace_id="w2"))

        log = EventLog(handle.conn)
        assert log.next_seq("w1") == 2
        assert log.next_seq("w2") == 1

    def test_owner_is_first_workspace(self, handle):
        """The owner is the workspace of the earliest stored event."""
        log = EventLog(handle.conn)
        assert log.owner() is None
        assert log.workspace_ids() == []

        self._append(handle, self._make_event(0, workspace_id="w2"))
        self._append(handle, self._make_event(0, workspace_id="w1"))

        assert log.owner() == "w2"
        assert log.workspace_ids() == ["w1", "w2"]

    def test_listing_ignores_ts(self, handle):
        """Events are ordered by seq even when ts goes backwards."""
        self._append(handle, self._make_event(0, ts=3000))
        self._append(handle, self._make_event(1, ts=1000))
        self._append(handle, self._make_event(2, ts=2000))

        log = EventLog(handle.conn)
        assert [e.seq for e in log.list_by_workspace("w1")] == [0, 1, 2]
        assert [e.seq for e in log.list_by_entity("w1", "coworker", "c1")] == [0, 1, 2]

    def test_list_by_entity_filters(self, handle):
        """Only the requested entity's events are returned."""
        self._append(handle, self._make_event(0, entity_id="c1"))
        self._append(handle, self._make_event(1, entity_id="c2"))
        self._append(handle, self._make_event(2, entity_id="c1"))

        events = EventLog(handle.conn).list_by_entity("w1", "coworker", "c1")

        assert [e.seq for e in events] == [0, 2]
        assert EventLog(handle.conn).list_by_entity("w1", "coworker", "missing") == []

    def test_list_since_seq(self, handle):
        """since_seq is exclusive."""
        for seq in range(5):
            self._append(handle, self._make_event(seq))

        events = EventLog(handle.conn).list_by_workspace("w1", since_seq=2)

        assert [e.seq for e in events] == [3, 4]

    def test_round_trips_fields(self, handle):
        """Stored events read back unchanged."""
        event = self._make_event(0, payload={"name": "Ada", "nested": {"tags": ["a", "b"]}})
        self._append(handle, event)

        assert EventLog(handle.conn).list_by_workspace("w1") == [event]

    def test_duplicate_seq_rejected(self, handle):
        """Two events cannot share a seq within a workspace."""
        self._append(handle, self._make_event(0, event_id="a"))

        with pytest.raises(EventAppendError) as exc_info:
            self._append(handle, self._make_event(0, event_id="b"))

        assert exc_info.value.seq == 0
        assert EventLog(handle.conn).count("w1") == 1

    def test_duplicate_id_rejected(self, handle):
        """Event ids are unique."""
        self._append(handle, self._make_event(0, event_id="same"))

        with pytest.raises(EventAppendError):
            self._append(handle, self._make_event(1, event_id="same"))

    def test_unserializable_payload_rejected(self, handle):
        """Payloads must be JSON-serializable."""
        with pytest.raises(EventAppendError, match="not serializable"):
            self._append(handle, self._make_event(0, payload={"when": object()}))

    def test_malformed_payload_reads_as_empty(self, handle):
        """A corrupt payload_json column reads back as {}."""
        self._append(handle, self._make_event(0))
        handle.conn.execute("UPDATE events SET payload_json = '{not json' WHERE seq = 0")

        events = EventLog(handle.conn).list_by_workspace("w1")

        assert events[0].payload == {}


class TestDecodePayload:
    """Tests for decode_payload()."""

    def test_object(self):
        assert decode_payload('{"name": "Ada"}') == {"name": "Ada"}

    def test_none(self):
        assert decode_payload(None) == {}

    def test_invalid_json(self):
        assert decode_payload("{oops", "evt-1") == {}

    def test_non_object(self):
        """Arrays and scalars are not payloads."""
        assert decode_payload("[1, 2]") == {}
        assert decode_payload("42") == {}
