"""
Integration tests for the coworker, channel, thread and message services.
"""

import tempfile
from pathlib import Path

import pytest

from desktop.workspace_store.apply.workspace_store import WorkspaceStore
from desktop.workspace_store.errors import EntityArchivedError, EntityNotFoundError
from desktop.workspace_store.services import (
    ChannelService,
    CoworkerService,
    MessageService,
    ThreadService,
)
from desktop.workspace_store.storage.connection import close_database


class TestCoworkerService:
    """Tests for CoworkerService."""

    @pytest.fixture
    def store(self, clock):
        """Create a migrated store."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = WorkspaceStore.open(Path(tmpdir) / "workspace.db", clock=clock)
            yield store
            close_database(store.handle)

    @pytest.fixture
    def coworkers(self, store):
        return CoworkerService(store, "w1", actor="user:42")

    @pytest.mark.asyncio
    async def test_create(self, coworkers, store):
        """create() appends one event and returns the projected row."""
        ada = await coworkers.create(
            name="Ada",
            role_prompt="You are a careful analyst",
            template_id="analyst",
            template_version=2,
        )

        assert ada.name == "Ada"
        assert ada.template_version == 2
        assert ada.description is None

        events = await store.list_by_entity("w1", "coworker", ada.id)
        assert len(events) == 1
        assert events[0].actor == "user:42"
        assert events[0].payload == {
            "name": "Ada",
            "role_prompt": "You are a careful analyst",
            "template_id": "analyst",
            "template_version": 2,
        }

    @pytest.mark.asyncio
    async def test_update_only_given_fields(self, coworkers):
        ada = await coworkers.create(name="Ada", description="Analyst")

        updated = await coworkers.update(ada.id, role_prompt="Be concise")

        assert updated.name == "Ada"
        assert updated.description == "Analyst"
        assert updated.role_prompt == "Be concise"

    @pytest.mark.asyncio
    async def test_update_none_clears_field(self, coworkers, store):
        """An explicit None is sent as null and clears the column."""
        ada = await coworkers.create(name="Ada", description="Analyst", role_prompt="Be concise")

        updated = await coworkers.update(ada.id, description=None)

        assert updated.description is None
        assert updated.role_prompt == "Be concise"
        events = await store.list_by_entity("w1", "coworker", ada.id)
        assert events[-1].payload == {"description": None}

    @pytest.mark.asyncio
    async def test_update_without_fields_changes_nothing(self, coworkers, store):
        ada = await coworkers.create(name="Ada", description="Analyst")

        updated = await coworkers.update(ada.id)

        assert updated.name == "Ada"
        assert updated.description == "Analyst"
        events = await store.list_by_entity("w1", "coworker", ada.id)
        assert events[-1].payload == {}

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, coworkers):
        with pytest.raises(EntityNotFoundError):
            await coworkers.update("nope", name="Ghost")

    @pytest.mark.asyncio
    async def test_update_archived_raises(self, coworkers):
        ada = await coworkers.create(name="Ada")
        await coworkers.archive(ada.id)

        with pytest.raises(EntityArchivedError):
            await coworkers.update(ada.id, name="Back")

    @pytest.mark.asyncio
    async def test_archive(self, coworkers, store):
        """archive() soft-deletes and is idempotent."""
        ada = await coworkers.create(name="Ada")

        await coworkers.archive(ada.id, reason="left")
        await coworkers.archive(ada.id)

        assert await coworkers.list() == []
        assert (await coworkers.get(ada.id)).deleted_at is not None
        events = await store.list_by_entity("w1", "coworker", ada.id)
        assert [e.event_type for e in events] == ["created", "deleted"]
        assert events[1].payload == {"reason": "left"}

    @pytest.mark.asyncio
    async def test_archive_missing_raises(self, coworkers):
        with pytest.raises(EntityNotFoundError) as exc_info:
            await coworkers.archive("nope")

        assert exc_info.value.code == "ENTITY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_other_workspace_is_invisible(self, coworkers, store):
        ada = await coworkers.create(name="Ada")
        other = CoworkerService(store, "w2")

        assert await other.get(ada.id) is None
        with pytest.raises(EntityNotFoundError):
            await other.update(ada.id, name="Stolen")


class TestChannelService:
    """Tests for ChannelService."""

    @pytest.fixture
    def store(self, clock):
        """Create a migrated store."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = WorkspaceStore.open(Path(tmpdir) / "workspace.db", clock=clock)
            yield store
            close_database(store.handle)

    @pytest.fixture
    def channels(self, store):
        return ChannelService(store, "w1")

    @pytest.mark.asyncio
    async def test_create_appends_in_order(self, channels):
        """New channels go after existing ones."""
        general = await channels.create(name="general", is_default=True)
        random = await channels.create(name="random")

        assert general.sort_order == 0
        assert general.is_default is True
        assert random.sort_order == 1
        assert [c.name for c in await channels.list()] == ["general", "random"]

    @pytest.mark.asyncio
    async def test_reorder(self, channels):
        general = await channels.create(name="general")
        await channels.create(name="random")

        await channels.update(general.id, sort_order=5)

        assert [c.name for c in await channels.list()] == ["random", "general"]

    @pytest.mark.asyncio
    async def test_archive(self, channels):
        general = await channels.create(name="general")

        await channels.archive(general.id)

        assert await channels.list() == []
        with pytest.raises(EntityArchivedError):
            await channels.update(general.id, purpose="Anything")

    @pytest.mark.asyncio
    async def test_update_none_clears_purpose(self, channels):
        general = await channels.create(name="general", purpose="Everything")

        updated = await channels.update(general.id, purpose=None)

        assert updated.purpose is None
        assert updated.name == "general"


class TestThreadAndMessageServices:
    """Tests for ThreadService and MessageService."""

    @pytest.fixture
    def store(self, clock):
        """Create a migrated store."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = WorkspaceStore.open(Path(tmpdir) / "workspace.db", clock=clock)
            yield store
            close_database(store.handle)

    @pytest.fixture
    def channels(self, store):
        return ChannelService(store, "w1")

    @pytest.fixture
    def threads(self, store):
        return ThreadService(store, "w1")

    @pytest.fixture
    def messages(self, store):
        return MessageService(store, "w1", actor="coworker:ada")

    @pytest.mark.asyncio
    async def test_threads_listed_per_channel(self, channels, threads):
        """Threads list by channel, most recently updated first."""
        general = await channels.create(name="general")
        random = await channels.create(name="random")
        first = await threads.create(general.id, title="First")
        second = await threads.create(general.id, title="Second")
        await threads.create(random.id)

        await threads.update(first.id, summary_ref="blob:summary")

        listed = await threads.list_in_channel(general.id)
        assert [t.id for t in listed] == [first.id, second.id]
        assert listed[0].summary_ref == "blob:summary"
        assert listed[0].channel_id == general.id

    @pytest.mark.asyncio
    async def test_thread_title_can_be_cleared(self, channels, threads):
        general = await channels.create(name="general")
        thread = await threads.create(general.id, title="Draft")

        updated = await threads.update(thread.id, title=None)

        assert updated.title is None

    @pytest.mark.asyncio
    async def test_thread_needs_active_channel(self, channels, threads):
        with pytest.raises(EntityNotFoundError):
            await threads.create("missing")

        general = await channels.create(name="general")
        await channels.archive(general.id)
        with pytest.raises(EntityArchivedError):
            await threads.create(general.id)

    @pytest.mark.asyncio
    async def test_streamed_message_completes(self, channels, threads, messages, store):
        """A streaming reply is updated in place when it completes."""
        general = await channels.create(name="general")
        thread = await threads.create(general.id)
        question = await messages.create(thread.id, "user", author_id="u1", content_short="Status?")
        reply = await messages.create(thread.id, "coworker", author_id="ada", status="streaming")

        assert question.status == "complete"
        assert reply.status == "streaming"

        done = await messages.update(reply.id, content_short="All green", status="complete")

        assert done.status == "complete"
        assert done.content_short == "All green"
        assert [m.id for m in await messages.list_in_thread(thread.id)] == [question.id, reply.id]
        events = await store.list_by_entity("w1", "message", reply.id)
        assert events[0].actor == "coworker:ada"

    @pytest.mark.asyncio
    async def test_message_needs_active_thread(self, channels, threads, messages):
        with pytest.raises(EntityNotFoundError):
            await messages.create("missing", "user")

        general = await channels.create(name="general")
        thread = await threads.create(general.id)
        await threads.archive(thread.id)
        with pytest.raises(EntityArchivedError):
            await messages.create(thread.id, "user")

    @pytest.mark.asyncio
    async def test_archived_message_hidden(self, channels, threads, messages):
        general = await channels.create(name="general")
        thread = await threads.create(general.id)
        message = await messages.create(thread.id, "system", content_short="Joined")

        await messages.archive(message.id)

        assert await messages.list_in_thread(thread.id) == []
        assert (await messages.get(message.id)).deleted_at is not None
